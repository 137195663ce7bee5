# Overview: Unit-of-measure lookup and base-unit conversion.

"""
Units of measure.

UNIT_OPTIONS is the fixed list of unit codes offered when defining items.
Conversion is per item: an item stores its stock in a base unit and may list
alternate units with a per_base multiplier (how many of that unit make one
base unit). A unit that is not listed, or listed with a zero multiplier,
converts 1:1. Nothing here raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class UnitOption:
    code: str
    label: str


@dataclass(frozen=True)
class ItemUnit:
    code: str
    label: str
    per_base: float


UNIT_OPTIONS: list[UnitOption] = [
    UnitOption("PCS", "Piece"),
    UnitOption("EA", "Each"),
    UnitOption("PR", "Pair"),
    UnitOption("SET", "Set"),
    UnitOption("BOX", "Box"),
    UnitOption("PACK", "Pack"),
    UnitOption("KG", "Kilogram"),
    UnitOption("L", "Liter"),
    UnitOption("M", "Meter"),
]

_OPTIONS_BY_CODE = {opt.code: opt for opt in UNIT_OPTIONS}


def normalize_unit_code(code: str | None) -> str:
    return (code or "").strip().upper()


def get_unit_option(code: str | None) -> UnitOption | None:
    return _OPTIONS_BY_CODE.get(normalize_unit_code(code))


def unit_label(code: str | None) -> str:
    """'Box (BOX)' for known codes, the code itself otherwise."""
    found = get_unit_option(code)
    return f"{found.label} ({found.code})" if found else (code or "")


class UnitTable:
    """Per-item code -> multiplier lookup."""

    def __init__(self, units: Iterable[ItemUnit] = ()):
        self._by_code: dict[str, ItemUnit] = {}
        for unit in units:
            self._by_code[normalize_unit_code(unit.code)] = unit

    @classmethod
    def from_raw(cls, raw_units: Any) -> "UnitTable":
        """Build from the JSON list stored on an item; malformed rows are skipped."""
        units = []
        if isinstance(raw_units, list):
            for raw in raw_units:
                if not isinstance(raw, Mapping) or not raw.get("code"):
                    continue
                try:
                    per_base = float(raw.get("per_base") or 0)
                except (TypeError, ValueError):
                    per_base = 0.0
                code = normalize_unit_code(raw["code"])
                label = raw.get("label") or (get_unit_option(code).label if get_unit_option(code) else code)
                units.append(ItemUnit(code=code, label=label, per_base=per_base))
        return cls(units)

    def multiplier(self, unit_code: str | None) -> float:
        found = self._by_code.get(normalize_unit_code(unit_code))
        if not found or not found.per_base:
            return 1.0
        return found.per_base

    def to_base(self, qty: float, unit_code: str | None) -> float:
        return qty / self.multiplier(unit_code)

    def from_base(self, base_qty: float, unit_code: str | None) -> float:
        return base_qty * self.multiplier(unit_code)

    def codes(self) -> list[str]:
        return list(self._by_code)

