from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ims.schemas import RequestStatus


# Upper bound on a single line quantity; guards against typos like 1e9
MAX_LINE_QTY = 1_000_000

SAVE_MODES = {RequestStatus.DRAFT.value, RequestStatus.SUBMITTED.value}


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (stale revision, stock shortage)."""

    code = "conflict"


@dataclass(frozen=True)
class LineInput:
    """One line as sent by the editor: what to request, not who decided on it."""
    item_id: str
    unit: str
    qty: int
    key: str | None = None


@dataclass
class RequestInput:
    project_id: str
    engineer_id: str
    urgent: bool = False
    note: str = ""
    lines: list[LineInput] = field(default_factory=list)


def coerce_int(name: str, value: Any) -> int:
    """
    Strict integer coercion: rejects bools, floats with fractions,
    scientific notation and decimal strings.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{name} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    raise ValidationError(f"{name} must be an integer")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_save_mode(value: Any) -> RequestStatus:
    mode = _text(value).upper() or RequestStatus.SUBMITTED.value
    if mode not in SAVE_MODES:
        raise ValidationError(f"mode must be one of: {', '.join(sorted(SAVE_MODES))}")
    return RequestStatus(mode)


def parse_expected_revision(value: Any) -> int:
    if value is None or value == "":
        return 0
    revision = coerce_int("expected_revision", value)
    if revision < 0:
        raise ValidationError("expected_revision must be >= 0")
    return revision


def parse_line_input(raw: Any, index: int) -> LineInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")
    item_id = _text(raw.get("item_id"))
    if not item_id:
        raise ValidationError(f"lines[{index}].item_id is required")
    unit = _text(raw.get("unit"))
    if not unit:
        raise ValidationError(f"lines[{index}].unit is required")
    if raw.get("qty") is None:
        raise ValidationError(f"lines[{index}].qty is required")
    qty = coerce_int(f"lines[{index}].qty", raw.get("qty"))
    if qty <= 0:
        raise ValidationError(f"lines[{index}].qty must be greater than zero")
    if qty > MAX_LINE_QTY:
        raise ValidationError(f"lines[{index}].qty must be <= {MAX_LINE_QTY}")
    key = _text(raw.get("key")) or None
    return LineInput(item_id=item_id, unit=unit, qty=qty, key=key)


def parse_request_payload(payload: Any) -> RequestInput:
    """
    Validate the editor payload shape. Business checks that need the catalog
    or the stored request (duplicate items, owner departments) happen in
    request_service.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    raw_lines = payload.get("lines")
    if raw_lines is None:
        raw_lines = []
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")

    lines = [parse_line_input(raw, idx) for idx, raw in enumerate(raw_lines)]

    seen_items: set[str] = set()
    seen_keys: set[str] = set()
    for line in lines:
        if line.item_id in seen_items:
            raise ValidationError(f"Item {line.item_id} already added. Please edit its quantity.")
        seen_items.add(line.item_id)
        if line.key:
            if line.key in seen_keys:
                raise ValidationError(f"Duplicate line key {line.key}")
            seen_keys.add(line.key)

    urgent = payload.get("urgent", False)
    if not isinstance(urgent, bool):
        raise ValidationError("urgent must be true or false")

    note = payload.get("note")
    if note is not None and not isinstance(note, str):
        raise ValidationError("note must be a string")

    return RequestInput(
        project_id=_text(payload.get("project_id")),
        engineer_id=_text(payload.get("engineer_id")),
        urgent=urgent,
        note=note or "",
        lines=lines,
    )


def require_header_fields(data: RequestInput) -> None:
    """Project, engineer and at least one line are required on every save."""
    if not data.project_id or not data.engineer_id or not data.lines:
        raise ValidationError("Please choose a project and engineer and add at least one item")
