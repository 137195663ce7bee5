# Overview: Stock checks for request lines and per-item demand aggregation.

"""
Inventory guard.

WHY: A request must not be submitted or approved for more than the store
holds. The check only applies to lines whose owning department the acting
user sees as store team (store department members see every department,
store officers see their own); for everyone else stock is not visible and
not enforced.

Quantities on lines are in the line's unit; stock is in the item's base
unit. Every comparison converts the line quantity to base units first.

Drafts are never checked: a draft may ask for more than is on hand.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, Mapping

from ..extensions import db
from ..models import Item
from ..validation import ValidationError
from ims.schemas import LineStatus, RequestLine
from .lifecycle_service import normalize_line_status
from .permission_service import ActorContext
from .units import UnitTable


logger = logging.getLogger(__name__)


class InventoryViolationError(ValidationError):
    """Requested quantity exceeds available stock; the whole action is refused."""

    code = "inventory-violation"

    def __init__(self, message: str, *, item_id: str, requested: float, available: float):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(message)


def _fmt_qty(value: float | int | None) -> str:
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def load_items(item_codes: Iterable[str]) -> dict[str, Item]:
    codes = sorted({code for code in item_codes if code})
    if not codes:
        return {}
    rows = db.session.query(Item).filter(Item.item_code.in_(codes)).all()
    return {row.item_code: row for row in rows}


def available_qty(item: Item | None) -> float | None:
    """Current stock in base units, or None when the item carries no stock figure."""
    if item is None or item.qty is None:
        return None
    try:
        return float(item.qty)
    except (TypeError, ValueError):
        return None


def line_base_qty(line: RequestLine, item: Item | None) -> float:
    if item is None:
        return float(line.qty)
    return UnitTable.from_raw(item.units).to_base(line.qty, line.unit)


def check_line_stock(line: RequestLine, item: Item | None, actor: ActorContext, *, verb: str = "approve") -> None:
    """
    Raise InventoryViolationError when the actor sees this line's department
    as store team and the line asks for more than is available.
    """
    if not actor.store_team_can_see_dept(line.owner_dept_id):
        return
    available = available_qty(item)
    if available is None:
        return
    requested = line_base_qty(line, item)
    if requested > available:
        label = item.display_name if item is not None else line.label
        raise InventoryViolationError(
            f"Cannot {verb} {label} ({line.item_id}): {_fmt_qty(line.qty)} {line.unit} requested "
            f"but only {_fmt_qty(available)} available.",
            item_id=line.item_id,
            requested=requested,
            available=available,
        )


def find_inventory_violation(
    lines: Iterable[RequestLine],
    items: Mapping[str, Item],
    actor: ActorContext,
) -> tuple[RequestLine, float] | None:
    """First active, non-rejected line that exceeds visible stock, with the available figure."""
    for line in lines:
        status = normalize_line_status(line)
        if status in (LineStatus.DELETED, LineStatus.OWNER_REJECTED):
            continue
        if not actor.store_team_can_see_dept(line.owner_dept_id):
            continue
        item = items.get(line.item_id)
        available = available_qty(item)
        if available is not None and line_base_qty(line, item) > available:
            return line, available
    return None


def enforce_inventory(lines: list[RequestLine], actor: ActorContext) -> None:
    """Submit-time guard over every line of a request."""
    items = load_items(line.item_id for line in lines)
    violation = find_inventory_violation(lines, items, actor)
    if violation is None:
        return
    line, available = violation
    item = items.get(line.item_id)
    label = item.display_name if item is not None else line.label
    logger.info("Inventory violation on %s: requested %s, available %s", line.item_id, line.qty, available)
    raise InventoryViolationError(
        f"Cannot submit or approve because {label} ({line.item_id}) requests "
        f"{_fmt_qty(line.qty)} but only {_fmt_qty(available)} available.",
        item_id=line.item_id,
        requested=line_base_qty(line, item),
        available=available,
    )


def aggregate_requested_quantities(
    lines: Iterable[RequestLine],
    items: Mapping[str, Item] | None = None,
) -> "OrderedDict[str, float]":
    """
    Total base-unit demand per item over active, non-rejected lines.

    Lines with a non-positive quantity or no item are ignored. Order follows
    first appearance so shortage messages name the first failing line's item.
    """
    items = items or {}
    totals: "OrderedDict[str, float]" = OrderedDict()
    for line in lines:
        if not line.item_id or line.qty <= 0:
            continue
        status = normalize_line_status(line)
        if status in (LineStatus.DELETED, LineStatus.OWNER_REJECTED):
            continue
        need = line_base_qty(line, items.get(line.item_id))
        totals[line.item_id] = totals.get(line.item_id, 0.0) + need
    return totals
