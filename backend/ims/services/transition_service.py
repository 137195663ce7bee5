# Overview: Store-team status transitions, including the stock-decrementing READY flip.

"""
Store Transitions

FULLY_APPROVED -> STORE_PREPARING   start preparing (pure flip)
STORE_PREPARING -> FULLY_APPROVED   cancel preparing (pure flip)
STORE_PREPARING -> READY            mark ready: decrements stock
READY -> CLOSED                     close (admin or owning dept manager)

Each transition is one transaction: lock the request row, check the
revision, check the permission and the lifecycle edge, apply, log,
stamp a new revision, commit. Any failure leaves request and stock as they
were.

READY checks every item first and only then decrements, so a shortage on
one item never leaves another item decremented.
"""

from __future__ import annotations

import logging

from ..config import EditorSettings
from ..extensions import db
from ..models import Item, MaterialRequest
from ..validation import ConflictError
from ims.schemas import RequestStatus, parse_lines, parse_request_status
from .activity_log_service import STATUS_TRANSITION, build_entry, prepend_entry
from .concurrency import atomic, ensure_revision_unchanged, lock_for_update, next_revision
from .document_service import load_request
from .inventory_service import aggregate_requested_quantities, available_qty
from .lifecycle_service import require_store_transition
from .permission_service import ActorContext, RequestPermissions, deny


logger = logging.getLogger(__name__)

STOCK_SHORTAGE_CODE = "stock-shortage"

START_PREPARING = "start-preparing"
CANCEL_PREPARING = "cancel-preparing"
MARK_READY = "mark-ready"
CLOSE = "close"


class StockShortageError(ConflictError):
    """An item's stock cannot cover the aggregated need at READY."""

    code = STOCK_SHORTAGE_CODE

    def __init__(self, message: str, *, item_id: str, needed: float, available: float | None):
        self.item_id = item_id
        self.needed = needed
        self.available = available
        super().__init__(message)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def decrement_stock_for_ready(request: MaterialRequest) -> dict[str, float]:
    """
    Check, then decrement, stock for every item the request needs.

    Runs inside the caller's transaction. Raises StockShortageError before
    touching any row when one item is missing or short. Returns the
    decrement applied per item (base units).
    """
    lines = parse_lines(request.lines)
    item_ids = sorted({line.item_id for line in lines if line.item_id})
    if not item_ids:
        return {}
    locked = {
        item.item_code: item
        for item in lock_for_update(db.session.query(Item).filter(Item.item_code.in_(item_ids))).all()
    }
    totals = aggregate_requested_quantities(lines, locked)

    for item_id, needed in totals.items():
        if needed <= 0:
            continue
        stock = available_qty(locked.get(item_id))
        if stock is None:
            raise StockShortageError(
                f"Item {item_id} is missing stock info.",
                item_id=item_id,
                needed=needed,
                available=None,
            )
        if stock < needed:
            raise StockShortageError(
                f"Not enough stock for {item_id}. Need {_fmt(needed)}, have {_fmt(stock)} "
                f"(short by {_fmt(needed - stock)}).",
                item_id=item_id,
                needed=needed,
                available=stock,
            )

    applied: dict[str, float] = {}
    for item_id, needed in totals.items():
        if needed <= 0:
            continue
        item = locked[item_id]
        item.qty = float(item.qty) - needed
        applied[item_id] = needed
    return applied


def _run_transition(
    rq_code: str,
    actor: ActorContext,
    expected_revision: int | None,
    to_status: RequestStatus,
    summary: str,
    action: str,
    settings: EditorSettings,
) -> MaterialRequest:
    def _op() -> MaterialRequest:
        request = load_request(rq_code, for_update=True)
        live = ensure_revision_unchanged(expected_revision, request.updated_at_ms)

        from_status = parse_request_status(request.status)
        perms = RequestPermissions.for_request(actor, request, parse_lines(request.lines))
        allowed = perms.can_close if to_status is RequestStatus.CLOSED else perms.can_run_store_transitions
        if not allowed:
            raise deny(actor, action, rq_code, "You do not have permission to change this request's status.")
        require_store_transition(from_status, to_status)

        if to_status is RequestStatus.READY:
            applied = decrement_stock_for_ready(request)
            logger.info("Stock decremented for %s: %s", rq_code, applied, extra={"rq_code": rq_code})

        entry = build_entry(
            STATUS_TRANSITION,
            summary,
            f"Status: {from_status.value} -> {to_status.value}",
            actor.activity_actor(),
            to_status,
        )
        request.status = to_status.value
        request.activity_log = prepend_entry(request.activity_log, entry, settings.activity_log_limit)
        request.updated_at_ms = next_revision(live)
        return request

    request = atomic(_op)
    logger.info(
        "Request %s moved to %s by %s",
        rq_code,
        to_status.value,
        actor.uid,
        extra={"rq_code": rq_code, "uid": actor.uid, "status": to_status.value, "revision": request.updated_at_ms},
    )
    return request


def start_preparing(rq_code: str, actor: ActorContext, expected_revision: int | None, settings: EditorSettings) -> MaterialRequest:
    return _run_transition(
        rq_code, actor, expected_revision, RequestStatus.STORE_PREPARING,
        "Store started preparing the request", START_PREPARING, settings,
    )


def cancel_preparing(rq_code: str, actor: ActorContext, expected_revision: int | None, settings: EditorSettings) -> MaterialRequest:
    return _run_transition(
        rq_code, actor, expected_revision, RequestStatus.FULLY_APPROVED,
        "Store canceled preparing", CANCEL_PREPARING, settings,
    )


def mark_ready(rq_code: str, actor: ActorContext, expected_revision: int | None, settings: EditorSettings) -> MaterialRequest:
    return _run_transition(
        rq_code, actor, expected_revision, RequestStatus.READY,
        "Store marked the request READY", MARK_READY, settings,
    )


def close_request(rq_code: str, actor: ActorContext, expected_revision: int | None, settings: EditorSettings) -> MaterialRequest:
    return _run_transition(
        rq_code, actor, expected_revision, RequestStatus.CLOSED,
        "Request closed", CLOSE, settings,
    )


TRANSITIONS = {
    START_PREPARING: start_preparing,
    CANCEL_PREPARING: cancel_preparing,
    MARK_READY: mark_ready,
    CLOSE: close_request,
}
