# Overview: Line-status normalization and request lifecycle derivation.

"""
Material Request Lifecycle

================================================================================
PURPOSE: Single source of truth for a request's overall status
================================================================================

A request's status is NOT set by users. Outside of the explicit DRAFT save,
the explicit cancel action and the store-team fulfillment transitions, it is
always recomputed from the owner decisions on its lines.

STATE MACHINE:
    DRAFT -> SUBMITTED -> {PARTIALLY_APPROVED | FULLY_APPROVED | REJECTED}
          (moves between these as lines are approved / rejected / removed)
    FULLY_APPROVED -> STORE_PREPARING -> READY -> CLOSED   (store team)
    STORE_PREPARING -> FULLY_APPROVED                      (cancel preparing)
    any non-CLOSED, non-CANCELED -> CANCELED               (explicit cancel)

DERIVATION PRIORITY (must not be reordered):
    1. no lines               -> CANCELED
    2. no active lines        -> CANCELED
    3. every active rejected  -> REJECTED
    4. none pending, some ok  -> FULLY_APPROVED
    5. some approved          -> PARTIALLY_APPROVED
    6. some pending           -> SUBMITTED
    7. otherwise              -> fallback

================================================================================
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from ims.schemas import (
    LineStatus,
    RequestLine,
    RequestStatus,
    RemovedLine,
    parse_owner_status,
)


EDITABLE_STAGES = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.SUBMITTED,
    RequestStatus.PARTIALLY_APPROVED,
    RequestStatus.FULLY_APPROVED,
})

APPROVAL_WINDOW_STAGES = frozenset({
    RequestStatus.SUBMITTED,
    RequestStatus.PARTIALLY_APPROVED,
    RequestStatus.FULLY_APPROVED,
})

# Explicit cancel is open from every status except the two end states.
CANCELABLE_STAGES = frozenset(RequestStatus) - {RequestStatus.CLOSED, RequestStatus.CANCELED}

TERMINAL_STAGES = frozenset({
    RequestStatus.REJECTED,
    RequestStatus.CANCELED,
    RequestStatus.CLOSED,
})

DERIVED_STATUS_STAGES = APPROVAL_WINDOW_STAGES

FULFILLMENT_STAGES = frozenset({
    RequestStatus.FULLY_APPROVED,
    RequestStatus.STORE_PREPARING,
    RequestStatus.READY,
    RequestStatus.CLOSED,
})

# Store-team transitions; everything else is derived or an explicit cancel.
STORE_TRANSITIONS = frozenset({
    (RequestStatus.FULLY_APPROVED, RequestStatus.STORE_PREPARING),
    (RequestStatus.STORE_PREPARING, RequestStatus.FULLY_APPROVED),
    (RequestStatus.STORE_PREPARING, RequestStatus.READY),
    (RequestStatus.READY, RequestStatus.CLOSED),
})


class LifecycleError(ValueError):
    """
    Raised when a status transition is not allowed from the current status.

    This is a domain error, not a technical error.
    """
    pass


def normalize_line_status(line: RequestLine | Mapping[str, Any]) -> LineStatus:
    """
    Collapse a line's removal flag and owner status into one tag.

    Accepts a typed RequestLine or a raw stored mapping. A removed line is
    DELETED no matter what its status field holds; otherwise the uppercased
    status, with PENDING_OWNER for anything missing or unrecognized.
    """
    if isinstance(line, RequestLine):
        if isinstance(line.state, RemovedLine):
            return LineStatus.DELETED
        return line.state.status
    if not isinstance(line, Mapping):
        return LineStatus.PENDING_OWNER
    if line.get("deleted"):
        return LineStatus.DELETED
    return parse_owner_status(line.get("status"))


def derive_lifecycle_status(
    lines: Iterable[RequestLine | Mapping[str, Any]],
    fallback: RequestStatus = RequestStatus.SUBMITTED,
) -> RequestStatus:
    """Compute a request's status from its lines (see priority table above)."""
    statuses = [normalize_line_status(line) for line in lines]
    if not statuses:
        return RequestStatus.CANCELED

    active = [s for s in statuses if s is not LineStatus.DELETED]
    if not active:
        return RequestStatus.CANCELED

    approved = sum(1 for s in active if s is LineStatus.OWNER_APPROVED)
    rejected = sum(1 for s in active if s is LineStatus.OWNER_REJECTED)
    pending = len(active) - approved - rejected

    if rejected == len(active):
        return RequestStatus.REJECTED
    if pending == 0 and approved > 0:
        return RequestStatus.FULLY_APPROVED
    if approved > 0:
        return RequestStatus.PARTIALLY_APPROVED
    if pending > 0:
        return RequestStatus.SUBMITTED
    return fallback


def can_store_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return (from_status, to_status) in STORE_TRANSITIONS


def require_store_transition(from_status: RequestStatus, to_status: RequestStatus) -> None:
    if not can_store_transition(from_status, to_status):
        raise LifecycleError(
            f"Cannot move request from '{from_status.value}' to '{to_status.value}'"
        )


def is_cancelable(status: RequestStatus) -> bool:
    return status in CANCELABLE_STAGES
