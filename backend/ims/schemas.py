"""
Typed view of the stored request document.

The request row keeps lines as loosely-shaped JSON (optional fields, string
status codes, a soft-delete flag living next to the status). Everything is
normalized here, at the store-read edge, so the services work on closed enums
and a tagged line state:

    ActiveLine(status)        -- PENDING_OWNER / OWNER_APPROVED / OWNER_REJECTED
    RemovedLine(by, at_ms)    -- soft-deleted, keeps who removed it

A stored line with deleted=true is always read as RemovedLine, whatever its
status field says. On write the stored shape is reproduced (status + deleted +
removed_by) so older rows and newer rows look the same.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional, Union


class RequestStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    FULLY_APPROVED = "FULLY_APPROVED"
    STORE_PREPARING = "STORE_PREPARING"
    READY = "READY"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class LineStatus(str, Enum):
    PENDING_OWNER = "PENDING_OWNER"
    OWNER_APPROVED = "OWNER_APPROVED"
    OWNER_REJECTED = "OWNER_REJECTED"
    DELETED = "DELETED"


OWNER_STATUSES = frozenset({
    LineStatus.PENDING_OWNER,
    LineStatus.OWNER_APPROVED,
    LineStatus.OWNER_REJECTED,
})


def parse_request_status(value: Any, default: RequestStatus = RequestStatus.DRAFT) -> RequestStatus:
    """Uppercase and map a stored status string; unknown values fall back to default."""
    text = str(value or "").strip().upper()
    try:
        return RequestStatus(text)
    except ValueError:
        return default


def parse_owner_status(value: Any) -> LineStatus:
    """Owner decision on an active line; anything unrecognized is PENDING_OWNER."""
    text = str(value or "").strip().upper()
    try:
        status = LineStatus(text)
    except ValueError:
        return LineStatus.PENDING_OWNER
    return status if status in OWNER_STATUSES else LineStatus.PENDING_OWNER


def normalize_dept_id(value: Any) -> str:
    return str(value or "").strip()


def fallback_line_key(item_id: Any, owner_dept_id: Any, index: int) -> str:
    """Stable key for lines stored without one: item, owning department, position."""
    return f"{item_id or 'item'}-{normalize_dept_id(owner_dept_id) or 'dept'}-{index}"


def _to_int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


@dataclass(frozen=True)
class ActorStamp:
    """Who did something to a line, and when (epoch ms)."""
    uid: Optional[str] = None
    full_name: Optional[str] = None
    dept_id: Optional[str] = None
    at_ms: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["ActorStamp"]:
        if not isinstance(raw, Mapping):
            return None
        stamp = cls(
            uid=raw.get("uid") or None,
            full_name=raw.get("full_name") or None,
            dept_id=raw.get("dept_id") or None,
            at_ms=_to_int_or_none(raw.get("at_ms")),
        )
        if not (stamp.uid or stamp.full_name or stamp.at_ms):
            return None
        return stamp

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "full_name": self.full_name,
            "dept_id": self.dept_id,
            "at_ms": self.at_ms,
        }


@dataclass(frozen=True)
class ActiveLine:
    status: LineStatus = LineStatus.PENDING_OWNER


@dataclass(frozen=True)
class RemovedLine:
    by: Optional[ActorStamp] = None
    at_ms: Optional[int] = None


LineState = Union[ActiveLine, RemovedLine]


@dataclass(frozen=True)
class RequestLine:
    key: str
    item_id: str
    owner_dept_id: str
    unit: str
    qty: int
    item_name: Optional[str] = None
    state: LineState = field(default_factory=ActiveLine)
    owner_approved_by: Optional[ActorStamp] = None
    owner_rejected_by: Optional[ActorStamp] = None

    @property
    def deleted(self) -> bool:
        return isinstance(self.state, RemovedLine)

    @property
    def owner_status(self) -> LineStatus:
        """Owner decision ignoring removal (what the stored status field holds)."""
        if isinstance(self.state, ActiveLine):
            return self.state.status
        return LineStatus.PENDING_OWNER

    @property
    def label(self) -> str:
        return self.item_name or self.item_id or "Item"

    def with_status(self, status: LineStatus, **stamps) -> "RequestLine":
        return replace(self, state=ActiveLine(status), **stamps)

    def reset_approval(self) -> "RequestLine":
        """Back to PENDING_OWNER with decision stamps cleared; removal is kept."""
        state = self.state if self.deleted else ActiveLine(LineStatus.PENDING_OWNER)
        return replace(self, state=state, owner_approved_by=None, owner_rejected_by=None)

    @classmethod
    def from_store(cls, raw: Mapping[str, Any], index: int) -> "RequestLine":
        item_id = str(raw.get("item_id") or "")
        key = raw.get("key") or fallback_line_key(item_id, raw.get("owner_dept_id"), index)
        if raw.get("deleted"):
            removed_by = ActorStamp.from_raw(raw.get("removed_by"))
            state: LineState = RemovedLine(by=removed_by, at_ms=removed_by.at_ms if removed_by else None)
        else:
            state = ActiveLine(parse_owner_status(raw.get("status")))
        qty = raw.get("qty")
        return cls(
            key=str(key),
            item_id=item_id,
            item_name=raw.get("item_name") or None,
            owner_dept_id=normalize_dept_id(raw.get("owner_dept_id")),
            unit=str(raw.get("unit") or ""),
            qty=int(qty) if isinstance(qty, (int, float)) and not isinstance(qty, bool) else 0,
            state=state,
            owner_approved_by=ActorStamp.from_raw(raw.get("owner_approved_by")),
            owner_rejected_by=ActorStamp.from_raw(raw.get("owner_rejected_by")),
        )

    def to_store(self) -> dict:
        removed_by = None
        if isinstance(self.state, RemovedLine) and self.state.by is not None:
            removed_by = self.state.by.to_dict()
        return {
            "key": self.key,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "owner_dept_id": self.owner_dept_id,
            "unit": self.unit,
            "qty": self.qty,
            "status": self.owner_status.value,
            "deleted": self.deleted,
            "owner_approved_by": self.owner_approved_by.to_dict() if self.owner_approved_by else None,
            "owner_rejected_by": self.owner_rejected_by.to_dict() if self.owner_rejected_by else None,
            "removed_by": removed_by,
        }


def parse_lines(raw_lines: Any) -> list[RequestLine]:
    if not isinstance(raw_lines, list):
        return []
    return [RequestLine.from_store(raw, idx) for idx, raw in enumerate(raw_lines) if isinstance(raw, Mapping)]


def dump_lines(lines: list[RequestLine]) -> list[dict]:
    return [line.to_store() for line in lines]
