# Overview: Builds request activity entries and maintains the capped, newest-first log.

"""
Request Activity Log Invariants (authoritative)

- Append-only journal embedded in the request document.
- Newest entry first; the list is capped (oldest beyond the cap are dropped).
- Entries are immutable once written; nothing edits or removes one entry.
- An entry is written in the same transaction as the change it records.
- Every entry can be rebuilt from the previous and next stored documents
  alone (plus project/engineer labels, which are display only).
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from ims.schemas import RequestLine, RequestStatus, parse_lines, parse_request_status
from ims.time_utils import now_ms
from .lifecycle_service import normalize_line_status


ACTIVITY_LOG_LIMIT = 50

REQUEST_CREATED = "request_created"
REQUEST_UPDATED = "request_updated"
REQUEST_SAVED = "request_saved"
STATUS_TRANSITION = "status_transition"
REQUEST_CANCELED = "request_canceled"

ENTRY_TYPES = frozenset({
    REQUEST_CREATED,
    REQUEST_UPDATED,
    REQUEST_SAVED,
    STATUS_TRANSITION,
    REQUEST_CANCELED,
})

_STATUS_CHANGE_RE = re.compile(r"Status:\s*([A-Z_ ]+)->\s*([A-Z_]+)", re.IGNORECASE)
_INITIAL_STATUS_RE = re.compile(r"Initial status\s*:?\s*([A-Z_]+)", re.IGNORECASE)


@dataclass
class RequestSnapshot:
    """The parts of a request the activity diff compares."""
    status: RequestStatus
    note: str = ""
    project_id: Optional[str] = None
    engineer_id: Optional[str] = None
    urgent: bool = False
    lines: list[RequestLine] = field(default_factory=list)

    @classmethod
    def from_model(cls, request) -> "RequestSnapshot":
        return cls(
            status=parse_request_status(request.status),
            note=request.note or "",
            project_id=request.project_id,
            engineer_id=request.engineer_id,
            urgent=bool(request.urgent),
            lines=parse_lines(request.lines),
        )


def _identity_label(value: Optional[str]) -> str:
    return value or "Unassigned"


def actor_label(actor: Mapping[str, Any]) -> str:
    """Summary form, e.g. "Sara Ali (Transport)"."""
    name = actor.get("full_name") or actor.get("uid") or "User"
    dept = actor.get("dept_id")
    return f"{name} ({dept})" if dept else name


def describe_line(line: RequestLine) -> str:
    label = line.item_name or line.item_id or "Item"
    code = f" ({line.item_id})" if line.item_id else ""
    return f"{label}{code} - {line.owner_dept_id}" if line.owner_dept_id else f"{label}{code}"


def describe_line_qty(line: RequestLine) -> str:
    if line.qty is None:
        return "qty ?"
    return f"{line.qty} {line.unit}" if line.unit else f"{line.qty}"


def describe_line_change(prev: RequestLine, nxt: RequestLine) -> Optional[str]:
    """"<label> (qty a->b, unit x->y, status S1->S2, marked removed)" or None when unchanged."""
    parts = []
    if prev.qty != nxt.qty:
        parts.append(f"qty {prev.qty}->{nxt.qty}")
    if (prev.unit or "") != (nxt.unit or ""):
        parts.append(f"unit {prev.unit or '-'}->{nxt.unit or '-'}")
    prev_status = normalize_line_status(prev)
    next_status = normalize_line_status(nxt)
    if prev_status is not next_status:
        parts.append(f"status {prev_status.value}->{next_status.value}")
    if prev.deleted != nxt.deleted:
        parts.append("marked removed" if nxt.deleted else "restored")
    if not parts:
        return None
    return f"{describe_line(nxt)} ({', '.join(parts)})"


def diff_lines(prev_lines: Iterable[RequestLine], next_lines: Iterable[RequestLine]) -> tuple[list[str], list[str], list[str]]:
    """Three-way diff keyed by line key: (added, updated, removed) descriptions."""
    remaining = {line.key: line for line in prev_lines}
    added: list[str] = []
    updated: list[str] = []
    for line in next_lines:
        prev = remaining.pop(line.key, None)
        if prev is None:
            added.append(f"{describe_line(line)} ({describe_line_qty(line)})")
            continue
        change = describe_line_change(prev, line)
        if change:
            updated.append(change)
    removed = [f"{describe_line(line)} ({describe_line_qty(line)})" for line in remaining.values()]
    return added, updated, removed


def describe_note_change(before: str, after: str) -> Optional[tuple[str, str]]:
    """(label, body) for a note change, or None when the text is identical."""
    before = before or ""
    after = after or ""
    if before == after:
        return None
    if not before:
        return "Note added", after
    if not after:
        return "Note cleared", before
    if after.startswith(before):
        appended = after[len(before):].strip()
        if appended:
            return "Note appended", appended
    return "Note updated", after


class _Details:
    def __init__(self):
        self.rows: list[str] = []

    def add(self, label: str, body: Optional[str] = None) -> None:
        self.rows.append(f"{label}: {body}" if body else label)

    def add_list(self, label: str, items: list[str]) -> None:
        if items:
            self.rows.append(f"{label}:\n - " + "\n - ".join(items))

    def text(self) -> str:
        return "\n".join(self.rows)


def new_entry_id(at_ms: int) -> str:
    return f"evt-{at_ms}-{secrets.token_hex(3)}"


def build_entry(
    entry_type: str,
    summary: str,
    details: str,
    actor: Mapping[str, Any],
    status_key: RequestStatus | str,
    *,
    at_ms: int | None = None,
) -> dict:
    if entry_type not in ENTRY_TYPES:
        raise ValueError(f"Unknown activity entry type: {entry_type}")
    created = at_ms or now_ms()
    return {
        "id": new_entry_id(created),
        "type": entry_type,
        "summary": summary,
        "details": details or "",
        "actor": dict(actor),
        "created_at_ms": created,
        "status_key": status_key.value if isinstance(status_key, RequestStatus) else str(status_key),
    }


def build_save_entry(
    prev: Optional[RequestSnapshot],
    nxt: RequestSnapshot,
    actor: Mapping[str, Any],
    *,
    project_label: Callable[[Optional[str]], str] = _identity_label,
    engineer_label: Callable[[Optional[str]], str] = _identity_label,
    at_ms: int | None = None,
) -> dict:
    """
    One entry describing a save.

    prev None means creation. Otherwise the entry is request_updated when
    any difference was detected and request_saved when nothing changed.
    """
    details = _Details()

    if prev is None:
        details.add("Initial status", nxt.status.value)
    elif prev.status is not nxt.status:
        details.add("Status", f"{prev.status.value} -> {nxt.status.value}")

    note_change = describe_note_change(prev.note if prev else "", nxt.note)
    if note_change:
        details.add(*note_change)

    if prev is not None:
        if (prev.project_id or "") != (nxt.project_id or ""):
            details.add("Project", f"{project_label(prev.project_id)} -> {project_label(nxt.project_id)}")
        if (prev.engineer_id or "") != (nxt.engineer_id or ""):
            details.add("Engineer", f"{engineer_label(prev.engineer_id)} -> {engineer_label(nxt.engineer_id)}")
        if bool(prev.urgent) != bool(nxt.urgent):
            details.add("Urgent flag", f"{'On' if prev.urgent else 'Off'} -> {'On' if nxt.urgent else 'Off'}")
        added, updated, removed = diff_lines(prev.lines, nxt.lines)
        details.add_list("Items added", added)
        details.add_list("Items updated", updated)
        details.add_list("Items removed", removed)
    else:
        details.add("Project", project_label(nxt.project_id))
        details.add("Engineer", engineer_label(nxt.engineer_id))
        details.add("Items", str(len(nxt.lines)))

    label = actor_label(actor)
    if prev is None:
        entry_type, summary = REQUEST_CREATED, f"{label} created the request"
    elif details.rows:
        entry_type, summary = REQUEST_UPDATED, f"{label} updated the request"
    else:
        entry_type, summary = REQUEST_SAVED, f"{label} saved the request"

    return build_entry(entry_type, summary, details.text(), actor, nxt.status, at_ms=at_ms)


def build_line_action_entry(
    prev: RequestSnapshot,
    nxt: RequestSnapshot,
    actor: Mapping[str, Any],
    summary: str,
    *,
    at_ms: int | None = None,
) -> dict:
    """Entry for a single-line action (approve, reject, remove, restore)."""
    details = _Details()
    if prev.status is not nxt.status:
        details.add("Status", f"{prev.status.value} -> {nxt.status.value}")
    _, updated, _ = diff_lines(prev.lines, nxt.lines)
    details.add_list("Items updated", updated)
    return build_entry(REQUEST_UPDATED, f"{actor_label(actor)} {summary}", details.text(), actor, nxt.status, at_ms=at_ms)


def prepend_entry(log: Any, entry: dict, limit: int = ACTIVITY_LOG_LIMIT) -> list[dict]:
    """New list with entry first, truncated to the most recent `limit` entries."""
    existing = [e for e in log if isinstance(e, Mapping)] if isinstance(log, list) else []
    return [entry, *existing][:limit]


def extract_status_from_details(details: Optional[str]) -> Optional[str]:
    """Recover the resulting status from entries written without status_key."""
    if not details:
        return None
    match = _STATUS_CHANGE_RE.search(details)
    if match:
        return match.group(2).strip().upper() or None
    match = _INITIAL_STATUS_RE.search(details)
    if match:
        return match.group(1).strip().upper() or None
    return None


def status_key_for_entry(entry: Mapping[str, Any]) -> Optional[str]:
    key = entry.get("status_key")
    if key:
        return str(key).upper()
    return extract_status_from_details(entry.get("details"))
