# Overview: Request editor orchestration: create, save, line decisions, cancel, read markers.

"""
Request Editor

WHY: The request screen lets several roles touch the same document. This
module is the only writer of request documents outside the store
transitions. Every operation runs as one transaction:

    lock row -> revision check -> permission check -> mutate -> derive status
             -> line_dept_ids -> activity entry -> new revision -> commit

SAVE PATH:
- The payload carries what is requested (item, unit, qty per line). Owner
  decisions always come from the stored lines; an edited line (item, unit
  or qty changed) drops back to PENDING_OWNER.
- Stored lines missing from a DRAFT payload are soft-deleted. Past DRAFT a
  line can only be removed with the explicit remove action.
- Notes: full rewrite for the creator/admin, append-only merge for
  department managers and store team (see merge_appended_note).
- Store team without edit rights may still save an appended note on a
  submitted request; header and lines must come back unchanged.
- Inventory is checked on SUBMITTED saves only.
- Status: DRAFT stays DRAFT; the first submit becomes SUBMITTED; later saves
  derive it from the lines, unless the actor has no lifecycle authority, in
  which case the stored status is kept.

LINE ACTIONS (approve, unapprove, reject, remove, restore) are separate,
smaller transactions with their own revision check.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from typing import Any, Callable

from ..config import EditorSettings
from ..extensions import db
from ..models import Item, MaterialRequest
from ..validation import (
    LineInput,
    ValidationError,
    parse_request_payload,
    parse_save_mode,
    require_header_fields,
)
from ims.schemas import (
    ActiveLine,
    ActorStamp,
    LineStatus,
    RemovedLine,
    RequestLine,
    RequestStatus,
    dump_lines,
    normalize_dept_id,
    parse_lines,
    parse_request_status,
)
from ims.time_utils import now_ms
from .activity_log_service import (
    REQUEST_CANCELED,
    RequestSnapshot,
    build_entry,
    build_line_action_entry,
    build_save_entry,
    prepend_entry,
)
from .concurrency import atomic, ensure_revision_unchanged, next_revision
from .document_service import RequestNotFoundError, load_request, next_rq_code
from .inventory_service import check_line_stock, enforce_inventory, load_items
from .lifecycle_service import DERIVED_STATUS_STAGES, derive_lifecycle_status
from .permission_service import ActorContext, RequestPermissions, deny
from .presentation_service import (
    is_visible_to,
    query_visible_requests,
    request_view,
    resolve_engineer_name,
    resolve_project_name,
)
from .units import UnitTable, normalize_unit_code


logger = logging.getLogger(__name__)

__all__ = [
    "RequestNotFoundError",
    "create_request",
    "save_request",
    "approve_line",
    "unapprove_line",
    "reject_line",
    "remove_line",
    "restore_line",
    "cancel_request",
    "get_request",
    "list_visible_requests",
    "mark_read",
    "merge_appended_note",
]


# =============================================================================
# Helpers
# =============================================================================

def merge_appended_note(base: str | None, value: str | None) -> str:
    """
    Keep `base` as a locked prefix of the note.

    Text that still starts with the base is accepted. A truncation of the
    base restores the base. Anything else keeps the base and appends
    whatever extends past the base's length.
    """
    base = base or ""
    value = value or ""
    if not base or value.startswith(base):
        return value
    if base.startswith(value):
        return base
    appended = value[len(base):] if len(value) >= len(base) else ""
    return base + appended


def new_line_key(item_id: str) -> str:
    return f"{item_id}-{secrets.token_hex(3)}"


def compute_line_dept_ids(lines: list[RequestLine], from_dept: str | None) -> list[str]:
    """Owner departments of active lines, plus the origin department."""
    out: list[str] = []
    for line in lines:
        if line.deleted or not line.owner_dept_id:
            continue
        if line.owner_dept_id not in out:
            out.append(line.owner_dept_id)
    dept = normalize_dept_id(from_dept)
    if dept and dept not in out:
        out.append(dept)
    return out


def _stamp(actor: ActorContext, dept_id: str | None) -> ActorStamp:
    return ActorStamp(uid=actor.uid, full_name=actor.full_name or None, dept_id=dept_id, at_ms=now_ms())


def _catalog_item(items: dict[str, Item], item_id: str) -> Item:
    item = items.get(item_id)
    if item is None:
        raise ValidationError(f"Unknown item {item_id}")
    if not normalize_dept_id(item.owner_dept_id):
        raise ValidationError(f"Item {item_id} has no owner department")
    return item


def _checked_unit(item: Item, unit: str) -> str:
    code = normalize_unit_code(unit)
    allowed = {normalize_unit_code(item.unit)}
    allowed.update(normalize_unit_code(u) for u in (item.allowed_units or []))
    allowed.update(UnitTable.from_raw(item.units).codes())
    allowed.discard("")
    if allowed and code not in allowed:
        raise ValidationError(f"Unit {code} is not available for {item.item_code}")
    return code


def _line_from_input(data: LineInput, item: Item, key: str) -> RequestLine:
    return RequestLine(
        key=key,
        item_id=item.item_code,
        item_name=item.display_name,
        owner_dept_id=normalize_dept_id(item.owner_dept_id),
        unit=_checked_unit(item, data.unit),
        qty=data.qty,
    )


def _apply_status(request: MaterialRequest, status: RequestStatus, actor: ActorContext) -> None:
    previous = parse_request_status(request.status)
    request.status = status.value
    if status is RequestStatus.CANCELED:
        if previous is not RequestStatus.CANCELED or not request.canceled_at_ms:
            request.canceled_at_ms = now_ms()
            request.canceled_by = {
                "uid": actor.uid,
                "full_name": actor.full_name or None,
                "dept_id": request.from_dept or None,
            }
    else:
        request.canceled_at_ms = None
        request.canceled_by = None


def _log(request: MaterialRequest, entry: dict, settings: EditorSettings) -> None:
    request.activity_log = prepend_entry(request.activity_log, entry, settings.activity_log_limit)


def _resource(rq_code: str) -> str:
    return f"requests/{rq_code}"


# =============================================================================
# Save path
# =============================================================================

def merge_lines(
    stored: list[RequestLine],
    inputs: list[LineInput],
    items: dict[str, Item],
    perms: RequestPermissions,
    actor: ActorContext,
    rq_code: str,
) -> list[RequestLine]:
    """
    Combine the stored lines with the editor payload.

    Stored lines keep their position and decisions; new lines go last.
    """
    by_key = {line.key: line for line in stored}
    active_by_item = {line.item_id: line for line in stored if not line.deleted}
    removed_items = {line.item_id for line in stored if line.deleted}

    updates: dict[str, RequestLine] = {}
    added: list[RequestLine] = []

    for data in inputs:
        existing = by_key.get(data.key) if data.key else active_by_item.get(data.item_id)
        item = _catalog_item(items, data.item_id)

        if existing is None:
            if data.item_id in removed_items:
                raise ValidationError(
                    f"Item {data.item_id} was removed from this request. Restore it instead of adding it again."
                )
            if not perms.can_add_lines:
                raise deny(actor, "add_line", _resource(rq_code), "You cannot add items to this request.")
            line = _line_from_input(data, item, data.key or new_line_key(item.item_code))
            if not perms.can_touch_item_dept(line.owner_dept_id):
                raise deny(actor, "add_line", _resource(rq_code), "You cannot add items owned by another department.")
            added.append(line)
            continue

        if existing.key in updates:
            raise ValidationError(f"Line {existing.key} appears twice")
        if existing.deleted:
            raise ValidationError(f"{existing.label} was removed. Restore it before editing.")

        unit = _checked_unit(item, data.unit)
        if (existing.item_id, normalize_unit_code(existing.unit), existing.qty) == (item.item_code, unit, data.qty):
            updates[existing.key] = existing
            continue

        owner = normalize_dept_id(item.owner_dept_id)
        if not perms.can_edit_lines or not (
            perms.can_touch_item_dept(existing.owner_dept_id) and perms.can_touch_item_dept(owner)
        ):
            raise deny(actor, "edit_line", _resource(rq_code), "You cannot change this line.")
        updates[existing.key] = replace(
            existing,
            item_id=item.item_code,
            item_name=item.display_name,
            owner_dept_id=owner,
            unit=unit,
            qty=data.qty,
        ).reset_approval()

    merged: list[RequestLine] = []
    for line in stored:
        if line.key in updates:
            merged.append(updates[line.key])
        elif line.deleted:
            merged.append(line)
        elif perms.is_draft_stage or not perms.exists:
            if not perms.can_delete_lines:
                raise deny(actor, "remove_line", _resource(rq_code), "You cannot remove items from this request.")
            stamp = _stamp(actor, actor.primary_dept)
            merged.append(replace(line.reset_approval(), state=RemovedLine(by=stamp, at_ms=stamp.at_ms)))
        else:
            raise ValidationError(
                f"{line.label} is missing from the request. Use remove to take a line off a submitted request."
            )
    merged.extend(added)
    return merged


def _resolve_note(perms: RequestPermissions, stored: str, incoming: str, actor: ActorContext, rq_code: str) -> str:
    if incoming == stored:
        return stored
    if perms.can_fully_edit_notes:
        return incoming
    if perms.can_append_notes:
        return merge_appended_note(stored, incoming)
    raise deny(actor, "edit_note", _resource(rq_code), "You cannot change the notes on this request.")


def _check_header(request: MaterialRequest, data, perms: RequestPermissions, actor: ActorContext) -> None:
    changed = (
        (request.project_id or "") != data.project_id
        or (request.engineer_id or "") != data.engineer_id
        or bool(request.urgent) != data.urgent
    )
    if changed and not perms.can_edit_header:
        raise deny(actor, "edit_header", _resource(request.rq_code), "You cannot change the request header.")


def create_request(
    actor: ActorContext,
    payload: Any,
    mode: Any,
    settings: EditorSettings,
) -> MaterialRequest:
    """Validate, mint a code and store a new request as DRAFT or SUBMITTED."""
    data = parse_request_payload(payload)
    save_mode = parse_save_mode(mode)

    perms = RequestPermissions(actor, stage=RequestStatus.DRAFT, exists=False)
    if not perms.can_persist:
        raise deny(actor, "create", "requests", "You do not have permission to create requests.")
    require_header_fields(data)

    def _op() -> MaterialRequest:
        items = load_items(line.item_id for line in data.lines)
        lines = merge_lines([], data.lines, items, perms, actor, "new")
        from_dept = actor.primary_dept or (lines[0].owner_dept_id if lines else "")

        if save_mode is RequestStatus.SUBMITTED:
            enforce_inventory(lines, actor)

        rq_code = next_rq_code(from_dept, prefixes=settings.dept_code_prefixes)
        activity_actor = actor.activity_actor(from_dept)
        snapshot = RequestSnapshot(
            status=save_mode,
            note=data.note,
            project_id=data.project_id,
            engineer_id=data.engineer_id,
            urgent=data.urgent,
            lines=lines,
        )
        entry = build_save_entry(
            None,
            snapshot,
            activity_actor,
            project_label=resolve_project_name,
            engineer_label=resolve_engineer_name,
        )
        request = MaterialRequest(
            rq_code=rq_code,
            status=save_mode.value,
            project_id=data.project_id,
            engineer_id=data.engineer_id,
            urgent=data.urgent,
            note=data.note,
            created_by={
                "uid": actor.uid,
                "full_name": actor.full_name,
                "email": actor.email,
                "department_id": from_dept,
            },
            created_by_uid=actor.uid,
            from_dept=from_dept,
            lines=dump_lines(lines),
            line_dept_ids=compute_line_dept_ids(lines, from_dept),
            activity_log=prepend_entry([], entry, settings.activity_log_limit),
            read_by={actor.uid: now_ms()},
            updated_at_ms=next_revision(0),
        )
        db.session.add(request)
        return request

    request = atomic(_op)
    logger.info(
        "Request %s created as %s by %s",
        request.rq_code,
        request.status,
        actor.uid,
        extra={"rq_code": request.rq_code, "uid": actor.uid, "status": request.status, "revision": request.updated_at_ms},
    )
    return request


def save_request(
    rq_code: str,
    actor: ActorContext,
    payload: Any,
    mode: Any,
    expected_revision: int | None,
    settings: EditorSettings,
) -> MaterialRequest:
    """The editor's save: merge, check, derive, log and commit under the revision fence."""
    data = parse_request_payload(payload)
    save_mode = parse_save_mode(mode)

    def _op() -> MaterialRequest:
        request = load_request(rq_code, for_update=True)
        live = ensure_revision_unchanged(expected_revision, request.updated_at_ms)

        stored = parse_lines(request.lines)
        prev = RequestSnapshot.from_model(request)
        perms = RequestPermissions.for_request(actor, request, stored)
        notes_only = not perms.can_persist and perms.can_append_store_notes and not perms.is_draft_stage
        if not perms.can_persist and not notes_only:
            raise deny(actor, "save", _resource(rq_code), "You do not have permission to modify this request.")
        require_header_fields(data)
        if save_mode is RequestStatus.DRAFT and prev.status is not RequestStatus.DRAFT:
            raise ValidationError("Only a draft can be saved as a draft")

        _check_header(request, data, perms, actor)
        note = _resolve_note(perms, request.note or "", data.note, actor, rq_code)

        items = load_items([line.item_id for line in data.lines])
        lines = merge_lines(stored, data.lines, items, perms, actor, rq_code)

        if save_mode is not RequestStatus.DRAFT and not notes_only:
            enforce_inventory(lines, actor)

        if save_mode is RequestStatus.DRAFT:
            status = RequestStatus.DRAFT
        elif prev.status is RequestStatus.DRAFT:
            status = RequestStatus.SUBMITTED
        elif perms.allow_lifecycle_change:
            status = derive_lifecycle_status(lines, fallback=prev.status)
        else:
            status = prev.status

        request.project_id = data.project_id
        request.engineer_id = data.engineer_id
        request.urgent = data.urgent
        request.note = note
        request.lines = dump_lines(lines)
        request.line_dept_ids = compute_line_dept_ids(lines, request.from_dept)
        _apply_status(request, status, actor)

        nxt = RequestSnapshot.from_model(request)
        entry = build_save_entry(
            prev,
            nxt,
            actor.activity_actor(),
            project_label=resolve_project_name,
            engineer_label=resolve_engineer_name,
        )
        _log(request, entry, settings)
        request.updated_at_ms = next_revision(live)
        return request

    request = atomic(_op)
    logger.info(
        "Request %s saved as %s by %s",
        rq_code,
        request.status,
        actor.uid,
        extra={"rq_code": rq_code, "uid": actor.uid, "status": request.status, "revision": request.updated_at_ms},
    )
    return request


# =============================================================================
# Line actions
# =============================================================================

LineMutation = Callable[[RequestPermissions, RequestLine, list[RequestLine]], tuple[RequestLine, str]]


def _line_action(
    rq_code: str,
    line_key: str,
    actor: ActorContext,
    expected_revision: int | None,
    settings: EditorSettings,
    mutate: LineMutation,
    *,
    as_owner: bool = False,
) -> MaterialRequest:
    """Apply one line mutation under the revision fence. Owner decisions log the line's department."""
    def _op() -> MaterialRequest:
        request = load_request(rq_code, for_update=True)
        live = ensure_revision_unchanged(expected_revision, request.updated_at_ms)

        lines = parse_lines(request.lines)
        index = next((i for i, line in enumerate(lines) if line.key == line_key), None)
        if index is None:
            raise ValidationError(f"Line {line_key} not found on {rq_code}")

        prev = RequestSnapshot.from_model(request)
        perms = RequestPermissions.for_request(actor, request, lines)
        updated, summary = mutate(perms, lines[index], lines)
        lines[index] = updated

        status = prev.status
        if status in DERIVED_STATUS_STAGES:
            status = derive_lifecycle_status(lines, fallback=prev.status)

        request.lines = dump_lines(lines)
        request.line_dept_ids = compute_line_dept_ids(lines, request.from_dept)
        _apply_status(request, status, actor)

        nxt = RequestSnapshot.from_model(request)
        label = actor.activity_actor(updated.owner_dept_id) if as_owner else actor.activity_actor()
        entry = build_line_action_entry(prev, nxt, label, summary)
        _log(request, entry, settings)
        request.updated_at_ms = next_revision(live)
        return request

    request = atomic(_op)
    logger.info(
        "Line %s on %s changed by %s",
        line_key,
        rq_code,
        actor.uid,
        extra={"rq_code": rq_code, "uid": actor.uid, "status": request.status, "revision": request.updated_at_ms},
    )
    return request


def approve_line(rq_code, line_key, actor, expected_revision, settings):
    def _mutate(perms, line, lines):
        if line.deleted:
            raise ValidationError(f"{line.label} was removed. Restore it before approving.")
        if not perms.can_approve_line(line):
            raise deny(actor, "approve_line", _resource(rq_code), "You cannot approve this line.")
        if line.owner_status is LineStatus.OWNER_APPROVED:
            raise ValidationError(f"{line.label} is already approved")
        if line.owner_status is LineStatus.OWNER_REJECTED:
            raise ValidationError(f"{line.label} was rejected. Accept it back to pending before approving.")
        check_line_stock(line, db.session.get(Item, line.item_id), actor)
        approved = line.with_status(
            LineStatus.OWNER_APPROVED,
            owner_approved_by=_stamp(actor, line.owner_dept_id),
            owner_rejected_by=None,
        )
        return approved, f"approved {line.label}"

    return _line_action(rq_code, line_key, actor, expected_revision, settings, _mutate, as_owner=True)


def unapprove_line(rq_code, line_key, actor, expected_revision, settings):
    def _mutate(perms, line, lines):
        if not perms.can_approve_line(line):
            raise deny(actor, "unapprove_line", _resource(rq_code), "You cannot change the approval of this line.")
        if line.deleted or line.owner_status is not LineStatus.OWNER_APPROVED:
            raise ValidationError(f"{line.label} is not approved")
        return line.reset_approval(), f"withdrew approval of {line.label}"

    return _line_action(rq_code, line_key, actor, expected_revision, settings, _mutate, as_owner=True)


def reject_line(rq_code, line_key, actor, expected_revision, settings):
    """Reject a line; rejecting an already rejected line returns it to pending."""
    def _mutate(perms, line, lines):
        if line.deleted:
            raise ValidationError(f"{line.label} was removed. Restore it before rejecting.")
        if not perms.can_reject_line(line):
            raise deny(actor, "reject_line", _resource(rq_code), "You cannot reject this line.")
        if line.owner_status is LineStatus.OWNER_REJECTED:
            return line.reset_approval(), f"returned {line.label} to pending"
        rejected = line.with_status(
            LineStatus.OWNER_REJECTED,
            owner_approved_by=None,
            owner_rejected_by=_stamp(actor, line.owner_dept_id),
        )
        return rejected, f"rejected {line.label}"

    return _line_action(rq_code, line_key, actor, expected_revision, settings, _mutate, as_owner=True)


def remove_line(rq_code, line_key, actor, expected_revision, settings):
    def _mutate(perms, line, lines):
        if not perms.can_delete_lines:
            raise deny(actor, "remove_line", _resource(rq_code), "You cannot remove items from this request.")
        if line.deleted:
            raise ValidationError(f"{line.label} is already removed")
        stamp = _stamp(actor, actor.primary_dept)
        removed = replace(line.reset_approval(), state=RemovedLine(by=stamp, at_ms=stamp.at_ms))
        return removed, f"removed {line.label}"

    return _line_action(rq_code, line_key, actor, expected_revision, settings, _mutate)


def restore_line(rq_code, line_key, actor, expected_revision, settings):
    """Explicitly bring back a removed line, pending a fresh owner decision."""
    def _mutate(perms, line, lines):
        if not perms.can_delete_lines:
            raise deny(actor, "restore_line", _resource(rq_code), "You cannot restore items on this request.")
        if not line.deleted:
            raise ValidationError(f"{line.label} is not removed")
        if any(other.item_id == line.item_id and not other.deleted for other in lines):
            raise ValidationError(f"{line.label} is already on the request")
        return replace(line, state=ActiveLine(LineStatus.PENDING_OWNER)), f"restored {line.label}"

    return _line_action(rq_code, line_key, actor, expected_revision, settings, _mutate)


LINE_ACTIONS = {
    "approve": approve_line,
    "unapprove": unapprove_line,
    "reject": reject_line,
    "remove": remove_line,
    "restore": restore_line,
}


# =============================================================================
# Whole-request actions and reads
# =============================================================================

def cancel_request(
    rq_code: str,
    actor: ActorContext,
    expected_revision: int | None,
    settings: EditorSettings,
) -> MaterialRequest:
    def _op() -> MaterialRequest:
        request = load_request(rq_code, for_update=True)
        live = ensure_revision_unchanged(expected_revision, request.updated_at_ms)
        perms = RequestPermissions.for_request(actor, request, parse_lines(request.lines))
        if not perms.can_cancel:
            raise deny(actor, "cancel", _resource(rq_code), "You cannot cancel this request.")

        previous = parse_request_status(request.status)
        _apply_status(request, RequestStatus.CANCELED, actor)
        entry = build_entry(
            REQUEST_CANCELED,
            "Request canceled",
            f"Status: {previous.value} -> {RequestStatus.CANCELED.value}",
            actor.activity_actor(),
            RequestStatus.CANCELED,
        )
        _log(request, entry, settings)
        request.updated_at_ms = next_revision(live)
        return request

    request = atomic(_op)
    logger.info(
        "Request %s canceled by %s",
        rq_code,
        actor.uid,
        extra={"rq_code": rq_code, "uid": actor.uid, "status": request.status, "revision": request.updated_at_ms},
    )
    return request


def _visible_request(rq_code: str, actor: ActorContext) -> MaterialRequest:
    request = load_request(rq_code)
    if not is_visible_to(request, actor):
        raise deny(actor, "view", _resource(rq_code), "You cannot view this request.")
    return request


def get_request(rq_code: str, actor: ActorContext) -> dict:
    return request_view(_visible_request(rq_code, actor), actor)


def list_visible_requests(
    actor: ActorContext,
    *,
    status: Any = None,
    limit: int = 100,
) -> list[MaterialRequest]:
    status_filter = parse_request_status(status, default=None) if status else None
    if status and status_filter is None:
        raise ValidationError(f"Unknown status {status}")
    return query_visible_requests(actor, status=status_filter, limit=limit)


def mark_read(rq_code: str, actor: ActorContext) -> MaterialRequest:
    """
    Record that the actor has seen the current version.

    A read marker is not an edit: no revision change and no activity entry.
    """
    def _op() -> MaterialRequest:
        request = _visible_request(rq_code, actor)
        read_by = dict(request.read_by or {})
        read_by[actor.uid] = now_ms()
        request.read_by = read_by
        return request

    return atomic(_op)
