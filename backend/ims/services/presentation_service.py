# Overview: Read-side helpers for request views: labels, line summaries, visibility and listing.

from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..extensions import db
from ..models import Engineer, Item, MaterialRequest, Project
from ims.schemas import LineStatus, RequestLine, RequestStatus, normalize_dept_id, parse_lines
from .lifecycle_service import normalize_line_status
from .permission_service import ActorContext, RequestPermissions


def get_from_dept(request: MaterialRequest) -> str:
    created_by = request.created_by or {}
    return normalize_dept_id(request.from_dept or created_by.get("department_id"))


def resolve_project_name(project_id: str | None) -> str:
    if not project_id:
        return "Unassigned"
    project = db.session.get(Project, project_id)
    return project.display_name if project else project_id


def resolve_engineer_name(engineer_id: str | None) -> str:
    if not engineer_id:
        return "Unassigned"
    engineer = db.session.get(Engineer, engineer_id)
    return engineer.display_name if engineer else engineer_id


def format_actor_label(actor: Mapping[str, Any] | None) -> str:
    """History form, e.g. "Sara Ali - Transport"."""
    if not actor:
        return "Unknown user"
    base = actor.get("full_name") or actor.get("uid") or "Unknown user"
    dept = actor.get("dept_id")
    return f"{base} - {dept}" if dept else base


def summarize_lines(
    lines: Iterable[RequestLine],
    *,
    items: Mapping[str, Item] | None = None,
    dept: str | None = None,
    limit: int | None = None,
) -> list[str]:
    """Item names on the request, optionally only those owned by `dept`."""
    items = items or {}
    out = []
    for line in lines:
        if dept and line.owner_dept_id != dept:
            continue
        item = items.get(line.item_id)
        name = item.display_name if item else line.label
        if name:
            out.append(name)
    return out[:limit] if limit is not None else out


def count_line_statuses(lines: Iterable[RequestLine]) -> dict[str, int]:
    counts = {status.value: 0 for status in LineStatus}
    for line in lines:
        counts[normalize_line_status(line).value] += 1
    return counts


def lines_for_actor(lines: list[RequestLine], perms: RequestPermissions) -> list[RequestLine]:
    """
    Pure store-team viewers of a request in fulfillment only see what they
    have to hand out: active, owner-approved lines.
    """
    if not perms.store_view_filter_active:
        return lines
    return [
        line for line in lines
        if normalize_line_status(line) is LineStatus.OWNER_APPROVED
    ]


def is_visible_to(request: MaterialRequest, actor: ActorContext) -> bool:
    if actor.admin or actor.is_store_dept_user:
        return True
    created_by = request.created_by or {}
    if (request.created_by_uid or created_by.get("uid")) == actor.uid:
        return True
    depts = {str(d).upper() for d in (request.line_dept_ids or [])}
    from_dept = get_from_dept(request)
    if from_dept:
        depts.add(from_dept.upper())
    return bool(depts & actor.dept_upper)


def list_row(request: MaterialRequest, actor: ActorContext) -> dict:
    lines = parse_lines(request.lines)
    return {
        "rq_code": request.rq_code,
        "status": request.status,
        "from_dept": get_from_dept(request),
        "project_id": request.project_id,
        "project_name": resolve_project_name(request.project_id),
        "engineer_id": request.engineer_id,
        "engineer_name": resolve_engineer_name(request.engineer_id),
        "urgent": bool(request.urgent),
        "line_dept_ids": list(request.line_dept_ids or []),
        "items": summarize_lines([line for line in lines if not line.deleted], limit=3),
        "line_count": sum(1 for line in lines if not line.deleted),
        "updated_at_ms": request.updated_at_ms,
        "unread": actor.uid not in (request.read_by or {}),
    }


def query_visible_requests(
    actor: ActorContext,
    *,
    status: RequestStatus | None = None,
    limit: int = 100,
) -> list[MaterialRequest]:
    """
    Requests the actor may see, most recently changed first.

    Department matching happens in Python because line_dept_ids is a JSON
    list; the status filter and ordering run in SQL.
    """
    query = db.session.query(MaterialRequest)
    if status is not None:
        query = query.filter(MaterialRequest.status == status.value)
    query = query.order_by(MaterialRequest.updated_at_ms.desc())

    out = []
    for request in query:
        if is_visible_to(request, actor):
            out.append(request)
            if len(out) >= limit:
                break
    return out


def request_view(request: MaterialRequest, actor: ActorContext) -> dict:
    """Full request payload for one viewer, with permission flags."""
    lines = parse_lines(request.lines)
    perms = RequestPermissions.for_request(actor, request, lines)
    visible = lines_for_actor(lines, perms)
    data = request.to_dict()
    data["lines"] = [line.to_store() for line in visible]
    data["line_counts"] = count_line_statuses(lines)
    data["project_name"] = resolve_project_name(request.project_id)
    data["engineer_name"] = resolve_engineer_name(request.engineer_id)
    data["permissions"] = perms.summary()
    data["store_view_filter_active"] = perms.store_view_filter_active
    return data
