# Overview: Role-derived permission predicates for request editing and security event logging.

"""
Request Permissions

WHY: Every action on a request (edit header, add/edit/remove a line, approve
or reject a line, append to notes, cancel, fulfill) is gated by a combination
of the actor's role flags, the actor's departments, who created the request,
which departments own its lines and the request's stored stage. This module
computes all of those predicates in one place; request_service and
transition_service ask it before mutating anything.

Role flags come from the external role profile (roles table):
- admin          : everything
- requester      : creates requests, edits their own
- dept_manager   : edits requests from their department, approves/rejects
                   lines owned by their departments
- store_officer  : store team member for the departments they belong to

Membership in the store department makes a user store team for every
department.

DESIGN PRINCIPLES:
- Fail closed: a missing role flag is False
- Predicates read the STORED stage, never a locally derived one
- Denials are recorded as security events
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..extensions import db
from ..models import RoleProfile, SecurityEvent
from ims.schemas import RequestLine, RequestStatus, normalize_dept_id, parse_request_status
from .lifecycle_service import (
    APPROVAL_WINDOW_STAGES,
    CANCELABLE_STAGES,
    EDITABLE_STAGES,
    FULFILLMENT_STAGES,
    TERMINAL_STAGES,
)


logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when the actor lacks the right to perform an action."""
    pass


class ActorNotFoundError(PermissionDeniedError):
    """The uid has no active role profile."""
    pass


@dataclass(frozen=True)
class ActorContext:
    uid: str
    full_name: str = ""
    email: str | None = None
    admin: bool = False
    dept_manager: bool = False
    store_officer: bool = False
    requester: bool = False
    department_ids: tuple[str, ...] = field(default_factory=tuple)
    store_dept_id: str = "Store"

    @classmethod
    def from_profile(cls, profile: RoleProfile, *, store_dept_id: str = "Store") -> "ActorContext":
        flags = profile.roles or {}
        depts = tuple(d for d in (normalize_dept_id(x) for x in (profile.department_ids or [])) if d)
        full_name = profile.full_name or ((profile.email or "").split("@")[0]) or profile.uid
        return cls(
            uid=profile.uid,
            full_name=full_name,
            email=profile.email,
            admin=bool(flags.get("admin")),
            dept_manager=bool(flags.get("dept_manager")),
            store_officer=bool(flags.get("store_officer")),
            requester=bool(flags.get("requester")),
            department_ids=depts,
            store_dept_id=store_dept_id,
        )

    @property
    def dept_upper(self) -> frozenset[str]:
        return frozenset(d.upper() for d in self.department_ids)

    @property
    def primary_dept(self) -> str | None:
        return self.department_ids[0] if self.department_ids else None

    @property
    def is_store_dept_user(self) -> bool:
        return self.store_dept_id.upper() in self.dept_upper

    @property
    def is_store_team(self) -> bool:
        return self.store_officer or self.is_store_dept_user

    @property
    def can_initiate(self) -> bool:
        return self.requester or self.dept_manager or self.admin

    def belongs_to(self, dept: str | None) -> bool:
        return bool(dept) and str(dept).upper() in self.dept_upper

    def store_team_can_see_dept(self, dept: str | None) -> bool:
        """Store-dept users see everything; store officers see their own departments."""
        if self.is_store_dept_user:
            return True
        if not self.store_officer:
            return False
        return self.belongs_to(dept)

    def activity_actor(self, dept_id: str | None = None) -> dict:
        return {
            "uid": self.uid,
            "full_name": self.full_name or self.email or None,
            "dept_id": dept_id or self.primary_dept,
        }


class RequestPermissions:
    """
    Permission predicates for one actor on one request.

    request may be None when composing a new request. The stage is the
    stored status; lines are the currently stored (typed) lines.
    """

    def __init__(
        self,
        actor: ActorContext,
        *,
        stage: RequestStatus = RequestStatus.DRAFT,
        exists: bool = False,
        created_by_uid: str | None = None,
        from_dept: str | None = None,
        lines: Iterable[RequestLine] = (),
        line_dept_ids: Iterable[str] = (),
    ):
        self.actor = actor
        self.stage = stage
        self.exists = exists
        self.created_by_uid = created_by_uid
        self.from_dept = normalize_dept_id(from_dept) or (actor.primary_dept or "")
        self._lines = list(lines)
        self._line_dept_upper = {str(d).upper() for d in line_dept_ids if d}

    @classmethod
    def for_request(cls, actor: ActorContext, request, lines: Iterable[RequestLine]) -> "RequestPermissions":
        created_by = request.created_by or {}
        return cls(
            actor,
            stage=parse_request_status(request.status),
            exists=True,
            created_by_uid=request.created_by_uid or created_by.get("uid"),
            from_dept=request.from_dept or created_by.get("department_id"),
            lines=lines,
            line_dept_ids=request.line_dept_ids or [],
        )

    @property
    def is_draft_stage(self) -> bool:
        return self.stage is RequestStatus.DRAFT

    @property
    def is_my_request(self) -> bool:
        return not self.exists or not self.created_by_uid or self.created_by_uid == self.actor.uid

    @property
    def is_my_from_dept(self) -> bool:
        return self.actor.belongs_to(self.from_dept)

    @property
    def stage_allows_edits(self) -> bool:
        return not self.exists or self.stage in EDITABLE_STAGES

    @property
    def has_lines_from_my_dept(self) -> bool:
        if any(self.actor.belongs_to(line.owner_dept_id) for line in self._lines):
            return True
        return bool(self._line_dept_upper & self.actor.dept_upper)

    @property
    def can_dept_manager_on_owned_lines(self) -> bool:
        return self.actor.dept_manager and self.has_lines_from_my_dept

    # -- header and lines -------------------------------------------------

    @property
    def can_requester_edit(self) -> bool:
        return self.actor.requester and self.is_my_request

    @property
    def can_dept_manager_edit(self) -> bool:
        return self.actor.dept_manager and self.is_my_from_dept

    @property
    def can_edit_header(self) -> bool:
        return self.stage_allows_edits and (
            self.actor.admin or self.can_requester_edit or self.can_dept_manager_edit
        )

    @property
    def can_persist(self) -> bool:
        if not self.exists:
            return self.actor.can_initiate
        return self.stage_allows_edits and (
            self.actor.admin
            or self.can_requester_edit
            or self.can_dept_manager_edit
            or self.can_dept_manager_on_owned_lines
        )

    @property
    def can_edit_lines(self) -> bool:
        return self.can_persist

    @property
    def can_add_lines(self) -> bool:
        return self.is_draft_stage and (
            self.actor.admin
            or (self.actor.requester and self.is_my_request)
            or (self.actor.dept_manager and self.is_my_from_dept)
        )

    def can_touch_item_dept(self, owner_dept_id: str | None) -> bool:
        """Without header rights an editor may only add/edit lines owned by their departments."""
        return self.can_edit_header or self.actor.belongs_to(owner_dept_id)

    @property
    def can_delete_lines(self) -> bool:
        if not self.can_edit_lines:
            return False
        if self.actor.admin:
            return True
        if not self.is_my_request:
            return False
        if self.is_draft_stage:
            return True
        return self.actor.requester and self.is_my_request

    # -- owner decisions --------------------------------------------------

    @property
    def can_approve_lines(self) -> bool:
        return self.actor.dept_manager and self.stage in APPROVAL_WINDOW_STAGES

    def can_approve_line(self, line: RequestLine) -> bool:
        return self.can_approve_lines and self.actor.belongs_to(line.owner_dept_id)

    @property
    def allow_reject_window(self) -> bool:
        return self.exists and not self.is_draft_stage and self.stage in EDITABLE_STAGES

    @property
    def blocks_own_rejects(self) -> bool:
        """A manager who raised the request and can still remove its lines removes them instead."""
        return self.actor.dept_manager and self.is_my_request and self.can_delete_lines

    @property
    def can_reject_lines(self) -> bool:
        return self.allow_reject_window and self.actor.dept_manager and not self.blocks_own_rejects

    def can_reject_line(self, line: RequestLine) -> bool:
        if not self.can_reject_lines:
            return False
        return self.is_my_from_dept or self.actor.belongs_to(line.owner_dept_id)

    @property
    def allow_lifecycle_change(self) -> bool:
        return (
            not self.exists
            or self.actor.admin
            or (self.actor.requester and self.is_my_request)
            or (self.actor.dept_manager and (self.is_my_from_dept or self.can_dept_manager_on_owned_lines))
        )

    # -- notes ------------------------------------------------------------

    @property
    def store_can_act(self) -> bool:
        return self.exists and self.actor.store_team_can_see_dept(self.from_dept)

    @property
    def can_fully_edit_notes(self) -> bool:
        if not self.exists:
            return self.actor.can_initiate
        return self.stage_allows_edits and (self.actor.admin or self.can_requester_edit)

    @property
    def can_append_dept_notes(self) -> bool:
        return (
            self.stage_allows_edits
            and not self.can_fully_edit_notes
            and self.actor.dept_manager
            and (self.is_my_from_dept or self.can_dept_manager_on_owned_lines)
        )

    @property
    def can_append_store_notes(self) -> bool:
        return (
            self.stage not in TERMINAL_STAGES
            and not self.can_fully_edit_notes
            and not self.can_append_dept_notes
            and self.store_can_act
        )

    @property
    def can_append_notes(self) -> bool:
        return self.can_append_dept_notes or self.can_append_store_notes

    # -- whole-request actions -------------------------------------------

    @property
    def can_cancel(self) -> bool:
        return self.exists and self.stage in CANCELABLE_STAGES and (
            self.actor.admin
            or (self.actor.requester and self.is_my_request)
            or (self.actor.dept_manager and self.is_my_from_dept)
        )

    @property
    def can_run_store_transitions(self) -> bool:
        return self.exists and (self.actor.admin or self.store_can_act)

    @property
    def can_close(self) -> bool:
        return self.exists and self.stage is RequestStatus.READY and (
            self.actor.admin
            or (self.actor.dept_manager and (self.is_my_from_dept or self.can_dept_manager_on_owned_lines))
        )

    @property
    def store_view_filter_active(self) -> bool:
        """Pure store-team viewers only see approved, active lines once fulfillment starts."""
        return (
            self.store_can_act
            and not self.actor.dept_manager
            and not self.actor.requester
            and self.stage in FULFILLMENT_STAGES
        )

    def summary(self) -> dict:
        """Flags the UI uses to decide which controls to offer."""
        return {
            "can_edit_header": self.can_edit_header,
            "can_persist": self.can_persist,
            "can_add_lines": self.can_add_lines,
            "can_delete_lines": self.can_delete_lines,
            "can_approve_lines": self.can_approve_lines,
            "can_reject_lines": self.can_reject_lines,
            "can_fully_edit_notes": self.can_fully_edit_notes,
            "can_append_notes": self.can_append_notes,
            "can_cancel": self.can_cancel,
            "can_run_store_transitions": self.can_run_store_transitions,
            "can_close": self.can_close,
        }


def log_security_event(
    uid: str | None,
    event_type: str,
    *,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
) -> SecurityEvent:
    """
    Record a security event in its own short transaction.

    Called after the failed action's session has been rolled back, so the
    event survives even though the action did not.
    """
    event = SecurityEvent(
        uid=uid,
        event_type=event_type,
        resource=resource,
        action=action,
        reason=reason,
    )
    db.session.add(event)
    db.session.commit()
    return event


def deny(actor: ActorContext, action: str, resource: str, reason: str) -> PermissionDeniedError:
    """Log a denial and return the error for the caller to raise."""
    logger.warning("Permission denied: %s on %s for %s (%s)", action, resource, actor.uid, reason)
    return PermissionDeniedError(reason)


def load_actor(uid: str | None, *, store_dept_id: str = "Store") -> ActorContext:
    """Build an ActorContext from the role profile; unknown or inactive uids are denied."""
    if not uid:
        raise ActorNotFoundError("Authentication required")
    profile = db.session.get(RoleProfile, uid)
    if profile is None or not profile.is_active:
        raise ActorNotFoundError("Unknown user")
    return ActorContext.from_profile(profile, store_dept_id=store_dept_id)
