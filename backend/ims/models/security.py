from __future__ import annotations

from ..extensions import db
from ims.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track permission denials on request actions (stale clients, forged
    calls). The UI hides actions the actor cannot take, so any row here is
    worth looking at.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_uid_type", "uid", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(128), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, ACTOR_UNKNOWN
    resource = db.Column(db.String(128), nullable=True)  # e.g. "requests/TRP-0312007"
    action = db.Column(db.String(64), nullable=True)     # e.g. "approve_line"
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
