from __future__ import annotations

from ..extensions import db


class RoleProfile(db.Model):
    """
    Role flags and department membership for one user.

    Populated by the identity system (or `flask seed demo` in development);
    the request core only reads it to build an ActorContext.

    roles: {"admin": bool, "dept_manager": bool, "store_officer": bool, "requester": bool}
    department_ids: ["TRP", "HSE", ...]
    """
    __tablename__ = "roles"

    uid = db.Column(db.String(128), primary_key=True)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    roles = db.Column(db.JSON, nullable=False, default=dict)
    department_ids = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RoleProfile uid={self.uid!r} depts={self.department_ids}>"

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "full_name": self.full_name,
            "email": self.email,
            "roles": dict(self.roles or {}),
            "department_ids": list(self.department_ids or []),
            "is_active": self.is_active,
        }
