from __future__ import annotations

from ..extensions import db
from ims.time_utils import to_utc_z, ms_to_utc_z


class MaterialRequest(db.Model):
    """
    Multi-line material request (the aggregate root).

    LIFECYCLE:
    1. DRAFT: Being composed by the requester, does NOT reserve stock
    2. SUBMITTED / PARTIALLY_APPROVED / FULLY_APPROVED / REJECTED:
       derived from the owner decisions on the lines
    3. STORE_PREPARING -> READY -> CLOSED: store-team fulfillment
    4. CANCELED: explicit cancel (or every line removed)

    DOCUMENT SHAPE:
    Lines and the activity log are embedded JSON lists, not child tables.
    A request is read and written as one unit so that a single row lock plus
    the revision stamp fences every mutation.

    REVISION:
    updated_at_ms is the epoch-ms stamp of the last accepted write. Clients
    echo it back as expected_revision; a mismatch aborts the write.
    version_id is SQLAlchemy's own optimistic counter for the same row.
    """
    __tablename__ = "requests"
    __table_args__ = (
        db.Index("ix_requests_status_updated", "status", "updated_at_ms"),
        db.Index("ix_requests_from_dept", "from_dept"),
    )

    rq_code = db.Column(db.String(32), primary_key=True)

    status = db.Column(db.String(32), nullable=False, default="DRAFT", index=True)

    project_id = db.Column(db.String(64), nullable=True)
    engineer_id = db.Column(db.String(64), nullable=True)
    urgent = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.Text, nullable=False, default="")

    # Creator snapshot: {"uid", "full_name", "email", "department_id"}
    created_by = db.Column(db.JSON, nullable=False, default=dict)
    created_by_uid = db.Column(db.String(128), nullable=True, index=True)
    from_dept = db.Column(db.String(64), nullable=True)

    # Embedded document parts
    lines = db.Column(db.JSON, nullable=False, default=list)
    line_dept_ids = db.Column(db.JSON, nullable=False, default=list)
    activity_log = db.Column(db.JSON, nullable=False, default=list)
    read_by = db.Column(db.JSON, nullable=False, default=dict)

    canceled_at_ms = db.Column(db.BigInteger, nullable=True)
    canceled_by = db.Column(db.JSON, nullable=True)

    updated_at_ms = db.Column(db.BigInteger, nullable=False, default=0, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<MaterialRequest rq_code={self.rq_code!r} status={self.status!r} rev={self.updated_at_ms}>"

    def to_dict(self) -> dict:
        return {
            "rq_code": self.rq_code,
            "status": self.status,
            "project_id": self.project_id,
            "engineer_id": self.engineer_id,
            "urgent": bool(self.urgent),
            "note": self.note or "",
            "created_by": self.created_by or {},
            "from_dept": self.from_dept,
            "lines": list(self.lines or []),
            "line_dept_ids": list(self.line_dept_ids or []),
            "activity_log": list(self.activity_log or []),
            "read_by": dict(self.read_by or {}),
            "canceled_at": ms_to_utc_z(self.canceled_at_ms),
            "canceled_by": self.canceled_by,
            "updated_at_ms": self.updated_at_ms,
            "created_at": to_utc_z(self.created_at),
        }


class RequestCounter(db.Model):
    """
    Per-department, per-day sequence used to mint request codes.

    counter_id is "<DEPT CODE>-<YYYYMMDD>"; next_number is the value the
    next request will receive.
    """
    __tablename__ = "request_counters"

    counter_id = db.Column(db.String(32), primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<RequestCounter {self.counter_id} next={self.next_number}>"
