# Overview: Request document loading and request code minting from per-department, per-day counters.

from __future__ import annotations

from datetime import date
from typing import Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import MaterialRequest, RequestCounter
from .concurrency import lock_for_update


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


class RequestNotFoundError(LookupError):
    """No request with the given code."""
    pass


def load_request(rq_code: str, *, for_update: bool = False) -> MaterialRequest:
    """Fetch one request; for_update takes the row lock used by every write path."""
    query = db.session.query(MaterialRequest).filter_by(rq_code=rq_code)
    if for_update:
        query = lock_for_update(query)
    request = query.first()
    if request is None:
        raise RequestNotFoundError(f"Request {rq_code} not found")
    return request


def dept_code(from_dept: str | None, prefixes: Mapping[str, str] | None = None) -> str:
    """Configured prefix for the department, else its first three letters, else GEN."""
    dept = (from_dept or "").strip()
    prefixes = prefixes or {}
    if dept in prefixes:
        return prefixes[dept]
    return (dept or "GEN")[:3].upper()


def counter_id_for(code: str, day: date) -> str:
    return f"{code}-{day:%Y%m%d}"


def format_rq_code(code: str, day: date, seq: int) -> str:
    return f"{code}-{day:%m%d}{seq:03d}"


def _allocate(counter_id: str) -> int:
    """
    Consume one number from the counter and return it.

    Runs inside the caller's transaction. The first request of the day
    creates the row under a savepoint so a concurrent insert only loses the
    savepoint, not the caller's pending work.
    """
    stmt = (
        update(RequestCounter)
        .where(RequestCounter.counter_id == counter_id)
        .values(next_number=RequestCounter.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(RequestCounter(counter_id=counter_id, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate from counter {counter_id}")

    current = (
        db.session.query(RequestCounter.next_number)
        .filter_by(counter_id=counter_id)
        .scalar()
    )
    return current - 1


def next_rq_code(
    from_dept: str | None,
    *,
    today: date | None = None,
    prefixes: Mapping[str, str] | None = None,
) -> str:
    """
    Allocate the next request code, e.g. TRP-0312007.

    The counter row is "<CODE>-<YYYYMMDD>" so numbering restarts daily per
    department code.
    """
    day = today or date.today()
    code = dept_code(from_dept, prefixes)
    seq = _allocate(counter_id_for(code, day))
    return format_rq_code(code, day, seq)
