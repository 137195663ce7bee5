# Overview: Revision fencing and atomic read-modify-write helpers for request documents.

from __future__ import annotations

import logging

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError
from ims.time_utils import now_ms


logger = logging.getLogger(__name__)

REVISION_CONFLICT_CODE = "revision-conflict"
REVISION_CONFLICT_MESSAGE = (
    "This request was changed by someone else. Reload it before saving again."
)


class RevisionConflictError(ConflictError):
    """
    The stored request moved past the revision the caller last read.

    Nothing was written. The caller must reload and redo its change.
    """

    code = REVISION_CONFLICT_CODE

    def __init__(self, expected: int | None = None, live: int | None = None):
        self.expected = expected
        self.live = live
        super().__init__(REVISION_CONFLICT_MESSAGE)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def ensure_revision_unchanged(expected: int | None, live: int | None) -> int:
    """
    Compare the caller's revision with the stored one.

    - live 0/None: nothing written yet, any expectation passes
    - live set and different from expected: conflict
    - expected 0 while live is set: the caller's view predates every write,
      which is the same conflict
    Returns the live revision.
    """
    expected = expected or 0
    live = live or 0
    if live and live != expected:
        logger.info(
            "Revision conflict: expected %s, live %s",
            expected,
            live,
            extra={"revision": live, "error_code": REVISION_CONFLICT_CODE},
        )
        raise RevisionConflictError(expected=expected, live=live)
    return live


def next_revision(live: int | None) -> int:
    """A fresh stamp strictly greater than the live one."""
    return max(now_ms(), (live or 0) + 1)


def atomic(func):
    """
    Run one read-modify-write as a single transaction.

    func does its reads (with lock_for_update), checks and mutations on
    db.session and returns a result; the session is committed afterwards.
    Any exception rolls back every pending change, including other rows the
    function touched (stock rows on READY). A StaleDataError raised at flush
    time means SQLAlchemy's own version check lost a race and is reported as
    a revision conflict. There is no retry.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise RevisionConflictError() from exc
    except Exception:
        db.session.rollback()
        raise
