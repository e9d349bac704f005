"""Locking primitives used by the settlement and payment services.

Two disciplines live here:

* ``advisory_xact_lock``: a *blocking*, transaction-scoped named lock.  On
  PostgreSQL this is ``pg_advisory_xact_lock``; other dialects (SQLite in
  tests and local development) get an in-process lock that is released when
  the session's root transaction ends.
* ``lock_rows``: ``SELECT ... FOR UPDATE`` over a query, either blocking or
  fail-fast (``NOWAIT``).  Fail-fast contention is surfaced as
  ``LOCK_UNAVAILABLE`` so the caller can retry instead of queueing.

Ledger upserts need neither; they rely on ``ON CONFLICT`` instead.
"""

from __future__ import annotations

import hashlib
import threading
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query, Session, SessionTransaction

from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.logging import get_logger

logger = get_logger(__name__)

_HELD_LOCKS_KEY = "carrier_settlement.held_locks"
_LOCAL_LOCKS: dict[int, threading.Lock] = {}
_REGISTRY_GUARD = threading.Lock()

# PostgreSQL SQLSTATE for "could not obtain lock on row"
_PG_LOCK_NOT_AVAILABLE = "55P03"


def lock_key(*parts: Any) -> int:
    """Derive a stable 60-bit lock key from arbitrary parts.

    The same parts always produce the same key, across processes, so two
    workers settling the same carrier/day contend on the same lock.
    """
    raw = "|".join(str(p) for p in parts)
    digest = hashlib.md5(raw.encode("utf-8")).hexdigest()
    return int(digest[:15], 16)


def advisory_xact_lock(db: Session, *parts: Any) -> int:
    """Block until the named lock for *parts* is held by this transaction.

    Re-acquiring a key already held by the same session is a no-op.

    Returns:
        The numeric lock key (useful for logging).
    """
    key = lock_key(*parts)
    held: dict[int, Any] = db.info.setdefault(_HELD_LOCKS_KEY, {})
    if key in held:
        return key

    # Make sure a transaction is open so its end releases the lock.
    db.connection()

    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
        held[key] = None
    else:
        with _REGISTRY_GUARD:
            local = _LOCAL_LOCKS.setdefault(key, threading.Lock())
        local.acquire()
        held[key] = local

    logger.debug("Advisory lock acquired: key=%d parts=%s", key, parts)
    return key


@event.listens_for(Session, "after_transaction_end")
def _release_local_locks(session: Session, transaction: SessionTransaction) -> None:
    """Release in-process locks when the root transaction commits or rolls back."""
    if transaction.parent is not None:
        return
    held = session.info.pop(_HELD_LOCKS_KEY, None)
    if not held:
        return
    for local in held.values():
        if local is not None:
            local.release()


def _is_lock_not_available(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(exc.orig).lower()


def lock_rows(query: Query, nowait: bool = False, what: str = "rows") -> list:
    """Load and exclusively lock every row matched by *query*.

    Args:
        query: A legacy ``Query`` selecting ORM entities.
        nowait: Fail immediately instead of waiting when a row is locked.
        what: Human label used in the error message.

    Raises:
        LedgerConflictError: ``LOCK_UNAVAILABLE`` when ``nowait`` is set and
            another transaction holds one of the rows.
    """
    try:
        return query.with_for_update(nowait=nowait).all()
    except OperationalError as exc:
        if nowait and _is_lock_not_available(exc):
            raise LedgerConflictError(
                ErrorCode.LOCK_UNAVAILABLE,
                f"{what} are being modified by another operation; try again",
            ) from exc
        raise
