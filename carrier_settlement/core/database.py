"""Database connection, session management and transaction boundaries."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from carrier_settlement.core.config import settings
from carrier_settlement.core.errors import LedgerError, LedgerInternalError
from carrier_settlement.core.logging import get_logger

logger = get_logger(__name__)

engine = create_engine(settings.database_url, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def get_db():
    """Dependency that provides a database session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, operation: str, **context: Any) -> Iterator[Session]:
    """Run a block as one all-or-nothing unit of work.

    Commits when the block finishes.  On any exception the transaction is
    rolled back.  Domain errors (``LedgerError``) propagate unchanged so
    callers can act on their code; anything else is logged in full and
    re-raised as a redacted ``LedgerInternalError``.

    Args:
        db: Active database session.
        operation: Short operation name used in log lines.
        **context: Identifiers worth logging if the operation fails.
    """
    try:
        yield db
        db.commit()
    except LedgerError as exc:
        db.rollback()
        logger.warning(
            "%s rejected: code=%s message=%s context=%s",
            operation,
            exc.code.value,
            exc.message,
            context,
        )
        raise
    except Exception as exc:
        db.rollback()
        logger.exception("%s failed unexpectedly: context=%s", operation, context)
        raise LedgerInternalError(operation) from exc
