"""Human-readable sequence codes: ``PREFIX-DDMMYYYY-NNN``.

Codes are unique per (store, prefix, day).  Two concurrent callers would
otherwise both count N existing codes and both issue N+1, so the count runs
under a transaction-scoped lock on (store, day, prefix).
"""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from carrier_settlement.core.config import Settings
from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.locks import advisory_xact_lock
from carrier_settlement.core.logging import get_logger

logger = get_logger(__name__)


def format_code(prefix: str, on_date: date, sequence: int) -> str:
    return f"{prefix}-{on_date.strftime('%d%m%Y')}-{sequence:03d}"


class SequenceCodeGenerator:
    """Issues consecutive per-day codes for settlements and payments."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config

    def next_code(
        self,
        store_id: uuid.UUID,
        prefix: str,
        on_date: date,
        model: type,
    ) -> str:
        """Reserve the next code for *model* rows of *store_id* on *on_date*.

        The lock is held until the caller's transaction ends, so the row
        carrying the code must be inserted in that same transaction.

        Args:
            store_id: Store the code is scoped to.
            prefix: Code prefix, e.g. ``LIQ`` or ``PAG``.
            on_date: Day encoded in the code.
            model: Mapped class with ``store_id`` and a ``code_field``
                attribute naming its code column.

        Raises:
            LedgerConflictError: ``SEQUENCE_EXHAUSTED`` past the daily cap.
        """
        advisory_xact_lock(self.db, "sequence", store_id, on_date.isoformat(), prefix)

        code_column = getattr(model, model.code_field)
        day_prefix = f"{prefix}-{on_date.strftime('%d%m%Y')}-"
        existing = (
            self.db.query(func.count())
            .select_from(model)
            .filter(model.store_id == store_id)
            .filter(code_column.like(f"{day_prefix}%"))
            .scalar()
        ) or 0

        sequence = existing + 1
        if sequence > self.config.max_codes_per_day:
            raise LedgerConflictError(
                ErrorCode.SEQUENCE_EXHAUSTED,
                f"No {prefix} codes left for {on_date.isoformat()} "
                f"(limit {self.config.max_codes_per_day} per day)",
            )

        code = format_code(prefix, on_date, sequence)
        logger.debug("Issued code %s for store_id=%s", code, store_id)
        return code
