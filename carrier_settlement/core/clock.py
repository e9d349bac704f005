"""Current time for timestamp columns.

Columns are ``DateTime`` without a zone and always hold UTC, so the helper
returns a naive UTC datetime.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
