"""Error taxonomy shared by every service and the HTTP layer.

Three families, matched to what a caller can do about them:

* ``LedgerValidationError``: the request itself is wrong; fix and resend.
* ``LedgerConflictError``: the request is well-formed but the current state
  refuses it (already reconciled, not found, lock busy...); retry, skip or
  escalate depending on the code.
* ``LedgerInternalError``: something unexpected broke inside an atomic
  operation.  The transaction was rolled back and the detail only lives in
  the logs.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable, machine-readable error codes returned by the API."""

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    EMPTY_ORDER_SET = "EMPTY_ORDER_SET"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    SIGN_VIOLATION = "SIGN_VIOLATION"
    FAILURE_REASON_REQUIRED = "FAILURE_REASON_REQUIRED"

    # State conflicts
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    CARRIER_NOT_FOUND = "CARRIER_NOT_FOUND"
    CARRIER_INACTIVE = "CARRIER_INACTIVE"
    CARRIER_NOT_ASSIGNED = "CARRIER_NOT_ASSIGNED"
    SETTLEMENT_NOT_FOUND = "SETTLEMENT_NOT_FOUND"
    MOVEMENT_NOT_FOUND = "MOVEMENT_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    ORDER_ALREADY_RECONCILED = "ORDER_ALREADY_RECONCILED"
    ORDER_INVALID_STATE = "ORDER_INVALID_STATE"
    SETTLEMENT_ALREADY_EXISTS = "SETTLEMENT_ALREADY_EXISTS"
    SETTLEMENT_ALREADY_PAID = "SETTLEMENT_ALREADY_PAID"
    MOVEMENT_ALREADY_PAID = "MOVEMENT_ALREADY_PAID"
    DISCREPANCY_NOT_CONFIRMED = "DISCREPANCY_NOT_CONFIRMED"
    DISCREPANCY_NOT_DISTRIBUTABLE = "DISCREPANCY_NOT_DISTRIBUTABLE"
    DIRECTION_MISMATCH = "DIRECTION_MISMATCH"
    NO_ORDERS_TO_SETTLE = "NO_ORDERS_TO_SETTLE"
    LOCK_UNAVAILABLE = "LOCK_UNAVAILABLE"
    SEQUENCE_EXHAUSTED = "SEQUENCE_EXHAUSTED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status per code; anything missing falls back to its family default.
HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.CARRIER_NOT_FOUND: 404,
    ErrorCode.SETTLEMENT_NOT_FOUND: 404,
    ErrorCode.MOVEMENT_NOT_FOUND: 404,
    ErrorCode.PAYMENT_NOT_FOUND: 404,
    ErrorCode.LOCK_UNAVAILABLE: 423,
}


class LedgerError(Exception):
    """Base class for every error the engine raises on purpose."""

    default_code: ErrorCode = ErrorCode.VALIDATION_ERROR
    default_status: int = 400

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        message: str = "",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or self.code.value
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, self.default_status)

    def to_dict(self) -> dict[str, Any]:
        """Structured payload returned to API callers."""
        payload: dict[str, Any] = {
            "success": False,
            "error_code": self.code.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code.value!r}, message={self.message!r})>"


class LedgerValidationError(LedgerError):
    """Malformed or missing input, rejected before storage is touched."""

    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class LedgerConflictError(LedgerError):
    """The current stored state refuses the operation."""

    default_code = ErrorCode.ORDER_INVALID_STATE
    default_status = 409


class LedgerInternalError(LedgerError):
    """Unexpected failure; details are logged, never returned."""

    default_code = ErrorCode.INTERNAL_ERROR
    default_status = 500

    def __init__(self, operation: str = "") -> None:
        super().__init__(
            ErrorCode.INTERNAL_ERROR,
            "An internal error occurred; the operation was rolled back.",
        )
        self.operation = operation
