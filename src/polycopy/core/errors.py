"""
Error taxonomy for polycopy.

Two layers:
- Exception classes, raised inside clients and caught by the engines.
- ErrorKind, carried on result objects so callers can render or retry
  without catching anything.

Order-submission failures come back from the exchange in several shapes
(plain strings, nested dicts, exceptions). They are decoded once, at the
CLOB client boundary, into an OrderError.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of error types for retry decisions."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorKind(str, Enum):
    """Failure kinds reported on operation results."""

    INVALID_ARGUMENT = "InvalidArgument"
    NOT_FOUND = "NotFound"
    BELOW_MINIMUM = "BelowMinimum"
    NO_LIQUIDITY = "NoLiquidity"
    FEE_UNAVAILABLE = "FeeUnavailable"
    TRANSPORT_FAILURE = "TransportFailure"
    REVERTED = "Reverted"
    RETRIES_EXHAUSTED = "RetriesExhausted"


class PolycopyError(Exception):
    """Base exception for all polycopy errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class ConfigurationError(PolycopyError):
    """Missing or invalid configuration. Fatal at startup."""

    category = ErrorCategory.PERMANENT


class TransportFailure(PolycopyError):
    """HTTP, RPC or streaming transport error."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.TRANSPORT_FAILURE


class InvalidArgumentError(PolycopyError):
    category = ErrorCategory.PERMANENT
    kind = ErrorKind.INVALID_ARGUMENT


class FeeUnavailableError(PolycopyError):
    """No gas price estimate could be obtained from the network."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.FEE_UNAVAILABLE


# =============================================================================
# Order submission errors
# =============================================================================


class OrderErrorCode(str, Enum):
    """Closed set of order-submission failure variants."""

    REJECTED = "rejected"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OrderError:
    """Decoded order-submission failure.

    Attributes:
        code: Failure variant.
        raw_text: Best human-readable text found in the response, or the
            stringified response when nothing better exists.
    """

    code: OrderErrorCode
    raw_text: str

    def __str__(self) -> str:
        return self.raw_text or self.code.value

    @classmethod
    def from_exception(cls, error: Exception) -> "OrderError":
        return cls(code=OrderErrorCode.TRANSPORT, raw_text=str(error))

    @classmethod
    def from_response(cls, response: Any) -> "OrderError":
        """Decode an unsuccessful order response.

        Handles the shapes the exchange is known to return:
        a bare string, {"error": "..."}, {"error": {"error"|"message": "..."}},
        {"errorMsg": "..."} and {"message": "..."}.
        """
        text = _extract_error_text(response)
        if text is None:
            text = "" if response is None else str(response)

        lowered = text.lower()
        if "balance" in lowered or "allowance" in lowered:
            code = OrderErrorCode.INSUFFICIENT_BALANCE
        elif text:
            code = OrderErrorCode.REJECTED
        else:
            code = OrderErrorCode.UNKNOWN
        return cls(code=code, raw_text=text)


def _extract_error_text(response: Any) -> Optional[str]:
    if not response:
        return None

    if isinstance(response, str):
        return response

    if isinstance(response, dict):
        direct = response.get("error")
        if isinstance(direct, str) and direct:
            return direct
        if isinstance(direct, dict):
            for key in ("error", "message"):
                nested = direct.get(key)
                if isinstance(nested, str) and nested:
                    return nested
        for key in ("errorMsg", "message"):
            value = response.get(key)
            if isinstance(value, str) and value:
                return value

    return None
