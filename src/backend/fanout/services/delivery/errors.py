"""Delivery exceptions and gateway error classification.

The gateway reports failures as loosely structured text, so classification
is a case-insensitive substring match against fixed pattern tables. When an
error carries a structured code (firebase-admin's ``FirebaseError.code`` or
the FCM error code the gateway adapter attaches) the code is matched first.
For single tokens a terminal match in either the code or the message wins
over any retryable match.
"""

import asyncio
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fanout.services.delivery.retry import DeliveryResult


class DeliveryError(Exception):
    """Base exception for delivery errors."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class GatewayConfigurationError(DeliveryError):
    """Raised when the gateway client cannot be initialized."""


class GatewayNotConfiguredError(DeliveryError):
    """Raised when the engine has no gateway client to send through."""


class GatewayError(DeliveryError):
    """A gateway failure carrying the gateway's own error code."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, original_error=original_error)
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message


class DeliveryCancelledError(DeliveryError):
    """Raised when a delivery is cancelled while waiting to retry.

    Totals accumulated by the completed passes are preserved.
    """

    def __init__(self, reason: str, success_count: int, failure_count: int):
        super().__init__(
            f"Delivery cancelled ({reason}): "
            f"{success_count} succeeded, {failure_count} failed"
        )
        self.reason = reason
        self.success_count = success_count
        self.failure_count = failure_count

    @property
    def result(self) -> "DeliveryResult":
        """The partial totals as a delivery result."""
        from fanout.services.delivery.retry import DeliveryResult

        return DeliveryResult(success_count=self.success_count, failure_count=self.failure_count)


class ErrorClass(str, Enum):
    """Retry classification of a failure."""

    RETRYABLE = "retryable"
    TERMINAL = "terminal"


# Request-level issues where resending the whole batch is sensible.
BATCH_RETRYABLE_PATTERNS = (
    "deadline exceeded",
    "deadline_exceeded",
    "timeout",
    "connection refused",
    "connection reset",
    "temporary failure",
    "server unavailable",
    "internal error",
    "503",
    "500",
    "502",
    "504",
    "UNAVAILABLE",
    "INTERNAL",
    "RESOURCE_EXHAUSTED",
)

# Permanent problems tied to one registration token.
TOKEN_TERMINAL_PATTERNS = (
    "invalid-registration-token",
    "registration-token-not-registered",
    "invalid-package-name",
    "invalid-argument",
    "sender-id-mismatch",
    "mismatched-credential",
    "invalid-apns-credentials",
)

# Transient problems for one token.
TOKEN_RETRYABLE_PATTERNS = (
    "internal-error",
    "unavailable",
    "timeout",
    "server-unavailable",
    "quota-exceeded",
    "service-unavailable",
    "too-many-requests",
    "message-rate-exceeded",
)

_RETRYABLE_BATCH_TYPES = (asyncio.TimeoutError, TimeoutError, ConnectionError)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def _error_code(error: Exception | str) -> str:
    if isinstance(error, str):
        return ""
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else ""


def _error_message(error: Exception | str) -> str:
    if isinstance(error, GatewayError):
        return error.message
    return str(error)


def is_retryable_batch_error(error: Exception | str | None) -> bool:
    """Determine if an error that failed a whole batch should be retried."""
    if error is None:
        return False
    if isinstance(error, _RETRYABLE_BATCH_TYPES):
        return True

    code = _error_code(error)
    if code and _contains_any(code, BATCH_RETRYABLE_PATTERNS):
        return True
    return _contains_any(_error_message(error), BATCH_RETRYABLE_PATTERNS)


def is_retryable_token_error(error: Exception | str | None) -> bool:
    """Determine if a single token's failure should be retried.

    Terminal patterns win over retryable ones, and unknown errors are not
    retried.
    """
    if error is None:
        return False

    code = _error_code(error)
    message = _error_message(error)
    if _contains_any(code, TOKEN_TERMINAL_PATTERNS) or _contains_any(message, TOKEN_TERMINAL_PATTERNS):
        return False
    return _contains_any(code, TOKEN_RETRYABLE_PATTERNS) or _contains_any(message, TOKEN_RETRYABLE_PATTERNS)


def classify_batch_error(error: Exception | str | None) -> ErrorClass:
    if is_retryable_batch_error(error):
        return ErrorClass.RETRYABLE
    return ErrorClass.TERMINAL


def classify_token_error(error: Exception | str | None) -> ErrorClass:
    if is_retryable_token_error(error):
        return ErrorClass.RETRYABLE
    return ErrorClass.TERMINAL
