"""Tests for gateway error classification."""

import asyncio

import pytest
from firebase_admin import exceptions

from fanout.services.delivery.errors import (
    DeliveryCancelledError,
    ErrorClass,
    GatewayError,
    classify_batch_error,
    classify_token_error,
    is_retryable_batch_error,
    is_retryable_token_error,
)
from fanout.services.delivery.retry import DeliveryResult, DeliveryStatus


class TestBatchClassification:
    """Tests for whole-batch error classification."""

    @pytest.mark.parametrize(
        "message",
        [
            "context deadline exceeded",
            "request Timeout after 10s",
            "dial tcp: connection refused",
            "read: Connection Reset by peer",
            "Temporary failure in name resolution",
            "server unavailable",
            "Internal Error while sending",
            "HTTP 500",
            "HTTP 502 Bad Gateway",
            "status 503",
            "504 Gateway Timeout",
            "rpc error: code = UNAVAILABLE",
            "INTERNAL",
            "RESOURCE_EXHAUSTED: quota",
        ],
    )
    def test_retryable_patterns(self, message):
        """Transient request-level failures are retried."""
        assert is_retryable_batch_error(Exception(message))
        assert classify_batch_error(message) == ErrorClass.RETRYABLE

    @pytest.mark.parametrize(
        "message",
        [
            "invalid credentials",
            "permission denied",
            "400 Bad Request",
            "project not found",
        ],
    )
    def test_terminal_patterns(self, message):
        """Anything else fails the batch permanently."""
        assert not is_retryable_batch_error(Exception(message))
        assert classify_batch_error(message) == ErrorClass.TERMINAL

    def test_none_is_not_retryable(self):
        assert not is_retryable_batch_error(None)

    def test_timeout_and_connection_types(self):
        """Network exception types are retryable whatever their message."""
        assert is_retryable_batch_error(asyncio.TimeoutError())
        assert is_retryable_batch_error(ConnectionResetError("peer went away"))

    def test_structured_code_checked_first(self):
        """A FirebaseError's code decides even with an unhelpful message."""
        assert is_retryable_batch_error(exceptions.UnavailableError("try later"))
        assert is_retryable_batch_error(GatewayError("boom", code="RESOURCE_EXHAUSTED"))
        assert not is_retryable_batch_error(exceptions.InvalidArgumentError("bad payload"))


class TestTokenClassification:
    """Tests for per-token error classification."""

    @pytest.mark.parametrize(
        "message",
        [
            "invalid-registration-token",
            "messaging/registration-token-not-registered",
            "invalid-package-name",
            "INVALID-ARGUMENT",
            "sender-id-mismatch",
            "mismatched-credential",
            "invalid-apns-credentials",
        ],
    )
    def test_terminal_list(self, message):
        """Known permanent token problems are never retried."""
        assert not is_retryable_token_error(message)
        assert classify_token_error(message) == ErrorClass.TERMINAL

    @pytest.mark.parametrize(
        "message",
        [
            "internal-error",
            "Unavailable",
            "timeout",
            "server-unavailable",
            "quota-exceeded",
            "service-unavailable",
            "too-many-requests",
            "message-rate-exceeded",
        ],
    )
    def test_retryable_list(self, message):
        """Known transient token problems are retried."""
        assert is_retryable_token_error(Exception(message))
        assert classify_token_error(message) == ErrorClass.RETRYABLE

    def test_terminal_wins_over_retryable(self):
        """A message matching both lists is terminal."""
        assert not is_retryable_token_error("invalid-argument after timeout")

    def test_unknown_error_is_terminal(self):
        """Unknown failure modes are not retried."""
        assert not is_retryable_token_error("something unexpected")
        assert not is_retryable_token_error(None)

    def test_gateway_code_used(self):
        """The gateway's code decides before the message."""
        error = GatewayError("Requested entity was not found.", code="registration-token-not-registered")
        assert not is_retryable_token_error(error)

        error = GatewayError("Service busy", code="server-unavailable")
        assert is_retryable_token_error(error)

    def test_message_fallback_when_code_unknown(self):
        """An unrecognized code falls back to the message."""
        error = GatewayError("quota-exceeded for project", code="UNKNOWN")
        assert is_retryable_token_error(error)

    def test_terminal_message_wins_over_retryable_code(self):
        """A terminal message is not overridden by a transient code."""
        error = GatewayError("registration-token-not-registered", code="internal-error")
        assert not is_retryable_token_error(error)

        error = GatewayError("Service busy, timeout", code="invalid-argument")
        assert not is_retryable_token_error(error)


class TestExceptions:
    """Tests for delivery exception types."""

    def test_gateway_error_str_includes_code(self):
        assert str(GatewayError("not registered", code="registration-token-not-registered")) == (
            "registration-token-not-registered: not registered"
        )
        assert str(GatewayError("plain")) == "plain"

    def test_cancelled_error_keeps_totals(self):
        error = DeliveryCancelledError("cancelled", success_count=4, failure_count=2)

        assert error.success_count == 4
        assert error.failure_count == 2
        assert "4 succeeded" in str(error)
        assert error.result == DeliveryResult(success_count=4, failure_count=2)
        assert error.result.status == DeliveryStatus.PARTIAL_FAILURE
