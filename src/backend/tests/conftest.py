"""Pytest configuration and fixtures for fan-out engine tests."""

from typing import Callable

import pytest

from fanout.core.config import DeliverySettings
from fanout.services.delivery.content import DeliveryHints, NotificationContent
from fanout.services.delivery.engine import DeliveryEngine
from fanout.services.delivery.gateway import BatchResponse, GatewayClient, TokenResult

# Outcome for one token: None = success, anything else is the error
TokenOutcome = Callable[[str, int], object]


class FakeGatewayClient(GatewayClient):
    """Scripted gateway that records every batch it receives.

    ``batch_error`` may raise to fail a whole batch; ``token_outcome`` returns
    None for success or an error for a single token. Both receive the 1-based
    call number so tests can change behaviour between passes.
    """

    def __init__(
        self,
        token_outcome: TokenOutcome | None = None,
        batch_error: Callable[[list[str], int], Exception | None] | None = None,
    ):
        self.token_outcome = token_outcome or (lambda token, call: None)
        self.batch_error = batch_error or (lambda batch, call: None)
        self.calls: list[list[str]] = []
        self.contents: list[NotificationContent] = []
        self.hints: list[DeliveryHints] = []

    @property
    def sent_tokens(self) -> list[str]:
        return [token for batch in self.calls for token in batch]

    async def send_batch(
        self,
        tokens: list[str],
        content: NotificationContent,
        hints: DeliveryHints,
    ) -> BatchResponse:
        self.calls.append(list(tokens))
        self.contents.append(content)
        self.hints.append(hints)
        call = len(self.calls)

        error = self.batch_error(tokens, call)
        if error is not None:
            raise error

        responses = []
        for token in tokens:
            outcome = self.token_outcome(token, call)
            if outcome is None:
                responses.append(TokenResult(success=True))
            else:
                responses.append(TokenResult(success=False, error=outcome))
        return BatchResponse(responses=responses)


@pytest.fixture
def settings() -> DeliverySettings:
    """Settings with millisecond backoff so retries stay fast."""
    return DeliverySettings(
        initial_retry_delay=0.001,
        max_retry_delay=0.004,
        fcm_enabled=False,
    )


@pytest.fixture
def gateway() -> FakeGatewayClient:
    return FakeGatewayClient()


@pytest.fixture
def engine(gateway: FakeGatewayClient, settings: DeliverySettings) -> DeliveryEngine:
    return DeliveryEngine(gateway, settings)


@pytest.fixture
def gateway_factory():
    """Build scripted gateways inside a test."""
    return FakeGatewayClient


@pytest.fixture
def engine_factory(settings: DeliverySettings):
    """Build an engine around a gateway, optionally overriding settings."""

    def _factory(client: GatewayClient | None, **overrides) -> DeliveryEngine:
        return DeliveryEngine(client, settings.model_copy(update=overrides))

    return _factory
