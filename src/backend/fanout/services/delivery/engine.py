"""Push notification fan-out engine.

Sanitizes the recipient token list and hands it to the retry coordinator.
Partial failure is a normal outcome and is reported through the failure
count, never raised.
"""

import asyncio
from typing import Any, Iterable

import structlog

from fanout.core.config import DeliverySettings, get_settings
from fanout.services.delivery.batching import unique_tokens
from fanout.services.delivery.content import DeliveryHints, NotificationContent
from fanout.services.delivery.errors import GatewayNotConfiguredError
from fanout.services.delivery.gateway import (
    DevLoggerGatewayClient,
    FCMGatewayClient,
    GatewayClient,
)
from fanout.services.delivery.retry import DeliveryResult, RetryCoordinator

logger = structlog.get_logger()


class DeliveryEngine:
    """Delivers one notification to many device tokens through a multicast gateway.

    The engine only holds the gateway client and its settings, so a single
    instance can serve concurrent deliveries.
    """

    def __init__(
        self,
        client: GatewayClient | None,
        settings: DeliverySettings | None = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.hints = DeliveryHints.from_settings(self.settings)

    @classmethod
    def from_settings(cls, settings: DeliverySettings | None = None) -> "DeliveryEngine":
        """Build an engine with the gateway client the settings describe."""
        settings = settings or get_settings()
        if settings.fcm_enabled:
            client: GatewayClient = FCMGatewayClient.from_credentials(
                settings.fcm_credentials_path or None
            )
        else:
            logger.warning("FCM disabled - notifications will only be logged")
            client = DevLoggerGatewayClient()
        return cls(client, settings)

    async def send_multicast_notification(
        self,
        tokens: Iterable[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DeliveryResult:
        """Send a push notification to multiple devices.

        Handles token deduplication, batching to the gateway limit, per-token
        retry with exponential backoff, and the absolute token ceiling.

        Args:
            tokens: Device tokens, may contain duplicates and empty strings
            title: Notification title
            body: Notification body text
            data: Additional key/value data; non-string values are JSON encoded
            cancel_event: Set to abort between retry passes
            timeout: Seconds after which waiting for a retry is abandoned

        Returns:
            DeliveryResult with success and failure counts

        Raises:
            GatewayNotConfiguredError: If the engine has no gateway client
            DeliveryCancelledError: If cancelled while waiting to retry
        """
        content = NotificationContent.from_payload(title, body, data)
        return await self.send(tokens, content, cancel_event=cancel_event, timeout=timeout)

    async def send(
        self,
        tokens: Iterable[str],
        content: NotificationContent,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DeliveryResult:
        """Send prepared ``content``. See ``send_multicast_notification``."""
        tokens = list(tokens)
        if not tokens:
            return DeliveryResult(success_count=0, failure_count=0)

        if self.client is None:
            raise GatewayNotConfiguredError("Notification gateway is not configured")

        deadline = None
        if timeout is not None:
            deadline = asyncio.get_running_loop().time() + timeout

        tokens = unique_tokens(tokens)
        logger.info("Starting notification send", unique_tokens=len(tokens))

        ceiling = self.settings.absolute_token_ceiling
        if len(tokens) > ceiling:
            logger.warning(
                "Token count exceeds absolute limit, truncating",
                original_count=len(tokens),
                limit=ceiling,
            )
            tokens = tokens[:ceiling]

        if not tokens:
            return DeliveryResult(success_count=0, failure_count=0)

        coordinator = RetryCoordinator(
            self.client,
            batch_size=self.settings.max_tokens_per_batch,
            max_retries=self.settings.max_retries,
            initial_retry_delay=self.settings.initial_retry_delay,
            max_retry_delay=self.settings.max_retry_delay,
            hints=self.hints,
        )
        return await coordinator.run(tokens, content, cancel_event=cancel_event, deadline=deadline)
