"""Push fan-out services."""

from fanout.services.delivery.content import DeliveryHints, NotificationContent
from fanout.services.delivery.engine import DeliveryEngine
from fanout.services.delivery.errors import (
    DeliveryCancelledError,
    DeliveryError,
    GatewayConfigurationError,
    GatewayError,
    GatewayNotConfiguredError,
)
from fanout.services.delivery.gateway import (
    BatchResponse,
    DevLoggerGatewayClient,
    FCMGatewayClient,
    GatewayClient,
    TokenResult,
)
from fanout.services.delivery.retry import DeliveryResult, DeliveryStatus

__all__ = [
    "DeliveryEngine",
    "DeliveryResult",
    "DeliveryStatus",
    "NotificationContent",
    "DeliveryHints",
    "GatewayClient",
    "FCMGatewayClient",
    "DevLoggerGatewayClient",
    "BatchResponse",
    "TokenResult",
    "DeliveryError",
    "DeliveryCancelledError",
    "GatewayConfigurationError",
    "GatewayError",
    "GatewayNotConfiguredError",
]
