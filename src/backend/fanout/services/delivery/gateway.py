"""Multicast push gateway clients.

A gateway client sends one batch of device tokens in a single multicast
request. Raising from ``send_batch`` means the whole batch failed; otherwise
the returned responses line up positionally with the tokens sent.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import firebase_admin
import structlog
from firebase_admin import credentials, exceptions, messaging

from fanout.services.delivery.batching import token_prefix
from fanout.services.delivery.content import DeliveryHints, NotificationContent
from fanout.services.delivery.errors import GatewayConfigurationError, GatewayError

logger = structlog.get_logger()

DEFAULT_APP_NAME = "[DEFAULT]"


@dataclass
class TokenResult:
    """Outcome for one token in a batch."""

    success: bool
    error: Exception | str | None = None


@dataclass
class BatchResponse:
    """Per-token outcomes for one batch, aligned with the tokens sent."""

    responses: list[TokenResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.responses if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.responses) - self.success_count


class GatewayClient(ABC):
    """Abstract base class for multicast push gateways."""

    @abstractmethod
    async def send_batch(
        self,
        tokens: list[str],
        content: NotificationContent,
        hints: DeliveryHints,
    ) -> BatchResponse:
        """Send one notification to a batch of device tokens.

        Args:
            tokens: Device tokens, at most the gateway's batch limit
            content: Title, body and data payload
            hints: Platform delivery hints, passed through unchanged

        Returns:
            BatchResponse with one TokenResult per token, in order

        Raises:
            Exception: Any exception means the entire batch failed
        """
        pass


class DevLoggerGatewayClient(GatewayClient):
    """Gateway that logs notifications instead of sending them.

    Used when FCM is disabled for local development. Every token succeeds.
    """

    async def send_batch(
        self,
        tokens: list[str],
        content: NotificationContent,
        hints: DeliveryHints,
    ) -> BatchResponse:
        logger.info(
            "DevLoggerGatewayClient: would send notification",
            tokens=len(tokens),
            first_token=token_prefix(tokens[0]) if tokens else None,
            title=content.title,
            data_keys=sorted(content.data),
        )
        return BatchResponse(responses=[TokenResult(success=True) for _ in tokens])


# firebase-admin exception types mapped to FCM's documented per-token error
# codes. Subclasses come before their bases.
_FCM_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (messaging.UnregisteredError, "registration-token-not-registered"),
    (messaging.SenderIdMismatchError, "sender-id-mismatch"),
    (messaging.ThirdPartyAuthError, "invalid-apns-credentials"),
    (messaging.QuotaExceededError, "message-rate-exceeded"),
    (exceptions.InvalidArgumentError, "invalid-argument"),
    (exceptions.UnavailableError, "server-unavailable"),
    (exceptions.InternalError, "internal-error"),
    (exceptions.DeadlineExceededError, "timeout"),
)


def to_gateway_error(error: Exception | None) -> GatewayError:
    """Wrap a firebase-admin per-token exception with its FCM error code."""
    if error is None:
        return GatewayError("unknown error")
    code = None
    for error_type, fcm_code in _FCM_ERROR_CODES:
        if isinstance(error, error_type):
            code = fcm_code
            break
    if code is None and isinstance(error, exceptions.FirebaseError):
        code = error.code
    return GatewayError(str(error), code=code, original_error=error)


def get_project_id_from_credentials(credentials_path: str) -> str:
    """Read ``project_id`` from a Firebase service account JSON file.

    Raises:
        GatewayConfigurationError: If the file cannot be read or parsed, or has no project_id
    """
    try:
        with open(credentials_path, encoding="utf-8") as f:
            creds = json.load(f)
    except OSError as e:
        raise GatewayConfigurationError(
            f"Failed to read credentials file: {e}", original_error=e
        ) from e
    except json.JSONDecodeError as e:
        raise GatewayConfigurationError(
            f"Failed to parse credentials JSON: {e}", original_error=e
        ) from e

    project_id = creds.get("project_id") if isinstance(creds, dict) else None
    if not project_id:
        raise GatewayConfigurationError("project_id not found in credentials file")
    return project_id


class FCMGatewayClient(GatewayClient):
    """Firebase Cloud Messaging gateway using the firebase-admin SDK."""

    def __init__(self, app: firebase_admin.App | None = None):
        self.app = app

    @classmethod
    def from_credentials(
        cls,
        credentials_path: str | None = None,
        app_name: str = DEFAULT_APP_NAME,
    ) -> "FCMGatewayClient":
        """Initialize the Firebase app and return a client bound to it.

        Args:
            credentials_path: Service account JSON file. When empty, application
                default credentials are used (e.g. on Cloud Run).
            app_name: Firebase app name, reused if already initialized

        Raises:
            GatewayConfigurationError: If Firebase cannot be initialized
        """
        try:
            return cls(firebase_admin.get_app(app_name))
        except ValueError:
            pass

        try:
            if credentials_path:
                project_id = get_project_id_from_credentials(credentials_path)
                app = firebase_admin.initialize_app(
                    credentials.Certificate(credentials_path),
                    options={"projectId": project_id},
                    name=app_name,
                )
            else:
                app = firebase_admin.initialize_app(name=app_name)
        except (ValueError, OSError) as e:
            raise GatewayConfigurationError(
                f"Error initializing firebase app: {e}", original_error=e
            ) from e

        logger.info("FCM gateway initialized", app_name=app_name)
        return cls(app)

    def build_message(
        self,
        tokens: list[str],
        content: NotificationContent,
        hints: DeliveryHints,
    ) -> messaging.MulticastMessage:
        """Construct the multicast message with platform-specific config."""
        return messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=content.title, body=content.body),
            data=dict(content.data),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(sound=hints.sound, badge=hints.badge),
                ),
            ),
            android=messaging.AndroidConfig(
                priority=hints.priority,
                notification=messaging.AndroidNotification(
                    sound=hints.sound,
                    channel_id=hints.channel_id,
                    default_sound=True,
                ),
            ),
        )

    async def send_batch(
        self,
        tokens: list[str],
        content: NotificationContent,
        hints: DeliveryHints,
    ) -> BatchResponse:
        message = self.build_message(tokens, content, hints)

        # firebase-admin is synchronous, run it off the event loop
        response = await asyncio.to_thread(
            messaging.send_each_for_multicast,
            message,
            app=self.app,
        )

        return BatchResponse(
            responses=[
                TokenResult(success=True)
                if r.success
                else TokenResult(success=False, error=to_gateway_error(r.exception))
                for r in response.responses
            ]
        )
