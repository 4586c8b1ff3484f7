"""Notification content and platform delivery hints."""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import structlog

logger = structlog.get_logger()

# Data key the sending app's id is published under.
APP_ID_DATA_KEY = "microappId"


@dataclass(frozen=True)
class NotificationContent:
    """Title, body and string data payload for one delivery call."""

    title: str
    body: str
    data: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the payload so retries always resend the same data
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    @classmethod
    def from_payload(
        cls,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        app_id: str | None = None,
    ) -> "NotificationContent":
        """Build content from a free-form payload.

        The gateway only accepts string values, so non-string values are
        JSON encoded. Values that cannot be encoded are dropped.

        Args:
            title: Notification title
            body: Notification body text
            data: Arbitrary key/value payload
            app_id: Optional id of the sending app, added under ``microappId``

        Returns:
            NotificationContent with a string-only data mapping
        """
        string_data: dict[str, str] = {}
        for key, value in (data or {}).items():
            if isinstance(value, str):
                string_data[key] = value
                continue
            try:
                string_data[key] = json.dumps(value)
            except (TypeError, ValueError) as e:
                logger.warning("Dropping unencodable data value", key=key, error=str(e))

        if app_id:
            string_data[APP_ID_DATA_KEY] = app_id

        return cls(title=title, body=body, data=string_data)


@dataclass(frozen=True)
class DeliveryHints:
    """Platform-specific hints passed through to the gateway unchanged."""

    sound: str = "default"
    badge: int = 1
    channel_id: str = "default"
    priority: str = "high"

    @classmethod
    def from_settings(cls, settings) -> "DeliveryHints":
        return cls(
            sound=settings.apns_sound,
            badge=settings.apns_badge,
            channel_id=settings.android_channel_id,
            priority=settings.android_priority,
        )
