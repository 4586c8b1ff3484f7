"""Delivery configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# FCM rejects multicast requests with more than 500 tokens.
FCM_MAX_TOKENS_PER_BATCH = 500


class DeliverySettings(BaseSettings):
    """Fan-out engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FANOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Batching
    max_tokens_per_batch: int = FCM_MAX_TOKENS_PER_BATCH
    absolute_token_ceiling: int = 50000

    # Retry (delays in seconds)
    max_retries: int = 3
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 30.0

    # Firebase Cloud Messaging
    fcm_enabled: bool = True            # False = log instead of sending
    fcm_credentials_path: str = ""      # Empty = application default credentials

    # Platform delivery hints
    apns_sound: str = "default"
    apns_badge: int = 1
    android_channel_id: str = "default"
    android_priority: str = "high"

    @field_validator("max_tokens_per_batch")
    @classmethod
    def check_batch_size(cls, v: int) -> int:
        """Batch size must fit inside the gateway's hard limit."""
        if v < 1 or v > FCM_MAX_TOKENS_PER_BATCH:
            raise ValueError(
                f"max_tokens_per_batch must be between 1 and {FCM_MAX_TOKENS_PER_BATCH}"
            )
        return v

    @field_validator("max_retries", "absolute_token_ceiling")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("initial_retry_delay", "max_retry_delay")
    @classmethod
    def check_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("retry delays must be > 0")
        return v

    @field_validator("android_priority")
    @classmethod
    def check_priority(cls, v: str) -> str:
        v = v.lower()
        if v not in ("high", "normal"):
            raise ValueError("android_priority must be 'high' or 'normal'")
        return v

    @model_validator(mode="after")
    def check_delay_cap(self) -> "DeliverySettings":
        if self.max_retry_delay < self.initial_retry_delay:
            raise ValueError("max_retry_delay must be >= initial_retry_delay")
        return self


@lru_cache
def get_settings() -> DeliverySettings:
    """Get cached settings instance."""
    return DeliverySettings()
