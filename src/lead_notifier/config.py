"""Configuration management for the lead notifier."""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OneSignalSettings(BaseSettings):
    """OneSignal push provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ONESIGNAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = Field(
        default=False,
        description="Toggle provider delivery. Env var: ONESIGNAL_ENABLED",
    )
    app_id: Optional[str] = Field(
        default=None,
        description="OneSignal application ID. Env var: ONESIGNAL_APP_ID",
    )
    rest_api_key: Optional[str] = Field(
        default=None,
        description="OneSignal REST API key (sent as Basic auth). Env var: ONESIGNAL_REST_API_KEY",
    )
    api_url: str = Field(
        default="https://onesignal.com/api/v1",
        description="OneSignal API base URL. Env var: ONESIGNAL_API_URL",
    )
    timeout_seconds: float = Field(
        default=30.0,
        description="Per-call HTTP timeout. Env var: ONESIGNAL_TIMEOUT_SECONDS",
    )

    @property
    def is_configured(self) -> bool:
        """Whether both credentials are present."""
        return bool(self.app_id) and bool(self.rest_api_key)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service info
    service_name: str = "lead-notifier"
    environment: str = "development"

    # Database (PostgreSQL)
    database_url: str

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Push provider
    onesignal: OneSignalSettings = Field(default_factory=OneSignalSettings)

    # Delivery queue and retry policy
    notifications_queue: str = "notifications"
    max_attempts: int = 3
    retry_backoff_seconds: List[int] = Field(default_factory=lambda: [30, 60, 120])
    attempt_timeout_seconds: float = 60

    # Operator console auth
    internal_api_key_enabled: bool = False
    internal_api_key: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
