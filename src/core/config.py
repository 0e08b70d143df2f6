"""Configuration management for eventdesk."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store
    sqlite_db_path: str = Field(default="eventdesk.db", description="SQLite file backing the document store")

    # Links embedded in notifications
    app_base_url: str = Field(default="http://localhost:3000", description="Public base URL of the dashboard")

    # Green API (WhatsApp) Configuration
    green_api_base_url: str = Field(default="https://api.green-api.com", description="Green API base URL")
    whatsapp_id_instance: str | None = Field(default=None, description="Green API instance id (overrides stored config)")
    whatsapp_api_token: str | None = Field(default=None, description="Green API token (overrides stored config)")
    whatsapp_notify_on_mention: bool = Field(
        default=True, description="Send WhatsApp notifications when credentials come from the environment"
    )
    default_country_code: str = Field(default="972", description="Country code used to normalize local phone numbers")

    # Notification throttling
    notification_min_interval_ms: int = Field(
        default=5000, description="Minimum spacing between any two outbound WhatsApp messages (all processes)"
    )
    rate_limit_retry_backoff_ms: int = Field(
        default=200, description="Backoff before retrying a raced rate-limit token claim"
    )

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # OpenRouter Configuration
    openrouter_api_key: str | None = Field(default=None, description="OpenRouter API key for deadline suggestions")
    model_id: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="Model ID for OpenRouter (defaults to Claude 3.5 Sonnet)",
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="development", description="Deployment environment reported to Logfire")
    log_level: str = Field(default="INFO", description="Minimum level of records forwarded to Logfire")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # HTTP Status Codes
    HTTP_OK: int = 200
    HTTP_BAD_REQUEST: int = 400
    HTTP_NOT_FOUND: int = 404
    HTTP_SERVER_ERROR: int = 500

    # WhatsApp addressing
    WHATSAPP_CHAT_SUFFIX: str = "@c.us"

    # Recurrence
    RECURRENCE_MAX_ITERATIONS: int = 200
    WEEKLY_INTERVAL_DAYS: int = 7
    BIWEEKLY_INTERVAL_DAYS: int = 14

    # Due dates
    DEFAULT_DUE_TIME: str = "09:00"
    DEFAULT_ANCHOR_HOUR: int = 10  # Default rule when the anchor time is unknown
    SMART_DUE_FALLBACK_HOURS: int = 48  # Anchor when the event has no start time
    SMART_DUE_PAST_PUSH_HOURS: int = 2  # Inferred dates in the past move to now + 2h

    # Conditional writes on shared records
    CONDITIONAL_WRITE_MAX_ATTEMPTS: int = 10

    # Deadline suggestions
    DEADLINE_OFFSET_DEFAULT_DAYS: int = -7
    DEADLINE_OFFSET_MIN_DAYS: int = -60
    DEADLINE_OFFSET_MAX_DAYS: int = 30

    # Document store collections
    RATE_LIMIT_COLLECTION: str = "rate_limits"
    RATE_LIMIT_DOCUMENT_ID: str = "whatsapp_global"
    RATE_LIMIT_REDIS_KEY: str = "ratelimit:whatsapp:last_send_at"
    INTEGRATIONS_COLLECTION: str = "integrations"
    WHATSAPP_CONFIG_DOCUMENT_ID: str = "whatsapp"

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries
    MAX_PER_PAGE_LIMIT: int = 1000

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
