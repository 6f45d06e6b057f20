"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error tracking
    SENTRY_DSN: str = ""

    # Shared secret for provider engagement webhooks (empty rejects all calls)
    WEBHOOK_SECRET: str = ""

    # Email channel (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_BASE: str = "https://api.resend.com"
    EMAIL_FROM: str = "noreply@example.com"

    # WhatsApp channel (Gupshup)
    GUPSHUP_API_KEY: str = ""
    GUPSHUP_API_BASE: str = "https://api.gupshup.io"
    GUPSHUP_SOURCE_NUMBER: str = ""
    GUPSHUP_APP_NAME: str = ""

    CHANNEL_TIMEOUT_SECONDS: float = 30.0

    # Scheduler sweep
    SWEEP_INTERVAL_SECONDS: int = 60
    SWEEP_BATCH_SIZE: int = 100
    STALE_CLAIM_MINUTES: int = 15

    # Retries (minutes per attempt; the last value repeats)
    RETRY_BACKOFF_MINUTES: str = "5,30,120"
    DEFAULT_MAX_RETRIES: int = 3

    # Pending executions waiting on dependencies fail after this TTL
    DEPENDENCY_TIMEOUT_HOURS: int = 72

    # Send-time optimizer
    ENGAGEMENT_CLICK_WEIGHT: float = 2.0
    ENGAGEMENT_PRIOR_EVENTS: int = 5
    OPTIMAL_SEND_HORIZON_HOURS: int = 168

    # Send concurrency
    MAX_CONCURRENT_SENDS: int = 20
    MAX_CONCURRENT_SENDS_PER_ORG: int = 5

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def retry_backoff_schedule(self) -> list[int]:
        """Parse RETRY_BACKOFF_MINUTES into a non-decreasing list of minutes."""
        values = [int(v.strip()) for v in self.RETRY_BACKOFF_MINUTES.split(",") if v.strip()]
        if not values:
            return [5]
        schedule: list[int] = []
        for value in values:
            schedule.append(max(value, schedule[-1]) if schedule else max(value, 0))
        return schedule


settings = Settings()
