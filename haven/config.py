"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Haven API"
    api_version: str = "0.1.0"
    api_description: str = "AI therapy sessions, credit metering and mood tracking"
    app_url: str = "http://localhost:3000"  # Frontend base URL for redirects and emails
    cors_origins: str = "*"  # Comma-separated

    # Sessions
    session_cookie_name: str = "haven_session"
    session_ttl_days: int = 7
    session_cookie_secure: bool = True
    password_min_length: int = 8
    password_reset_ttl_minutes: int = 60

    # Scheduled jobs
    cron_secret: str = ""  # Bearer secret for /api/cron/* (empty disables the endpoints)

    # Google OAuth (social sign-in)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""  # Defaults to {request base}/api/auth/google/callback

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "haven-api"

    # Observability - Sampling
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)
    stripe_publishable_key: str = ""  # Stripe publishable key (pk_test_... or pk_live_...)
    stripe_chat_only_price_id: str = ""
    stripe_voice_only_price_id: str = ""
    stripe_premium_price_id: str = ""
    stripe_voice_topup_price_id: str = ""

    # LLM - OpenAI
    openai_api_key: str = ""
    openai_base_url: str | None = None
    chat_model: str = "gpt-4o"
    mood_model: str = "gpt-4o-mini"
    chat_max_tokens: int = 800
    chat_temperature: float = 0.7
    chat_history_limit: int = 20  # Messages of context sent with each turn

    # Email - Resend
    resend_api_key: str = ""
    email_from: str = "Haven <no-reply@haven.local>"

    # Free trial allowance for new accounts
    free_trial_chat_credits: int = 200
    free_trial_voice_credits: int = 200
    default_daily_voice_credits: int = 300
    default_monthly_voice_credits: int = 9000

    # Image uploads
    monthly_image_upload_limit: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if self.session_ttl_days < 1:
            errors.append("SESSION_TTL_DAYS must be at least 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance - validates at import time
settings = Settings()
