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
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 10  # seconds to wait for a pooled connection
    database_pool_recycle: int = 1800
    database_connect_timeout: int = 10

    # Usage cache (Redis / Upstash Redis over TLS)
    redis_url: str = "redis://localhost:6379/0"
    redis_password: str | None = None
    redis_max_connections: int = 50
    redis_socket_timeout: float = 2.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Canvas Billing API"
    api_version: str = "0.1.0"
    api_description: str = "Usage metering and subscription billing for the AI canvas"

    # Public URL of the canvas app (checkout/portal redirects)
    app_base_url: str = "http://localhost:3000"

    # Auth provider - Clerk
    clerk_secret_key: str = ""
    clerk_jwt_key: str = ""  # PEM public key for networkless verification
    clerk_jwks_url: str = "https://api.clerk.com/v1/jwks"
    clerk_webhook_secret: str = ""  # Svix signing secret (whsec_...)
    clerk_authorized_parties: str = ""  # Comma-separated list of allowed azp origins

    @property
    def authorized_parties(self) -> list[str]:
        """Get list of authorized parties (azp claim) for token validation."""
        parties = []
        for party in self.clerk_authorized_parties.split(","):
            party = party.strip()
            if party and party not in parties:
                parties.append(party)
        return parties

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)

    # AI image provider - fal.ai
    fal_api_key: str = ""
    fal_base_url: str = "https://fal.run"
    fal_generate_model: str = "fal-ai/flux/krea"
    fal_edit_model: str = "fal-ai/bytedance/seedream/v4/edit"
    fal_timeout: float = 120.0

    # Plans and metering
    default_plan_name: str = "free"
    usage_timezone: str | None = None  # IANA zone; server local time when unset
    background_drain_timeout: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "canvas-billing-api"

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

        if not self.default_plan_name:
            errors.append("DEFAULT_PLAN_NAME cannot be empty")

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


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
