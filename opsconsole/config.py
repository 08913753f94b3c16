"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import base64
import binascii
import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# AES-256 requires a 32-byte key
ENCRYPTION_KEY_BYTES = 32


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Operator Console API"
    api_version: str = "0.1.0"
    api_description: str = "Credit ledger, provider secret disclosure and incident review"
    cors_origins: str = ""  # Comma-separated list of allowed origins

    # Operator Authentication
    ADMIN_JWT_SECRET: str = ""  # generate with: openssl rand -hex 32
    admin_jwt_expire_hours: int = 8

    # Provider secret encryption - base64 encoded 32 byte key
    ENCRYPTION_KEY: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "operator-console-api"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Credit Ledger
    credit_min_amount: int = 1
    credit_max_amount: int = 1_000_000
    ledger_max_retries: int = 3

    # Secret Disclosure
    disclosure_window_seconds: int = 30
    disclosure_tick_seconds: float = 1.0
    secret_reveal_limit_per_hour: int = 10
    disclosure_idle_ttl_seconds: int = 900

    # Confirmation Gate
    confirmation_ttl_seconds: int = 300

    # Incidents
    incident_notes_max_length: int = 1000

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
        A console that cannot decrypt secrets or reach its ledger is useless.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        # ENCRYPTION_KEY must decode to an AES-256 key
        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY is required but empty or missing")
        else:
            try:
                key = base64.b64decode(self.ENCRYPTION_KEY, validate=True)
            except (binascii.Error, ValueError):
                errors.append("ENCRYPTION_KEY must be base64 encoded")
            else:
                if len(key) != ENCRYPTION_KEY_BYTES:
                    errors.append(
                        f"ENCRYPTION_KEY must decode to {ENCRYPTION_KEY_BYTES} bytes, "
                        f"got {len(key)}"
                    )

        if self.credit_min_amount < 1 or self.credit_max_amount < self.credit_min_amount:
            errors.append("credit_min_amount must be >= 1 and <= credit_max_amount")

        # If we have errors, fail immediately with clear messaging
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
    def encryption_key_bytes(self) -> bytes:
        """Decoded AES-256 key."""
        return base64.b64decode(self.ENCRYPTION_KEY)

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
