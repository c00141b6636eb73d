"""Configuration management for PingLater."""

import logging
import secrets
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _generate_dev_secret_key() -> str:
    """Generate a random secret key for development use.

    Tokens signed with it become invalid on restart, which is acceptable
    outside production.

    Returns:
        A cryptographically secure random hex string (64 characters).
    """
    return secrets.token_hex(32)


class Settings(BaseSettings):
    """PingLater configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the PINGLATER_ prefix. For example:
        PINGLATER_QDRANT_URL=http://localhost:6333
        PINGLATER_RETRY_INTERVAL_SECONDS=30

    Security Notes:
        - In production (PINGLATER_ENV=production), auth is enabled by default
        - A missing secret key in production raises an error
        - Disabling auth in production logs a warning
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    qdrant_location: str | None = Field(
        default=None,
        description="Local Qdrant location (':memory:' or a path). Overrides qdrant_url.",
    )
    collection_prefix: str = Field(
        default="pinglater",
        description="Prefix for Qdrant collection names",
    )

    # Webhook delivery
    webhook_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=120.0,
        description="HTTP timeout for a single delivery attempt",
    )
    webhook_max_retries: int = Field(
        default=5,
        ge=0,
        le=10,
        description="Retry ceiling for failed deliveries",
    )
    webhook_user_agent: str = Field(
        default="PingLater-Webhook/1.0",
        description="User-Agent header sent with deliveries",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=200,
        description=(
            "Maximum concurrent outbound deliveries. "
            "Bounds fan-out when many destinations match one event."
        ),
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=100_000,
        description="Maximum response body characters kept on a delivery record",
    )

    # Retry scheduler
    retry_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds between retry scheduler ticks",
    )
    retry_batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum due deliveries retried per scheduler tick",
    )

    # API server
    api_host: str = Field(
        default="127.0.0.1",
        description="Bind address for `python -m pinglater.api`",
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for `python -m pinglater.api`",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Authentication
    auth_enabled: bool | None = Field(
        default=None,
        description=(
            "Enable Bearer token authentication. "
            "If not set, defaults to True in production, False otherwise."
        ),
    )
    auth_secret_key: str | None = Field(
        default=None,
        description=(
            "Secret key for token validation (HMAC). "
            "REQUIRED in production. In dev/test, a random key is generated if not set."
        ),
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    # Runtime-generated dev secret (not from env, generated at startup if needed)
    _runtime_dev_secret: str | None = None

    model_config = {
        "env_prefix": "PINGLATER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Validate security settings based on environment.

        - In production, a secret key MUST be explicitly provided
        - In dev/test, a random key is generated if not provided
        - Resolves auth_enabled default based on environment
        """
        is_production = self.env == "production"

        if self.auth_enabled is None:
            object.__setattr__(self, "auth_enabled", is_production)

        if is_production:
            if self.auth_secret_key is None:
                raise ValueError(
                    "PINGLATER_AUTH_SECRET_KEY must be set in production. "
                    'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
                )

            if not self.auth_enabled:
                warnings.warn(
                    "Authentication is disabled in production environment. "
                    "Set PINGLATER_AUTH_ENABLED=true to enable.",
                    UserWarning,
                    stacklevel=2,
                )
                logger.warning("Authentication disabled in production")
        elif self.auth_secret_key is None:
            object.__setattr__(self, "_runtime_dev_secret", _generate_dev_secret_key())
            logger.debug("Generated random auth secret for development")

        return self

    @property
    def is_auth_enabled(self) -> bool:
        """Get resolved auth_enabled value (always bool, never None)."""
        if self.auth_enabled is None:
            return self.env == "production"
        return self.auth_enabled

    @property
    def effective_auth_secret_key(self) -> str:
        """Get the effective secret key for authentication.

        Returns:
            The configured key, or the runtime-generated key in dev/test.

        Raises:
            ValueError: If no secret key is available.
        """
        if self.auth_secret_key is not None:
            return self.auth_secret_key
        if self._runtime_dev_secret is not None:
            return self._runtime_dev_secret
        raise ValueError("No auth secret key available")


# Global settings instance
settings = Settings()
