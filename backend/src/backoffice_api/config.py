"""Application configuration."""

import base64
import binascii
import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Minimum entropy for secrets (measured by character diversity)
MIN_SECRET_UNIQUE_CHARS = 16

# Key generation command for documentation (split for line length)
KEY_GEN_CMD = (
    'python -c "import secrets,base64;'
    'print(base64.b64encode(secrets.token_bytes(32)).decode())"'
)


def decode_encryption_key(key: str) -> bytes:
    """Decode a 256-bit encryption key from its configured text form.

    Accepts URL-safe or standard base64 (padding optional) and 64-character hex.

    Args:
        key: Encoded key as read from the environment

    Returns:
        Decoded 32-byte key

    Raises:
        ValueError: If the key cannot be decoded or is not 32 bytes
    """
    key = key.strip()
    if len(key) == 64:
        try:
            return bytes.fromhex(key)
        except ValueError:
            pass

    padded_key = key + "=" * (4 - len(key) % 4) if len(key) % 4 else key
    try:
        if "+" in padded_key or "/" in padded_key:
            decoded = base64.b64decode(padded_key, validate=True)
        else:
            decoded = base64.urlsafe_b64decode(padded_key)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64-encoded encryption key: {type(e).__name__}") from e

    if len(decoded) != 32:
        raise ValueError("Encryption key must be 32 bytes (256 bits)")
    return decoded


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Back Office API"
    debug: bool = False
    environment: Literal["development", "testing", "staging", "production"] = "development"

    # Security - Encryption (base64 or hex, 32 bytes decoded)
    # Unset outside production: a random per-process key is generated.
    encryption_key: str | None = None

    # Security - JWT
    jwt_secret: str | None = Field(default=None, min_length=32)
    jwt_algorithm: str = "HS256"
    access_token_minutes: int = 15
    refresh_token_days: int = 7
    two_factor_challenge_minutes: int = 5

    # Security - Password Policy
    password_min_length: int = 12
    max_login_attempts: int = 5
    lockout_duration_minutes: int = 15

    # Session store backend
    session_store: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    # Backups
    backup_dir: str = "backups"
    backup_max_count: int = 10
    backup_retention_days: int = 30
    restore_point_retention_days: int = 7
    backup_schedule_hour: int = Field(default=3, ge=0, le=23)
    backup_on_startup: bool = True
    backup_misfire_grace_seconds: int = 6 * 3600
    scheduler_enabled: bool = True

    # CORS settings
    cors_origins: str = "http://localhost:3000"  # Comma-separated list

    # Trusted proxies for rate limiting (comma-separated IP/CIDR ranges)
    trusted_proxies: str = ""

    # Rate limiting settings (requests per minute)
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str | None = None
    rate_limit_default: int = 100
    rate_limit_auth_login: int = 10
    rate_limit_auth_refresh: int = 10
    rate_limit_auth_password_change: int = 3
    rate_limit_auth_logout: int = 10
    rate_limit_sensitive: int = 5

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Validate settings for security requirements."""
        # Security: Prevent debug mode in production
        if self.environment == "production" and self.debug:
            raise ValueError(
                "DEBUG mode cannot be enabled in production environment. "
                "This would expose API documentation and detailed error messages."
            )

        if self.environment == "production":
            if not self.jwt_secret or not self.encryption_key:
                raise ValueError(
                    "JWT_SECRET and ENCRYPTION_KEY must be set in production. "
                    f"Generate a key with: {KEY_GEN_CMD}"
                )
            # Security: Validate JWT secret has sufficient entropy
            if len(set(self.jwt_secret)) < MIN_SECRET_UNIQUE_CHARS:
                raise ValueError(
                    f"JWT_SECRET must contain at least {MIN_SECRET_UNIQUE_CHARS} unique characters "
                    "for sufficient entropy. Use a cryptographically random value."
                )

        if self.encryption_key:
            try:
                decode_encryption_key(self.encryption_key)
            except ValueError as e:
                raise ValueError(
                    f"ENCRYPTION_KEY is invalid ({e}). Generate with: {KEY_GEN_CMD}"
                ) from e

        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def trusted_proxies_list(self) -> list[str]:
        """Get trusted proxies as a list."""
        if not self.trusted_proxies:
            return []
        return [proxy.strip() for proxy in self.trusted_proxies.split(",") if proxy.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    if not settings.encryption_key or not settings.jwt_secret:
        logger.warning(
            "ENCRYPTION_KEY or JWT_SECRET not set; using random per-process secrets. "
            "Tokens and backups will not survive a restart."
        )
    return settings
