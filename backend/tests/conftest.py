"""Shared test configuration.

Secrets are set before any application module reads settings.
"""

import logging
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ENCRYPTION_KEY", "0f1e2d3c4b5a69788796a5b4c3d2e1f00112233445566778899aabbccddeeff0")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789-abcdefghijklmnopqrstuvwxyz")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SESSION_STORE", "memory")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")

from collections.abc import Callable, Iterator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from backoffice_api.config import get_settings  # noqa: E402
from backoffice_api.repositories.storage import reset_storage  # noqa: E402
from backoffice_api.repositories.user_repository import reset_user_repository  # noqa: E402
from backoffice_api.security.encryption import (  # noqa: E402
    EncryptionService,
    reset_encryption_service,
)
from backoffice_api.services.backup_service import reset_backup_service  # noqa: E402
from backoffice_api.services.login_throttle import reset_login_throttle  # noqa: E402
from backoffice_api.services.token_service import reset_token_service  # noqa: E402
from backoffice_api.services.totp_service import reset_totp_service  # noqa: E402
from backoffice_api.services.two_factor_service import reset_two_factor_service  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons() -> Iterator[None]:
    """Give every test fresh service singletons."""
    yield
    reset_token_service()
    reset_login_throttle()
    reset_two_factor_service()
    reset_totp_service()
    reset_encryption_service()
    reset_user_repository()
    reset_storage()
    reset_backup_service()
    get_settings.cache_clear()


@pytest.fixture
def encryption() -> EncryptionService:
    """Encryption service with a fixed test key."""
    return EncryptionService(bytes(range(32)))


@pytest.fixture
def security_events(caplog: pytest.LogCaptureFixture) -> Callable[[], list[dict[str, Any]]]:
    """Return a callable listing the security events logged so far."""
    caplog.set_level(logging.INFO, logger="security")

    def events() -> list[dict[str, Any]]:
        return [
            record.security_event
            for record in caplog.records
            if record.name == "security" and hasattr(record, "security_event")
        ]

    return events
