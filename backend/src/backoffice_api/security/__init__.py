"""Security package."""

from backoffice_api.security.encryption import EncryptionEnvelope, EncryptionService
from backoffice_api.security.password import PasswordService

__all__ = [
    "EncryptionEnvelope",
    "EncryptionService",
    "PasswordService",
]
