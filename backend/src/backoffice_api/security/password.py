"""Password hashing and validation utilities."""

import hmac
import os
import re
from typing import NamedTuple

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from backoffice_api.config import get_settings


class PasswordStrength(NamedTuple):
    """Result of a password strength check."""

    valid: bool
    reason: str | None = None


class PasswordService:
    """Service for password hashing and validation.

    Hashes are scrypt-derived and stored as ``<salt hex>:<derived key hex>``.
    """

    SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

    # scrypt parameters
    SALT_SIZE = 16
    KEY_LENGTH = 64
    SCRYPT_N = 2**14
    SCRYPT_R = 8
    SCRYPT_P = 1

    # Known-weak passwords that satisfy every character-class rule
    WEAK_PASSWORDS = frozenset(
        {
            "password123!",
            "admin123!",
            "welcome1!",
            "password1234!",
            "qwerty123456!",
            "letmein12345!",
            "changeme123!",
        }
    )

    def __init__(self, min_length: int | None = None) -> None:
        self.min_length = min_length or get_settings().password_min_length

    def _derive(self, password: str, salt: bytes) -> bytes:
        kdf = Scrypt(
            salt=salt,
            length=self.KEY_LENGTH,
            n=self.SCRYPT_N,
            r=self.SCRYPT_R,
            p=self.SCRYPT_P,
        )
        return kdf.derive(password.encode("utf-8"))

    def hash_password(self, password: str) -> str:
        """Hash a password using scrypt with a fresh random salt.

        Args:
            password: Plain text password

        Returns:
            Hash string in ``salt:derivedKey`` form
        """
        salt = os.urandom(self.SALT_SIZE)
        derived = self._derive(password, salt)
        return f"{salt.hex()}:{derived.hex()}"

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify a password against a hash.

        Args:
            password: Plain text password
            hashed: Hash produced by :meth:`hash_password`

        Returns:
            True if password matches
        """
        try:
            salt_hex, key_hex = hashed.split(":", 1)
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(key_hex)
        except (ValueError, AttributeError):
            # Invalid hash format
            return False

        try:
            candidate = self._derive(password, salt)
        except (UnicodeEncodeError, ValueError):
            return False
        return hmac.compare_digest(candidate, expected)

    def validate_password_strength(self, password: str) -> tuple[bool, list[str]]:
        """Validate password meets complexity requirements.

        Args:
            password: Password to validate

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")

        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")

        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")

        if not re.search(r"\d", password):
            errors.append("Password must contain at least one digit")

        if not any(c in self.SPECIAL_CHARS for c in password):
            errors.append(
                f"Password must contain at least one special character ({self.SPECIAL_CHARS})"
            )

        if password.lower() in self.WEAK_PASSWORDS:
            errors.append("Password is too common")
        elif re.search(r"(.)\1{3,}", password):
            # Same char repeated 4+ times
            errors.append("Password contains common patterns")

        return len(errors) == 0, errors

    def is_strong_password(self, password: str) -> PasswordStrength:
        """Check a password and report the first failed rule.

        Args:
            password: Password to check

        Returns:
            PasswordStrength with ``reason`` set when invalid
        """
        valid, errors = self.validate_password_strength(password)
        if valid:
            return PasswordStrength(True)
        return PasswordStrength(False, errors[0])


# Singleton instance
_password_service: PasswordService | None = None


def get_password_service() -> PasswordService:
    """Get the password service singleton.

    Returns:
        PasswordService instance
    """
    global _password_service
    if _password_service is None:
        _password_service = PasswordService()
    return _password_service
