"""AES-256-GCM envelope encryption for backups and secrets at rest."""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from backoffice_api.config import decode_encryption_key, get_settings
from backoffice_api.exceptions import IntegrityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptionEnvelope:
    """Ciphertext plus the nonce and tag needed to decrypt it."""

    ciphertext: bytes
    iv: bytes
    auth_tag: bytes

    def to_hex(self) -> dict[str, str]:
        """Serialize each part as a hex string.

        Returns:
            Dictionary with ``data``, ``iv`` and ``authTag`` keys
        """
        return {
            "iv": self.iv.hex(),
            "authTag": self.auth_tag.hex(),
            "data": self.ciphertext.hex(),
        }

    @classmethod
    def from_hex(cls, data: dict[str, Any]) -> "EncryptionEnvelope":
        """Rebuild an envelope from its hex form.

        Args:
            data: Dictionary with ``data``, ``iv`` and ``authTag`` hex strings

        Returns:
            EncryptionEnvelope

        Raises:
            IntegrityError: If a field is missing or not valid hex
        """
        try:
            return cls(
                ciphertext=bytes.fromhex(data["data"]),
                iv=bytes.fromhex(data["iv"]),
                auth_tag=bytes.fromhex(data["authTag"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise IntegrityError("Malformed encryption envelope") from e


class EncryptionService:
    """Service for encrypting and decrypting data using AES-256-GCM.

    Every call to :meth:`encrypt` draws a fresh 96-bit nonce. Decryption
    verifies the 128-bit tag and raises :class:`IntegrityError` on any
    mismatch, so callers never see partial plaintext.
    """

    NONCE_SIZE = 12  # 96 bits for GCM
    TAG_SIZE = 16  # 128 bits

    def __init__(self, key: bytes | str | None = None) -> None:
        """Initialize encryption service.

        Args:
            key: Raw 32-byte key or its encoded text form. Defaults to
                ENCRYPTION_KEY; when that is unset a random key is generated.
        """
        if key is None:
            configured = get_settings().encryption_key
            if configured:
                key = configured
            else:
                logger.warning("ENCRYPTION_KEY not configured, generating an ephemeral key")
                key = AESGCM.generate_key(bit_length=256)

        if isinstance(key, str):
            key = decode_encryption_key(key)
        if len(key) != 32:
            raise ValueError("Encryption key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> EncryptionEnvelope:
        """Encrypt a string.

        Args:
            plaintext: Text to encrypt

        Returns:
            EncryptionEnvelope with a fresh IV
        """
        iv = os.urandom(self.NONCE_SIZE)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        return EncryptionEnvelope(
            ciphertext=sealed[: -self.TAG_SIZE],
            iv=iv,
            auth_tag=sealed[-self.TAG_SIZE :],
        )

    def decrypt(self, envelope: EncryptionEnvelope) -> str:
        """Decrypt an envelope back to text.

        Args:
            envelope: Envelope produced by :meth:`encrypt`

        Returns:
            Original plaintext

        Raises:
            IntegrityError: If the tag does not verify
        """
        if len(envelope.iv) != self.NONCE_SIZE or len(envelope.auth_tag) != self.TAG_SIZE:
            raise IntegrityError("Invalid IV or authentication tag length")

        try:
            plaintext = self._aesgcm.decrypt(
                envelope.iv, envelope.ciphertext + envelope.auth_tag, None
            )
        except InvalidTag as e:
            raise IntegrityError("Decryption failed: authentication tag mismatch") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityError("Decrypted data is not valid UTF-8") from e

    def encrypt_json(self, data: dict[str, Any]) -> EncryptionEnvelope:
        """Encrypt a dictionary as JSON."""
        return self.encrypt(json.dumps(data, separators=(",", ":")))

    def decrypt_json(self, envelope: EncryptionEnvelope) -> dict[str, Any]:
        """Decrypt an envelope holding a JSON object."""
        return json.loads(self.decrypt(envelope))


# Global instance
_encryption_service: EncryptionService | None = None


def get_encryption_service() -> EncryptionService:
    """Get or create the encryption service singleton."""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service


def reset_encryption_service() -> None:
    """Reset the encryption service singleton (for testing or key rotation)."""
    global _encryption_service
    _encryption_service = None
