"""TOTP (Time-based One-Time Password) service for two-factor authentication."""

import base64
import hashlib
import hmac
import io
import secrets
import struct
import time
import urllib.parse
from collections.abc import Callable

import qrcode
from qrcode.image.svg import SvgImage

from backoffice_api.config import get_settings
from backoffice_api.security.encryption import (
    EncryptionEnvelope,
    EncryptionService,
    get_encryption_service,
)


# TOTP Constants (RFC 6238)
TOTP_DIGITS = 6
TOTP_PERIOD = 30  # seconds
TOTP_ALGORITHM = "SHA1"
TOTP_SECRET_LENGTH = 20  # 160 bits, standard for authenticator app compatibility

# Backup codes
BACKUP_CODE_COUNT = 10
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I


class TotpService:
    """Service for TOTP generation and verification.

    Implements RFC 6238 (TOTP) and RFC 4226 (HOTP) for time-based
    one-time password generation and verification.
    """

    def __init__(
        self,
        encryption: EncryptionService | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize TOTP service.

        Args:
            encryption: Service used to protect secrets at rest
            clock: Source of the current Unix time
        """
        self.encryption = encryption or get_encryption_service()
        self.settings = get_settings()
        self._clock = clock

    def generate_secret(self) -> str:
        """Generate a new TOTP secret key.

        Returns:
            Base32-encoded secret key (RFC 4648), unpadded
        """
        random_bytes = secrets.token_bytes(TOTP_SECRET_LENGTH)
        return base64.b32encode(random_bytes).decode("utf-8").rstrip("=")

    def encrypt_secret(self, secret: str) -> EncryptionEnvelope:
        """Encrypt TOTP secret for storage."""
        return self.encryption.encrypt_json({"totp_secret": secret})

    def decrypt_secret(self, envelope: EncryptionEnvelope) -> str:
        """Decrypt a stored TOTP secret."""
        return self.encryption.decrypt_json(envelope)["totp_secret"]

    def generate_backup_codes(self) -> list[str]:
        """Generate single-use backup codes for account recovery.

        Returns:
            List of codes formatted as ``XXXX-XXXX``
        """
        codes = []
        for _ in range(BACKUP_CODE_COUNT):
            code = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
            codes.append(f"{code[:4]}-{code[4:]}")
        return codes

    def hash_backup_code(self, code: str) -> str:
        """Hash a backup code for storage.

        Args:
            code: Plain text backup code

        Returns:
            SHA-256 hash of the normalized code
        """
        # Normalize: remove dashes and whitespace, uppercase
        normalized = code.replace("-", "").replace(" ", "").upper()
        return hashlib.sha256(normalized.encode()).hexdigest()

    def consume_backup_code(self, code: str, hashed_codes: list[str]) -> bool:
        """Check a backup code and remove it from ``hashed_codes`` if valid.

        Args:
            code: Backup code to verify
            hashed_codes: Stored hashes; mutated in place on success

        Returns:
            True if the code matched an unused backup code
        """
        code_hash = self.hash_backup_code(code)
        for stored in hashed_codes:
            if hmac.compare_digest(stored, code_hash):
                hashed_codes.remove(stored)
                return True
        return False

    def get_provisioning_uri(
        self,
        secret: str,
        email: str,
        issuer: str | None = None,
    ) -> str:
        """Generate TOTP provisioning URI for QR code.

        Format: otpauth://totp/{issuer}:{email}?secret={secret}&issuer={issuer}&algorithm=SHA1&digits=6&period=30

        Args:
            secret: Base32-encoded TOTP secret
            email: User email (account identifier)
            issuer: Application name (default from settings)

        Returns:
            OTPAuth URI string
        """
        if issuer is None:
            issuer = self.settings.app_name or "Back Office"

        encoded_issuer = urllib.parse.quote(issuer, safe="")
        encoded_email = urllib.parse.quote(email, safe="")

        return (
            f"otpauth://totp/{encoded_issuer}:{encoded_email}"
            f"?secret={secret.rstrip('=')}"
            f"&issuer={encoded_issuer}"
            f"&algorithm={TOTP_ALGORITHM}"
            f"&digits={TOTP_DIGITS}"
            f"&period={TOTP_PERIOD}"
        )

    def generate_qr_code_svg(self, provisioning_uri: str) -> str:
        """Generate QR code as SVG string.

        Args:
            provisioning_uri: OTPAuth URI to encode

        Returns:
            SVG string of the QR code
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(image_factory=SvgImage)
        buffer = io.BytesIO()
        img.save(buffer)
        return buffer.getvalue().decode("utf-8")

    def generate_totp(self, secret: str, timestamp: int | None = None) -> str:
        """Generate a TOTP code.

        Args:
            secret: Base32-encoded TOTP secret
            timestamp: Unix timestamp (default: current time)

        Returns:
            6-digit TOTP code
        """
        if timestamp is None:
            timestamp = int(self._clock())

        counter = timestamp // TOTP_PERIOD

        # Decode secret (add padding if needed)
        secret_padded = secret + "=" * (8 - len(secret) % 8) if len(secret) % 8 else secret
        key = base64.b32decode(secret_padded.upper())

        # HOTP calculation (RFC 4226)
        counter_bytes = struct.pack(">Q", counter)
        hmac_hash = hmac.new(key, counter_bytes, hashlib.sha1).digest()

        # Dynamic truncation
        offset = hmac_hash[-1] & 0x0F
        binary = struct.unpack(">I", hmac_hash[offset : offset + 4])[0] & 0x7FFFFFFF

        otp = binary % (10**TOTP_DIGITS)
        return str(otp).zfill(TOTP_DIGITS)

    def verify_totp(
        self,
        secret: str,
        code: str,
        window: int = 1,
    ) -> bool:
        """Verify a TOTP code with time window tolerance.

        Args:
            secret: Base32-encoded TOTP secret
            code: 6-digit TOTP code to verify
            window: Number of periods to check before/after current time
                    (1 = check -30s, now, +30s)

        Returns:
            True if code is valid within the time window
        """
        return self.match_totp_step(secret, code, window) is not None

    def match_totp_step(
        self,
        secret: str,
        code: str,
        window: int = 1,
    ) -> int | None:
        """Find the time step a TOTP code belongs to.

        Returns:
            The matching step counter, or None if the code is not valid
            within the time window
        """
        code = code.strip() if code else ""
        if len(code) != TOTP_DIGITS or not code.isdigit():
            return None

        current_time = int(self._clock())

        for offset in range(-window, window + 1):
            timestamp = current_time + (offset * TOTP_PERIOD)
            expected_code = self.generate_totp(secret, timestamp)
            if hmac.compare_digest(code, expected_code):
                return timestamp // TOTP_PERIOD

        return None


# Global instance
_totp_service: TotpService | None = None


def get_totp_service() -> TotpService:
    """Get or create the TOTP service singleton."""
    global _totp_service
    if _totp_service is None:
        _totp_service = TotpService()
    return _totp_service


def reset_totp_service() -> None:
    """Reset the TOTP service singleton (for testing)."""
    global _totp_service
    _totp_service = None
