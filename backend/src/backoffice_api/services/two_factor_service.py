"""Per-user two-factor authentication lifecycle.

States: ``disabled`` (no record) -> ``pending_verification`` (secret and
backup codes generated) -> ``enabled`` (first TOTP code confirmed) and back
to ``disabled`` when the user turns it off.
"""

import threading
from dataclasses import dataclass, field
from enum import StrEnum

from backoffice_api.exceptions import TwoFactorStateError
from backoffice_api.security.encryption import EncryptionEnvelope
from backoffice_api.services.totp_service import TotpService, get_totp_service
from backoffice_api.utils.security_events import SecurityEventType, log_security_event


class TwoFactorState(StrEnum):
    """Two-factor state of a user."""

    DISABLED = "disabled"
    PENDING_VERIFICATION = "pending_verification"
    ENABLED = "enabled"


@dataclass
class TwoFactorRecord:
    """Stored two-factor data of one user."""

    user_id: int
    secret: EncryptionEnvelope
    backup_code_hashes: list[str] = field(default_factory=list)
    state: TwoFactorState = TwoFactorState.PENDING_VERIFICATION
    # Highest TOTP step accepted so far; older or equal steps are replays
    last_totp_step: int | None = None

    def accept_totp(self, step: int | None) -> bool:
        if step is None or (self.last_totp_step is not None and step <= self.last_totp_step):
            return False
        self.last_totp_step = step
        return True


@dataclass(frozen=True)
class TwoFactorSetup:
    """Material shown to the user once, when two-factor is enabled."""

    secret: str
    backup_codes: list[str]
    provisioning_uri: str
    qr_code_svg: str


@dataclass(frozen=True)
class TwoFactorStatus:
    """Two-factor state and remaining backup codes of one user."""

    state: TwoFactorState
    backup_codes_remaining: int

    @property
    def enabled(self) -> bool:
        return self.state == TwoFactorState.ENABLED


class TwoFactorService:
    """Manages two-factor records and verifies second-factor codes."""

    def __init__(self, totp: TotpService | None = None) -> None:
        self.totp = totp or get_totp_service()
        self._records: dict[int, TwoFactorRecord] = {}
        self._lock = threading.Lock()

    def get_state(self, user_id: int) -> TwoFactorState:
        """Current state of a user."""
        with self._lock:
            record = self._records.get(user_id)
            return record.state if record else TwoFactorState.DISABLED

    def is_enabled(self, user_id: int) -> bool:
        """Whether login requires a second factor for this user."""
        return self.get_state(user_id) == TwoFactorState.ENABLED

    def remaining_backup_codes(self, user_id: int) -> int:
        """Number of unused backup codes."""
        with self._lock:
            record = self._records.get(user_id)
            return len(record.backup_code_hashes) if record else 0

    def status(self, user_id: int) -> TwoFactorStatus:
        """Current state and remaining backup codes, read atomically."""
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return TwoFactorStatus(TwoFactorState.DISABLED, 0)
            return TwoFactorStatus(record.state, len(record.backup_code_hashes))

    def enable(self, user_id: int, email: str, ip_address: str | None = None) -> TwoFactorSetup:
        """Start two-factor setup for a user.

        Generates a new secret and backup codes and moves the user to
        ``pending_verification``. Restarting setup while pending replaces
        the previous secret.

        Raises:
            TwoFactorStateError: If two-factor is already enabled
        """
        secret = self.totp.generate_secret()
        backup_codes = self.totp.generate_backup_codes()
        record = TwoFactorRecord(
            user_id=user_id,
            secret=self.totp.encrypt_secret(secret),
            backup_code_hashes=[self.totp.hash_backup_code(c) for c in backup_codes],
        )

        with self._lock:
            existing = self._records.get(user_id)
            if existing and existing.state == TwoFactorState.ENABLED:
                raise TwoFactorStateError("Two-factor authentication is already enabled")
            self._records[user_id] = record

        log_security_event(
            SecurityEventType.DATA_MODIFICATION,
            user_id=user_id,
            ip_address=ip_address,
            details={"action": "2fa_setup_started"},
        )

        uri = self.totp.get_provisioning_uri(secret, email)
        return TwoFactorSetup(
            secret=secret,
            backup_codes=backup_codes,
            provisioning_uri=uri,
            qr_code_svg=self.totp.generate_qr_code_svg(uri),
        )

    def verify_and_enable(self, user_id: int, code: str, ip_address: str | None = None) -> bool:
        """Confirm setup with a TOTP code and enable two-factor.

        Returns:
            True if the code was valid and two-factor is now enabled

        Raises:
            TwoFactorStateError: If no setup is pending
        """
        with self._lock:
            record = self._records.get(user_id)
            if record is None or record.state != TwoFactorState.PENDING_VERIFICATION:
                raise TwoFactorStateError("No pending two-factor setup")
            secret = self.totp.decrypt_secret(record.secret)

            valid = record.accept_totp(self.totp.match_totp_step(secret, code))
            if valid:
                record.state = TwoFactorState.ENABLED

        if valid:
            log_security_event(
                SecurityEventType.DATA_MODIFICATION,
                user_id=user_id,
                ip_address=ip_address,
                details={"action": "2fa_enabled"},
            )
        else:
            log_security_event(
                SecurityEventType.FAILED_LOGIN,
                user_id=user_id,
                ip_address=ip_address,
                details={"reason": "invalid_2fa_code", "stage": "setup"},
                success=False,
            )
        return valid

    def verify_code(self, user_id: int, code: str, ip_address: str | None = None) -> bool:
        """Verify a login-time code.

        Accepts a TOTP code or an unused backup code; a matching backup
        code is consumed. A TOTP code is accepted once; its step and any
        earlier step are rejected afterwards. Does not change the two-factor
        state.
        """
        used_backup_code = False
        with self._lock:
            record = self._records.get(user_id)
            if record is None or record.state != TwoFactorState.ENABLED:
                valid = False
            else:
                secret = self.totp.decrypt_secret(record.secret)
                valid = record.accept_totp(self.totp.match_totp_step(secret, code))
                if not valid:
                    valid = used_backup_code = self.totp.consume_backup_code(
                        code, record.backup_code_hashes
                    )

        if used_backup_code:
            log_security_event(
                SecurityEventType.DATA_MODIFICATION,
                user_id=user_id,
                ip_address=ip_address,
                details={"action": "2fa_backup_code_used"},
            )
        elif not valid:
            log_security_event(
                SecurityEventType.FAILED_LOGIN,
                user_id=user_id,
                ip_address=ip_address,
                details={"reason": "invalid_2fa_code"},
                success=False,
            )
        return valid

    def regenerate_backup_codes(self, user_id: int, ip_address: str | None = None) -> list[str]:
        """Replace all backup codes of an enabled user.

        Raises:
            TwoFactorStateError: If two-factor is not enabled
        """
        codes = self.totp.generate_backup_codes()
        with self._lock:
            record = self._records.get(user_id)
            if record is None or record.state != TwoFactorState.ENABLED:
                raise TwoFactorStateError("Two-factor authentication is not enabled")
            record.backup_code_hashes = [self.totp.hash_backup_code(c) for c in codes]

        log_security_event(
            SecurityEventType.DATA_MODIFICATION,
            user_id=user_id,
            ip_address=ip_address,
            details={"action": "2fa_backup_codes_regenerated"},
        )
        return codes

    def disable(self, user_id: int, ip_address: str | None = None) -> bool:
        """Remove two-factor data, returning the user to ``disabled``.

        Returns:
            True if a record was removed
        """
        with self._lock:
            removed = self._records.pop(user_id, None) is not None

        if removed:
            log_security_event(
                SecurityEventType.DATA_MODIFICATION,
                user_id=user_id,
                ip_address=ip_address,
                details={"action": "2fa_disabled"},
            )
        return removed


# Global instance
_two_factor_service: TwoFactorService | None = None


def get_two_factor_service() -> TwoFactorService:
    """Get or create the two-factor service singleton."""
    global _two_factor_service
    if _two_factor_service is None:
        _two_factor_service = TwoFactorService()
    return _two_factor_service


def reset_two_factor_service() -> None:
    """Reset the two-factor service singleton (for testing)."""
    global _two_factor_service
    _two_factor_service = None
