"""Tests for TOTP codes, backup codes and the two-factor lifecycle."""

import pytest

from backoffice_api.exceptions import TwoFactorStateError
from backoffice_api.security.encryption import EncryptionService
from backoffice_api.services.totp_service import BACKUP_CODE_COUNT, TotpService
from backoffice_api.services.two_factor_service import (
    TwoFactorService,
    TwoFactorSetup,
    TwoFactorState,
)

# RFC 6238 appendix B seed "12345678901234567890"
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
EMAIL = "alice@example.com"


class FakeClock:
    """Fixed Unix time."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def totp(encryption: EncryptionService, clock: FakeClock) -> TotpService:
    return TotpService(encryption=encryption, clock=clock)


@pytest.fixture
def service(totp: TotpService) -> TwoFactorService:
    return TwoFactorService(totp=totp)


class TestTotpService:
    """RFC 6238 codes and backup codes."""

    @pytest.mark.parametrize(
        ("timestamp", "expected"),
        [
            (59, "287082"),
            (1111111109, "081804"),
            (1234567890, "005924"),
        ],
    )
    def test_rfc_vectors(self, totp: TotpService, timestamp: int, expected: str) -> None:
        assert totp.generate_totp(RFC_SECRET, timestamp) == expected

    def test_window_tolerance(self, totp: TotpService, clock: FakeClock) -> None:
        """Codes from the adjacent periods are accepted, older ones are not."""
        now = int(clock.now)
        assert totp.verify_totp(RFC_SECRET, totp.generate_totp(RFC_SECRET, now))
        assert totp.verify_totp(RFC_SECRET, totp.generate_totp(RFC_SECRET, now - 30))
        assert totp.verify_totp(RFC_SECRET, totp.generate_totp(RFC_SECRET, now + 30))
        assert not totp.verify_totp(RFC_SECRET, totp.generate_totp(RFC_SECRET, now - 90))

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    def test_malformed_code_rejected(self, totp: TotpService, code: str) -> None:
        assert not totp.verify_totp(RFC_SECRET, code)

    def test_secret_encryption_round_trip(self, totp: TotpService) -> None:
        secret = totp.generate_secret()
        envelope = totp.encrypt_secret(secret)
        assert secret not in envelope.ciphertext.hex()
        assert totp.decrypt_secret(envelope) == secret

    def test_backup_codes(self, totp: TotpService) -> None:
        """Codes are unique, formatted XXXX-XXXX and single use."""
        codes = totp.generate_backup_codes()
        assert len(codes) == BACKUP_CODE_COUNT
        assert all(len(code) == 9 and code[4] == "-" for code in codes)

        hashes = [totp.hash_backup_code(code) for code in codes]
        assert totp.consume_backup_code(codes[0].lower().replace("-", ""), hashes)
        assert len(hashes) == BACKUP_CODE_COUNT - 1
        assert not totp.consume_backup_code(codes[0], hashes)

    def test_provisioning_uri(self, totp: TotpService) -> None:
        uri = totp.get_provisioning_uri(RFC_SECRET, EMAIL, issuer="Back Office")
        assert uri.startswith("otpauth://totp/Back%20Office:alice%40example.com?")
        assert f"secret={RFC_SECRET}" in uri
        assert "digits=6" in uri
        assert "period=30" in uri


class TestTwoFactorLifecycle:
    """disabled -> pending_verification -> enabled -> disabled."""

    def test_full_lifecycle(self, service: TwoFactorService, totp: TotpService) -> None:
        assert service.get_state(1) == TwoFactorState.DISABLED

        setup = service.enable(1, EMAIL)
        assert service.get_state(1) == TwoFactorState.PENDING_VERIFICATION
        assert not service.is_enabled(1)
        assert setup.qr_code_svg.lstrip().startswith("<")

        assert service.verify_and_enable(1, totp.generate_totp(setup.secret))
        assert service.is_enabled(1)
        assert service.remaining_backup_codes(1) == BACKUP_CODE_COUNT

        assert service.disable(1)
        assert service.get_state(1) == TwoFactorState.DISABLED
        assert not service.disable(1)

    def test_wrong_setup_code_stays_pending(self, service: TwoFactorService, totp: TotpService) -> None:
        setup = service.enable(1, EMAIL)
        wrong = f"{(int(totp.generate_totp(setup.secret)) + 1) % 1_000_000:06d}"
        assert not service.verify_and_enable(1, wrong)
        assert service.get_state(1) == TwoFactorState.PENDING_VERIFICATION

    def test_restart_setup_replaces_secret(self, service: TwoFactorService, totp: TotpService) -> None:
        first = service.enable(1, EMAIL)
        second = service.enable(1, EMAIL)
        assert first.secret != second.secret
        assert service.verify_and_enable(1, totp.generate_totp(second.secret))

    def test_enable_twice_rejected(self, service: TwoFactorService, totp: TotpService) -> None:
        setup = service.enable(1, EMAIL)
        service.verify_and_enable(1, totp.generate_totp(setup.secret))
        with pytest.raises(TwoFactorStateError):
            service.enable(1, EMAIL)

    def test_verify_without_setup_rejected(self, service: TwoFactorService) -> None:
        with pytest.raises(TwoFactorStateError):
            service.verify_and_enable(1, "123456")

    def test_regenerate_requires_enabled(self, service: TwoFactorService) -> None:
        service.enable(1, EMAIL)
        with pytest.raises(TwoFactorStateError):
            service.regenerate_backup_codes(1)


class TestLoginCodes:
    """Second-factor verification at login."""

    @pytest.fixture
    def enabled(self, service: TwoFactorService, totp: TotpService) -> TwoFactorSetup:
        setup = service.enable(1, EMAIL)
        service.verify_and_enable(1, totp.generate_totp(setup.secret))
        return setup

    def test_totp_accepted(
        self,
        service: TwoFactorService,
        totp: TotpService,
        clock: FakeClock,
        enabled: TwoFactorSetup,
    ) -> None:
        assert service.verify_code(1, totp.generate_totp(enabled.secret, int(clock.now) + 30))
        assert service.remaining_backup_codes(1) == BACKUP_CODE_COUNT

    def test_totp_not_replayable(
        self,
        service: TwoFactorService,
        totp: TotpService,
        clock: FakeClock,
        enabled: TwoFactorSetup,
    ) -> None:
        """A code works once, and codes from earlier steps stop working."""
        now = int(clock.now)
        assert not service.verify_code(1, totp.generate_totp(enabled.secret, now))

        next_code = totp.generate_totp(enabled.secret, now + 30)
        assert service.verify_code(1, next_code)
        assert not service.verify_code(1, next_code)
        assert not service.verify_code(1, totp.generate_totp(enabled.secret, now - 30))

        clock.now += 60
        assert service.verify_code(1, totp.generate_totp(enabled.secret, int(clock.now)))

    def test_backup_code_consumed_once(self, service: TwoFactorService, enabled: TwoFactorSetup) -> None:
        assert service.verify_code(1, enabled.backup_codes[0])
        assert service.remaining_backup_codes(1) == BACKUP_CODE_COUNT - 1
        assert not service.verify_code(1, enabled.backup_codes[0])

    def test_disabled_user_rejected(self, service: TwoFactorService) -> None:
        assert not service.verify_code(2, "123456")

    def test_status(self, service: TwoFactorService, enabled: TwoFactorSetup) -> None:
        service.verify_code(1, enabled.backup_codes[0])
        status = service.status(1)
        assert status.enabled
        assert status.backup_codes_remaining == BACKUP_CODE_COUNT - 1
        assert service.status(2).state == TwoFactorState.DISABLED

    def test_regenerated_codes_replace_old(self, service: TwoFactorService, enabled: TwoFactorSetup) -> None:
        new_codes = service.regenerate_backup_codes(1)
        assert not service.verify_code(1, enabled.backup_codes[0])
        assert service.verify_code(1, new_codes[0])
