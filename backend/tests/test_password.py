"""Tests for scrypt password hashing and the strength policy."""

import pytest

from backoffice_api.security.password import PasswordService

STRONG_PASSWORD = "Tr0ub4dor&Horse!"


@pytest.fixture
def service() -> PasswordService:
    return PasswordService(min_length=12)


class TestPasswordHashing:
    """Hash and verify behaviour."""

    def test_round_trip(self, service: PasswordService) -> None:
        """A password verifies against its own hash only."""
        stored = service.hash_password(STRONG_PASSWORD)
        assert service.verify_password(STRONG_PASSWORD, stored)
        assert not service.verify_password(STRONG_PASSWORD + "x", stored)

    def test_hash_format(self, service: PasswordService) -> None:
        """Hashes are salt_hex:key_hex with a 16-byte salt and 64-byte key."""
        salt_hex, key_hex = service.hash_password(STRONG_PASSWORD).split(":")
        assert len(bytes.fromhex(salt_hex)) == 16
        assert len(bytes.fromhex(key_hex)) == 64

    def test_salted(self, service: PasswordService) -> None:
        """Hashing the same password twice gives different hashes."""
        assert service.hash_password(STRONG_PASSWORD) != service.hash_password(STRONG_PASSWORD)

    @pytest.mark.parametrize("stored", ["", "nocolon", "zz:zz", ":", "00:"])
    def test_malformed_hash_fails_closed(self, service: PasswordService, stored: str) -> None:
        """Malformed stored hashes never verify and never raise."""
        assert service.verify_password(STRONG_PASSWORD, stored) is False


class TestPasswordStrength:
    """Complexity rules."""

    def test_strong_password_accepted(self, service: PasswordService) -> None:
        valid, errors = service.validate_password_strength(STRONG_PASSWORD)
        assert valid
        assert errors == []

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("Sh0rt!pw", "at least 12 characters"),
            ("tr0ub4dor&horse!", "uppercase"),
            ("TR0UB4DOR&HORSE!", "lowercase"),
            ("Troubador&Horse!", "digit"),
            ("Tr0ub4dorXHorse1", "special character"),
            ("Password123!", "too common"),
            ("Aaaaa1!bcdefgh", "common patterns"),
        ],
    )
    def test_rule_violations(self, service: PasswordService, password: str, fragment: str) -> None:
        """Each rule reports its own message."""
        valid, errors = service.validate_password_strength(password)
        assert not valid
        assert any(fragment in error for error in errors)

    def test_is_strong_password_reports_first_reason(self, service: PasswordService) -> None:
        result = service.is_strong_password("short")
        assert not result.valid
        assert result.reason == "Password must be at least 12 characters"
        assert service.is_strong_password(STRONG_PASSWORD).valid
