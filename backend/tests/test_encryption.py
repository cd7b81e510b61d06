"""Tests for AES-256-GCM envelope encryption and key handling."""

import base64

import pytest

from backoffice_api.config import decode_encryption_key
from backoffice_api.exceptions import IntegrityError
from backoffice_api.security.encryption import EncryptionEnvelope, EncryptionService


class TestEncryptionRoundTrip:
    """Encrypt then decrypt returns the original text."""

    @pytest.mark.parametrize(
        "plaintext",
        ["", "hello", "Grüße, 世界 🌍", '{"clients": [{"id": 1}]}', "x" * 100_000],
    )
    def test_round_trip(self, encryption: EncryptionService, plaintext: str) -> None:
        """Arbitrary UTF-8 text survives a round trip."""
        envelope = encryption.encrypt(plaintext)
        assert encryption.decrypt(envelope) == plaintext

    def test_fresh_iv_per_encryption(self, encryption: EncryptionService) -> None:
        """The same plaintext never produces the same IV or ciphertext."""
        first = encryption.encrypt("same text")
        second = encryption.encrypt("same text")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_envelope_sizes(self, encryption: EncryptionService) -> None:
        """IV is 96 bits and the tag 128 bits."""
        envelope = encryption.encrypt("data")
        assert len(envelope.iv) == 12
        assert len(envelope.auth_tag) == 16

    def test_hex_serialization(self, encryption: EncryptionService) -> None:
        """The hex form rebuilds an equal, decryptable envelope."""
        envelope = encryption.encrypt("payload")
        as_hex = envelope.to_hex()
        assert set(as_hex) == {"iv", "authTag", "data"}
        rebuilt = EncryptionEnvelope.from_hex(as_hex)
        assert rebuilt == envelope
        assert encryption.decrypt(rebuilt) == "payload"

    def test_json_round_trip(self, encryption: EncryptionService) -> None:
        """Dictionaries survive encrypt_json/decrypt_json."""
        data = {"totp_secret": "JBSWY3DPEHPK3PXP", "n": 3}
        assert encryption.decrypt_json(encryption.encrypt_json(data)) == data


class TestTamperDetection:
    """Any modification makes decryption fail closed."""

    def test_flipped_ciphertext_bit(self, encryption: EncryptionService) -> None:
        """Flipping one ciphertext bit raises IntegrityError."""
        envelope = encryption.encrypt("sensitive data")
        data = bytearray(envelope.ciphertext)
        data[0] ^= 0x01
        tampered = EncryptionEnvelope(bytes(data), envelope.iv, envelope.auth_tag)
        with pytest.raises(IntegrityError):
            encryption.decrypt(tampered)

    def test_flipped_tag_bit(self, encryption: EncryptionService) -> None:
        """Flipping one tag bit raises IntegrityError."""
        envelope = encryption.encrypt("sensitive data")
        tag = bytearray(envelope.auth_tag)
        tag[-1] ^= 0x80
        tampered = EncryptionEnvelope(envelope.ciphertext, envelope.iv, bytes(tag))
        with pytest.raises(IntegrityError):
            encryption.decrypt(tampered)

    def test_wrong_iv(self, encryption: EncryptionService) -> None:
        """A different IV raises IntegrityError."""
        envelope = encryption.encrypt("sensitive data")
        tampered = EncryptionEnvelope(envelope.ciphertext, bytes(12), envelope.auth_tag)
        with pytest.raises(IntegrityError):
            encryption.decrypt(tampered)

    def test_wrong_key(self, encryption: EncryptionService) -> None:
        """A different key raises IntegrityError."""
        envelope = encryption.encrypt("sensitive data")
        other = EncryptionService(bytes(32))
        with pytest.raises(IntegrityError):
            other.decrypt(envelope)

    def test_truncated_tag(self, encryption: EncryptionService) -> None:
        """A short tag is rejected before decryption."""
        envelope = encryption.encrypt("sensitive data")
        tampered = EncryptionEnvelope(envelope.ciphertext, envelope.iv, envelope.auth_tag[:8])
        with pytest.raises(IntegrityError):
            encryption.decrypt(tampered)

    def test_malformed_hex(self) -> None:
        """Non-hex envelope fields raise IntegrityError."""
        with pytest.raises(IntegrityError):
            EncryptionEnvelope.from_hex({"iv": "zz", "authTag": "00", "data": "00"})
        with pytest.raises(IntegrityError):
            EncryptionEnvelope.from_hex({"iv": "00"})


class TestKeyDecoding:
    """Configured keys are accepted as hex or base64."""

    def test_hex_key(self) -> None:
        """A 64-character hex key decodes to 32 bytes."""
        assert decode_encryption_key("ab" * 32) == bytes([0xAB]) * 32

    def test_base64_keys(self) -> None:
        """Standard and URL-safe base64 decode to the same key."""
        raw = bytes(range(200, 232))
        assert decode_encryption_key(base64.b64encode(raw).decode()) == raw
        assert decode_encryption_key(base64.urlsafe_b64encode(raw).decode()) == raw

    def test_wrong_length_rejected(self) -> None:
        """Keys that are not 256 bits are rejected."""
        with pytest.raises(ValueError):
            decode_encryption_key(base64.b64encode(bytes(16)).decode())

    def test_service_rejects_short_raw_key(self) -> None:
        """The service refuses raw keys of the wrong size."""
        with pytest.raises(ValueError):
            EncryptionService(bytes(31))
