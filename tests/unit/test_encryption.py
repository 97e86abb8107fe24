"""Unit tests for encryption utilities."""

import pytest
from cryptography.fernet import Fernet

from custody.utils.encryption import EncryptionService
from custody.utils.exceptions import SecurityError


class TestEncryption:
    """Tests for encryption/decryption of custodial keys."""

    def test_encrypt_decrypt_roundtrip(self):
        """Encryption and decryption should be reversible."""
        service = EncryptionService(Fernet.generate_key().decode())

        original = "0x" + "ab" * 32
        encrypted = service.encrypt(original)

        assert encrypted != original
        assert service.decrypt(encrypted) == original

    def test_encrypt_produces_different_output(self):
        """Same input encrypted twice should produce different tokens."""
        service = EncryptionService(Fernet.generate_key().decode())

        assert service.encrypt("data") != service.encrypt("data")

    def test_wrong_key_raises(self):
        """A token from another key must not decrypt."""
        encrypted = EncryptionService(Fernet.generate_key().decode()).encrypt("data")
        other = EncryptionService(Fernet.generate_key().decode())

        with pytest.raises(SecurityError):
            other.decrypt(encrypted)

    def test_passthrough_in_development(self):
        """Without a key, development stores plaintext."""
        service = EncryptionService(None, environment="development")

        assert not service.enabled
        assert service.encrypt("data") == "data"
        assert service.decrypt("data") == "data"

    def test_production_requires_key(self):
        with pytest.raises(SecurityError):
            EncryptionService(None, environment="production")

    def test_production_rejects_invalid_key(self):
        with pytest.raises(SecurityError):
            EncryptionService("not-a-key", environment="production")

    def test_generate_key(self):
        key = EncryptionService.generate_key()

        assert EncryptionService(key).enabled
