"""
Unit Tests for Credential Cipher
"""
import pytest
from unittest.mock import MagicMock

from cryptography.fernet import Fernet

from leadsync.domain.errors import CredentialDecryptionError
from leadsync.infrastructure.security.credential_cipher import CredentialCipher


class TestCredentialCipher:
    """Fernet encryption with key rotation"""

    def test_encrypt_decrypt_roundtrip(self):
        cipher = CredentialCipher(Fernet.generate_key().decode())

        encrypted = cipher.encrypt("https://tenant.supabase.co")

        assert encrypted != "https://tenant.supabase.co"
        assert cipher.decrypt(encrypted) == "https://tenant.supabase.co"

    def test_empty_values(self):
        cipher = CredentialCipher(Fernet.generate_key().decode())
        assert cipher.encrypt("") == ""
        assert cipher.decrypt("") == ""

    def test_wrong_key_fails(self):
        encrypted = CredentialCipher(Fernet.generate_key().decode()).encrypt("secret")

        with pytest.raises(CredentialDecryptionError):
            CredentialCipher(Fernet.generate_key().decode()).decrypt(encrypted)

    def test_old_key_still_decrypts(self):
        old_key, new_key = CredentialCipher.generate_key(), CredentialCipher.generate_key()
        encrypted = CredentialCipher(old_key).encrypt("anon-key")

        assert CredentialCipher(new_key, old_keys=[old_key]).decrypt(encrypted) == "anon-key"

    def test_malformed_key_rejected(self):
        with pytest.raises(CredentialDecryptionError):
            CredentialCipher("not-a-fernet-key")

    def test_from_settings(self):
        old_key = CredentialCipher.generate_key()
        settings = MagicMock(
            credentials_encryption_key=CredentialCipher.generate_key(),
            credentials_encryption_keys_old=f" {old_key} ,",
        )
        encrypted = CredentialCipher(old_key).encrypt("value")

        assert CredentialCipher.from_settings(settings).decrypt(encrypted) == "value"

    def test_from_settings_without_key(self):
        settings = MagicMock(credentials_encryption_key=None)
        assert CredentialCipher.from_settings(settings) is None
