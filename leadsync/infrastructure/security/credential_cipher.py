"""
Credential Cipher
Decrypts tenant connection credentials stored in the master project.

Credentials are encrypted with Fernet (AES-128-CBC + HMAC-SHA256); a
MultiFernet key chain lets values written under a rotated-out key still
be read.
"""
import logging
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from leadsync.domain.errors import CredentialDecryptionError

logger = logging.getLogger(__name__)


class CredentialCipher:
    """
    Encrypt/decrypt tenant credentials.

    - New values are always encrypted with the current (first) key
    - Old values can be decrypted with any key in the chain

    Usage:
        cipher = CredentialCipher.from_settings(settings)
        url = cipher.decrypt(row["supabase_url"])
    """

    def __init__(self, key: str, old_keys: Optional[List[str]] = None):
        """
        Initialize cipher.

        Args:
            key: Current Fernet key
            old_keys: Previous keys kept for rotation

        Raises:
            CredentialDecryptionError: if a key is malformed
        """
        if not key:
            raise CredentialDecryptionError("Credential encryption key is not configured")

        try:
            keys = [Fernet(key.encode() if isinstance(key, str) else key)]
            for old_key in old_keys or []:
                if old_key:
                    keys.append(Fernet(old_key.encode() if isinstance(old_key, str) else old_key))
        except (ValueError, TypeError) as e:
            raise CredentialDecryptionError(f"Failed to initialize encryption keys: {e}") from e

        self._fernet = MultiFernet(keys)
        logger.info(f"Credential cipher initialized with {len(keys)} key(s)")

    @classmethod
    def from_settings(cls, settings) -> Optional["CredentialCipher"]:
        """Build from Settings; None when no key is configured."""
        if not settings.credentials_encryption_key:
            return None
        old_keys = [k.strip() for k in settings.credentials_encryption_keys_old.split(",") if k.strip()]
        return cls(settings.credentials_encryption_key, old_keys)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored credential.

        Raises:
            CredentialDecryptionError: on a wrong key or tampered value
        """
        if not ciphertext:
            return ""

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            raise CredentialDecryptionError("Failed to decrypt credential: invalid token or key")

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode()
