"""
Cryptography utilities for Ghostline.

Encrypts the bot token before it is written to the persisted config file.
Uses Fernet symmetric encryption with a key taken from the environment or
generated once and stored next to the config.
"""
import base64
import hashlib
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

DATA_DIR = Path.home() / ".ghostline"
KEY_FILE_NAME = ".encryption_key"


class CredentialEncryption:
    """Handles encryption and decryption of stored credentials."""

    def __init__(self, data_dir: Optional[Path] = None):
        self._data_dir = Path(data_dir) if data_dir else DATA_DIR
        self._key_file = self._data_dir / KEY_FILE_NAME
        self._fernet: Optional[Fernet] = None
        self._load_or_generate_key()

    def _load_or_generate_key(self):
        """Load encryption key from environment, file, or generate new one."""
        env_key = os.environ.get("GHOSTLINE_ENCRYPTION_KEY")
        if env_key:
            # Any string works; derive a proper 32-byte key from it
            key = hashlib.sha256(env_key.encode()).digest()
            self._fernet = Fernet(base64.urlsafe_b64encode(key))
            return

        if self._key_file.exists():
            try:
                self._fernet = Fernet(self._key_file.read_bytes())
                return
            except ValueError:
                pass

        self._generate_new_key()

    def _generate_new_key(self):
        self._data_dir.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        self._fernet = Fernet(key)
        self._key_file.write_bytes(key)
        os.chmod(self._key_file, 0o600)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt an encrypted string.

        Returns an empty string when the value was encrypted with a different
        key, so a stale token reads as "not configured" instead of garbage.
        """
        if not ciphertext:
            return ""
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            return ""

    def is_encrypted(self, value: str) -> bool:
        """Fernet tokens are base64 and always start with 'gAAAAA'."""
        if not value:
            return False
        return value.startswith("gAAAAA")

    def encrypt_if_needed(self, value: str) -> str:
        if not value:
            return ""
        if self.is_encrypted(value):
            return value
        return self.encrypt(value)

    def decrypt_or_return(self, value: str) -> str:
        """Decrypt a value, or return as-is if it was stored in plain text."""
        if not value:
            return ""
        if not self.is_encrypted(value):
            return value
        return self.decrypt(value)
