# caselookup/utils/crypto.py
import os
import logging
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken

from caselookup.core.config import AppSettings

logger = logging.getLogger(__name__)


class CredentialDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""


def _load_or_create_key_file(path: str) -> bytes:
    if os.path.exists(path):
        with open(path, 'rb') as f:
            return f.read().strip()
    key = Fernet.generate_key()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, 'wb') as f:
        f.write(key)
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {path}: {e}")
    logger.info(f"Generated new credentials encryption key at {path}")
    return key


class CredentialCipher:
    """Encrypts portal passwords before they reach the database."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "CredentialCipher":
        if settings.CREDENTIALS_ENCRYPTION_KEY:
            return cls(settings.CREDENTIALS_ENCRYPTION_KEY.encode())
        key_path = os.path.join(os.path.abspath(settings.DATA_DIRECTORY), settings.CREDENTIALS_KEY_FILENAME)
        return cls(_load_or_create_key_file(key_path))

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> str:
        if not token:
            raise CredentialDecryptionError("No stored ciphertext")
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise CredentialDecryptionError("Stored credentials could not be decrypted") from e
