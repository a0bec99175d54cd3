import os
import pytest
from cryptography.fernet import Fernet

from caselookup.utils.crypto import CredentialCipher, CredentialDecryptionError


def test_encrypted_value_differs_from_plaintext_and_decrypts_back():
    cipher = CredentialCipher(Fernet.generate_key())

    token = cipher.encrypt("hunter2")

    assert token != "hunter2"
    assert "hunter2" not in token
    assert cipher.decrypt(token) == "hunter2"


def test_token_from_another_key_is_rejected():
    token = CredentialCipher(Fernet.generate_key()).encrypt("hunter2")

    with pytest.raises(CredentialDecryptionError):
        CredentialCipher(Fernet.generate_key()).decrypt(token)


def test_empty_token_is_rejected():
    with pytest.raises(CredentialDecryptionError):
        CredentialCipher(Fernet.generate_key()).decrypt("")


def test_key_file_is_generated_once_and_reused(settings, tmp_path):
    settings.CREDENTIALS_ENCRYPTION_KEY = None
    settings.DATA_DIRECTORY = str(tmp_path)

    token = CredentialCipher.from_settings(settings).encrypt("hunter2")

    assert os.path.exists(tmp_path / settings.CREDENTIALS_KEY_FILENAME)
    assert CredentialCipher.from_settings(settings).decrypt(token) == "hunter2"
