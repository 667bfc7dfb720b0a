"""
Tests for OAuth token encryption at rest.
"""

import os
from unittest.mock import patch

from cryptography.fernet import Fernet

from replifast.config import get_settings
from replifast.crypto import decrypt_value, encrypt_value, reset_cipher


def _with_key(key: str):
    return patch.dict(os.environ, {"ENCRYPTION_KEY": key, "ENVIRONMENT": "development"}, clear=False)


def test_round_trip_with_key():
    with _with_key(Fernet.generate_key().decode()):
        get_settings.cache_clear()
        reset_cipher()
        token = encrypt_value("ya29.access")
        assert token != "ya29.access"
        assert decrypt_value(token) == "ya29.access"
    get_settings.cache_clear()
    reset_cipher()


def test_plaintext_from_before_encryption_is_returned_as_is():
    with _with_key(Fernet.generate_key().decode()):
        get_settings.cache_clear()
        reset_cipher()
        assert decrypt_value("legacy-plain-token") == "legacy-plain-token"
    get_settings.cache_clear()
    reset_cipher()


def test_none_passes_through():
    assert encrypt_value(None) is None
    assert decrypt_value(None) is None
