"""
Tests for connector secret encryption at rest.
"""

import pytest
from cryptography.fernet import Fernet

from config.settings import config
from connectors import encryption
from connectors.token_manager import TokenManager
from tests.conftest import add_connector, load_connector


@pytest.fixture
def fernet_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setattr(config, "token_encryption_key", key)
    encryption.reset_cipher()
    yield key
    encryption.reset_cipher()


@pytest.fixture
def no_key(monkeypatch):
    monkeypatch.setattr(config, "token_encryption_key", "")
    encryption.reset_cipher()
    yield
    encryption.reset_cipher()


class TestEncryption:
    def test_round_trip(self, fernet_key):
        assert encryption.is_encryption_enabled() is True
        ciphertext = encryption.encrypt_secret("ya29.secret")
        assert ciphertext != "ya29.secret"
        assert encryption.decrypt_secret(ciphertext) == "ya29.secret"

    def test_legacy_plaintext_passes_through(self, fernet_key):
        assert encryption.decrypt_secret("stored-before-encryption") == "stored-before-encryption"

    def test_empty_values_untouched(self, fernet_key):
        assert encryption.encrypt_secret("") == ""
        assert encryption.decrypt_secret("") == ""

    def test_disabled_without_key(self, no_key):
        assert encryption.is_encryption_enabled() is False
        assert encryption.encrypt_secret("plain") == "plain"

    def test_bad_key_disables(self, monkeypatch):
        monkeypatch.setattr(config, "token_encryption_key", "not-a-fernet-key")
        encryption.reset_cipher()
        try:
            assert encryption.is_encryption_enabled() is False
        finally:
            encryption.reset_cipher()


class TestEncryptedStorage:
    @pytest.mark.asyncio
    async def test_tokens_encrypted_on_the_row(self, fernet_key, registry, session_factory, user_id, fake_provider):
        await add_connector(session_factory, user_id, access_token="A1", refresh_token="R1")
        conn = await load_connector(session_factory, user_id)
        assert conn.access_token != "A1"
        assert conn.refresh_token != "R1"

        tm = TokenManager(registry, session_factory)
        assert await tm.get_access_token(user_id, "google") == "A1"
