"""Tests for KeychainStorage class."""

from unittest.mock import patch

import keyring.errors

from inboxview.keychain import KeychainStorage


class TestKeychainStorage:
    """Tests for keychain storage operations."""

    def test_save_uses_service_and_account_key(self):
        with patch("inboxview.keychain.keyring") as mock_keyring:
            storage = KeychainStorage("test-service")
            storage.save_imap_password("catchall@example.com", "s3cret")

            mock_keyring.set_password.assert_called_once_with(
                "test-service", "imap-password/catchall@example.com", "s3cret"
            )

    def test_load(self):
        with patch("inboxview.keychain.keyring.get_password", return_value="s3cret") as mock_get:
            storage = KeychainStorage("test-service")
            assert storage.load_imap_password("catchall@example.com") == "s3cret"
            mock_get.assert_called_once_with("test-service", "imap-password/catchall@example.com")

    def test_has_password(self):
        storage = KeychainStorage("test-service")
        with patch("inboxview.keychain.keyring.get_password", return_value="x"):
            assert storage.has_imap_password("catchall@example.com") is True
        with patch("inboxview.keychain.keyring.get_password", return_value=None):
            assert storage.has_imap_password("catchall@example.com") is False

    def test_backend_failure_returns_none(self):
        failure = keyring.errors.KeyringError("no backend")
        with patch("inboxview.keychain.keyring.get_password", side_effect=failure):
            assert KeychainStorage().load_imap_password("catchall@example.com") is None

    def test_delete_missing_password_is_ignored(self):
        failure = keyring.errors.PasswordDeleteError("not found")
        with patch("inboxview.keychain.keyring.delete_password", side_effect=failure) as mock_delete:
            KeychainStorage("test-service").delete_imap_password("catchall@example.com")
            mock_delete.assert_called_once()
