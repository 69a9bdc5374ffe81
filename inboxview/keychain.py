"""Secure credential storage using the system keychain."""

import logging
from typing import Optional

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

# Service name for all inboxview credentials
SERVICE = "inboxview"


class KeychainStorage:
    """Store the shared mailbox password in the system keychain.

    Keychain structure:
    - Service: "inboxview" (constant)
    - Account key: "imap-password/<username>"
    """

    def __init__(self, service: str = SERVICE):
        self.service = service

    @staticmethod
    def _key(username: str) -> str:
        return f"imap-password/{username}"

    def save_imap_password(self, username: str, password: str) -> None:
        """Save IMAP password for the mailbox account.

        Args:
            username: IMAP login name
            password: IMAP password or app-specific password
        """
        keyring.set_password(self.service, self._key(username), password)

    def load_imap_password(self, username: str) -> Optional[str]:
        """Load IMAP password for the mailbox account.

        Returns:
            Password string, or None if not found or no keyring backend
            is usable on this machine
        """
        try:
            return keyring.get_password(self.service, self._key(username))
        except keyring.errors.KeyringError as e:
            logger.warning("Keychain lookup failed: %s", e)
            return None

    def has_imap_password(self, username: str) -> bool:
        """Check if a password is stored for the account."""
        return self.load_imap_password(username) is not None

    def delete_imap_password(self, username: str) -> None:
        """Delete the stored password for the account."""
        try:
            keyring.delete_password(self.service, self._key(username))
        except keyring.errors.PasswordDeleteError:
            pass
