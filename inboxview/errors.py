"""Exception hierarchy shared by the mailbox access layer and the web app."""

from typing import Optional, Sequence


class InboxError(Exception):
    """Base class for all inboxview errors."""


class ConfigurationError(InboxError):
    """Required settings are missing or out of bounds. Fatal at startup."""


class ValidationError(InboxError):
    """User input was rejected before any remote call was made.

    The message is safe to show to the user.
    """


class BackendError(InboxError):
    """The mailbox could not be reached or answered with an error.

    Details are logged, never shown: the web layer collapses every
    subclass into one generic failure view.
    """


class AuthExhaustedError(BackendError):
    """Every authentication mechanism was rejected by the server."""

    def __init__(
        self,
        message: str,
        last_error: Optional[BaseException] = None,
        attempted: Sequence[str] = (),
    ):
        super().__init__(message)
        self.last_error = last_error
        self.attempted = list(attempted)


class PoolTimeoutError(BackendError):
    """No pooled connection became available within the wait budget."""


class TransportError(BackendError):
    """I/O failure on an IMAP session. The session is discarded."""


class ListingError(BackendError):
    """An inbox listing could not be retrieved."""


class FetchError(BackendError):
    """A single message could not be fetched."""
