"""
inboxview - Disposable inboxes on top of one catch-all mailbox.

Every address at the mail domain is readable through a web page; the
messages themselves stay on the IMAP server.
"""

__version__ = "0.1.0"

from inboxview.codec import IdentifierCodec
from inboxview.config import Settings, load_settings
from inboxview.decoder import MessageDetail, decode_message
from inboxview.errors import (
    AuthExhaustedError,
    BackendError,
    ConfigurationError,
    FetchError,
    InboxError,
    ListingError,
    PoolTimeoutError,
    TransportError,
    ValidationError,
)
from inboxview.geo import GeoCache
from inboxview.imap.pool import ConnectionPool
from inboxview.imap.query import MailboxQuery, MessageSummary

__all__ = [
    "__version__",
    "AuthExhaustedError",
    "BackendError",
    "ConfigurationError",
    "ConnectionPool",
    "FetchError",
    "GeoCache",
    "IdentifierCodec",
    "InboxError",
    "ListingError",
    "MailboxQuery",
    "MessageDetail",
    "MessageSummary",
    "PoolTimeoutError",
    "Settings",
    "TransportError",
    "ValidationError",
    "decode_message",
    "load_settings",
]
