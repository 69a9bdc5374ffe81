"""Opening and authenticating IMAP sessions.

Mail servers differ in which mechanisms they accept, so authentication
walks a fixed preference list and stops at the first success. The plain
LOGIN command comes first since nearly every server accepts it in one round
trip; the SASL mechanisms cover servers that disable it.
"""

import imaplib
import logging
from typing import Callable, NamedTuple, Optional, Sequence

from inboxview.config import ConnectionConfig, Credentials
from inboxview.errors import AuthExhaustedError, TransportError

logger = logging.getLogger(__name__)


class AuthMechanism(NamedTuple):
    """One way of authenticating a fresh session."""

    name: str
    attempt: Callable[[imaplib.IMAP4, Credentials], None]


def _attempt_login(conn: imaplib.IMAP4, credentials: Credentials) -> None:
    conn.login(credentials.username, credentials.secret)


def _attempt_sasl_plain(conn: imaplib.IMAP4, credentials: Credentials) -> None:
    # RFC 4616: authzid NUL authcid NUL passwd, with an empty authzid
    response = f"\0{credentials.username}\0{credentials.secret}".encode("utf-8")
    conn.authenticate("PLAIN", lambda _challenge: response)


def _attempt_sasl_login(conn: imaplib.IMAP4, credentials: Credentials) -> None:
    # Server prompts "Username:" then "Password:"
    def respond(challenge: bytes) -> bytes:
        if challenge and challenge.strip().lower().startswith(b"pass"):
            return credentials.secret.encode("utf-8")
        return credentials.username.encode("utf-8")

    conn.authenticate("LOGIN", respond)


def _attempt_cram_md5(conn: imaplib.IMAP4, credentials: Credentials) -> None:
    conn.login_cram_md5(credentials.username, credentials.secret)


MECHANISMS = (
    AuthMechanism("login", _attempt_login),
    AuthMechanism("PLAIN", _attempt_sasl_plain),
    AuthMechanism("LOGIN", _attempt_sasl_login),
    AuthMechanism("CRAM-MD5", _attempt_cram_md5),
)


def negotiate(
    conn: imaplib.IMAP4,
    credentials: Credentials,
    folder: str = "INBOX",
    mechanisms: Sequence[AuthMechanism] = MECHANISMS,
) -> str:
    """Authenticate a fresh session and select the folder read-only.

    Args:
        conn: Connected, unauthenticated session
        credentials: Mailbox login
        folder: Folder to select after authenticating
        mechanisms: Mechanisms to try, in order

    Returns:
        Name of the mechanism that succeeded

    Raises:
        AuthExhaustedError: Every mechanism was rejected
        TransportError: The connection dropped, or the folder could not be selected
    """
    last_error: Optional[BaseException] = None
    attempted = []
    used = None

    for mechanism in mechanisms:
        attempted.append(mechanism.name)
        try:
            mechanism.attempt(conn, credentials)
        except (imaplib.IMAP4.abort, OSError) as e:
            # The connection is gone; other mechanisms cannot succeed on it
            raise TransportError(
                f"Connection lost during {mechanism.name} authentication: {e}"
            ) from e
        except imaplib.IMAP4.error as e:
            logger.debug("Authentication via %s rejected: %s", mechanism.name, e)
            last_error = e
            continue
        used = mechanism.name
        break

    if used is None:
        raise AuthExhaustedError(
            f"All authentication mechanisms failed ({', '.join(attempted)}): {last_error}",
            last_error=last_error,
            attempted=attempted,
        )

    try:
        status, data = conn.select(folder, readonly=True)
    except (imaplib.IMAP4.error, OSError) as e:
        raise TransportError(f"Cannot select folder {folder}: {e}") from e
    if status != "OK":
        raise TransportError(f"Cannot select folder {folder}: {data!r}")

    logger.debug("Authenticated via %s, selected %s", used, folder)
    return used


def connect_transport(config: ConnectionConfig) -> imaplib.IMAP4:
    """Open the raw, unauthenticated transport."""
    if config.use_tls:
        return imaplib.IMAP4_SSL(config.host, config.port, timeout=config.socket_timeout)
    return imaplib.IMAP4(config.host, config.port, timeout=config.socket_timeout)


def close_quietly(conn: imaplib.IMAP4) -> None:
    """Log out, ignoring errors from an already broken session."""
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError) as e:
        logger.debug("Ignoring error while closing session: %s", e)


def open_session(
    config: ConnectionConfig,
    credentials: Credentials,
    mechanisms: Sequence[AuthMechanism] = MECHANISMS,
) -> imaplib.IMAP4:
    """Open an authenticated session with the folder selected.

    The transport is closed again whenever authentication or the folder
    selection fails, so callers never see a half-ready session.

    Raises:
        TransportError: The server could not be reached
        AuthExhaustedError: Every mechanism was rejected
    """
    try:
        conn = connect_transport(config)
    except (imaplib.IMAP4.error, OSError) as e:
        raise TransportError(f"IMAP connection to {config.host}:{config.port} failed: {e}") from e

    try:
        mechanism = negotiate(conn, credentials, config.folder, mechanisms)
    except BaseException:
        close_quietly(conn)
        raise
    logger.info("Opened IMAP session to %s:%s via %s", config.host, config.port, mechanism)
    return conn
