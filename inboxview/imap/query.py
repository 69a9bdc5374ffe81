"""Inbox listing and message retrieval against the shared mailbox.

Every remote call goes through a pooled session. Transport and
authentication failures are converted to ListingError/FetchError here so
that no imaplib exception reaches the web layer; PoolTimeoutError is
already one of our own kinds and propagates unchanged.
"""

import email
import email.message
import email.utils
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from inboxview.codec import IdentifierCodec
from inboxview.decoder import decode_header
from inboxview.errors import (
    AuthExhaustedError,
    FetchError,
    ListingError,
    TransportError,
    ValidationError,
)
from inboxview.imap.pool import ConnectionPool

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 15
FETCH_BATCH_SIZE = 50  # UIDs per FETCH command (headers)
ENVELOPE_FIELDS = "(BODY.PEEK[HEADER.FIELDS (SUBJECT FROM TO DATE)])"

NO_SUBJECT = "(No subject)"
NO_SENDER = "(unknown sender)"
NO_RECIPIENT = "(unknown recipient)"

EMAIL_PATTERN = re.compile(
    r"[\w+\-.]+@[a-z\d\-]+(\.[a-z\d\-]+)*\.[a-z]+",
    re.IGNORECASE | re.ASCII,
)

_UID_RE = re.compile(rb"UID (\d+)")


def is_valid_address(address) -> bool:
    """Check an address against the strict inbox address syntax."""
    return isinstance(address, str) and EMAIL_PATTERN.fullmatch(address) is not None


def address_for(local_part: str, domain: str) -> str:
    """Build the full recipient address for an inbox name."""
    return f"{local_part.strip()}@{domain}"


@dataclass
class MessageSummary:
    """One row of an inbox listing."""

    uid: int
    opaque_id: str
    subject: str = NO_SUBJECT
    sender: str = NO_SENDER
    recipient: str = NO_RECIPIENT
    date: Optional[datetime] = None
    date_header: str = ""


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 date into an aware datetime, or None."""
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_newest_first(summaries: Iterable[MessageSummary]) -> List[MessageSummary]:
    """Sort by date, newest first; undated messages go last."""
    summaries = list(summaries)
    dated = [s for s in summaries if s.date is not None]
    undated = [s for s in summaries if s.date is None]
    dated.sort(key=lambda s: s.date, reverse=True)
    return dated + undated


def _header_or(msg: email.message.Message, name: str, placeholder: str) -> str:
    try:
        value = msg.get(name)
    except Exception:
        return placeholder
    decoded = decode_header(value).strip() if value else ""
    return decoded or placeholder


def summarize(uid: int, header_bytes: Optional[bytes], codec: IdentifierCodec) -> MessageSummary:
    """Build a summary from raw header bytes; bad fields become placeholders."""
    summary = MessageSummary(uid=uid, opaque_id=codec.encode(uid))
    if not header_bytes:
        return summary
    try:
        msg = email.message_from_bytes(header_bytes)
    except Exception as e:
        logger.debug("Unparseable envelope for UID %s: %s", uid, e)
        return summary

    summary.subject = _header_or(msg, "Subject", NO_SUBJECT)
    summary.sender = _header_or(msg, "From", NO_SENDER)
    summary.recipient = _header_or(msg, "To", NO_RECIPIENT)
    summary.date_header = _header_or(msg, "Date", "")
    summary.date = parse_date(summary.date_header)
    return summary


def is_addressed_to(summary: MessageSummary, address: str) -> bool:
    """Whether the summary's To header names exactly this address.

    SEARCH TO matches substrings, so ``alice@`` also hits ``malice@``.
    Summaries without a readable To header are kept.
    """
    if summary.recipient == NO_RECIPIENT:
        return True
    wanted = address.lower()
    return any(
        addr.lower() == wanted for _, addr in email.utils.getaddresses([summary.recipient])
    )


def parse_fetch_response(data) -> Dict[int, bytes]:
    """Map UID -> literal from an imaplib UID FETCH response."""
    result = {}
    pending = None
    for item in data or []:
        # Literal responses are tuples: (b'7 (UID 123 BODY[...] {n}', b'<literal>')
        if isinstance(item, tuple) and len(item) == 2:
            match = _UID_RE.search(item[0] or b"")
            if match:
                result[int(match.group(1))] = item[1]
                pending = None
            else:
                pending = item[1]
        elif isinstance(item, bytes) and pending is not None:
            # UID sent after the literal: b' UID 123)'
            match = _UID_RE.search(item)
            if match:
                result[int(match.group(1))] = pending
            pending = None
    return result


class MailboxQuery:
    """Search and fetch operations for inbox views."""

    def __init__(self, pool: ConnectionPool, codec: IdentifierCodec, limit: int = DEFAULT_LIMIT):
        """Initialize query engine.

        Args:
            pool: Pool of authenticated sessions with the folder selected
            codec: Codec used to mint opaque message ids
            limit: Default maximum number of listed messages
        """
        self._pool = pool
        self._codec = codec
        self.limit = limit

    def list_messages(self, recipient: str, limit: Optional[int] = None) -> List[MessageSummary]:
        """List messages addressed to a recipient, newest first.

        Args:
            recipient: Full recipient address
            limit: Maximum number of entries (default: engine limit)

        Returns:
            At most ``limit`` summaries

        Raises:
            ValidationError: Recipient is not a valid address (no remote call)
            ListingError: The mailbox could not be searched
            PoolTimeoutError: No session became available
        """
        if not is_valid_address(recipient):
            raise ValidationError(
                "The server could not process your request. "
                "Can you please make sure to enter a valid email address?"
            )
        limit = self.limit if limit is None else limit

        try:
            with self._pool.connection() as conn:
                uids = self._search(conn, recipient)
                headers = self._fetch_envelopes(conn, uids)
        except (TransportError, AuthExhaustedError) as e:
            logger.warning("Listing for %s failed: %s", recipient, e)
            raise ListingError(f"Could not list messages for {recipient}") from e

        summaries = [summarize(uid, headers.get(uid), self._codec) for uid in uids]
        summaries = [s for s in summaries if is_addressed_to(s, recipient)]
        return sort_newest_first(summaries)[:max(limit, 0)]

    def _search(self, conn, recipient: str) -> List[int]:
        status, data = conn.uid("search", None, "TO", f'"{recipient}"')
        if status != "OK":
            raise ListingError(f"SEARCH failed: {data!r}")
        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    def _fetch_envelopes(self, conn, uids: List[int]) -> Dict[int, bytes]:
        result: Dict[int, bytes] = {}
        # Fetch in batches to avoid command-line length limits
        for i in range(0, len(uids), FETCH_BATCH_SIZE):
            batch = uids[i : i + FETCH_BATCH_SIZE]
            uid_set = ",".join(str(u) for u in batch)
            status, data = conn.uid("fetch", uid_set, ENVELOPE_FIELDS)
            if status != "OK":
                raise ListingError(f"FETCH failed: {data!r}")
            result.update(parse_fetch_response(data))
        return result

    def fetch_message(self, uid: int) -> bytes:
        """Fetch the full raw message for one UID.

        Raises:
            ValidationError: UID is not a non-negative integer
            FetchError: The message does not exist or could not be fetched
            PoolTimeoutError: No session became available
        """
        if isinstance(uid, bool) or not isinstance(uid, int) or uid < 0:
            raise ValidationError("The requested message does not exist.")

        try:
            with self._pool.connection() as conn:
                status, data = conn.uid("fetch", str(uid), "(BODY.PEEK[])")
        except (TransportError, AuthExhaustedError) as e:
            logger.warning("Fetching UID %s failed: %s", uid, e)
            raise FetchError(f"Could not fetch message {uid}") from e

        if status != "OK":
            raise FetchError(f"FETCH failed for message {uid}: {data!r}")
        raw = parse_fetch_response(data).get(uid)
        if raw is None:
            # Some servers omit the UID item when answering a single-message fetch
            literals = [item[1] for item in data or [] if isinstance(item, tuple) and len(item) == 2]
            raw = literals[0] if len(literals) == 1 else None
        if raw is None:
            raise FetchError(f"Message {uid} no longer exists")
        return raw
