"""Decode raw messages into displayable headers and bodies.

Handles malformed emails gracefully: a section that cannot be parsed
becomes an absent field instead of an error.
"""

import email
import email.header
import email.message
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

# Regex to extract charset from HTML meta tag
# Matches: <meta charset="euc-kr"> or <meta http-equiv="Content-Type" content="text/html; charset=euc-kr">
HTML_CHARSET_RE = re.compile(
    r'<meta[^>]+charset\s*=\s*["\']?([a-zA-Z0-9_-]+)',
    re.IGNORECASE,
)

# Charset aliases Python does not know by these names
CHARSET_ALIASES = {
    "ks_c_5601-1987": "cp949",
    "ks_c_5601": "cp949",
    "euc_kr": "euc-kr",
    "unknown-8bit": "utf-8",
    "x-unknown": "utf-8",
}

# Tried in order when a header's declared charset fails
HEADER_FALLBACK_CHARSETS = [
    "utf-8", "cp949", "euc-kr",  # Korean
    "cp1251", "koi8-r",  # Russian
    "gb2312", "gbk",  # Chinese
    "shift_jis", "euc-jp",  # Japanese
    "iso-8859-1", "cp1252",  # Western
]

# Tried for bodies with many high bytes and no usable declared charset
MULTIBYTE_CHARSETS = ["utf-8", "cp949", "euc-kr", "gb2312", "gbk", "big5", "shift_jis", "euc-jp"]

_READABLE_RANGES = (
    (0x20, 0x7E),  # ASCII printable
    (0x80, 0xFF),  # Latin-1
    (0x0400, 0x04FF),  # Cyrillic
    (0x1100, 0x11FF),  # Hangul Jamo
    (0x3000, 0x30FF),  # CJK punctuation, Hiragana, Katakana
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0xAC00, 0xD7AF),  # Hangul Syllables
    (0xFF00, 0xFFEF),  # Fullwidth forms
)


def _normalize_charset(charset: Optional[str]) -> Optional[str]:
    if not charset:
        return None
    charset = charset.strip().strip('"').lower()
    return CHARSET_ALIASES.get(charset, charset)


def _looks_readable(text: str, min_readable_ratio: float = 0.7) -> bool:
    """Check if decoded text looks like valid readable content."""
    if not text or "\ufffd" in text:
        return False
    sample = text[:1000]
    readable = 0
    for char in sample:
        code = ord(char)
        if char in "\t\n\r" or any(low <= code <= high for low, high in _READABLE_RANGES):
            readable += 1
    return readable / len(sample) >= min_readable_ratio


def _strict_decode(payload: bytes, charset: Optional[str]) -> Optional[str]:
    if not charset:
        return None
    try:
        return payload.decode(charset)
    except (UnicodeDecodeError, LookupError):
        return None


def _detect_and_decode(payload: bytes) -> str:
    """Decode bytes of unknown charset, validating each candidate."""
    high_bytes = sum(1 for b in payload[:4000] if b >= 0x80)
    candidates = MULTIBYTE_CHARSETS if high_bytes > 10 else []
    for charset in candidates + ["utf-8", "iso-8859-1", "cp1252"]:
        decoded = _strict_decode(payload, charset)
        if decoded is not None and _looks_readable(decoded):
            return decoded
    return payload.decode("utf-8", errors="replace")


def decode_text_body(payload: bytes, declared_charset: Optional[str]) -> str:
    """Decode a text/plain body: declared charset first, then detection."""
    decoded = _strict_decode(payload, _normalize_charset(declared_charset))
    if decoded is not None:
        return decoded
    return _detect_and_decode(payload)


def decode_html_body(payload: bytes, declared_charset: Optional[str]) -> str:
    """Decode a text/html body, also honouring a <meta charset> tag."""
    decoded = _strict_decode(payload, _normalize_charset(declared_charset))
    if decoded is not None:
        return decoded

    # latin-1 maps bytes 1:1, enough to find the meta tag in the first 2KB
    match = HTML_CHARSET_RE.search(payload[:2048].decode("latin-1"))
    if match:
        decoded = _strict_decode(payload, _normalize_charset(match.group(1)))
        if decoded is not None:
            return decoded

    return _detect_and_decode(payload)


def _unfold(value: str) -> str:
    """Collapse folded header lines into one line."""
    return re.sub(r"\s*[\r\n]+\s*", " ", value).strip()


def _decode_header_bytes(data: bytes, charset: Optional[str]) -> str:
    charsets = []
    normalized = _normalize_charset(charset)
    if normalized and normalized != "unknown":
        charsets.append(normalized)
    charsets.extend(HEADER_FALLBACK_CHARSETS)
    for cs in charsets:
        decoded = _strict_decode(data, cs)
        if decoded is not None and "\ufffd" not in decoded:
            return decoded
    return data.decode("utf-8", errors="replace")


def decode_header(value) -> str:
    """Decode a MIME encoded header (RFC 2047) to plain text.

    Args:
        value: Header value (str, Header object, or None)

    Returns:
        Decoded string; the unfolded raw text if decoding fails
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    text = _unfold(value)

    # Raw 8-bit header bytes arrive from the parser as surrogate escapes
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        text = _decode_header_bytes(text.encode("utf-8", "surrogateescape"), None)

    if "=?" not in text or "?=" not in text:
        return text

    try:
        parts = email.header.decode_header(text)
    except Exception as e:
        logger.debug("Falling back to raw header %r: %s", text, e)
        return text

    decoded = []
    for data, charset in parts:
        if isinstance(data, bytes):
            decoded.append(_decode_header_bytes(data, charset))
        else:
            decoded.append(data)
    return "".join(decoded)


@dataclass
class MessageDetail:
    """Decoded view of one message."""

    headers: List[Tuple[str, str]] = field(default_factory=list)
    subject: str = ""
    sender: str = ""
    recipients: str = ""
    date: str = ""
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    body: Optional[str] = None
    is_multipart: bool = False
    attachments: List[str] = field(default_factory=list)

    def header(self, name: str, default: str = "") -> str:
        """First value of a header, matched case-insensitively."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default

    @property
    def preview(self) -> str:
        """The single best body to show.

        A non-multipart message shows its body; a multipart message shows
        its HTML part, else its text part, else nothing.
        """
        if not self.is_multipart:
            return self.body or ""
        if self.html_body is not None:
            return self.html_body
        if self.text_body is not None:
            return self.text_body
        return ""


def _decode_part(part: email.message.Message) -> Optional[str]:
    payload = part.get_payload(decode=True)
    if payload is None:
        return None
    charset = part.get_content_charset()
    if part.get_content_type() == "text/html":
        return decode_html_body(payload, charset)
    return decode_text_body(payload, charset)


def _is_attachment(part: email.message.Message) -> bool:
    disposition = str(part.get("Content-Disposition", "")).lower()
    return disposition.startswith("attachment") or (
        bool(part.get_filename()) and part.get_content_maintype() != "text"
    )


def _read_headers(msg: email.message.Message, detail: MessageDetail) -> None:
    for name, value in msg.raw_items():
        detail.headers.append((name, decode_header(value)))
    detail.subject = detail.header("Subject")
    detail.sender = detail.header("From")
    detail.recipients = detail.header("To")
    detail.date = detail.header("Date")


def _read_multipart(msg: email.message.Message, detail: MessageDetail) -> None:
    for part in msg.walk():
        if part.is_multipart():
            continue
        try:
            if _is_attachment(part):
                detail.attachments.append(decode_header(part.get_filename() or "attachment"))
                continue
            content_type = part.get_content_type()
            if content_type == "text/plain" and detail.text_body is None:
                detail.text_body = _decode_part(part)
            elif content_type == "text/html" and detail.html_body is None:
                detail.html_body = _decode_part(part)
        except Exception as e:
            logger.debug("Skipping undecodable part: %s", e)


def _read_single(msg: email.message.Message, detail: MessageDetail) -> None:
    try:
        detail.body = _decode_part(msg)
    except Exception as e:
        logger.debug("Undecodable message body: %s", e)
        return
    if msg.get_content_type() == "text/html":
        detail.html_body = detail.body
    else:
        detail.text_body = detail.body


def decode_message(raw) -> MessageDetail:
    """Parse raw message bytes into a MessageDetail.

    Never raises; anything that cannot be parsed is left empty.
    """
    detail = MessageDetail()
    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="replace")
    if not isinstance(raw, (bytes, bytearray)) or not raw:
        return detail

    try:
        msg = email.message_from_bytes(bytes(raw))
    except Exception as e:
        logger.warning("Could not parse message: %s", e)
        return detail

    try:
        _read_headers(msg, detail)
    except Exception as e:
        logger.debug("Could not read headers: %s", e)

    try:
        detail.is_multipart = msg.is_multipart()
    except Exception:
        detail.is_multipart = False

    if detail.is_multipart:
        _read_multipart(msg, detail)
    else:
        _read_single(msg, detail)
    return detail
