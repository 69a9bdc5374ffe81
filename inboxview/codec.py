"""Opaque public identifiers for mailbox UIDs.

Raw IMAP UIDs never appear in URLs. Each UID is packed together with a
short HMAC tag keyed by a per-process salt and written out in base62 over
an alphabet shuffled by the same salt. Decoding recomputes the tag, so a
token from another process, or one that was truncated or edited, is
rejected instead of resolving to some other message.
"""

import hashlib
import hmac
import random
import secrets
import string
from typing import Optional

BASE_ALPHABET = string.digits + string.ascii_letters
TAG_BYTES = 6
TAG_BITS = TAG_BYTES * 8
TAG_MASK = (1 << TAG_BITS) - 1

# Longer input cannot come from encode() for any 32-bit UID
MAX_TOKEN_LENGTH = 32


class IdentifierCodec:
    """Reversible, keyed UID <-> token mapping.

    Usage:
        codec = IdentifierCodec.generate()
        token = codec.encode(4711)
        codec.decode(token)  # 4711
        codec.decode("nope")  # None
    """

    def __init__(self, salt: str):
        """Initialize codec.

        Args:
            salt: Secret salt. Tokens only round-trip under the same salt.
        """
        if not salt:
            raise ValueError("salt must not be empty")
        self._key = salt.encode("utf-8")
        self._alphabet = self._shuffled_alphabet(self._key)
        self._index = {char: i for i, char in enumerate(self._alphabet)}

    @classmethod
    def generate(cls) -> "IdentifierCodec":
        """Create a codec with a fresh random salt."""
        return cls(secrets.token_hex(16))

    @staticmethod
    def _shuffled_alphabet(key: bytes) -> str:
        seed = hmac.new(key, b"alphabet", hashlib.sha256).digest()
        chars = list(BASE_ALPHABET)
        random.Random(int.from_bytes(seed, "big")).shuffle(chars)
        return "".join(chars)

    def _tag(self, uid: int) -> bytes:
        digest = hmac.new(self._key, str(uid).encode("ascii"), hashlib.sha256).digest()
        return digest[:TAG_BYTES]

    def encode(self, uid) -> str:
        """Encode a non-negative UID.

        Returns:
            Token string, or "" for negative or non-numeric input
        """
        if isinstance(uid, bool):
            return ""
        if isinstance(uid, str):
            try:
                uid = int(uid.strip())
            except ValueError:
                return ""
        if not isinstance(uid, int) or uid < 0:
            return ""

        number = (uid << TAG_BITS) | int.from_bytes(self._tag(uid), "big")
        base = len(self._alphabet)
        chars = []
        while True:
            number, remainder = divmod(number, base)
            chars.append(self._alphabet[remainder])
            if number == 0:
                break
        return "".join(reversed(chars))

    def decode(self, token) -> Optional[int]:
        """Decode a token back to its UID.

        Returns:
            The UID, or None if the token is empty, malformed, or was not
            produced by this codec
        """
        if not isinstance(token, str) or not token or len(token) > MAX_TOKEN_LENGTH:
            return None

        base = len(self._alphabet)
        number = 0
        for char in token:
            value = self._index.get(char)
            if value is None:
                return None
            number = number * base + value

        uid = number >> TAG_BITS
        tag = (number & TAG_MASK).to_bytes(TAG_BYTES, "big")
        if not hmac.compare_digest(tag, self._tag(uid)):
            return None
        # Leading zero digits decode to the same number; only the canonical form is valid
        if self.encode(uid) != token:
            return None
        return uid
