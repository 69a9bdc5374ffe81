"""Append-only log of inbox lookups.

One line per lookup::

    <timestamp> - <mailbox> - <ip> - <user-agent>
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

SEPARATOR = " - "

_write_lock = threading.Lock()


@dataclass
class HistoryEntry:
    """One parsed log line."""

    timestamp: str
    mailbox: str
    ip: str
    user_agent: str
    country: Optional[str] = None


def _clean(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.replace("\r", " ").replace("\n", " ").strip()


def append_entry(
    path: Union[str, Path],
    mailbox: str,
    ip: Optional[str],
    user_agent: Optional[str],
    now: Optional[datetime] = None,
) -> None:
    """Append one lookup to the log file."""
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    line = SEPARATOR.join([stamp, _clean(mailbox), _clean(ip), _clean(user_agent)])
    with _write_lock:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


def parse_line(line: str) -> HistoryEntry:
    """Split a log line into its fields; missing fields are empty.

    The user agent may itself contain the separator, so only the first
    three separators split.
    """
    parts = line.rstrip("\r\n").split(SEPARATOR, 3)
    parts += [""] * (4 - len(parts))
    return HistoryEntry(*parts)


def tail(path: Union[str, Path], size: int) -> List[HistoryEntry]:
    """Return the last ``size`` entries, oldest first.

    A missing log file yields an empty list.
    """
    if size <= 0:
        return []
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            lines = deque((line for line in f if line.strip()), maxlen=size)
    except FileNotFoundError:
        return []
    return [parse_line(line) for line in lines]
