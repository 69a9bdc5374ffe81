"""Best-effort country lookup for the access log view.

Lookups are cached per token in a plain dict that lives for one request
only; repeated addresses in the same log cost one lookup.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

import httpx

from inboxview.history import HistoryEntry

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
LOOKUP_URL = "http://ip-api.com/json/{ip}"
LOOKUP_TIMEOUT_SECONDS = 3.0


def lookup_country(
    ip: str,
    client: Optional[httpx.Client] = None,
    timeout: float = LOOKUP_TIMEOUT_SECONDS,
) -> Optional[str]:
    """Resolve an IP address or host name to a country name.

    Returns:
        Country name, or None if the service has no answer
    """
    url = LOOKUP_URL.format(ip=ip)
    params = {"fields": "status,country"}
    try:
        if client is not None:
            response = client.get(url, params=params, timeout=timeout)
        else:
            with httpx.Client(timeout=timeout) as own_client:
                response = own_client.get(url, params=params)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.debug("Geolocation lookup for %s failed: %s", ip, e)
        return None

    if not isinstance(payload, dict) or payload.get("status") != "success":
        return None
    return payload.get("country") or None


class GeoCache:
    """Request-scoped memo of token -> country."""

    def __init__(self, lookup: Callable[[str], Optional[str]] = lookup_country):
        self._lookup = lookup
        self._cache: Dict[str, str] = {}

    def country(self, token: Optional[str]) -> str:
        """Country for a log token, or UNKNOWN. Never raises."""
        token = (token or "").strip()
        if not token:
            return UNKNOWN
        if token not in self._cache:
            try:
                result = self._lookup(token)
            except Exception as e:
                logger.debug("Geolocation lookup for %s raised: %s", token, e)
                result = None
            self._cache[token] = result or UNKNOWN
        return self._cache[token]

    def annotate(self, entries: Iterable[HistoryEntry]) -> List[HistoryEntry]:
        """Fill in the country of each entry."""
        annotated = []
        for entry in entries:
            entry.country = self.country(entry.ip)
            annotated.append(entry)
        return annotated
