from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")

# Sub-resources containing any of these are aborted, cached or not.
DEFAULT_DENY_LIST = (
    ".js",
    ".css",
    "static/fonts",
    "js_tracking",
    "facebook.com",
    "googleapis.com",
    "secure.booking.com",
    "booking.com/logo",
    "booking.com/navigation_times",
)


def is_denied(url: str, deny_list: Sequence[str] = DEFAULT_DENY_LIST) -> bool:
    return any(fragment in url for fragment in deny_list)


@dataclass(frozen=True)
class CacheEntry:
    url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


def parse_max_age(headers: Dict[str, str]) -> int:
    """Return the ``max-age`` of a ``Cache-Control`` header, 0 if there is none."""
    cache_control = ""
    for name, value in (headers or {}).items():
        if name.lower() == "cache-control":
            cache_control = value or ""
            break
    match = _MAX_AGE_RE.search(cache_control)
    if not match:
        return 0
    return int(match.group(1))


class ResponseCache:
    """In-memory URL -> response cache honouring ``Cache-Control: max-age``.

    Entries are read while fresh and (re)written only while stale or absent.
    None of the methods suspend, so a lookup or a record is never interleaved
    with another page callback.
    """

    def __init__(
        self,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
        deny_list: Sequence[str] = DEFAULT_DENY_LIST,
    ):
        self.enabled = enabled
        self.deny_list = tuple(deny_list)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def should_abort(self, url: str) -> bool:
        return is_denied(url, self.deny_list)

    def lookup(self, url: str) -> Optional[CacheEntry]:
        entry = self._entries.get(url)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry
        return None

    def record(self, url: str, status: int, headers: Dict[str, str], body: bytes) -> bool:
        if not self.enabled or self.should_abort(url):
            return False
        max_age = parse_max_age(headers)
        if max_age <= 0:
            return False
        now = self._clock()
        current = self._entries.get(url)
        if current is not None and current.is_fresh(now):
            return False
        self._entries[url] = CacheEntry(
            url=url,
            status=int(status),
            headers=dict(headers),
            body=bytes(body),
            expires_at=now + max_age,
        )
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [url for url, entry in self._entries.items() if not entry.is_fresh(now)]
        for url in stale:
            del self._entries[url]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
