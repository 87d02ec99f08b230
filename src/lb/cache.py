"""Edge response cache.

Stores immutable response snapshots keyed by method and fully-resolved
backend URL. A write for an existing key replaces the previous snapshot.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

_MAX_AGE_PATTERN = re.compile(r"(?:^|,)\s*(s-maxage|max-age)\s*=\s*\"?(\d+)\"?", re.IGNORECASE)

# The key holds no request headers, so only Vary on headers that cannot change
# the body is storable: Accept-Encoding is never forwarded and CORS answers "*".
_KEY_NEUTRAL_VARY = frozenset({"accept-encoding", "origin"})


@dataclass(frozen=True)
class CachedResponse:
    """Point-in-time snapshot of a backend response."""

    status: int
    headers: Tuple[Tuple[str, str], ...]
    body: bytes
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.time() > self.expires_at


def cache_key(method: str, url: str) -> str:
    """Canonical cache key for a backend request."""
    return f"{method.upper()} {url}"


def is_cacheable_response(status: int, headers: Mapping[str, str]) -> bool:
    """Determine if a backend response may be stored.

    Args:
        status: Response status code.
        headers: Case-insensitive response headers.
    """
    if not 200 <= status < 300 or status == 206:
        return False

    if "Set-Cookie" in headers:
        return False

    cache_control = headers.get("Cache-Control", "").lower()
    if any(token in cache_control for token in ("no-store", "no-cache", "private")):
        return False

    vary = {token.strip().lower() for token in headers.get("Vary", "").split(",")}
    vary.discard("")
    if not vary <= _KEY_NEUTRAL_VARY:
        return False

    return True


class EdgeCache:
    """TTL- and size-bounded cache of backend responses.

    Entries are never mutated after insertion, so concurrent readers always
    see a complete snapshot.
    """

    def __init__(
        self,
        default_ttl: int = 60,
        max_ttl: int = 31536000,
        max_bytes: int = 100 * 1024 * 1024,
        max_entries: int = 10000,
    ):
        """Initialize the edge cache.

        Args:
            default_ttl: TTL in seconds when the response carries no max-age.
            max_ttl: Upper bound on any TTL.
            max_bytes: Total body bytes held across entries.
            max_entries: Maximum number of entries.
        """
        self._default_ttl = default_ttl
        self._max_ttl = max_ttl
        self._max_bytes = max_bytes
        self._max_entries = max_entries
        self._cache: Dict[str, CachedResponse] = {}
        self._current_bytes = 0
        self._hits = 0
        self._misses = 0

    def max_entry_bytes(self) -> int:
        """Largest body that will be stored."""
        return self._max_bytes // 10

    def ttl_for(self, headers: Mapping[str, str]) -> int:
        """TTL from s-maxage/max-age, else the default, capped at max_ttl."""
        directives = dict(
            (name.lower(), int(value))
            for name, value in _MAX_AGE_PATTERN.findall(headers.get("Cache-Control", ""))
        )
        ttl = directives.get("s-maxage", directives.get("max-age", self._default_ttl))
        return min(ttl, self._max_ttl)

    def get(self, key: str) -> Optional[CachedResponse]:
        """Return the live snapshot for ``key``, or None."""
        entry = self._cache.get(key)
        if entry is None or entry.is_expired():
            if entry is not None:
                self._remove_entry(key)
            self._misses += 1
            return None
        self._hits += 1
        return entry

    def put(
        self,
        key: str,
        status: int,
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        """Store a response if it is cacheable.

        Args:
            key: Cache key from ``cache_key``.
            status: Response status code.
            headers: Response headers (multi-valued headers are kept).
            body: Full response body.

        Returns:
            True if the response was stored.
        """
        if not is_cacheable_response(status, headers):
            return False

        ttl = self.ttl_for(headers)
        body_size = len(body)
        if ttl <= 0 or body_size > self.max_entry_bytes():
            return False

        if key in self._cache:
            self._remove_entry(key)

        while self._current_bytes + body_size > self._max_bytes and self._cache:
            self._evict_oldest(1)

        self._cache[key] = CachedResponse(
            status=status,
            headers=tuple((k, v) for k, v in headers.items()),
            body=body,
            expires_at=time.time() + ttl,
        )
        self._current_bytes += body_size

        if len(self._cache) > self._max_entries:
            self._evict_oldest(max(1, self._max_entries // 10))
        return True

    def clear(self) -> None:
        """Clear all cached responses."""
        self._cache.clear()
        self._current_bytes = 0

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        expired_count = sum(1 for e in self._cache.values() if e.is_expired())
        return {
            "total_entries": len(self._cache),
            "expired_entries": expired_count,
            "active_entries": len(self._cache) - expired_count,
            "current_bytes": self._current_bytes,
            "max_bytes": self._max_bytes,
            "hits": self._hits,
            "misses": self._misses,
        }

    def _remove_entry(self, key: str) -> None:
        """Remove an entry and update byte count."""
        entry = self._cache.pop(key, None)
        if entry:
            self._current_bytes -= len(entry.body)

    def _evict_oldest(self, count: int) -> None:
        """Evict the oldest entries."""
        oldest = sorted(self._cache, key=lambda k: self._cache[k].created_at)
        for key in oldest[:count]:
            self._remove_entry(key)
