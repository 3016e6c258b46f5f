"""In-process TTL cache with wildcard invalidation"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from memory.models import now_ms

DEFAULT_TTL_MS = 5 * 60 * 1000


@dataclass(frozen=True)
class CacheEntry:
    """Immutable snapshot stored under one key"""
    value: Any
    stored_at: int
    ttl_ms: int

    def is_expired(self, now: int) -> bool:
        return now - self.stored_at > self.ttl_ms


@dataclass(frozen=True)
class CacheStats:
    total: int
    active: int
    expired: int
    hit_rate: float

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "expired": self.expired,
            "hit_rate": self.hit_rate,
        }


def _compile_pattern(pattern: str) -> re.Pattern:
    """Turn a glob with ``*`` wildcards into an anchored regex."""
    parts = (re.escape(chunk) for chunk in pattern.split("*"))
    return re.compile(".*".join(parts), re.DOTALL)


class TTLCache:
    """Key/value cache where every entry expires after its own TTL.

    Expired entries are evicted lazily on ``get``; nothing sweeps in the
    background. The cache is an optimization only and is empty after restart.
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None):
        """Store or overwrite an entry"""
        ttl = self._default_ttl_ms if ttl_ms is None else int(ttl_ms)
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_ms=ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the value if present and unexpired"""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def invalidate(self, pattern: str) -> int:
        """Remove every key matching ``pattern``; returns the removed count"""
        regex = _compile_pattern(pattern)
        doomed = [key for key in self._entries if regex.fullmatch(key)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Cache invalidated {len(doomed)} entries for pattern {pattern!r}")
        return len(doomed)

    def clear(self):
        """Drop all entries"""
        self._entries.clear()

    def size(self) -> int:
        """Physically stored entries, expired or not"""
        return len(self._entries)

    def stats(self) -> CacheStats:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        lookups = self._hits + self._misses
        return CacheStats(
            total=len(self._entries),
            active=len(self._entries) - expired,
            expired=expired,
            hit_rate=self._hits / lookups if lookups else 0.0,
        )
