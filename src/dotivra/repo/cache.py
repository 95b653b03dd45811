"""Repository context cache.

Shared by every invocation in the process and keyed by ``owner/repo``.
Entries are written once per key and then only read, with LRU eviction
when ``max_entries`` is reached and optional TTL expiry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from .models import RepositoryContext

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "RepoContextCache",
]

logger = logging.getLogger("dotivra.repo.cache")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Configuration for the repository context cache.

    Attributes:
        max_entries: Maximum number of repositories kept.
        ttl_seconds: Time-to-live per entry in seconds (0 = no expiry).
    """

    max_entries: int = 64
    ttl_seconds: float = 0.0


@dataclass(slots=True)
class CacheEntry:
    """A cached context plus access bookkeeping."""

    context: RepositoryContext
    created_at: float
    access_count: int = 0

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        if ttl_seconds <= 0:
            return False
        return now - self.created_at > ttl_seconds


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class RepoContextCache:
    """Thread-safe LRU cache of ``RepositoryContext`` keyed by ``owner/repo``.

    Example:
        >>> cache = RepoContextCache(CacheConfig(ttl_seconds=600))
        >>> cache.set("octocat/hello-world", context)
        >>> cache.get("octocat/hello-world") is context
        True
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get(self, key: str) -> RepositoryContext | None:
        """Return the cached context, or ``None`` if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired(self._config.ttl_seconds, self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                logger.debug("Cache entry expired: %s", key)
                return None
            self._entries.move_to_end(key)
            entry.access_count += 1
            self._stats.hits += 1
            return entry.context

    def set(self, key: str, context: RepositoryContext) -> None:
        """Store *context* under *key*.  An existing live entry is kept."""
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and not existing.is_expired(
                self._config.ttl_seconds, self._clock()
            ):
                return
            self._entries[key] = CacheEntry(context=context, created_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > max(self._config.max_entries, 1):
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Cache evicted: %s", evicted)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
