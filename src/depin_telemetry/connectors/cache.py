"""
Time-boxed memoization of identical upstream requests.

Entries carry an absolute expiry and are evicted lazily on read, by an
optional background sweep, or all at once on dispose().
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import orjson

from depin_telemetry.connectors.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)


class _Miss:
    """Cache miss marker, distinct from a cached None."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


def make_cache_key(method: str, target: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Derive a cache key from transport method, target and parameters.

    Parameters are canonicalized with sorted keys so that semantically
    identical requests collide regardless of argument order.
    """
    body = orjson.dumps(dict(params or {}), option=orjson.OPT_SORT_KEYS, default=str)
    digest = hashlib.sha256(body).hexdigest()[:16]
    return f"{method.upper()}:{target}:{digest}"


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    """Cache access counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass
class CacheStore:
    """
    TTL cache owned by a single connector.

    Usage:
        cache = CacheStore(default_ttl_s=300)
        value = cache.get(key)
        if value is MISS:
            value = await fetch()
            cache.set(key, value)
    """

    default_ttl_s: float = 300.0
    max_entries: int = 1000

    _entries: dict[str, _Entry] = field(default_factory=dict, init=False, repr=False)
    _eviction_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    stats: CacheStats = field(default_factory=CacheStats, init=False)

    # Optional clock (seconds) for deterministic testing
    _time_fn: Callable[[], float] | None = field(default=None)

    def __post_init__(self) -> None:
        if self.default_ttl_s <= 0:
            raise ConfigError(f"cache ttl must be > 0, got {self.default_ttl_s}")
        if self.max_entries <= 0:
            raise ConfigError(f"cache max_entries must be > 0, got {self.max_entries}")

    def _now(self) -> float:
        if self._time_fn is not None:
            return self._time_fn()
        return time.monotonic()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not MISS

    def get(self, key: str) -> Any:
        """Return the cached value, or MISS if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return MISS

        if entry.expires_at <= self._now():
            del self._entries[key]
            self.stats.evictions += 1
            self.stats.misses += 1
            return MISS

        self.stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        """Store value with an absolute expiry of now + ttl_s."""
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        if ttl <= 0:
            return

        if key not in self._entries and len(self._entries) >= self.max_entries:
            self.purge_expired()
            if len(self._entries) >= self.max_entries:
                # Drop the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                del self._entries[oldest]
                self.stats.evictions += 1

        self._entries[key] = _Entry(value=value, expires_at=self._now() + ttl)
        self.stats.sets += 1

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._now()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self.stats.evictions += len(expired)
        return len(expired)

    def start_eviction(self, interval_s: float) -> None:
        """Start the background sweep. Requires a running event loop."""
        if self._eviction_task is not None and not self._eviction_task.done():
            return
        self._eviction_task = asyncio.create_task(self._eviction_loop(interval_s))

    async def _eviction_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            removed = self.purge_expired()
            if removed:
                logger.debug("Cache sweep", extra={"removed": removed, "size": len(self._entries)})

    @property
    def eviction_running(self) -> bool:
        return self._eviction_task is not None and not self._eviction_task.done()

    async def dispose(self) -> None:
        """Cancel the eviction sweep and drop every entry."""
        if self._eviction_task is not None:
            self._eviction_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._eviction_task
            self._eviction_task = None
        self._entries.clear()
