"""
Time-bounded, de-duplicating in-memory cache.

Data-fetching collaborators (providers, market-data adapters, price feeds)
share one cache shape: values expire after a TTL, the store is bounded, and
concurrent misses for the same key must not stampede the upstream source.

Manifesto:
    - **TTL everywhere:** every entry carries an absolute expiry
    - **FIFO bound:** the oldest still-present key goes first when full
    - **Single-flight:** one factory call per missing key, shared outcome
    - **Weak sweeper:** background cleanup never keeps the process alive

Architecture:
    ::

        TTLCache
        ├── _store:     dict[key, CacheEntry]   (insertion ordered)
        ├── _in_flight: dict[key, Future]       (get_or_set de-duplication)
        └── _sweeper:   asyncio.Task            (cleanup every 60s)

        get_or_set(key, factory)
            hit?        → value
            in flight?  → await shared future
            else        → run factory once, store on success,
                          clear marker on success *and* failure

Examples:
    >>> cache = TTLCache(default_ttl_ms=5_000, max_size=100)
    >>> cache.set("price:eth", 3120.5)
    >>> cache.get("price:eth")
    3120.5

    >>> async def fetch():
    ...     return await api.price("eth")
    >>> price = await cache.get_or_set("price:eth", fetch)

Performance:
    - get/set/has/delete: O(1)
    - cleanup(): O(n)

Guardrails:
    ❌ DON'T: expect LRU behaviour, reads never reorder entries
    ✅ DO: size the cache for the working set

    ❌ DON'T: cache factory failures by hand
    ✅ DO: let get_or_set propagate them, the next call retries

Tags:
    cache, ttl, single-flight, fifo, hinge-core

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from hinge.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_MS = 30_000
DEFAULT_MAX_SIZE = 10_000
DEFAULT_CLEANUP_INTERVAL_MS = 60_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class CacheEntry:
    """Cached value with its absolute expiry (clock milliseconds)."""

    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache:
    """Bounded TTL cache with FIFO eviction and single-flight ``get_or_set``.

    Attributes:
        default_ttl_ms: TTL applied when ``set``/``get_or_set`` get none.
        max_size: Maximum number of keys before FIFO eviction.

    Args:
        default_ttl_ms: Default time-to-live in milliseconds.
        max_size: Capacity; inserting a new key at capacity evicts the
            oldest still-present key.
        cleanup_interval_ms: Period of the background sweep. ``None``
            disables the sweeper.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        default_ttl_ms: float = DEFAULT_TTL_MS,
        max_size: int = DEFAULT_MAX_SIZE,
        cleanup_interval_ms: float | None = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Callable[[], float] | None = None,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.default_ttl_ms = default_ttl_ms
        self.max_size = max_size
        self._cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock or _monotonic_ms
        self._store: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self._destroyed = False

    # ── Basic operations ─────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` if absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return default
        if entry.is_expired(self._clock()):
            del self._store[key]
            return default
        return entry.value

    def has(self, key: str) -> bool:
        """True if ``key`` is present and not expired."""
        entry = self._store.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._store[key]
            return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def set(self, key: str, value: Any, ttl_ms: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_ms`` (default TTL if None)."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if key not in self._store and len(self._store) >= self.max_size:
            # dicts keep insertion order: the first key is the oldest present one
            oldest = next(iter(self._store))
            del self._store[oldest]
            logger.debug("cache.evicted", key=oldest)
        self._store[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        self._ensure_sweeper()

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it was present."""
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries and forget in-flight computations."""
        self._store.clear()
        self._in_flight.clear()

    def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("cache.cleanup", removed=len(expired), remaining=len(self._store))
        return len(expired)

    @property
    def size(self) -> int:
        """Number of stored entries (expired ones included until swept)."""
        return len(self._store)

    def keys(self) -> list[str]:
        return list(self._store)

    # ── Single-flight ────────────────────────────────────────────────

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl_ms: float | None = None,
    ) -> Any:
        """Return the cached value, computing it with ``factory`` on a miss.

        Concurrent callers for the same missing key share a single factory
        invocation and its outcome. A failing factory stores nothing and the
        in-flight marker is cleared, so the next call retries.
        """
        entry = self._store.get(key)
        if entry is not None:
            if not entry.is_expired(self._clock()):
                return entry.value
            del self._store[key]

        pending = self._in_flight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._in_flight[key] = future
        try:
            value = await factory()
        except BaseException as exc:
            if not future.done():
                if isinstance(exc, asyncio.CancelledError):
                    future.cancel()
                else:
                    future.set_exception(exc)
                    # mark retrieved so a caller-less failure does not warn
                    future.exception()
            raise
        else:
            if self._in_flight.get(key) is future:
                self.set(key, value, ttl_ms)
            if not future.done():
                future.set_result(value)
            return value
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    def is_pending(self, key: str) -> bool:
        """True while a ``get_or_set`` factory for ``key`` is running."""
        return key in self._in_flight

    # ── Background sweep ─────────────────────────────────────────────

    def _ensure_sweeper(self) -> None:
        if self._sweeper is not None or self._destroyed or self._cleanup_interval_ms is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; the sweeper starts on the next call made from async code
            return
        self._sweeper = loop.create_task(self._sweep_loop(), name="hinge-cache-sweeper")

    async def _sweep_loop(self) -> None:
        interval = self._cleanup_interval_ms / 1000
        try:
            while not self._destroyed:
                await asyncio.sleep(interval)
                self.cleanup()
        except asyncio.CancelledError:
            pass

    def destroy(self) -> None:
        """Stop the sweeper and drop all entries."""
        self._destroyed = True
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self.clear()


def create_cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a deterministic key: ``prefix:k1=v1&k2=v2`` with sorted keys.

    ``None`` values are skipped.

    Example:
        >>> create_cache_key("price", {"symbol": "eth", "chain": 1})
        'price:chain=1&symbol=eth'
    """
    if not params:
        return prefix
    parts = [f"{k}={params[k]}" for k in sorted(params) if params[k] is not None]
    if not parts:
        return prefix
    return f"{prefix}:{'&'.join(parts)}"


__all__ = ["CacheEntry", "TTLCache", "create_cache_key"]
