"""In-process TTL/LRU caching.

``LRUCache`` is a bounded mapping whose entries expire after a TTL and are
evicted least-recently-used first. ``AsyncCache`` adds request
de-duplication on top: concurrent ``get_or_set`` calls for one key share a
single factory run, and a failed run is never cached.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING: Any = object()


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class LRUCache(Generic[K, V]):
    def __init__(
        self,
        max_size: int = 100,
        default_ttl_s: float = 300.0,
        cleanup_interval_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.default_ttl_s = default_ttl_s
        self._clock = clock
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

        if cleanup_interval_s > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(cleanup_interval_s,),
                name="lru-cache-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def _sweep_loop(self, interval_s: float) -> None:
        while not self._stop.wait(interval_s):
            removed = self.cleanup()
            if removed:
                logger.debug("Swept %d expired cache entries", removed)

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() > entry.expires_at

    def get(self, key: K, default: Any = None) -> V | Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._is_expired(entry):
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: K, value: V, ttl_s: float | None = None) -> None:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def has(self, key: K) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._is_expired(entry):
                del self._entries[key]
                return False
            return True

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            expired = [k for k, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def destroy(self) -> None:
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1.0)
        self._sweeper = None
        self.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._entries.keys())

    def stats(self) -> dict[str, int]:
        return {"size": len(self._entries), "max_size": self.max_size}


def _consume_exception(task: asyncio.Future) -> None:
    # Callers may all have gone away; keep asyncio from warning about it.
    if not task.cancelled():
        task.exception()


class AsyncCache(Generic[K, V]):
    def __init__(
        self,
        max_size: int = 100,
        default_ttl_s: float = 300.0,
        cleanup_interval_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: LRUCache[K, V] = LRUCache(
            max_size=max_size,
            default_ttl_s=default_ttl_s,
            cleanup_interval_s=cleanup_interval_s,
            clock=clock,
        )
        self._pending: dict[K, asyncio.Task[V]] = {}

    async def get_or_set(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        ttl_s: float | None = None,
    ) -> V:
        cached = self._cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, factory, ttl_s))
            task.add_done_callback(_consume_exception)
            self._pending[key] = task
        return await asyncio.shield(task)

    async def _run(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        ttl_s: float | None,
    ) -> V:
        try:
            value = await factory()
            self._cache.set(key, value, ttl_s)
            return value
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def is_pending(self, key: K) -> bool:
        return key in self._pending

    def get(self, key: K, default: Any = None) -> V | Any:
        return self._cache.get(key, default)

    def set(self, key: K, value: V, ttl_s: float | None = None) -> None:
        self._cache.set(key, value, ttl_s)

    def delete(self, key: K) -> bool:
        return self._cache.delete(key)

    def clear(self) -> None:
        self._cache.clear()
        self._pending.clear()

    def destroy(self) -> None:
        self._cache.destroy()
        self._pending.clear()

    @property
    def size(self) -> int:
        return self._cache.size

    def __len__(self) -> int:
        return len(self._cache)


def memoize_with_ttl(
    max_size: int = 100,
    ttl_s: float = 300.0,
) -> Callable[[Callable[..., Awaitable[V]]], Callable[..., Awaitable[V]]]:
    """Cache an async function's results by its (hashable) arguments."""

    def decorator(fn: Callable[..., Awaitable[V]]) -> Callable[..., Awaitable[V]]:
        cache: AsyncCache[Hashable, V] = AsyncCache(
            max_size=max_size, default_ttl_s=ttl_s, cleanup_interval_s=0
        )

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> V:
            key = (args, frozenset(kwargs.items()))
            return await cache.get_or_set(key, lambda: fn(*args, **kwargs))

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper

    return decorator
