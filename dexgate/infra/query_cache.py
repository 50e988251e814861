"""
Memoizing registry for derived ledger queries.

One CachedQuery exists per key (e.g. ("orders", asset)). Concurrent readers of
the same key share a single in-flight fetch, and a fetched value is reused for
a short TTL so a burst of depth requests costs one round-trip.

Per-address keys come from clients, so the registry is capped and drops the
least recently used idle entries once it is full.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable, Optional


class CachedQuery:
    """A single keyed query: last value with TTL plus the in-flight fetch."""

    __slots__ = ("_value", "_timestamp_ms", "_ttl_ms", "_inflight", "_generation", "hits", "misses")

    def __init__(self, ttl_ms: int = 500) -> None:
        self._value: Any = None
        self._timestamp_ms: int = 0
        self._ttl_ms: int = ttl_ms
        self._inflight: Optional[asyncio.Future] = None
        # bumped on invalidate; a fetch started under an older generation is not cached
        self._generation: int = 0
        self.hits = 0
        self.misses = 0

    def fresh(self) -> bool:
        if self._timestamp_ms == 0:
            return False
        return (int(time.time() * 1000) - self._timestamp_ms) < self._ttl_ms

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    def invalidate(self) -> None:
        self._timestamp_ms = 0
        self._generation += 1
        # later readers start a new fetch instead of joining a pre-write one
        self._inflight = None

    async def get(self, fetch: Callable[[], Awaitable[Any]]) -> Any:
        if self.fresh():
            self.hits += 1
            return self._value
        if self._inflight is None:
            self.misses += 1
            self._inflight = asyncio.ensure_future(self._refresh(fetch, self._generation))
        # shield: one caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(self._inflight)

    async def _refresh(self, fetch: Callable[[], Awaitable[Any]], generation: int) -> Any:
        task = asyncio.current_task()
        try:
            value = await fetch()
            if generation == self._generation:
                self._value = value
                self._timestamp_ms = int(time.time() * 1000)
            return value
        finally:
            if self._inflight is task:
                self._inflight = None


class QueryRegistry:
    def __init__(self, ttl_ms: int = 500, max_entries: int = 256) -> None:
        self._ttl_ms = ttl_ms
        self._max_entries = max_entries
        self._entries: "OrderedDict[Hashable, CachedQuery]" = OrderedDict()

    def entry(self, key: Hashable) -> CachedQuery:
        query = self._entries.get(key)
        if query is None:
            query = CachedQuery(self._ttl_ms)
            self._entries[key] = query
            self._evict()
        else:
            self._entries.move_to_end(key)
        return query

    def _evict(self) -> None:
        excess = len(self._entries) - self._max_entries
        if excess <= 0:
            return
        # oldest first; an entry with a fetch in flight is still shared by readers
        for key in [k for k, q in self._entries.items() if not q.busy][:excess]:
            del self._entries[key]

    async def get(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        return await self.entry(key).get(fetch)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        if key is None:
            for query in self._entries.values():
                query.invalidate()
        elif key in self._entries:
            self._entries[key].invalidate()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries
