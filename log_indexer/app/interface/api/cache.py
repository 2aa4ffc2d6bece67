from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any


class TtlCache:
    """
    Tiny in-memory cache for query results.

    Entries live for `ttl` seconds; expired entries are purged whenever a
    new value is stored, and the oldest entry is evicted beyond
    `max_entries`. Concurrent misses for one key share a single
    computation; a failed computation is not cached. A ttl of 0 disables
    caching.
    """

    def __init__(
        self,
        *,
        ttl: float,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        if self._ttl <= 0:
            return await compute()

        now = self._clock()
        hit = self._entries.get(key)
        if hit is not None and now - hit[0] < self._ttl:
            return hit[1]

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(compute())
            self._inflight[key] = pending
            pending.add_done_callback(lambda fut: self._settle(key, fut, now))
        # a cancelled caller must not cancel the computation other callers wait on
        return await asyncio.shield(pending)

    def _settle(self, key: str, fut: asyncio.Future[Any], started: float) -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]
        if fut.cancelled() or fut.exception() is not None:
            return
        self._store(key, fut.result(), started)

    def _store(self, key: str, value: Any, now: float) -> None:
        expired = [k for k, (ts, _) in self._entries.items() if now - ts >= self._ttl]
        for k in expired:
            del self._entries[k]
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (now, value)
