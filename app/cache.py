"""In-memory TTL cache with in-flight request de-duplication.

An entry is live while ``now - timestamp < ttl``. Once it goes stale it reads
as a miss, though it stays in memory until garbage collection, overwrite or
eviction removes it. Concurrent ``get`` calls for the same key share one
loader call; a failed load leaves neither an entry nor an in-flight request
behind, so the next ``get`` retries.

Instances are meant to be owned by whoever needs them (one per application,
per tenant or per test) and released with ``dispose()``.
"""
import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

from app.logger import quiz_logger


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


def _consume_exception(task: asyncio.Future) -> None:
    # Callers that were cancelled never see the error; mark it retrieved.
    if not task.cancelled():
        task.exception()


class TTLCache:
    def __init__(
        self,
        default_ttl: float = 300.0,
        *,
        max_entries: int = 1000,
        gc_time: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.gc_time = gc_time
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._in_flight: Dict[Hashable, asyncio.Task] = {}

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if entry.is_valid(now))

    def __contains__(self, key: Hashable) -> bool:
        return self._live_entry(key) is not None

    def _live_entry(self, key: Hashable) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    def peek(self, key: Hashable, default: Any = None) -> Any:
        entry = self._live_entry(key)
        return entry.value if entry is not None else default

    def is_loading(self, key: Hashable) -> bool:
        return key in self._in_flight

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_entries:
            self.collect_garbage()
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            quiz_logger.debug(f"[{self.name}] evicted {evicted!r}")

    async def get(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        entry = self._live_entry(key)
        if entry is not None:
            quiz_logger.debug(f"[{self.name}] hit {key!r}")
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            quiz_logger.debug(f"[{self.name}] miss {key!r}, starting fetch")
            task = asyncio.ensure_future(self._load(key, loader, ttl))
            task.add_done_callback(_consume_exception)
            self._in_flight[key] = task
        else:
            quiz_logger.debug(f"[{self.name}] reusing in-flight fetch for {key!r}")
        # One caller giving up must not cancel the fetch for the others.
        return await asyncio.shield(task)

    async def _load(self, key: Hashable, loader: Callable[[], Awaitable[Any]], ttl: Optional[float]) -> Any:
        me = asyncio.current_task()
        try:
            value = await loader()
        except BaseException:
            if self._in_flight.get(key) is me:
                del self._in_flight[key]
            raise
        # Invalidated while loading: hand the value to waiting callers but do not store it.
        if self._in_flight.get(key) is me:
            del self._in_flight[key]
            self.set(key, value, ttl)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)
        self._in_flight.pop(key, None)
        quiz_logger.debug(f"[{self.name}] invalidated {key!r}")

    def invalidate_prefix(self, prefix: Tuple) -> int:
        """Drop every tuple key that starts with ``prefix``."""
        size = len(prefix)

        def matches(key: Hashable) -> bool:
            return isinstance(key, tuple) and key[:size] == prefix

        keys = [k for k in self._entries if matches(k)]
        for k in keys:
            del self._entries[k]
        pending = [k for k in self._in_flight if matches(k)]
        for k in pending:
            del self._in_flight[k]
        removed = len(set(keys) | set(pending))
        quiz_logger.debug(f"[{self.name}] invalidated {removed} key(s) under {prefix!r}")
        return removed

    def invalidate_all(self) -> None:
        self._entries.clear()
        self._in_flight.clear()
        quiz_logger.info(f"[{self.name}] cleared")

    def collect_garbage(self) -> int:
        """Physically remove entries whose TTL (plus ``gc_time``) has passed."""
        now = self._clock()
        grace = self.gc_time or 0.0
        dead = [k for k, e in self._entries.items() if now - e.timestamp >= e.ttl + grace]
        for k in dead:
            del self._entries[k]
        return len(dead)

    def dispose(self) -> None:
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        self._entries.clear()
