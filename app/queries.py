"""Declarative query/mutation layer over a single TTL cache.

Queries are keyed by tuples ``(entity, id, sub-resource, *params)`` built by
the key factories below. A mutation invalidates every query under the prefix
of the entity it changed, so ``user_keys.user(uid)`` clears that user's role,
stats, category breakdown and session history in one call.
"""
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple, Union

from app.cache import TTLCache
from app.logger import quiz_logger

QueryKey = Tuple


class user_keys:
    all: QueryKey = ("users",)

    @staticmethod
    def user(user_id: str) -> QueryKey:
        return user_keys.all + (user_id,)

    @staticmethod
    def role(user_id: str) -> QueryKey:
        return user_keys.user(user_id) + ("role",)

    @staticmethod
    def stats(user_id: str) -> QueryKey:
        return user_keys.user(user_id) + ("stats",)

    @staticmethod
    def category_performance(user_id: str) -> QueryKey:
        return user_keys.user(user_id) + ("categoryPerformance",)

    @staticmethod
    def recent_sessions(user_id: str, limit: int = 10) -> QueryKey:
        return user_keys.user(user_id) + ("recentSessions", limit)

    @staticmethod
    def trends(user_id: str) -> QueryKey:
        return user_keys.user(user_id) + ("trends",)


class question_keys:
    all: QueryKey = ("questions",)

    @staticmethod
    def random(count: int, kind: Optional[str] = None) -> QueryKey:
        return question_keys.all + ("random", count, kind)


class admin_keys:
    all: QueryKey = ("admin",)
    users: QueryKey = all + ("users",)


class leaderboard_keys:
    all: QueryKey = ("leaderboard",)

    @staticmethod
    def metric(metric: str) -> QueryKey:
        return leaderboard_keys.all + (metric,)


Invalidates = Union[Iterable[QueryKey], Callable[[Any], Iterable[QueryKey]]]


class QueryClient:
    def __init__(
        self,
        *,
        gc_time: float = 600.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = TTLCache(
            default_ttl=0.0,
            max_entries=max_entries,
            gc_time=gc_time,
            clock=clock,
            name="query-cache",
        )

    async def fetch_query(
        self,
        key: QueryKey,
        fn: Callable[[], Awaitable[Any]],
        *,
        stale_time: float = 0.0,
        enabled: bool = True,
        default: Any = None,
    ) -> Any:
        """Return fresh cached data for ``key`` or run ``fn`` once for all waiters.

        A disabled query (e.g. no signed-in user) returns ``default`` without
        touching the cache or the network.
        """
        if not enabled:
            return default
        return await self.cache.get(key, fn, ttl=stale_time)

    async def prefetch_query(self, key: QueryKey, fn: Callable[[], Awaitable[Any]], *, stale_time: float = 0.0) -> None:
        try:
            await self.fetch_query(key, fn, stale_time=stale_time)
        except Exception as e:
            quiz_logger.warning(f"Prefetch failed for {key!r}: {e}")

    def get_query_data(self, key: QueryKey, default: Any = None) -> Any:
        return self.cache.peek(key, default)

    def set_query_data(self, key: QueryKey, updater: Any, *, stale_time: float = 0.0) -> Any:
        if callable(updater):
            value = updater(self.cache.peek(key))
        else:
            value = updater
        self.cache.set(key, value, ttl=stale_time)
        return value

    def invalidate_queries(self, prefix: QueryKey) -> int:
        removed = self.cache.invalidate_prefix(prefix)
        quiz_logger.info(f"[Query Invalidate] {prefix!r} ({removed} cleared)")
        return removed

    async def mutate(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        invalidates: Invalidates = (),
        name: str = "mutation",
    ) -> Any:
        """Run a write and, only if it succeeds, invalidate the affected prefixes."""
        try:
            result = await fn()
        except Exception as e:
            quiz_logger.error(f"[{name}] failed: {e}")
            raise
        prefixes = invalidates(result) if callable(invalidates) else invalidates
        for prefix in prefixes or ():
            self.invalidate_queries(prefix)
        return result

    def collect_garbage(self) -> int:
        return self.cache.collect_garbage()

    def clear(self) -> None:
        self.cache.invalidate_all()

    def dispose(self) -> None:
        self.cache.dispose()
