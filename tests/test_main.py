"""Tests for the background cache garbage collection started by the app lifespan."""

import asyncio

from app.main import collect_cache_garbage
from app.queries import QueryClient


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_expired_entries_are_collected_periodically():
    clock = FakeClock()
    queries = QueryClient(gc_time=10, clock=clock)
    queries.set_query_data(("old",), 1, stale_time=5)
    queries.set_query_data(("fresh",), 2, stale_time=60)

    async def scenario():
        clock.now = 20
        task = asyncio.create_task(collect_cache_garbage(queries, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()

    asyncio.run(scenario())
    assert len(queries.cache._entries) == 1
    assert queries.get_query_data(("fresh",)) == 2
