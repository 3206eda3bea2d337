"""Tests for QueryClient — key factories, enabled flag and mutation invalidation."""

import asyncio

import pytest

from app.queries import QueryClient, admin_keys, leaderboard_keys, question_keys, user_keys


class TestKeys:
    def test_user_keys_share_the_user_prefix(self):
        prefix = user_keys.user("u1")
        for key in (user_keys.role("u1"), user_keys.stats("u1"), user_keys.category_performance("u1"),
                    user_keys.recent_sessions("u1", 5), user_keys.trends("u1")):
            assert key[:len(prefix)] == prefix

    def test_other_families_are_separate(self):
        assert question_keys.random(10)[0] == "questions"
        assert admin_keys.users == ("admin", "users")
        assert leaderboard_keys.metric("points") == ("leaderboard", "points")


class TestFetch:
    def test_disabled_query_never_runs(self):
        calls = []

        async def fn():
            calls.append(1)
            return "x"

        async def scenario():
            client = QueryClient()
            return await client.fetch_query(("k",), fn, stale_time=60, enabled=False, default="fallback")

        assert asyncio.run(scenario()) == "fallback"
        assert calls == []

    def test_zero_stale_time_refetches(self):
        calls = []

        async def fn():
            calls.append(1)
            return len(calls)

        async def scenario():
            client = QueryClient()
            await client.fetch_query(("k",), fn)
            return await client.fetch_query(("k",), fn)

        assert asyncio.run(scenario()) == 2

    def test_set_query_data_with_updater(self):
        client = QueryClient()
        client.set_query_data(("count",), 1, stale_time=60)
        client.set_query_data(("count",), lambda old: old + 1, stale_time=60)
        assert client.get_query_data(("count",)) == 2

    def test_prefetch_swallows_failures(self):
        async def fn():
            raise ConnectionError("down")

        async def scenario():
            client = QueryClient()
            await client.prefetch_query(("k",), fn, stale_time=60)
            return client.get_query_data(("k",), "missing")

        assert asyncio.run(scenario()) == "missing"


class TestMutate:
    def test_success_invalidates_prefixes(self):
        async def fn():
            return {"user_id": "u1"}

        async def scenario():
            client = QueryClient()
            client.set_query_data(user_keys.stats("u1"), "old", stale_time=60)
            client.set_query_data(user_keys.stats("u2"), "other", stale_time=60)
            await client.mutate(fn, invalidates=lambda row: [user_keys.user(row["user_id"])])
            return client.get_query_data(user_keys.stats("u1")), client.get_query_data(user_keys.stats("u2"))

        assert asyncio.run(scenario()) == (None, "other")

    def test_failure_keeps_cache_and_reraises(self):
        async def fn():
            raise ConnectionError("write failed")

        async def scenario():
            client = QueryClient()
            client.set_query_data(user_keys.stats("u1"), "old", stale_time=60)
            with pytest.raises(ConnectionError):
                await client.mutate(fn, invalidates=[user_keys.user("u1")])
            return client.get_query_data(user_keys.stats("u1"))

        assert asyncio.run(scenario()) == "old"

    def test_clear_drops_everything(self):
        client = QueryClient()
        client.set_query_data(("a",), 1, stale_time=60)
        client.clear()
        assert client.get_query_data(("a",)) is None
