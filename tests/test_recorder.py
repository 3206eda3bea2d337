"""Tests for AttemptRecorder — background writes, retries and skipping guests."""

import asyncio

from app.models import QuestionAttempt
from app.recorder import AttemptRecorder
from tests.conftest import FakeStore, make_question


def attempt(selected=0):
    return QuestionAttempt.resolve(make_question(7), selected, 900)


def run_recorder(store, jobs, **kwargs):
    async def scenario():
        recorder = AttemptRecorder(store, retry_delays=[0, 0], **kwargs)
        for session_id, user_id, a in jobs:
            recorder.submit(session_id, user_id, a)
        await recorder.drain()
        await recorder.close()
        return recorder

    return asyncio.run(scenario())


class TestAttemptRecorder:
    def test_signed_in_attempt_writes_both_records(self):
        store = FakeStore()
        recorded = []
        run_recorder(store, [("s1", "u1", attempt(2))], on_recorded=recorded.append)
        assert store.increments == [(7, 2)]
        assert store.attempts == [("s1", "u1", 7, 2)]
        assert recorded == ["u1"]

    def test_guest_attempt_only_counts_the_answer(self):
        store = FakeStore()
        run_recorder(store, [(None, None, attempt(None))])
        assert store.increments == [(7, None)]
        assert store.calls["record_question_attempt"] == 0

    def test_failures_are_retried_then_dropped(self):
        store = FakeStore()
        store.failing.add("record_question_attempt")
        recorded = []
        recorder = run_recorder(store, [("s1", "u1", attempt())], on_recorded=recorded.append)
        assert store.calls["record_question_attempt"] == 3
        assert recorder.failed == 1
        assert recorded == []

    def test_one_failed_job_does_not_block_the_next(self):
        store = FakeStore()
        store.failing.add("increment_question_stats")
        run_recorder(store, [("s1", "u1", attempt(0)), ("s1", "u1", attempt(1))])
        assert [a[3] for a in store.attempts] == [0, 1]
