"""Background recording of per-question attempts.

Attempts are queued by the engine and written by a single worker task, so a
slow or failing store never holds up the quiz. Each job is retried with the
configured delays; the final failure is logged and dropped.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi.concurrency import run_in_threadpool

from app.logger import quiz_logger
from app.models import QuestionAttempt


@dataclass(frozen=True)
class AttemptJob:
    session_id: Optional[str]
    user_id: Optional[str]
    attempt: QuestionAttempt


class AttemptRecorder:
    def __init__(
        self,
        store,
        *,
        retry_delays: Optional[List[float]] = None,
        on_recorded: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.retry_delays = list(retry_delays if retry_delays is not None else [0.5, 1, 2])
        self.on_recorded = on_recorded
        self.failed = 0
        self._queue: "asyncio.Queue[AttemptJob]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def submit(self, session_id: Optional[str], user_id: Optional[str], attempt: QuestionAttempt) -> None:
        self._ensure_worker()
        self._queue.put_nowait(AttemptJob(session_id, user_id, attempt))

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: AttemptJob) -> None:
        attempt = job.attempt
        question_id = attempt.question.id

        # The shared answer counter is updated for every attempt, signed in or not.
        await self._with_retries(
            f"increment_question_stats q={question_id}",
            self.store.increment_question_stats, question_id, attempt.selected_answer,
        )

        if not (job.session_id and job.user_id):
            return
        ok = await self._with_retries(
            f"record_question_attempt session={job.session_id} q={question_id}",
            self.store.record_question_attempt,
            job.session_id, job.user_id, attempt.question, attempt.selected_answer, attempt.response_time_ms,
        )
        if ok and self.on_recorded:
            self.on_recorded(job.user_id)

    async def _with_retries(self, operation: str, fn, *args) -> bool:
        attempts = len(self.retry_delays) + 1
        for i in range(attempts):
            try:
                await run_in_threadpool(fn, *args)
                return True
            except Exception as e:
                if i == attempts - 1:
                    self.failed += 1
                    quiz_logger.error(f"❌ {operation} failed after {attempts} attempts: {e}")
                    return False
                quiz_logger.warning(f"⚠️ {operation} failed (attempt {i + 1}/{attempts}): {e}")
                await asyncio.sleep(self.retry_delays[i])
        return False

    async def drain(self) -> None:
        """Wait until every queued attempt has been written or given up on."""
        await self._queue.join()

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
