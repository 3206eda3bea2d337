import asyncio
from collections import OrderedDict
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from app.engine import QuizEngine
from app.errors import SessionNotFoundError
from app.logger import quiz_logger
from app.models import Question, QuizResults, SessionSnapshot


class SessionRegistry:
    """Running quiz engines, keyed by session id.

    Finished sessions stay readable until ``max_finished`` newer ones have
    finished, then they are dropped.
    """

    def __init__(
        self,
        service,
        recorder,
        *,
        time_limit: float,
        pause: float,
        local_store=None,
        max_finished: int = 200,
    ):
        self.service = service
        self.recorder = recorder
        self.local_store = local_store
        self.time_limit = time_limit
        self.pause = pause
        self.max_finished = max_finished
        self._engines: "OrderedDict[str, QuizEngine]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._engines)

    async def start(self, user_id: Optional[str] = None, count: Optional[int] = None) -> QuizEngine:
        engine = QuizEngine(
            lambda: self._load_questions(count),
            user_id=user_id,
            recorder=self.recorder,
            open_session=self.service.open_session,
            complete_session=self.service.complete_session,
            on_complete=lambda results: self._finished(engine, results),
            time_limit=self.time_limit,
            pause=self.pause,
        )
        self._prune()
        self._engines[engine.session_id] = engine
        await engine.ready()
        quiz_logger.info(f"Session {engine.session_id} for user {user_id or 'guest'}: {engine.state.value}")
        return engine

    async def _load_questions(self, count: Optional[int]) -> List[Question]:
        questions = await self.service.get_questions(count)
        if self.local_store is None:
            return questions
        # Questions fetched without counts show the locally mirrored distribution.
        return await run_in_threadpool(self.local_store.load_question_stats, questions)

    def get(self, session_id: str) -> QuizEngine:
        engine = self._engines.get(session_id)
        if engine is None:
            raise SessionNotFoundError(session_id)
        return engine

    async def answer(self, session_id: str, selected_answer: int) -> SessionSnapshot:
        engine = self.get(session_id)
        await engine.answer(selected_answer)
        return engine.snapshot()

    def advance(self, session_id: str) -> None:
        self.get(session_id).advance()

    async def cancel(self, session_id: str) -> None:
        engine = self._engines.pop(session_id, None)
        if engine is None:
            raise SessionNotFoundError(session_id)
        await engine.close()

    async def _finished(self, engine: QuizEngine, results: QuizResults) -> None:
        if self.local_store is not None:
            await run_in_threadpool(self._mirror_locally, engine.questions, results)
        # Warm the pool for the next play-through.
        await self.service.prefetch_questions()

    def _mirror_locally(self, questions: List[Question], results: QuizResults) -> None:
        summary = results.summary
        self.local_store.update_game_stats("timed", summary.correct_answers, summary.total_questions, summary.score)
        self.local_store.save_question_stats(questions)

    def discard(self, session_id: str) -> None:
        self._engines.pop(session_id, None)

    def _prune(self) -> None:
        finished = [sid for sid, e in self._engines.items() if e.finished]
        for sid in finished[:max(0, len(finished) - self.max_finished)]:
            del self._engines[sid]

    async def close(self) -> None:
        engines = list(self._engines.values())
        self._engines.clear()
        outcomes = await asyncio.gather(*(e.close() for e in engines), return_exceptions=True)
        for engine, outcome in zip(engines, outcomes):
            if isinstance(outcome, Exception):
                quiz_logger.error(f"Session {engine.session_id} failed while closing: {outcome}")
