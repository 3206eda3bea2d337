"""Timed quiz play-through.

One ``QuizEngine`` runs one session over a fixed question list:

    LOADING -> IN_PROGRESS(i) -> AWAITING_NEXT -> IN_PROGRESS(i+1) -> ... -> COMPLETED

with ERRORED when the questions cannot be loaded (or there are none) and
CANCELLED when the host tears the session down. Every timer the engine
schedules is owned by the state that scheduled it and is cancelled as soon as
that state is left, so a countdown can never resolve a question twice.

Remote writes (attempt recording, session completion) are best effort: they
are logged on failure and never change the local score or hold up the next
question.
"""
import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from app.errors import InvalidAnswerError, NoQuestionsError, QuestionLoadError, QuizError
from app.logger import quiz_logger
from app.models import (
    OPTION_COUNT,
    AnswerFeedback,
    Question,
    QuestionAttempt,
    QuestionView,
    QuizResults,
    SessionSnapshot,
    SessionSummary,
)
from app.stats import (
    average_response_time,
    calculate_accuracy,
    category_breakdown,
    format_duration,
    format_response_time,
    get_answer_percentages,
    update_answer_statistics,
)

QUESTION_TIME_LIMIT = 10.0
ANSWER_PAUSE = 2.0


class SessionState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    AWAITING_NEXT = "awaiting_next"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


FINISHED_STATES = (SessionState.COMPLETED, SessionState.ERRORED, SessionState.CANCELLED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuizSession:
    """Running tally of one play-through."""
    id: str
    user_id: Optional[str]
    total_questions: int
    started_at: datetime = field(default_factory=_utcnow)
    attempts: List[QuestionAttempt] = field(default_factory=list)
    score: int = 0
    correct_answers: int = 0
    current_streak: int = 0
    best_streak: int = 0
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    completed: bool = False

    def add_attempt(self, attempt: QuestionAttempt) -> None:
        if self.completed or len(self.attempts) >= self.total_questions:
            raise InvalidAnswerError(f"session {self.id} already has {len(self.attempts)} attempts")
        self.attempts.append(attempt)
        if attempt.is_correct:
            self.score += attempt.question.points
            self.correct_answers += 1
            self.current_streak += 1
            self.best_streak = max(self.best_streak, self.current_streak)
        else:
            self.current_streak = 0

    @property
    def response_times(self) -> List[int]:
        return [a.response_time_ms for a in self.attempts]

    @property
    def accuracy(self) -> int:
        return calculate_accuracy(self.correct_answers, self.total_questions)

    def finalize(self, ended_at: Optional[datetime] = None) -> SessionSummary:
        if self.completed:
            raise QuizError(f"session {self.id} is already finalized")
        self.ended_at = ended_at or _utcnow()
        self.duration_seconds = round((self.ended_at - self.started_at).total_seconds())
        self.completed = True
        return self.summary()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.id,
            user_id=self.user_id,
            score=self.score,
            correct_answers=self.correct_answers,
            total_questions=self.total_questions,
            start_time=self.started_at,
            end_time=self.ended_at or _utcnow(),
            duration_seconds=self.duration_seconds or 0,
            best_streak=self.best_streak,
            average_response_time_ms=average_response_time(self.response_times),
            completed=self.completed,
        )

    def results(self) -> QuizResults:
        return QuizResults(
            summary=self.summary(),
            accuracy=self.accuracy,
            response_times=self.response_times,
            attempts=list(self.attempts),
            category_breakdown=category_breakdown(self.attempts),
        )


class QuizEngine:
    def __init__(
        self,
        load_questions: Callable[[], Awaitable[List[Question]]],
        *,
        user_id: Optional[str] = None,
        recorder=None,
        open_session: Optional[Callable[[str, str], Awaitable[None]]] = None,
        complete_session: Optional[Callable[[SessionSummary], Awaitable[None]]] = None,
        on_complete: Optional[Callable[[QuizResults], Any]] = None,
        time_limit: float = QUESTION_TIME_LIMIT,
        pause: float = ANSWER_PAUSE,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.user_id = user_id
        self.time_limit = time_limit
        self.pause = pause
        self.state = SessionState.LOADING
        self.questions: List[Question] = []
        self.index = 0
        self.session: Optional[QuizSession] = None
        self.last_feedback: Optional[AnswerFeedback] = None
        self.results: Optional[QuizResults] = None
        self.error: Optional[QuizError] = None

        self._load_questions = load_questions
        self._recorder = recorder
        self._open_session = open_session
        self._complete_session = complete_session
        self._on_complete = on_complete
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._answer: Optional[asyncio.Future] = None
        self._advance: Optional[asyncio.Future] = None
        self._presented_at = 0.0
        self._task: Optional[asyncio.Task] = None
        self._loaded = asyncio.Event()
        self._resolved = asyncio.Event()

    # ---- lifecycle ----

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def __aenter__(self) -> "QuizEngine":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def finished(self) -> bool:
        return self.state in FINISHED_STATES

    def cancel(self) -> None:
        """Tear the session down; no further transitions happen afterwards."""
        self._cancel_timers()
        if not self.finished:
            self._set_state(SessionState.CANCELLED)
        self._resolved.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def close(self) -> None:
        self.cancel()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def wait(self) -> Optional[QuizResults]:
        return await self.start()

    async def ready(self) -> SessionState:
        """Wait until loading is over (first question shown, or failure)."""
        self.start()
        await self._loaded.wait()
        return self.state

    # ---- the run loop ----

    async def run(self) -> Optional[QuizResults]:
        try:
            return await self._run()
        except asyncio.CancelledError:
            self._cancel_timers()
            if not self.finished:
                self._set_state(SessionState.CANCELLED)
            raise

    async def _run(self) -> Optional[QuizResults]:
        if self.finished:
            return self.results
        try:
            questions = list(await self._load_questions())
        except QuizError as e:
            return self._fail(e)
        except Exception as e:
            quiz_logger.error(f"Failed to load questions for session {self.session_id}: {e}")
            return self._fail(QuestionLoadError(str(e)))
        if not questions:
            return self._fail(NoQuestionsError(f"no questions for session {self.session_id}"))

        self.questions = questions
        self.session = QuizSession(id=self.session_id, user_id=self.user_id, total_questions=len(questions))
        if self.user_id and self._open_session:
            try:
                await self._open_session(self.session_id, self.user_id)
            except Exception as e:
                quiz_logger.error(f"Could not open remote session {self.session_id}: {e}")

        last = len(questions) - 1
        for i in range(len(questions)):
            selection, elapsed_ms = await self._ask(i)
            self._resolve(i, selection, elapsed_ms)
            if i < last:
                await self._wait_for_next()
        return await self._complete()

    def _fail(self, error: QuizError) -> None:
        self.error = error
        self._set_state(SessionState.ERRORED)
        return None

    async def _ask(self, index: int) -> Tuple[Optional[int], int]:
        loop = asyncio.get_running_loop()
        self.index = index
        self._answer = loop.create_future()
        self._resolved.clear()
        self._presented_at = loop.time()
        self._set_state(SessionState.IN_PROGRESS)
        self._schedule("countdown", self.time_limit, self._expire)
        try:
            selection, resolved_at = await self._answer
        finally:
            self._cancel_timers()
        return selection, round((resolved_at - self._presented_at) * 1000)

    def _expire(self) -> None:
        if self._answer is not None and not self._answer.done():
            quiz_logger.debug(f"Session {self.session_id}: question {self.index + 1} timed out")
            self._answer.set_result((None, asyncio.get_running_loop().time()))

    def submit_answer(self, selected_answer: int) -> None:
        """Answer the question currently on screen."""
        if self.state != SessionState.IN_PROGRESS or self._answer is None or self._answer.done():
            raise InvalidAnswerError(f"session {self.session_id} is {self.state.value}")
        if not 0 <= selected_answer < OPTION_COUNT:
            raise InvalidAnswerError(f"answer index {selected_answer} out of range")
        self._cancel_timers()
        self._answer.set_result((selected_answer, asyncio.get_running_loop().time()))

    async def answer(self, selected_answer: int) -> AnswerFeedback:
        """Submit and wait until the answer has been scored."""
        self.submit_answer(selected_answer)
        await self._resolved.wait()
        return self.last_feedback

    def _resolve(self, index: int, selection: Optional[int], elapsed_ms: int) -> None:
        question = self.questions[index]
        attempt = QuestionAttempt.resolve(question, selection, elapsed_ms)
        self.session.add_attempt(attempt)

        counted = update_answer_statistics(question, selection)
        self.questions[index] = counted
        self.last_feedback = AnswerFeedback(
            question_id=question.id,
            selected_answer=selection,
            is_correct=attempt.is_correct,
            correct_answer=question.correct_answer,
            correct_option=question.options[question.correct_answer],
            explanation=question.explanation,
            reflection=question.reflection,
            total_count=counted.total_count or 0,
            answer_percentages=get_answer_percentages(counted),
            points_earned=question.points if attempt.is_correct else 0,
        )

        if self._recorder is not None:
            try:
                self._recorder.submit(self.session_id, self.user_id, attempt)
            except Exception as e:
                quiz_logger.error(f"Could not queue attempt for session {self.session_id}: {e}")
        self._resolved.set()

    async def _wait_for_next(self) -> None:
        loop = asyncio.get_running_loop()
        self._advance = loop.create_future()
        self._set_state(SessionState.AWAITING_NEXT)
        self._schedule("advance", self.pause, self._auto_advance)
        try:
            await self._advance
        finally:
            self._cancel_timers()

    def _auto_advance(self) -> None:
        if self._advance is not None and not self._advance.done():
            self._advance.set_result(None)

    def advance(self) -> None:
        """Skip the rest of the feedback pause."""
        if self.state != SessionState.AWAITING_NEXT:
            raise InvalidAnswerError(f"session {self.session_id} is {self.state.value}")
        self._cancel_timers()
        self._auto_advance()

    async def _complete(self) -> QuizResults:
        summary = self.session.finalize()
        self.results = self.session.results()
        self._set_state(SessionState.COMPLETED)
        quiz_logger.info(
            f"Session {self.session_id} completed: score={summary.score} "
            f"correct={summary.correct_answers}/{summary.total_questions} best_streak={summary.best_streak} "
            f"in {format_duration(summary.duration_seconds)}, avg {format_response_time(summary.average_response_time_ms)}"
        )
        if self.user_id and self._complete_session:
            try:
                await self._complete_session(summary)
            except Exception as e:
                quiz_logger.error(f"Could not complete remote session {self.session_id}: {e}")
        if self._on_complete:
            try:
                outcome = self._on_complete(self.results)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                quiz_logger.error(f"Completion hook failed for session {self.session_id}: {e}")
        return self.results

    # ---- timers ----

    def _schedule(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        self._cancel_timers()
        self._timers[name] = asyncio.get_running_loop().call_later(delay, callback)

    def _cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            quiz_logger.debug(f"Session {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state
        if state != SessionState.LOADING:
            self._loaded.set()

    # ---- views ----

    @property
    def time_left(self) -> Optional[float]:
        if self.state != SessionState.IN_PROGRESS:
            return None
        elapsed = asyncio.get_running_loop().time() - self._presented_at
        return max(0.0, round(self.time_limit - elapsed, 3))

    def snapshot(self) -> SessionSnapshot:
        session = self.session
        current = None
        if self.state == SessionState.IN_PROGRESS and self.questions:
            current = QuestionView.from_question(self.questions[self.index])
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state.value,
            user_id=self.user_id,
            question_index=self.index,
            total_questions=len(self.questions),
            current_question=current,
            time_left_seconds=self.time_left,
            score=session.score if session else 0,
            correct_answers=session.correct_answers if session else 0,
            current_streak=session.current_streak if session else 0,
            best_streak=session.best_streak if session else 0,
            last_feedback=self.last_feedback if self.state != SessionState.IN_PROGRESS else None,
            error=self.error.user_message if self.error else None,
            retryable=self.error.retryable if self.error else False,
            results=self.results,
        )
