"""Cached reads and invalidating writes over the Supabase store.

Every read goes through the one ``QueryClient``; every write that changes a
user's data invalidates that user's whole key prefix through the same client.
Read failures resolve to a safe default and set ``degraded`` instead of
raising into the HTTP layer.
"""
import random
from typing import Any, Dict, List, NamedTuple, Optional

from fastapi.concurrency import run_in_threadpool

from app.config import settings as default_settings
from app.debounce import Debouncer
from app.errors import PermissionDeniedError
from app.logger import quiz_logger
from app.models import LeaderboardEntry, Question, QuizSessionRecord, QuizStats, SessionSummary
from app.queries import QueryClient, admin_keys, leaderboard_keys, question_keys, user_keys
from app.stats import LEADERBOARD_METRICS, build_leaderboard, empty_stats, normalize_category_rows, normalize_stats

DEFAULT_ROLE = "user"


class Loaded(NamedTuple):
    value: Any
    degraded: bool = False


class QuizService:
    def __init__(self, store, queries: QueryClient, settings=default_settings):
        self.store = store
        self.queries = queries
        self.settings = settings
        self._refreshers = {}

    async def _call(self, fn, *args):
        return await run_in_threadpool(fn, *args)

    async def _read(self, key, loader, *, stale_time: float, default: Any, operation: str) -> Loaded:
        try:
            return Loaded(await self.queries.fetch_query(key, loader, stale_time=stale_time))
        except Exception as e:
            quiz_logger.error(f"[{operation}] {key!r} failed: {e}")
            return Loaded(default, degraded=True)

    # ---- questions ----

    async def get_questions(self, count: Optional[int] = None) -> List[Question]:
        """Random questions for one play-through.

        A pool is fetched (and cached briefly) and each session samples from it.
        Failures propagate: without questions there is no quiz.
        """
        count = count or self.settings.QUIZ_QUESTION_COUNT
        key, loader = self._question_pool(count)
        pool = await self.queries.fetch_query(key, loader, stale_time=self.settings.QUESTIONS_CACHE_TTL_SECONDS)
        return random.sample(pool, min(count, len(pool)))

    async def prefetch_questions(self, count: Optional[int] = None) -> None:
        key, loader = self._question_pool(count or self.settings.QUIZ_QUESTION_COUNT)
        await self.queries.prefetch_query(key, loader, stale_time=self.settings.QUESTIONS_CACHE_TTL_SECONDS)

    def _question_pool(self, count: int):
        pool_size = max(count, self.settings.QUESTION_POOL_SIZE)
        return (
            question_keys.random(pool_size),
            lambda: self._call(self.store.fetch_random_questions, pool_size, self.settings.MAX_QUESTION_ID),
        )

    # ---- roles ----

    async def _load_role(self, user_id: str) -> str:
        role = await self._call(self.store.get_user_role, user_id)
        if role:
            return role
        quiz_logger.info(f"No role found for user {user_id}, creating default role")
        try:
            await self._call(self.store.create_default_user_role, user_id)
        except Exception as e:
            quiz_logger.error(f"Error creating default role for {user_id}: {e}")
        return DEFAULT_ROLE

    async def get_role(self, user_id: Optional[str]) -> Loaded:
        if not user_id:
            return Loaded(None)
        return await self._read(
            user_keys.role(user_id),
            lambda: self._load_role(user_id),
            stale_time=self.settings.ROLE_CACHE_TTL_SECONDS,
            default=DEFAULT_ROLE,
            operation="get_role",
        )

    async def is_admin(self, user_id: Optional[str]) -> bool:
        return (await self.get_role(user_id)).value == "admin"

    async def update_role(self, target_user_id: str, role: str, admin_user_id: str) -> None:
        if not await self.is_admin(admin_user_id):
            raise PermissionDeniedError(f"{admin_user_id} tried to set role of {target_user_id}")
        await self.queries.mutate(
            lambda: self._call(self.store.upsert_user_role, target_user_id, role, admin_user_id),
            invalidates=[user_keys.user(target_user_id), admin_keys.users],
            name="update_role",
        )

    async def list_users(self, admin_user_id: str) -> Loaded:
        if not await self.is_admin(admin_user_id):
            raise PermissionDeniedError(f"{admin_user_id} tried to list users")
        return await self._read(
            admin_keys.users,
            lambda: self._call(self.store.get_users_with_roles),
            stale_time=self.settings.ROLE_CACHE_TTL_SECONDS,
            default=[],
            operation="list_users",
        )

    # ---- statistics ----

    async def _load_stats(self, user_id: str) -> QuizStats:
        return normalize_stats(await self._call(self.store.get_user_quiz_stats, user_id))

    async def get_stats(self, user_id: Optional[str]) -> Loaded:
        if not user_id:
            return Loaded(empty_stats())
        return await self._read(
            user_keys.stats(user_id),
            lambda: self._load_stats(user_id),
            stale_time=self.settings.STATS_CACHE_TTL_SECONDS,
            default=empty_stats(),
            operation="get_stats",
        )

    async def _load_categories(self, user_id: str):
        return normalize_category_rows(await self._call(self.store.get_category_performance, user_id))

    async def get_category_performance(self, user_id: str) -> Loaded:
        return await self._read(
            user_keys.category_performance(user_id),
            lambda: self._load_categories(user_id),
            stale_time=self.settings.CATEGORY_CACHE_TTL_SECONDS,
            default=[],
            operation="get_category_performance",
        )

    async def _load_sessions(self, user_id: str, limit: int) -> List[QuizSessionRecord]:
        rows = await self._call(self.store.get_recent_sessions, user_id, limit)
        return [QuizSessionRecord.model_validate(row) for row in rows]

    async def get_recent_sessions(self, user_id: str, limit: int = 10) -> Loaded:
        return await self._read(
            user_keys.recent_sessions(user_id, limit),
            lambda: self._load_sessions(user_id, limit),
            stale_time=self.settings.QUESTIONS_CACHE_TTL_SECONDS,
            default=[],
            operation="get_recent_sessions",
        )

    async def get_trends(self, user_id: str) -> Loaded:
        return await self._read(
            user_keys.trends(user_id),
            lambda: self._call(self.store.get_quiz_trends, user_id),
            stale_time=self.settings.QUESTIONS_CACHE_TTL_SECONDS,
            default=[],
            operation="get_trends",
        )

    async def _load_leaderboard(self, metric: str) -> List[LeaderboardEntry]:
        engagement = await self._call(self.store.get_engagement_rows)
        sessions = await self._call(self.store.get_completed_sessions_since)
        # Ranked without a viewer; is_current_user is filled in per request.
        return build_leaderboard(engagement, sessions, metric=metric, nicknames=await self._nicknames())

    async def _nicknames(self) -> Dict[str, str]:
        try:
            users = await self._call(self.store.get_users_with_roles)
        except Exception as e:
            quiz_logger.warning(f"Leaderboard without nicknames: {e}")
            return {}
        return {u["user_id"]: u["nickname"] for u in users or [] if u.get("nickname")}

    async def get_leaderboard(self, metric: str, current_user_id: Optional[str] = None) -> Loaded:
        if metric not in LEADERBOARD_METRICS:
            raise ValueError(f"Unknown leaderboard metric: {metric}")
        loaded = await self._read(
            leaderboard_keys.metric(metric),
            lambda: self._load_leaderboard(metric),
            stale_time=self.settings.STATS_CACHE_TTL_SECONDS,
            default=[],
            operation="get_leaderboard",
        )
        entries = [
            e.model_copy(update={"is_current_user": e.user_id == current_user_id})
            for e in loaded.value
        ]
        return Loaded(entries, loaded.degraded)

    # ---- session writes ----

    async def open_session(self, session_id: str, user_id: str) -> None:
        await self._call(self.store.start_session, session_id, user_id)

    async def complete_session(self, summary: SessionSummary) -> Optional[dict]:
        def affected(record):
            user_id = (record or {}).get("user_id") or summary.user_id
            return [user_keys.user(user_id), leaderboard_keys.all] if user_id else [leaderboard_keys.all]

        return await self.queries.mutate(
            lambda: self._call(self.store.complete_session, summary.session_id, summary),
            invalidates=affected,
            name="complete_session",
        )

    def invalidate_user(self, user_id: str) -> int:
        return self.queries.invalidate_queries(user_keys.user(user_id))

    def refresh_user_later(self, user_id: str) -> None:
        """Invalidate now; refetch stats once a burst of writes has settled."""
        self.invalidate_user(user_id)
        debouncer = self._refreshers.get(user_id)
        if debouncer is None:
            debouncer = self._refreshers[user_id] = Debouncer(self.settings.DEBOUNCE_MS / 1000)
        elif debouncer.pending:
            quiz_logger.debug(f"Stats refresh for {user_id} already pending, restarting the delay")
        debouncer.call(self._warm_stats, user_id)

    async def _warm_stats(self, user_id: str) -> None:
        self._refreshers.pop(user_id, None)
        await self.get_stats(user_id)

    def close(self) -> None:
        for debouncer in self._refreshers.values():
            debouncer.cancel()
        self._refreshers.clear()

    # ---- auth ----

    async def sign_up(self, email: str, password: str, nickname: Optional[str] = None) -> Optional[str]:
        user_id = await self._call(self.store.sign_up, email, password, nickname)
        if user_id:
            try:
                await self._call(self.store.create_default_user_role, user_id)
            except Exception as e:
                quiz_logger.error(f"Error creating default role for new user {user_id}: {e}")
            else:
                self.queries.set_query_data(
                    user_keys.role(user_id), DEFAULT_ROLE, stale_time=self.settings.ROLE_CACHE_TTL_SECONDS
                )
        return user_id

    async def sign_out(self) -> None:
        try:
            await self._call(self.store.sign_out)
        except Exception as e:
            quiz_logger.error(f"Sign-out failed at the auth provider: {e}")
        self.queries.clear()
