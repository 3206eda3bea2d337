import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings as default_settings
from app.dependencies import get_supabase_client
from app.local_store import LocalStore
from app.logger import quiz_logger
from app.queries import QueryClient
from app.recorder import AttemptRecorder
from app.routers import auth, leaderboard, quiz, users
from app.services import QuizService
from app.sessions import SessionRegistry
from app.store import SupabaseQuizStore


async def collect_cache_garbage(queries: QueryClient, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        removed = queries.collect_garbage()
        if removed:
            quiz_logger.debug(f"Query cache GC removed {removed} entries")


def create_app(store=None, settings=default_settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        quiz_store = store or SupabaseQuizStore(get_supabase_client())
        queries = QueryClient(gc_time=settings.CACHE_GC_SECONDS, max_entries=settings.CACHE_MAX_ENTRIES)
        service = QuizService(quiz_store, queries, settings)
        recorder = AttemptRecorder(
            quiz_store,
            retry_delays=settings.RECORDER_RETRY_DELAYS,
            on_recorded=service.refresh_user_later,
        )
        local_store = LocalStore(settings.LOCAL_STORE_PATH)
        app.state.service = service
        app.state.recorder = recorder
        app.state.registry = SessionRegistry(
            service,
            recorder,
            time_limit=settings.QUESTION_TIME_LIMIT_SECONDS,
            pause=settings.ANSWER_PAUSE_SECONDS,
            local_store=local_store,
        )
        app.state.local_store = local_store
        gc_task = asyncio.create_task(collect_cache_garbage(queries, settings.CACHE_GC_INTERVAL_SECONDS))
        quiz_logger.info("Quiz API started")

        yield

        gc_task.cancel()
        await app.state.registry.close()
        try:
            await asyncio.wait_for(recorder.drain(), settings.RECORDER_DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            quiz_logger.warning("Shutting down with attempts still queued")
        await recorder.close()
        service.close()
        queries.dispose()
        quiz_logger.info("Quiz API stopped")

    app = FastAPI(
        title="Quiz API",
        description="Timed trivia sessions and cached player statistics",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(quiz.router)
    app.include_router(users.router)
    app.include_router(leaderboard.router)
    app.include_router(auth.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
