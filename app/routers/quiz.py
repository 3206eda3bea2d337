from fastapi import APIRouter, Depends, HTTPException, Query
from app.dependencies import get_local_store, get_registry, get_service
from app.engine import SessionState
from app.errors import QuizError
from app.logger import quiz_logger
from app.models import AnswerRequest, GameMode, SessionSnapshot, StartSessionRequest

router = APIRouter(prefix="/quiz")


def _http_error(e: QuizError) -> HTTPException:
    headers = {"Retry-After": "1"} if e.retryable else None
    return HTTPException(status_code=e.status_code, detail=e.user_message, headers=headers)


# Start a timed session; returns once the first question is on screen
@router.post("/sessions", response_model=SessionSnapshot, status_code=201)
async def start_session(payload: StartSessionRequest, registry=Depends(get_registry)):
    engine = await registry.start(user_id=payload.user_id, count=payload.count)
    if engine.state == SessionState.ERRORED:
        registry.discard(engine.session_id)
        raise _http_error(engine.error)
    return engine.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, registry=Depends(get_registry)):
    try:
        return registry.get(session_id).snapshot()
    except QuizError as e:
        raise _http_error(e)


@router.post("/sessions/{session_id}/answer", response_model=SessionSnapshot)
async def answer_question(session_id: str, payload: AnswerRequest, registry=Depends(get_registry)):
    try:
        return await registry.answer(session_id, payload.selected_answer)
    except QuizError as e:
        quiz_logger.warning(f"Answer rejected for session {session_id}: {e}")
        raise _http_error(e)


# Skip the feedback pause
@router.post("/sessions/{session_id}/next", response_model=SessionSnapshot)
async def next_question(session_id: str, registry=Depends(get_registry)):
    try:
        registry.advance(session_id)
        return registry.get(session_id).snapshot()
    except QuizError as e:
        raise _http_error(e)


@router.delete("/sessions/{session_id}")
async def cancel_session(session_id: str, registry=Depends(get_registry)):
    try:
        await registry.cancel(session_id)
    except QuizError as e:
        raise _http_error(e)
    return {"status": "cancelled", "session_id": session_id}


@router.get("/history")
async def get_quiz_history(user_id: str, limit: int = Query(default=10, ge=1, le=100), service=Depends(get_service)):
    loaded = await service.get_recent_sessions(user_id, limit)
    return {"sessions": loaded.value, "degraded": loaded.degraded}


@router.get("/trends")
async def get_quiz_trends(user_id: str, service=Depends(get_service)):
    loaded = await service.get_trends(user_id)
    return {"trends": loaded.value, "degraded": loaded.degraded}


# ---- per-device mirror ----

@router.get("/local/game-stats")
def get_local_game_stats(local_store=Depends(get_local_store)):
    return {mode: s.model_dump(by_alias=True) for mode, s in local_store.load_game_stats().items()}


@router.delete("/local/game-stats")
def reset_local_game_stats(local_store=Depends(get_local_store)):
    local_store.reset_game_stats()
    return {"status": "success"}


@router.post("/local/game-stats/{mode}")
def record_local_game(
        mode: GameMode,
        correct_answers: int = Query(ge=0),
        total_questions: int = Query(ge=0),
        score: int = Query(ge=0),
        local_store=Depends(get_local_store),
):
    stats = local_store.update_game_stats(mode, correct_answers, total_questions, score)
    return stats[mode].model_dump(by_alias=True)


@router.get("/local/theme")
def get_theme(local_store=Depends(get_local_store)):
    return {"theme": local_store.get_theme()}


@router.put("/local/theme")
def set_theme(theme: str, local_store=Depends(get_local_store)):
    try:
        local_store.set_theme(theme)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"theme": theme}
