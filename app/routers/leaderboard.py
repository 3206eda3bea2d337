from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from app.dependencies import get_service

router = APIRouter(prefix="/leaderboard")


@router.get("")
async def get_leaderboard(metric: str = "points", user_id: Optional[str] = None, service=Depends(get_service)):
    try:
        loaded = await service.get_leaderboard(metric, current_user_id=user_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"metric": metric, "entries": loaded.value, "degraded": loaded.degraded}
