from fastapi import APIRouter, Depends, HTTPException
from app.dependencies import get_service
from app.errors import QuizError
from app.models import RoleUpdate, StatsResponse
from app.stats import get_level_progress, get_performance_rating

router = APIRouter(prefix="/users")


# Admin only
@router.get("")
async def list_users(admin_user_id: str, service=Depends(get_service)):
    try:
        loaded = await service.list_users(admin_user_id)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.user_message)
    return {"users": loaded.value, "degraded": loaded.degraded}


@router.get("/{user_id}/role")
async def get_user_role(user_id: str, service=Depends(get_service)):
    loaded = await service.get_role(user_id)
    return {"user_id": user_id, "role": loaded.value, "is_admin": loaded.value == "admin", "degraded": loaded.degraded}


@router.put("/{user_id}/role")
async def update_user_role(user_id: str, payload: RoleUpdate, service=Depends(get_service)):
    try:
        await service.update_role(user_id, payload.role, payload.admin_user_id)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.user_message)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Could not update the role.") from e
    return {"status": "success", "user_id": user_id, "role": payload.role}


@router.get("/{user_id}/stats", response_model=StatsResponse)
async def get_user_stats(user_id: str, service=Depends(get_service)):
    loaded = await service.get_stats(user_id)
    return StatsResponse(stats=loaded.value, degraded=loaded.degraded)


@router.get("/{user_id}/level")
async def get_user_level(user_id: str, service=Depends(get_service)):
    loaded = await service.get_stats(user_id)
    stats = loaded.value
    return {
        "progress": get_level_progress(stats.engagement_stats.total_points),
        "rating": get_performance_rating(round(stats.basic_stats.overall_accuracy)),
        "degraded": loaded.degraded,
    }


@router.get("/{user_id}/category-performance")
async def get_category_performance(user_id: str, service=Depends(get_service)):
    loaded = await service.get_category_performance(user_id)
    return {"categories": loaded.value, "degraded": loaded.degraded}


# Drop everything cached for one user
@router.delete("/{user_id}/cache")
async def invalidate_user_cache(user_id: str, service=Depends(get_service)):
    return {"invalidated": service.invalidate_user(user_id)}
