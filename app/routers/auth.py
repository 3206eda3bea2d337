from fastapi import APIRouter, Depends, HTTPException
from app.dependencies import get_service
from app.logger import quiz_logger
from app.models import SignOutRequest, SignUpRequest

router = APIRouter(prefix="/auth")


@router.post("/sign-up", status_code=201)
async def sign_up(payload: SignUpRequest, service=Depends(get_service)):
    try:
        user_id = await service.sign_up(payload.email, payload.password, payload.nickname)
    except Exception as e:
        quiz_logger.error(f"Sign-up failed for {payload.email}: {e}")
        raise HTTPException(status_code=400, detail="Could not create the account.")
    return {"status": "success", "user_id": user_id}


# Clears every cached query so nothing leaks to the next user
@router.post("/sign-out")
async def sign_out(payload: SignOutRequest, service=Depends(get_service)):
    await service.sign_out()
    quiz_logger.info(f"User {payload.user_id or 'unknown'} signed out")
    return {"status": "success"}
