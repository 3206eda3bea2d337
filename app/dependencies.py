import supabase
from fastapi import Request
from app.config import settings


def get_supabase_client():
    return supabase.create_client(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_KEY
    )


def get_service(request: Request):
    return request.app.state.service


def get_registry(request: Request):
    return request.app.state.registry


def get_local_store(request: Request):
    return request.app.state.local_store
