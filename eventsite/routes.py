# HTTP routes for users, events, items and comments.
# Handlers stay thin: parse, authorize, delegate to services.

import os
from datetime import datetime
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, Response
from slowapi import Limiter
from slowapi.util import get_remote_address

from . import db, services
from .cache import cache_manager
from .config import settings
from .dependencies import ensure_self_or_admin, get_current_user, require_admin
from .models import User
from .schemas import (
    CommentCreate,
    CommentOut,
    ErrorResponse,
    EventCreate,
    EventOut,
    EventUpdate,
    ItemCreate,
    ItemOut,
    PaginatedEventResponse,
    PaginatedUserResponse,
    PasswordForgot,
    PasswordReset,
    ToggleOut,
    Token,
    UserLogin,
    UserOut,
    UserRegister,
    UserUpdate,
)
from .storage import ORIGINAL

limiter = Limiter(key_func=get_remote_address)


def conditional_limit(limit_string):
    """slowapi limit, skipped entirely when TEST_MODE is set."""
    if os.getenv('TEST_MODE'):
        def decorator(func):
            return func
        return decorator
    return limiter.limit(limit_string)


router = APIRouter(responses={
    status_code: {"model": ErrorResponse} for status_code in (401, 403, 404)
})


@router.get("/")
def root():
    return {"app": settings.APP_NAME, "env": settings.APP_ENV, "events": "/events"}


@router.get("/health")
async def health_check():
    """200 when the database answers (cache problems only degrade), 503 otherwise."""
    database_up = await db.check_db_connection()
    if not settings.CACHE_ENABLED:
        cache = "disabled"
    elif await cache_manager.health_check():
        cache = "connected"
    else:
        cache = "disconnected"

    report = {
        "status": "unhealthy" if not database_up else ("degraded" if cache == "disconnected" else "healthy"),
        "app": settings.APP_NAME,
        "env": settings.APP_ENV,
        "database": "connected" if database_up else "disconnected",
        "cache": cache,
    }
    if not database_up:
        raise HTTPException(status_code=503, detail=report)
    return report


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)


@router.get("/about")
@router.get("/about/params")
async def about(hello: str | None = None):
    payload = {"app": settings.APP_NAME, "about": "Events, items and comments shared between members"}
    if hello is not None:
        payload["hello"] = hello
    return payload


@router.get("/about/params/{hello}")
async def about_params(hello: str):
    return await about(hello=hello)


# ============================================================================
# Authentication Endpoints
# ============================================================================

@router.post("/auth/register", response_model=UserOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def register(user: UserRegister, request: Request):
    """Register a new account.

    Raises:
        422: field validation failed (blank/short/long/duplicate name, duplicate email)
    """
    return await services.register_user(user)


@router.post("/auth/login", response_model=Token)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def login(credentials: UserLogin, request: Request):
    """Exchange name-or-email and password for a JWT.

    Raises:
        401: invalid credentials or inactive account
    """
    ip = request.client.host if request.client else None
    return await services.authenticate_user(credentials, ip=ip)


@router.post("/auth/password/forgot", status_code=202)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def forgot_password(data: PasswordForgot, request: Request):
    await services.request_password_reset(data)
    return {"message": "If the email is registered, reset instructions have been sent"}


@router.post("/auth/password/reset")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def reset_password(data: PasswordReset, request: Request):
    await services.reset_password(data)
    return {"message": "Password updated"}


# ============================================================================
# Current User
# ============================================================================

@router.get("/users/me", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_READ)
async def read_me(request: Request, current_user: User = Depends(get_current_user)):
    return services.convert_to_user_out(current_user)


@router.patch("/users/me", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def update_me(
    data: UserUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.update_profile(current_user.id, data)


@router.put("/users/me/avatar", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_UPLOAD)
async def upload_avatar(
    request: Request,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
):
    data = await file.read()
    return await services.upload_avatar(current_user.id, data)


# ============================================================================
# User Management Endpoints
# ============================================================================

@router.get("/users", response_model=PaginatedUserResponse)
@conditional_limit(settings.RATE_LIMIT_READ)
async def list_users(
    request: Request,
    page: int = settings.DEFAULT_PAGE,
    limit: int = settings.DEFAULT_LIMIT,
    scope: str = "all",  # all | default | fresh | default_fresh
    since: datetime | None = None,  # required by the fresh scopes
    admin: User = Depends(require_admin),
):
    return await services.list_users(page=page, limit=limit, scope=scope, since=since)


@router.get("/users/{user_id}", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_user(user_id: int, request: Request):
    return await services.get_user(user_id)


@router.delete("/users/{user_id}", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def delete_user(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    ensure_self_or_admin(user_id, current_user)
    return await services.delete_user(user_id)


@router.patch("/users/{user_id}/toggle", response_model=ToggleOut)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def toggle_user(user_id: int, request: Request, admin: User = Depends(require_admin)):
    return await services.toggle_user(user_id)


@router.get("/users/{user_id}/avatar")
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_avatar(user_id: int, request: Request, variant: str = ORIGINAL):
    path, content_type = await services.avatar_file(user_id, variant)
    return FileResponse(path, media_type=content_type)


@router.get("/users/{user_id}/events", response_model=list[EventOut])
@conditional_limit(settings.RATE_LIMIT_READ)
async def user_events(user_id: int, request: Request):
    return await services.user_events(user_id)


@router.get("/users/{user_id}/items", response_model=list[ItemOut])
@conditional_limit(settings.RATE_LIMIT_READ)
async def user_items(user_id: int, request: Request):
    return await services.user_items(user_id)


@router.get("/users/{user_id}/comments", response_model=list[CommentOut])
@conditional_limit(settings.RATE_LIMIT_READ)
async def user_comments(user_id: int, request: Request):
    return await services.user_comments(user_id)


@router.get("/users/{user_id}/commented-events", response_model=list[EventOut])
@conditional_limit(settings.RATE_LIMIT_READ)
async def user_commented_events(user_id: int, request: Request):
    return await services.user_commented_events(user_id)


@router.get("/users/{user_id}/commented-users", response_model=list[UserOut])
@conditional_limit(settings.RATE_LIMIT_READ)
async def user_commented_users(user_id: int, request: Request):
    return await services.user_commented_users(user_id)


@router.post("/users/{user_id}/comments", response_model=CommentOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def comment_on_user(
    user_id: int,
    data: CommentCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.comment_on_user(user_id, data, current_user)


# ============================================================================
# Event Endpoints
# ============================================================================

@router.get("/events", response_model=PaginatedEventResponse)
@conditional_limit(settings.RATE_LIMIT_READ)
async def list_events(
    request: Request,
    page: int = settings.DEFAULT_PAGE,
    limit: int = settings.DEFAULT_LIMIT,
):
    return await services.list_events(page=page, limit=limit)


@router.get("/events/page/{page}", response_model=PaginatedEventResponse)
@conditional_limit(settings.RATE_LIMIT_READ)
async def list_events_page(page: int, request: Request, limit: int = settings.DEFAULT_LIMIT):
    return await services.list_events(page=page, limit=limit)


@router.post("/events", response_model=EventOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def create_event(
    data: EventCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.create_event(current_user, data)


@router.get("/events/{event_id}", response_model=EventOut)
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_event(event_id: int, request: Request):
    return await services.get_event(event_id)


@router.patch("/events/{event_id}", response_model=EventOut)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def update_event(
    event_id: int,
    data: EventUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.update_event(event_id, data, current_user)


@router.delete("/events/{event_id}", response_model=EventOut)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def delete_event(
    event_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.delete_event(event_id, current_user)


@router.post("/events/{event_id}/items", response_model=ItemOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def add_item(
    event_id: int,
    data: ItemCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.add_item(event_id, data, current_user)


@router.post("/events/{event_id}/comments", response_model=CommentOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def comment_on_event(
    event_id: int,
    data: CommentCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    return await services.comment_on_event(event_id, data, current_user)
