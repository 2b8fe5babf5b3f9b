"""Business logic layer: users, authentication, events and comments.

Translates lifecycle and storage failures into structured HTTP errors and
keeps the Redis cache in step with writes.
"""

from datetime import datetime
from pathlib import Path

from fastapi import HTTPException

from . import associations, crud
from .associations import CommentTarget, EventRef, UserRef, target_of
from .auth import (
    create_access_token,
    digest_reset_token,
    generate_reset_token,
    hash_password,
    reset_period_valid,
    verify_password,
)
from .cache import (
    EVENTS_PAGE_PREFIX,
    USER_BY_ID_PREFIX,
    cache_manager,
    invalidate_event_pages,
    invalidate_user,
    make_cache_key,
)
from .config import settings
from .lifecycle import UserValidationError, can_authenticate, user_attributes
from .logger import logger
from .models import Comment, Event, User
from .roles import is_admin, role_code
from .schemas import (
    CommentCreate,
    CommentOut,
    ErrorCode,
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
from .storage import InvalidImageError, avatar_storage
from .utils import toggle_label_for

# ==================== Helper Functions ====================


def convert_to_user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        **user_attributes(user),
        active=user.active,
        role=role_code(user),
        events_count=user.events_count or 0,
        has_avatar=user.avatar_filename is not None,
        created_at=user.created_at,
    )


def _convert_to_comment_out(comment: Comment) -> CommentOut:
    target = target_of(comment)
    return CommentOut(
        id=comment.id,
        body=comment.body,
        user_id=comment.user_id,
        target_type=target.type_tag,
        target_id=target.id,
        created_at=comment.created_at,
    )


def _validate_pagination(page: int, limit: int) -> tuple[int, int, int]:
    """Clamp pagination parameters. Returns (page, limit, skip)."""
    if page < 1:
        page = settings.DEFAULT_PAGE
    if limit < 1:
        limit = settings.DEFAULT_LIMIT
    if limit > settings.MAX_LIMIT:
        limit = settings.MAX_LIMIT
    return page, limit, (page - 1) * limit


def _validation_failed(exc: UserValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "error": ErrorCode.VALIDATION_FAILED,
            "message": exc.full_messages(),
            "details": exc.errors,
        },
    )


def _user_not_found(user_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": ErrorCode.USER_NOT_FOUND,
            "message": f"User with ID {user_id} does not exist",
            "details": {"user_id": user_id},
        },
    )


def _event_not_found(event_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": ErrorCode.EVENT_NOT_FOUND,
            "message": f"Event with ID {event_id} does not exist",
            "details": {"event_id": event_id},
        },
    )


def _forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"error": ErrorCode.FORBIDDEN, "message": message, "details": {}},
    )


def _ensure_owner_or_admin(event: Event, actor: User) -> None:
    if event.user_id != actor.id and not is_admin(actor):
        logger.warning(f"User id={actor.id} denied write access to event id={event.id}")
        raise _forbidden("Only the event owner or an administrator can change this event")


async def _require_user(user_id: int) -> User:
    user = await crud.select_user(user_id)
    if user is None:
        logger.warning(f"User not found: id={user_id}")
        raise _user_not_found(user_id)
    return user


async def _require_event(event_id: int) -> Event:
    event = await crud.select_event(event_id)
    if event is None:
        logger.warning(f"Event not found: id={event_id}")
        raise _event_not_found(event_id)
    return event


async def _cache_user(user_out: UserOut) -> None:
    if settings.CACHE_ENABLED:
        await cache_manager.set(
            make_cache_key(USER_BY_ID_PREFIX, user_out.id),
            user_out.model_dump(mode="json"),
        )


# ==================== User Operations ====================


async def get_user(user_id: int) -> UserOut:
    """Retrieve a user by ID, served from cache when possible."""
    if settings.CACHE_ENABLED:
        cached = await cache_manager.get(make_cache_key(USER_BY_ID_PREFIX, user_id))
        if cached:
            return UserOut(**cached)

    user = await _require_user(user_id)
    user_out = convert_to_user_out(user)
    await _cache_user(user_out)
    return user_out


async def register_user(data: UserRegister, role: str | None = None) -> UserOut:
    """Register a user; name/email normalization and default role come from the lifecycle."""
    logger.info(f"Registering new user: {data.name}")
    try:
        user = await crud.insert_user(
            data.name, data.email, hash_password(data.password), role_code=role
        )
    except UserValidationError as e:
        logger.warning(f"Registration rejected for '{data.name}': {e.full_messages()}")
        raise _validation_failed(e) from e

    logger.info(f"User registered successfully: id={user.id} name={user.name}")
    user_out = convert_to_user_out(user)
    await _cache_user(user_out)
    return user_out


async def update_profile(user_id: int, data: UserUpdate) -> UserOut:
    changes = data.model_dump(exclude_unset=True, exclude={"password"})
    if data.password is not None:
        changes["hashed_password"] = hash_password(data.password)

    try:
        user = await crud.update_user(user_id, changes)
    except UserValidationError as e:
        logger.warning(f"Profile update rejected for id={user_id}: {e.full_messages()}")
        raise _validation_failed(e) from e
    if user is None:
        raise _user_not_found(user_id)

    logger.info(f"User updated: id={user.id} fields={sorted(changes)}")
    await invalidate_user(user_id)
    return convert_to_user_out(user)


async def delete_user(user_id: int) -> UserOut:
    """Destroy a user and everything it owns, then drop its avatar files and cache entries."""
    logger.info(f"Deleting user: id={user_id}")
    user = await crud.delete_user(user_id)
    if user is None:
        logger.warning(f"Cannot delete - user not found: id={user_id}")
        raise _user_not_found(user_id)

    avatar_storage.delete(user_id)
    await invalidate_user(user_id)
    await invalidate_event_pages()
    return convert_to_user_out(user)


async def toggle_user(user_id: int) -> ToggleOut:
    user = await crud.toggle_active(user_id)
    if user is None:
        raise _user_not_found(user_id)
    logger.info(f"User id={user_id} {'activated' if user.active else 'deactivated'}")
    await invalidate_user(user_id)
    return ToggleOut(id=user.id, active=user.active, label=toggle_label_for(user.active))


async def list_users(
    page: int = settings.DEFAULT_PAGE,
    limit: int = settings.DEFAULT_LIMIT,
    scope: str = "all",
    since: datetime | None = None,
) -> PaginatedUserResponse:
    page, limit, skip = _validate_pagination(page, limit)
    try:
        users, total = await crud.list_users(skip, limit, scope=scope, since=since)
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": ErrorCode.INVALID_INPUT,
                "message": str(e),
                "details": {"scope": scope},
            },
        ) from e

    return PaginatedUserResponse(
        items=[convert_to_user_out(u) for u in users],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


# ==================== Associations ====================


async def user_events(user_id: int) -> list[EventOut]:
    user = await _require_user(user_id)
    return [EventOut.model_validate(e) for e in await associations.events_for(user)]


async def user_items(user_id: int) -> list[ItemOut]:
    user = await _require_user(user_id)
    return [ItemOut.model_validate(i) for i in await associations.items_for(user)]


async def user_comments(user_id: int) -> list[CommentOut]:
    user = await _require_user(user_id)
    return [_convert_to_comment_out(c) for c in await associations.comments_for(user)]


async def user_commented_events(user_id: int) -> list[EventOut]:
    user = await _require_user(user_id)
    return [EventOut.model_validate(e) for e in await associations.commented_events_for(user)]


async def user_commented_users(user_id: int) -> list[UserOut]:
    user = await _require_user(user_id)
    return [convert_to_user_out(u) for u in await associations.commented_users_for(user)]


# ==================== Avatars ====================


async def upload_avatar(user_id: int, data: bytes) -> UserOut:
    try:
        filename, content_type = avatar_storage.save(user_id, data)
    except InvalidImageError as e:
        logger.warning(f"Avatar rejected for user id={user_id}: {e}")
        raise HTTPException(
            status_code=400,
            detail={"error": ErrorCode.INVALID_IMAGE, "message": str(e), "details": {}},
        ) from e

    user = await crud.set_avatar(user_id, filename, content_type)
    if user is None:
        avatar_storage.delete(user_id)
        raise _user_not_found(user_id)
    await invalidate_user(user_id)
    return convert_to_user_out(user)


async def avatar_file(user_id: int, variant: str) -> tuple[Path, str]:
    """Path and content type of a stored avatar variant."""
    user = await _require_user(user_id)
    try:
        path = (
            avatar_storage.open_path(user_id, user.avatar_filename, variant)
            if user.avatar_filename
            else None
        )
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": ErrorCode.INVALID_INPUT, "message": str(e), "details": {"variant": variant}},
        ) from e
    if path is None:
        raise HTTPException(
            status_code=404,
            detail={
                "error": ErrorCode.AVATAR_NOT_FOUND,
                "message": f"User with ID {user_id} has no avatar",
                "details": {"user_id": user_id},
            },
        )
    return path, user.avatar_content_type or "application/octet-stream"


# ==================== Authentication ====================


async def authenticate_user(data: UserLogin, ip: str | None = None) -> Token:
    """Check credentials and the active flag, record the sign-in and issue a JWT."""
    user = await crud.select_user_by_login(data.login)
    credentials_ok = user is not None and verify_password(data.password, user.hashed_password)

    if not can_authenticate(user, credentials_ok):
        if credentials_ok:
            logger.warning(f"Authentication failed - user is inactive: id={user.id}")
            raise HTTPException(
                status_code=401,
                detail={
                    "error": ErrorCode.INACTIVE_USER,
                    "message": "User account is inactive",
                    "details": {},
                },
            )
        logger.warning(f"Authentication failed for login '{data.login}'")
        raise HTTPException(
            status_code=401,
            detail={
                "error": ErrorCode.INVALID_CREDENTIALS,
                "message": "Invalid login or password",
                "details": {},
            },
        )

    await crud.record_sign_in(user.id, ip)
    logger.info(f"Authentication successful for user id={user.id}")
    return Token(access_token=create_access_token(data={"sub": str(user.id)}))


async def request_password_reset(data: PasswordForgot) -> str | None:
    """Issue a reset token when the email is known.

    Returns the raw token for delivery; callers must not expose it over HTTP.
    """
    user = await crud.select_user_by_email(data.email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return
    raw_token, token_digest = generate_reset_token()
    await crud.store_reset_token(user.id, token_digest)
    # TODO: hand raw_token to a mailer once outbound email is configured
    logger.info(f"Password reset token issued for user id={user.id}")
    return raw_token


async def reset_password(data: PasswordReset) -> None:
    user = await crud.select_user_by_reset_token(digest_reset_token(data.token))
    if user is None or not reset_period_valid(user.reset_password_sent_at):
        logger.warning("Password reset rejected: unknown or expired token")
        raise HTTPException(
            status_code=400,
            detail={
                "error": ErrorCode.INVALID_RESET_TOKEN,
                "message": "Reset token is invalid or has expired",
                "details": {},
            },
        )
    await crud.reset_password(user.id, hash_password(data.password))
    logger.info(f"Password reset completed for user id={user.id}")


# ==================== Events ====================


async def list_events(
    page: int = settings.DEFAULT_PAGE,
    limit: int = settings.DEFAULT_LIMIT,
) -> PaginatedEventResponse:
    page, limit, skip = _validate_pagination(page, limit)
    cache_key = make_cache_key(EVENTS_PAGE_PREFIX, page, limit)
    if settings.CACHE_ENABLED:
        cached = await cache_manager.get(cache_key)
        if cached:
            return PaginatedEventResponse(**cached)

    events, total = await crud.list_events(skip, limit)
    response = PaginatedEventResponse(
        items=[EventOut.model_validate(e) for e in events],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )
    if settings.CACHE_ENABLED:
        await cache_manager.set(cache_key, response.model_dump(mode="json"))
    return response


async def get_event(event_id: int) -> EventOut:
    return EventOut.model_validate(await _require_event(event_id))


async def create_event(actor: User, data: EventCreate) -> EventOut:
    event = await crud.insert_event(actor.id, data.title, data.description)
    logger.info(f"Event created: id={event.id} by user id={actor.id}")
    await invalidate_event_pages()
    await invalidate_user(actor.id)
    return EventOut.model_validate(event)


async def update_event(event_id: int, data: EventUpdate, actor: User) -> EventOut:
    _ensure_owner_or_admin(await _require_event(event_id), actor)
    event = await crud.update_event(event_id, data.model_dump(exclude_unset=True))
    if event is None:
        raise _event_not_found(event_id)
    await invalidate_event_pages()
    return EventOut.model_validate(event)


async def delete_event(event_id: int, actor: User) -> EventOut:
    _ensure_owner_or_admin(await _require_event(event_id), actor)
    event = await crud.delete_event(event_id)
    if event is None:
        raise _event_not_found(event_id)
    logger.info(f"Event deleted: id={event_id} by user id={actor.id}")
    await invalidate_event_pages()
    await invalidate_user(event.user_id)
    return EventOut.model_validate(event)


async def add_item(event_id: int, data: ItemCreate, actor: User) -> ItemOut:
    _ensure_owner_or_admin(await _require_event(event_id), actor)
    item = await crud.insert_item(event_id, data.name)
    if item is None:
        raise _event_not_found(event_id)
    return ItemOut.model_validate(item)


# ==================== Comments ====================


async def comment_on(target: CommentTarget, data: CommentCreate, actor: User) -> CommentOut:
    comment = await crud.insert_comment(actor.id, target, data.body)
    if comment is None:
        if isinstance(target, EventRef):
            raise _event_not_found(target.id)
        raise _user_not_found(target.id)
    logger.debug(f"Comment id={comment.id} by user id={actor.id} on {target.type_tag} id={target.id}")
    return _convert_to_comment_out(comment)


async def comment_on_event(event_id: int, data: CommentCreate, actor: User) -> CommentOut:
    return await comment_on(EventRef(event_id), data, actor)


async def comment_on_user(user_id: int, data: CommentCreate, actor: User) -> CommentOut:
    return await comment_on(UserRef(user_id), data, actor)
