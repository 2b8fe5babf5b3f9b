"""Database operations for users, events, items and comments.

User writes go through the lifecycle pipelines before anything is added to
the session; a failed validation therefore never reaches the database.
"""

from datetime import datetime, timezone

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from . import db, lifecycle
from .associations import CommentTarget, EventRef, UserRef, resolve_target, target_columns
from .audit import audit_log
from .logger import logger
from .models import Comment, Event, Item, User
from .roles import find_role
from .scopes import apply_scope


# ==================== Helper Functions ====================

def _create_user_snapshot(user: User) -> User:
    """Detached copy of a user, safe to read after the row is gone."""
    snapshot = User()
    for column in (
        "id", "name", "email", "hashed_password", "active", "role_id",
        "events_count", "avatar_filename", "avatar_content_type", "created_at",
    ):
        setattr(snapshot, column, getattr(user, column))
    snapshot.role = user.role
    return snapshot


def _create_event_snapshot(event: Event) -> Event:
    return Event(
        id=event.id,
        title=event.title,
        description=event.description,
        user_id=event.user_id,
        created_at=event.created_at,
    )


async def _commit_user(session, user: User) -> User:
    """Commit pending user changes, mapping unique-constraint races to validation errors."""
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.debug(f"Unique constraint rejected user write: {e.orig}")
        raise lifecycle.validation_error_from_integrity(e) from e
    await session.refresh(user)
    return user


# ==================== User Operations ====================


async def insert_user(
    name: str,
    email: str | None,
    hashed_password: str,
    role_code: str | None = None,
) -> User:
    """Create a user through the create pipeline.

    Raises:
        lifecycle.UserValidationError: invalid or duplicate fields, unknown role
    """
    async with db.async_session() as session:
        user = User(name=name, email=email, hashed_password=hashed_password)
        if role_code is not None:
            role = await find_role(session, role_code)
            if role is None:
                raise lifecycle.UserValidationError({"role": [lifecycle.MUST_EXIST]})
            user.role_id = role.id
            user.role = role

        await lifecycle.prepare_for_create(session, user)
        session.add(user)
        return await _commit_user(session, user)


async def select_user(user_id: int) -> User | None:
    async with db.async_session() as session:
        return await session.get(User, user_id)


async def select_user_by_email(email: str) -> User | None:
    async with db.async_session() as session:
        result = await session.execute(select(User).where(User.email == email.lower()))
        return result.scalars().first()


async def select_user_by_login(login: str) -> User | None:
    """Find a user by email (case-insensitive) or display name (exact).

    A login containing ``@`` is tried as an email first, so another user's
    display name can never shadow it.
    """
    async with db.async_session() as session:
        if "@" in login:
            result = await session.execute(select(User).where(User.email == login.lower()))
            user = result.scalars().first()
            if user is not None:
                return user
        result = await session.execute(select(User).where(User.name == login))
        return result.scalars().first()


async def update_user(user_id: int, changes: dict) -> User | None:
    """Apply ``changes`` through the update pipeline. Returns None if the user does not exist."""
    async with db.async_session() as session:
        user = await session.get(User, user_id)
        if user is None:
            return None
        for key, value in changes.items():
            setattr(user, key, value)
        await lifecycle.prepare_for_update(session, user)
        return await _commit_user(session, user)


async def delete_user(user_id: int, observer=audit_log.record) -> User | None:
    """Destroy a user with its events (and their items) and authored comments.

    Comments whose target is the user or one of the user's events go too;
    those targets carry no foreign key. Everything happens in one
    transaction framed by lifecycle.destroy_audit.
    """
    async with db.async_session() as session:
        user = await session.get(
            User,
            user_id,
            options=[
                selectinload(User.events).selectinload(Event.items),
                selectinload(User.comments),
            ],
        )
        if user is None:
            return None

        snapshot = _create_user_snapshot(user)
        event_ids = [event.id for event in user.events]
        try:
            async with lifecycle.destroy_audit(snapshot, observer):
                target_conditions = [
                    (Comment.commentable_type == UserRef.type_tag) & (Comment.commentable_id == user.id)
                ]
                if event_ids:
                    target_conditions.append(
                        (Comment.commentable_type == EventRef.type_tag)
                        & Comment.commentable_id.in_(event_ids)
                    )
                # Authored comments are removed by the ORM cascade below.
                await session.execute(
                    delete(Comment)
                    .where(or_(*target_conditions), Comment.user_id != user.id)
                    .execution_options(synchronize_session=False)
                )
                await session.delete(user)
                await session.commit()
        except Exception:
            await session.rollback()
            logger.error(f"Failed to delete user id={user_id}", exc_info=True)
            raise
        return snapshot


async def toggle_active(user_id: int) -> User | None:
    async with db.async_session() as session:
        user = await session.get(User, user_id)
        if user is None:
            return None
        user.active = not user.active
        await session.commit()
        await session.refresh(user)
        return user


async def record_sign_in(user_id: int, ip: str | None) -> None:
    """Shift current sign-in data to last and record this one."""
    async with db.async_session() as session:
        user = await session.get(User, user_id)
        if user is None:
            return
        now = datetime.now(timezone.utc)
        user.last_sign_in_at = user.current_sign_in_at or now
        user.last_sign_in_ip = user.current_sign_in_ip or ip
        user.current_sign_in_at = now
        user.current_sign_in_ip = ip
        user.sign_in_count = (user.sign_in_count or 0) + 1
        await session.commit()


async def set_avatar(user_id: int, filename: str | None, content_type: str | None) -> User | None:
    async with db.async_session() as session:
        user = await session.get(User, user_id)
        if user is None:
            return None
        user.avatar_filename = filename
        user.avatar_content_type = content_type
        await session.commit()
        await session.refresh(user)
        return user


async def store_reset_token(user_id: int, token_digest: str) -> None:
    async with db.async_session() as session:
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                reset_password_token=token_digest,
                reset_password_sent_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()


async def select_user_by_reset_token(token_digest: str) -> User | None:
    async with db.async_session() as session:
        result = await session.execute(
            select(User).where(User.reset_password_token == token_digest)
        )
        return result.scalars().first()


async def reset_password(user_id: int, hashed_password: str) -> None:
    """Store the new password hash and consume the reset token."""
    async with db.async_session() as session:
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                hashed_password=hashed_password,
                reset_password_token=None,
                reset_password_sent_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()


async def list_users(
    skip: int,
    limit: int,
    scope: str = "all",
    since: datetime | None = None,
) -> tuple[list[User], int]:
    """List users in a named scope (see scopes.py). Returns the page and the scope's total."""
    stmt = apply_scope(scope, since)
    async with db.async_session() as session:
        count_result = await session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        )
        total = count_result.scalar() or 0
        result = await session.execute(stmt.order_by(User.id).offset(skip).limit(limit))
        users = list(result.scalars().all())
        logger.debug(f"Scope '{scope}' returned {len(users)} users out of {total} total")
        return users, total


# ==================== Event Operations ====================


async def insert_event(user_id: int, title: str, description: str | None) -> Event:
    async with db.async_session() as session:
        async with session.begin():
            event = Event(user_id=user_id, title=title, description=description)
            session.add(event)
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(events_count=User.events_count + 1)
            )
        await session.refresh(event)
        return event


async def select_event(event_id: int) -> Event | None:
    async with db.async_session() as session:
        return await session.get(Event, event_id)


async def list_events(skip: int, limit: int) -> tuple[list[Event], int]:
    """Newest events first."""
    async with db.async_session() as session:
        count_result = await session.execute(select(func.count()).select_from(Event))
        total = count_result.scalar() or 0
        result = await session.execute(
            select(Event).order_by(Event.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total


async def update_event(event_id: int, changes: dict) -> Event | None:
    async with db.async_session() as session:
        event = await session.get(Event, event_id)
        if event is None:
            return None
        for key, value in changes.items():
            setattr(event, key, value)
        await session.commit()
        await session.refresh(event)
        return event


async def delete_event(event_id: int) -> Event | None:
    """Delete an event with its items and the comments made on it."""
    async with db.async_session() as session:
        event = await session.get(Event, event_id, options=[selectinload(Event.items)])
        if event is None:
            return None
        snapshot = _create_event_snapshot(event)
        try:
            await session.execute(
                delete(Comment)
                .where(
                    Comment.commentable_type == EventRef.type_tag,
                    Comment.commentable_id == event_id,
                )
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(User)
                .where(User.id == event.user_id)
                .values(events_count=User.events_count - 1)
            )
            await session.delete(event)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.error(f"Failed to delete event id={event_id}", exc_info=True)
            raise
        return snapshot


async def insert_item(event_id: int, name: str) -> Item | None:
    async with db.async_session() as session:
        if await session.get(Event, event_id) is None:
            return None
        item = Item(event_id=event_id, name=name)
        session.add(item)
        await session.commit()
        await session.refresh(item)
        return item


# ==================== Comment Operations ====================


async def insert_comment(author_id: int, target: CommentTarget, body: str) -> Comment | None:
    """Comment on an Event or a User. Returns None when the target does not exist."""
    async with db.async_session() as session:
        if await resolve_target(session, target) is None:
            return None
        comment = Comment(user_id=author_id, body=body, **target_columns(target))
        session.add(comment)
        await session.commit()
        await session.refresh(comment)
        return comment
