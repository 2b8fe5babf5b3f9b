"""Derived read views over a user's events, items and comments.

Comments point at either an Event or a User. The stored
(commentable_type, commentable_id) pair is turned into a typed
``CommentTarget`` here instead of being dispatched on by string elsewhere.
"""

from dataclasses import dataclass
from typing import ClassVar, Union

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .models import Comment, Event, Item, User


# ==================== Comment targets ====================

@dataclass(frozen=True)
class EventRef:
    id: int
    type_tag: ClassVar[str] = "Event"


@dataclass(frozen=True)
class UserRef:
    id: int
    type_tag: ClassVar[str] = "User"


CommentTarget = Union[EventRef, UserRef]

TARGET_TYPES: dict[str, type] = {EventRef.type_tag: EventRef, UserRef.type_tag: UserRef}
TARGET_MODELS: dict[type, type] = {EventRef: Event, UserRef: User}


def target_of(comment: Comment) -> CommentTarget:
    """Typed view of a comment's polymorphic target. Unknown tags raise ValueError."""
    try:
        ref_type = TARGET_TYPES[comment.commentable_type]
    except KeyError:
        raise ValueError(f"unknown commentable type '{comment.commentable_type}'") from None
    return ref_type(comment.commentable_id)


def target_columns(target: CommentTarget) -> dict:
    """Column values storing ``target`` on a Comment."""
    return {"commentable_type": target.type_tag, "commentable_id": target.id}


async def resolve_target(session: AsyncSession, target: CommentTarget) -> Event | User | None:
    return await session.get(TARGET_MODELS[type(target)], target.id)


def _commented(model, type_tag: str, user_id: int):
    """Distinct ``model`` rows that ``user_id`` has commented on."""
    return (
        select(model)
        .join(
            Comment,
            and_(Comment.commentable_type == type_tag, Comment.commentable_id == model.id),
        )
        .where(Comment.user_id == user_id)
        .distinct()
        .order_by(model.id)
    )


# ==================== Resolvers ====================

async def events_for(user: User) -> list[Event]:
    async with db.async_session() as session:
        result = await session.execute(
            select(Event).where(Event.user_id == user.id).order_by(Event.id)
        )
        return list(result.scalars().all())


async def items_for(user: User) -> list[Item]:
    """Distinct items reachable through the user's events."""
    async with db.async_session() as session:
        result = await session.execute(
            select(Item)
            .join(Event, Item.event_id == Event.id)
            .where(Event.user_id == user.id)
            .distinct()
            .order_by(Item.id)
        )
        return list(result.scalars().all())


async def comments_for(user: User) -> list[Comment]:
    async with db.async_session() as session:
        result = await session.execute(
            select(Comment).where(Comment.user_id == user.id).order_by(Comment.id)
        )
        return list(result.scalars().all())


async def commented_events_for(user: User) -> list[Event]:
    async with db.async_session() as session:
        result = await session.execute(_commented(Event, EventRef.type_tag, user.id))
        return list(result.scalars().all())


async def commented_users_for(user: User) -> list[User]:
    async with db.async_session() as session:
        result = await session.execute(_commented(User, UserRef.type_tag, user.id))
        return list(result.scalars().unique().all())
