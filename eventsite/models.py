"""SQLAlchemy ORM models for database tables.

Models are plain mapped records. Normalization, validation and destroy
auditing live in lifecycle.py and are invoked explicitly by crud.py.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .db import Base
from .config import settings


class Role(Base):
    """Permission tier referenced by code ('admin', 'default', ...)."""

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(64), nullable=False)


class User(Base):
    """Account mapped to the 'users' table."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False, unique=True)
    email = Column(String(settings.USER_EMAIL_MAX_LENGTH), nullable=True, unique=True)
    hashed_password = Column(String(255), nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    # Sign-in tracking
    sign_in_count = Column(Integer, default=0, nullable=False)
    current_sign_in_at = Column(DateTime(timezone=True))
    last_sign_in_at = Column(DateTime(timezone=True))
    current_sign_in_ip = Column(String(45))
    last_sign_in_ip = Column(String(45))

    # Password recovery; the token column holds a digest, never the raw token
    reset_password_token = Column(String(64), unique=True)
    reset_password_sent_at = Column(DateTime(timezone=True))

    events_count = Column(Integer, default=0, nullable=False)

    avatar_filename = Column(String(255))
    avatar_content_type = Column(String(64))

    role_id = Column(Integer, ForeignKey("roles.id"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    role = relationship(Role, lazy="joined")
    events = relationship(
        "Event", back_populates="user", cascade="all, delete-orphan", order_by="Event.id"
    )
    comments = relationship(
        "Comment", back_populates="user", cascade="all, delete-orphan", order_by="Comment.id"
    )


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    title = Column(String(settings.EVENT_TITLE_MAX_LENGTH), nullable=False)
    description = Column(Text)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user = relationship(User, back_populates="events")
    items = relationship(
        "Item", back_populates="event", cascade="all, delete-orphan", order_by="Item.id"
    )


class Item(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    name = Column(String(settings.ITEM_NAME_MAX_LENGTH), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)

    event = relationship(Event, back_populates="items")


class Comment(Base):
    """Comment authored by a user on an Event or on another User.

    (commentable_type, commentable_id) is the stored polymorphic tag; see
    associations.target_of for the typed view.
    """

    __tablename__ = "comments"
    __table_args__ = (
        Index("ix_comments_commentable", "commentable_type", "commentable_id"),
    )

    id = Column(Integer, primary_key=True)
    body = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    commentable_type = Column(String(32), nullable=False)
    commentable_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship(User, back_populates="comments")
