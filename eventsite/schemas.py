"""Pydantic schemas for request/response validation and serialization.

Request schemas only check shape (types, email format, password length).
Name rules live in lifecycle.py so that API and direct callers get the same
field-keyed errors.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime
from .config import settings


# ==================== Error Schemas ====================

class ErrorDetail(BaseModel):
    """Standardized error payload with code and message."""
    error: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Body of an error response; HTTPException puts the payload under ``detail``."""
    detail: ErrorDetail


class ErrorCode:
    """Centralized error codes for API responses."""
    USER_NOT_FOUND = "USER_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    AVATAR_NOT_FOUND = "AVATAR_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INACTIVE_USER = "INACTIVE_USER"
    FORBIDDEN = "FORBIDDEN"
    INVALID_RESET_TOKEN = "INVALID_RESET_TOKEN"
    INVALID_IMAGE = "INVALID_IMAGE"


# ==================== User Schemas ====================

class UserOut(BaseModel):
    """Public view of a user; never includes credentials or tracking fields."""
    id: int
    name: str
    email: str | None = None
    description: str
    active: bool
    role: str | None = None
    events_count: int = 0
    has_avatar: bool = False
    created_at: datetime


class UserRegister(BaseModel):
    """Registration payload. Email is optional."""
    name: str = Field(..., description="Display name, 2-16 characters once normalized")
    email: EmailStr | None = Field(None, max_length=settings.USER_EMAIL_MAX_LENGTH)
    password: str = Field(
        ...,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
    )

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class UserUpdate(BaseModel):
    """Profile update; omitted fields are left unchanged."""
    name: str | None = None
    email: EmailStr | None = Field(None, max_length=settings.USER_EMAIL_MAX_LENGTH)
    password: str | None = Field(
        None,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
    )

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else v


class ToggleOut(BaseModel):
    """Result of toggling a user's active flag, with the label the toggle link should now show."""
    id: int
    active: bool
    label: str


class PaginatedUserResponse(BaseModel):
    items: list[UserOut]
    total: int
    page: int
    limit: int
    pages: int


# ==================== Authentication Schemas ====================

class UserLogin(BaseModel):
    """Credentials; users sign in with their display name or email."""
    login: str = Field(..., min_length=1, description="Display name or email address")
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PasswordForgot(BaseModel):
    email: EmailStr


class PasswordReset(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(
        ...,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
    )


# ==================== Event Schemas ====================

class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=settings.EVENT_TITLE_MAX_LENGTH)
    description: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be empty or only whitespace")
        return v.strip()


class EventUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=settings.EVENT_TITLE_MAX_LENGTH)
    description: str | None = None


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None = None
    user_id: int
    created_at: datetime


class PaginatedEventResponse(BaseModel):
    items: list[EventOut]
    total: int
    page: int
    limit: int
    pages: int


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=settings.ITEM_NAME_MAX_LENGTH)


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    event_id: int


# ==================== Comment Schemas ====================

class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=settings.COMMENT_BODY_MAX_LENGTH)


class CommentOut(BaseModel):
    id: int
    body: str
    user_id: int
    target_type: str
    target_id: int
    created_at: datetime
