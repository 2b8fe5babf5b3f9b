"""User lifecycle: normalization, role assignment, validation and destroy auditing.

The write path in crud.py runs these steps explicitly and in order:

    create:  normalize_name -> normalize_email -> set_role -> validate_user -> persist
    update:  normalize_email -> set_role -> validate_user -> persist
    destroy: destroy_audit(before) -> delete + commit -> destroy_audit(after)

Validation reads the normalized values, so normalization always runs first.
Nothing here logs; lifecycle events are handed to an observer (see audit.py).
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .models import User
from .roles import RoleCode, find_role
from .utils import normalize_email as lowercase_email, titleize

BLANK = "can't be blank"
TAKEN = "has already been taken"
MUST_EXIST = "must exist"

# Fields exposed through the generic attribute-serialization path.
SERIALIZED_ATTRIBUTES = ("name", "email")


# ==================== Errors ====================

class UserValidationError(Exception):
    """Field-keyed validation failure; no changes were persisted."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__(self.full_messages())

    def full_messages(self) -> str:
        return "; ".join(
            f"{field_name} {message}"
            for field_name, messages in self.errors.items()
            for message in messages
        )


def validation_error_from_integrity(exc: IntegrityError) -> UserValidationError:
    """Translate a unique-constraint race lost at the storage layer into a validation error."""
    message = str(exc.orig).lower()
    for field_name in ("reset_password_token", "email", "name"):
        if f"users.{field_name}" in message or f"uq_users_{field_name}" in message:
            return UserValidationError({field_name: [TAKEN]})
    return UserValidationError({"base": [str(exc.orig)]})


# ==================== Normalization ====================

def normalize_name(user: User) -> None:
    """Title-case the name. Runs on creation only."""
    if user.name:
        user.name = titleize(user.name)


def normalize_email(user: User) -> None:
    """Lowercase the email when one is present. Runs on create and update."""
    if user.email:
        user.email = lowercase_email(user.email)


async def set_role(session: AsyncSession, user: User) -> None:
    """Assign the 'default' role when none is set; an existing role is kept."""
    if user.role_id is not None:
        return
    role = await find_role(session, RoleCode.DEFAULT)
    if role is not None:
        user.role_id = role.id
        user.role = role


# ==================== Validation ====================

async def _is_taken(session: AsyncSession, column, value, user: User) -> bool:
    stmt = select(func.count()).select_from(User).where(column == value)
    if user.id is not None:
        stmt = stmt.where(User.id != user.id)
    result = await session.execute(stmt)
    return (result.scalar() or 0) > 0


async def validate_user(session: AsyncSession, user: User) -> None:
    """Check name, email and role invariants. Raises UserValidationError listing every failure."""
    errors: dict[str, list[str]] = {}

    def add(field_name: str, message: str) -> None:
        errors.setdefault(field_name, []).append(message)

    name = user.name or ""
    if not name.strip():
        add("name", BLANK)
    else:
        if len(name) < settings.USER_NAME_MIN_LENGTH:
            add("name", f"is too short (minimum is {settings.USER_NAME_MIN_LENGTH} characters)")
        if len(name) > settings.USER_NAME_MAX_LENGTH:
            add("name", f"is too long (maximum is {settings.USER_NAME_MAX_LENGTH} characters)")
        if await _is_taken(session, User.name, name, user):
            add("name", TAKEN)

    if user.email and await _is_taken(session, User.email, user.email, user):
        add("email", TAKEN)

    if user.role_id is None:
        add("role", MUST_EXIST)

    if errors:
        raise UserValidationError(errors)


# ==================== Pipelines ====================

async def prepare_for_create(session: AsyncSession, user: User) -> User:
    # Lookups must not autoflush the pending row before it has been validated.
    with session.sync_session.no_autoflush:
        normalize_name(user)
        normalize_email(user)
        await set_role(session, user)
        await validate_user(session, user)
    return user


async def prepare_for_update(session: AsyncSession, user: User) -> User:
    with session.sync_session.no_autoflush:
        normalize_email(user)
        await set_role(session, user)
        await validate_user(session, user)
    return user


# ==================== Read-side helpers ====================

def description(user: User) -> str:
    return f"{user.name} ({user.email})"


def user_attributes(user: User) -> dict:
    """Generic serialization: name, email and description only, whoever asks."""
    attributes = {key: getattr(user, key) for key in SERIALIZED_ATTRIBUTES}
    attributes["description"] = description(user)
    return attributes


def can_authenticate(user: User | None, credentials_ok: bool) -> bool:
    """Base credential check AND the account's active flag."""
    return bool(credentials_ok) and user is not None and bool(user.active)


# ==================== Destroy auditing ====================

BEFORE_DESTROY = "before_destroy"
AFTER_DESTROY = "after_destroy"


@dataclass(frozen=True)
class LifecycleEvent:
    kind: str
    user_id: int | None
    name: str | None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


LifecycleObserver = Callable[[LifecycleEvent], None]


@asynccontextmanager
async def destroy_audit(user: User, emit: LifecycleObserver):
    """Frame a removal with before/after events.

    The after event is emitted only when the wrapped block finishes without
    raising, so an aborted cascade or failed commit leaves just the before
    event. The observer cannot veto the removal.
    """
    user_id, name = user.id, user.name
    emit(LifecycleEvent(BEFORE_DESTROY, user_id, name))
    yield
    emit(LifecycleEvent(AFTER_DESTROY, user_id, name))
