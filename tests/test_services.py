"""
Unit tests for business logic (services layer).
Tests service functions with mocked database calls, plus the password reset flow end to end.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi import HTTPException
from datetime import datetime, timedelta, timezone, UTC
from sqlalchemy import update

from eventsite import db, services
from eventsite.auth import digest_reset_token, hash_password, verify_password
from eventsite.crud import insert_user, select_user, select_user_by_reset_token
from eventsite.lifecycle import UserValidationError
from eventsite.models import Role, User
from eventsite.schemas import (
    EventUpdate,
    PasswordForgot,
    PasswordReset,
    UserLogin,
    UserRegister,
)


class MockUser:
    """Mock User object for testing with all required fields."""
    def __init__(self, id: int, name: str, email: str | None, active: bool = True, role: str = "default"):
        self.id = id
        self.name = name
        self.email = email
        self.hashed_password = "mock_hashed_password"
        self.active = active
        self.role = Role(code=role, name=role.title())
        self.events_count = 0
        self.avatar_filename = None
        self.created_at = datetime.now(UTC)


class MockEvent:
    def __init__(self, id: int, user_id: int, title: str = "Picnic"):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.description = None
        self.created_at = datetime.now(UTC)


@pytest.mark.asyncio
class TestGetUser:
    async def test_get_user_success(self):
        mock_user = MockUser(1, "Test User", "test@example.com")

        with patch('eventsite.services.crud.select_user', new_callable=AsyncMock, return_value=mock_user):
            result = await services.get_user(1)

        assert result.id == 1
        assert result.name == "Test User"
        assert result.description == "Test User (test@example.com)"
        assert result.role == "default"

    async def test_get_user_not_found(self):
        with patch('eventsite.services.crud.select_user', new_callable=AsyncMock, return_value=None):
            with pytest.raises(HTTPException) as exc_info:
                await services.get_user(999)

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["error"] == "USER_NOT_FOUND"


@pytest.mark.asyncio
class TestRegisterUser:
    async def test_validation_error_becomes_422(self):
        error = UserValidationError({"name": ["has already been taken"]})
        with patch('eventsite.services.crud.insert_user', new_callable=AsyncMock, side_effect=error):
            with pytest.raises(HTTPException) as exc_info:
                await services.register_user(UserRegister(name="ann", password="password123"))

        assert exc_info.value.status_code == 422
        assert exc_info.value.detail["error"] == "VALIDATION_FAILED"
        assert exc_info.value.detail["details"] == {"name": ["has already been taken"]}
        assert exc_info.value.detail["message"] == "name has already been taken"

    async def test_password_is_hashed(self):
        mock_insert = AsyncMock(return_value=MockUser(1, "Ann", None))
        with patch('eventsite.services.crud.insert_user', mock_insert):
            await services.register_user(UserRegister(name="ann", password="password123"))

        name, email, hashed = mock_insert.call_args.args
        assert (name, email) == ("ann", None)
        assert hashed != "password123"
        assert verify_password("password123", hashed)


@pytest.mark.asyncio
class TestDeleteUser:
    async def test_delete_user_removes_avatar_files(self):
        mock_user = MockUser(1, "Test User", "test@example.com")

        with patch('eventsite.services.crud.delete_user', new_callable=AsyncMock, return_value=mock_user), \
                patch('eventsite.services.avatar_storage.delete') as mock_delete:
            result = await services.delete_user(1)

        assert result.id == 1
        mock_delete.assert_called_once_with(1)

    async def test_delete_user_not_found(self):
        with patch('eventsite.services.crud.delete_user', new_callable=AsyncMock, return_value=None):
            with pytest.raises(HTTPException) as exc_info:
                await services.delete_user(999)

        assert exc_info.value.status_code == 404


@pytest.mark.asyncio
class TestToggleUser:
    async def test_label_reflects_new_state(self):
        deactivated = MockUser(2, "Bob", None, active=False)
        with patch('eventsite.services.crud.toggle_active', new_callable=AsyncMock, return_value=deactivated):
            result = await services.toggle_user(2)

        assert result.active is False
        assert result.label == "Activate"


@pytest.mark.asyncio
class TestListUsers:
    async def test_pagination_calculation(self):
        mock_users = [MockUser(i, f"User {i}", None) for i in range(1, 6)]

        with patch('eventsite.services.crud.list_users', new_callable=AsyncMock, return_value=(mock_users, 25)):
            result = await services.list_users(page=2, limit=5)

        assert result.total == 25
        assert result.pages == 5

    async def test_limit_clamping(self):
        mock_list = AsyncMock(return_value=([], 0))
        with patch('eventsite.services.crud.list_users', mock_list):
            result = await services.list_users(page=0, limit=1000)

        assert result.limit == 100
        assert result.page == 1

    async def test_bad_scope_is_400(self):
        with patch('eventsite.services.crud.list_users', new_callable=AsyncMock,
                   side_effect=ValueError("unknown scope 'x'")):
            with pytest.raises(HTTPException) as exc_info:
                await services.list_users(scope="x")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error"] == "INVALID_INPUT"


@pytest.mark.asyncio
class TestAuthenticate:
    async def test_inactive_user_with_right_password(self):
        user = MockUser(1, "Ann", None, active=False)
        user.hashed_password = hash_password("password123")

        with patch('eventsite.services.crud.select_user_by_login', new_callable=AsyncMock, return_value=user):
            with pytest.raises(HTTPException) as exc_info:
                await services.authenticate_user(UserLogin(login="Ann", password="password123"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail["error"] == "INACTIVE_USER"

    async def test_unknown_user(self):
        with patch('eventsite.services.crud.select_user_by_login', new_callable=AsyncMock, return_value=None):
            with pytest.raises(HTTPException) as exc_info:
                await services.authenticate_user(UserLogin(login="nobody", password="password123"))

        assert exc_info.value.detail["error"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
class TestEventOwnership:
    async def test_non_owner_cannot_update(self):
        intruder = MockUser(2, "Intruder", None)
        with patch('eventsite.services.crud.select_event', new_callable=AsyncMock,
                   return_value=MockEvent(5, user_id=1)):
            with pytest.raises(HTTPException) as exc_info:
                await services.update_event(5, EventUpdate(title="Mine now"), intruder)

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["error"] == "FORBIDDEN"

    async def test_admin_can_update(self):
        admin = MockUser(2, "Admin", None, role="admin")
        updated = MockEvent(5, user_id=1, title="Renamed")
        with patch('eventsite.services.crud.select_event', new_callable=AsyncMock,
                   return_value=MockEvent(5, user_id=1)), \
                patch('eventsite.services.crud.update_event', new_callable=AsyncMock, return_value=updated):
            result = await services.update_event(5, EventUpdate(title="Renamed"), admin)

        assert result.title == "Renamed"


@pytest.mark.asyncio
class TestPasswordReset:
    async def test_full_reset_flow(self, test_db_engine):
        user = await insert_user("ann lee", "ann@example.com", "old-hash")

        raw_token = await services.request_password_reset(PasswordForgot(email="ANN@example.com"))

        stored = await select_user(user.id)
        assert raw_token is not None
        assert stored.reset_password_token == digest_reset_token(raw_token)
        assert stored.reset_password_token != raw_token

        await services.reset_password(PasswordReset(token=raw_token, password="brand-new-pass"))

        after = await select_user(user.id)
        assert verify_password("brand-new-pass", after.hashed_password)
        assert after.reset_password_token is None
        assert await select_user_by_reset_token(digest_reset_token(raw_token)) is None

    async def test_unknown_email_issues_nothing(self, test_db_engine):
        assert await services.request_password_reset(PasswordForgot(email="nobody@example.com")) is None

    async def test_expired_token_rejected(self, test_db_engine):
        user = await insert_user("ann lee", "ann@example.com", "old-hash")
        raw_token = await services.request_password_reset(PasswordForgot(email="ann@example.com"))
        async with db.async_session() as session:
            await session.execute(
                update(User)
                .where(User.id == user.id)
                .values(reset_password_sent_at=datetime.now(timezone.utc) - timedelta(hours=7))
            )
            await session.commit()

        with pytest.raises(HTTPException) as exc_info:
            await services.reset_password(PasswordReset(token=raw_token, password="brand-new-pass"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error"] == "INVALID_RESET_TOKEN"
