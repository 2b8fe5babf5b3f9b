"""
Unit tests for database layer (CRUD operations).
Tests CRUD functions with real database using test fixtures.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eventsite import db
from eventsite.associations import EventRef, UserRef
from eventsite.auth import hash_password
from eventsite.crud import (
    delete_event,
    delete_user,
    insert_comment,
    insert_event,
    insert_item,
    insert_user,
    list_events,
    list_users,
    record_sign_in,
    select_user,
    select_user_by_login,
    toggle_active,
    update_user,
)
from eventsite.lifecycle import AFTER_DESTROY, BEFORE_DESTROY, MUST_EXIST, TAKEN, UserValidationError
from eventsite.models import Comment, Event, Item, User


def get_test_password_hash() -> str:
    return hash_password("test_password_123")


async def count_rows(model) -> int:
    async with db.async_session() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar()


async def set_created_at(user_id: int, created_at: datetime) -> None:
    async with db.async_session() as session:
        await session.execute(update(User).where(User.id == user_id).values(created_at=created_at))
        await session.commit()


@pytest.mark.asyncio
class TestInsertUser:
    async def test_insert_user_normalizes(self, test_db_engine):
        user = await insert_user("jOHN_smith", "John@Example.COM", get_test_password_hash())

        assert user.id is not None
        assert user.name == "John Smith"
        assert user.email == "john@example.com"
        assert user.active is True
        assert user.role.code == "default"

    async def test_insert_user_without_email(self, test_db_engine):
        user = await insert_user("no mail", None, get_test_password_hash())
        assert user.email is None

    async def test_insert_user_explicit_role(self, test_db_engine):
        user = await insert_user("boss", None, get_test_password_hash(), role_code="admin")
        assert user.role.code == "admin"

    async def test_insert_user_unknown_role(self, test_db_engine):
        with pytest.raises(UserValidationError) as exc_info:
            await insert_user("ghost", None, get_test_password_hash(), role_code="moderator")
        assert exc_info.value.errors == {"role": [MUST_EXIST]}
        assert await count_rows(User) == 0

    async def test_insert_user_duplicate_name(self, test_db_engine):
        await insert_user("ann lee", "one@example.com", get_test_password_hash())

        with pytest.raises(UserValidationError) as exc_info:
            await insert_user("ANN LEE", "two@example.com", get_test_password_hash())

        assert exc_info.value.errors == {"name": [TAKEN]}
        assert await count_rows(User) == 1

    async def test_insert_user_duplicate_email_any_case(self, test_db_engine):
        await insert_user("first", "dup@example.com", get_test_password_hash())

        with pytest.raises(UserValidationError) as exc_info:
            await insert_user("second", "DUP@example.com", get_test_password_hash())

        assert exc_info.value.errors == {"email": [TAKEN]}

    async def test_insert_user_reports_every_failure(self, test_db_engine):
        await insert_user("taken", "taken@example.com", get_test_password_hash())

        with pytest.raises(UserValidationError) as exc_info:
            await insert_user("x", "taken@example.com", get_test_password_hash())

        assert set(exc_info.value.errors) == {"name", "email"}

    async def test_insert_user_dashed_name_collides(self, test_db_engine):
        await insert_user("mary jane", None, get_test_password_hash())

        with pytest.raises(UserValidationError) as exc_info:
            await insert_user("mary-jane", None, get_test_password_hash())

        assert exc_info.value.errors == {"name": [TAKEN]}

    async def test_insert_user_unique_race_becomes_validation_error(self, test_db_engine):
        await insert_user("ann lee", "one@example.com", get_test_password_hash())

        # Validation passes, as when another request inserts the name in between
        with patch("eventsite.lifecycle.validate_user", new_callable=AsyncMock):
            with pytest.raises(UserValidationError) as exc_info:
                await insert_user("ann lee", "two@example.com", get_test_password_hash())

        assert exc_info.value.errors == {"name": [TAKEN]}
        assert await count_rows(User) == 1


@pytest.mark.asyncio
class TestSelectUser:
    async def test_select_user_success(self, test_db_engine):
        created = await insert_user("test user", "test@example.com", get_test_password_hash())
        user = await select_user(created.id)
        assert user.name == "Test User"
        assert user.role.code == "default"

    async def test_select_user_not_found(self, test_db_engine):
        assert await select_user(99999) is None

    async def test_select_by_login_name_or_email(self, test_db_engine):
        created = await insert_user("ann lee", "ann@example.com", get_test_password_hash())
        assert (await select_user_by_login("Ann Lee")).id == created.id
        assert (await select_user_by_login("ANN@example.com")).id == created.id
        assert await select_user_by_login("nobody") is None

    async def test_select_by_login_prefers_email_over_name(self, test_db_engine):
        owner = await insert_user("mail owner", "b@x.io", get_test_password_hash())
        other = await insert_user("other", None, get_test_password_hash())
        # Names are only title-cased on create, so an update can store this verbatim
        await update_user(other.id, {"name": "b@x.io"})

        assert (await select_user_by_login("b@x.io")).id == owner.id
        assert (await select_user_by_login("Other")) is None
        assert (await select_user_by_login("Mail Owner")).id == owner.id


@pytest.mark.asyncio
class TestUpdateUser:
    async def test_update_lowercases_email_only(self, test_db_engine):
        created = await insert_user("ann lee", "ann@example.com", get_test_password_hash())

        user = await update_user(created.id, {"name": "ann lee", "email": "NEW@Example.com"})

        assert user.email == "new@example.com"
        assert user.name == "ann lee"

    async def test_update_to_taken_name_fails(self, test_db_engine):
        await insert_user("first", None, get_test_password_hash())
        second = await insert_user("second", None, get_test_password_hash())

        with pytest.raises(UserValidationError) as exc_info:
            await update_user(second.id, {"name": "First"})

        assert exc_info.value.errors == {"name": [TAKEN]}
        assert (await select_user(second.id)).name == "Second"

    async def test_update_missing_user(self, test_db_engine):
        assert await update_user(424242, {"email": "a@b.io"}) is None

    async def test_toggle_active(self, test_db_engine):
        created = await insert_user("ann lee", None, get_test_password_hash())
        assert (await toggle_active(created.id)).active is False
        assert (await toggle_active(created.id)).active is True

    async def test_record_sign_in_shifts_current_to_last(self, test_db_engine):
        created = await insert_user("ann lee", None, get_test_password_hash())

        await record_sign_in(created.id, "10.0.0.1")
        await record_sign_in(created.id, "10.0.0.2")

        user = await select_user(created.id)
        assert user.sign_in_count == 2
        assert user.current_sign_in_ip == "10.0.0.2"
        assert user.last_sign_in_ip == "10.0.0.1"


@pytest.mark.asyncio
class TestDeleteUser:
    async def test_delete_cascades_owned_records(self, test_db_engine):
        owner = await insert_user("owner", None, get_test_password_hash())
        other = await insert_user("other", None, get_test_password_hash())
        event = await insert_event(owner.id, "Picnic", None)
        await insert_item(event.id, "Blanket")
        await insert_comment(owner.id, EventRef(event.id), "my own event")
        await insert_comment(owner.id, UserRef(other.id), "hi other")
        await insert_comment(other.id, EventRef(event.id), "nice event")
        await insert_comment(other.id, UserRef(owner.id), "hi owner")
        other_event = await insert_event(other.id, "Other party", None)
        kept = await insert_comment(other.id, EventRef(other_event.id), "keeps")

        events = []
        snapshot = await delete_user(owner.id, observer=events.append)

        assert snapshot.id == owner.id
        assert snapshot.name == "Owner"
        assert [e.kind for e in events] == [BEFORE_DESTROY, AFTER_DESTROY]
        assert await select_user(owner.id) is None
        assert await count_rows(Event) == 1
        assert await count_rows(Item) == 0

        async with db.async_session() as session:
            remaining = (await session.execute(select(Comment))).scalars().all()
        assert [c.id for c in remaining] == [kept.id]

    async def test_delete_missing_user(self, test_db_engine):
        events = []
        assert await delete_user(99999, observer=events.append) is None
        assert events == []

    async def test_failed_commit_skips_after_event(self, test_db_engine):
        user = await insert_user("doomed", None, get_test_password_hash())
        await insert_event(user.id, "Party", None)

        events = []
        with patch.object(
            AsyncSession, "commit", new_callable=AsyncMock, side_effect=RuntimeError("disk full")
        ):
            with pytest.raises(RuntimeError, match="disk full"):
                await delete_user(user.id, observer=events.append)

        assert [e.kind for e in events] == [BEFORE_DESTROY]
        assert await select_user(user.id) is not None
        assert await count_rows(Event) == 1


@pytest.mark.asyncio
class TestListUsers:
    async def test_scopes(self, test_db_engine):
        cutoff = datetime(2024, 6, 1)
        old_member = await insert_user("old member", None, get_test_password_hash())
        new_member = await insert_user("new member", None, get_test_password_hash())
        new_admin = await insert_user("new admin", None, get_test_password_hash(), role_code="admin")
        await set_created_at(old_member.id, cutoff - timedelta(days=1))
        await set_created_at(new_member.id, cutoff + timedelta(days=1))
        await set_created_at(new_admin.id, cutoff + timedelta(days=2))

        async def ids(scope, since=None):
            users, total = await list_users(0, 10, scope=scope, since=since)
            assert total == len(users)
            return [u.id for u in users]

        assert await ids("all") == [old_member.id, new_member.id, new_admin.id]
        assert await ids("default") == [old_member.id, new_member.id]
        assert await ids("fresh", cutoff) == [new_member.id, new_admin.id]
        assert await ids("default_fresh", cutoff) == [new_member.id]

    async def test_fresh_is_strictly_after(self, test_db_engine):
        cutoff = datetime(2024, 6, 1)
        user = await insert_user("exact", None, get_test_password_hash())
        await set_created_at(user.id, cutoff)

        users, total = await list_users(0, 10, scope="fresh", since=cutoff)
        assert users == [] and total == 0

    async def test_pagination_total(self, test_db_engine):
        for i in range(5):
            await insert_user(f"user {i}", None, get_test_password_hash())

        users, total = await list_users(skip=2, limit=2)
        assert total == 5
        assert [u.name for u in users] == ["User 2", "User 3"]

    async def test_unknown_scope(self, test_db_engine):
        with pytest.raises(ValueError, match="unknown scope"):
            await list_users(0, 10, scope="everyone")

    async def test_fresh_requires_since(self, test_db_engine):
        with pytest.raises(ValueError, match="requires 'since'"):
            await list_users(0, 10, scope="fresh")


@pytest.mark.asyncio
class TestEvents:
    async def test_insert_and_delete_event_maintain_counter(self, test_db_engine):
        user = await insert_user("host", None, get_test_password_hash())
        event = await insert_event(user.id, "Picnic", "in the park")
        assert (await select_user(user.id)).events_count == 1

        await insert_item(event.id, "Basket")
        await insert_comment(user.id, EventRef(event.id), "bring snacks")
        deleted = await delete_event(event.id)

        assert deleted.id == event.id
        assert (await select_user(user.id)).events_count == 0
        assert await count_rows(Item) == 0
        assert await count_rows(Comment) == 0

    async def test_list_events_newest_first(self, test_db_engine):
        user = await insert_user("host", None, get_test_password_hash())
        first = await insert_event(user.id, "First", None)
        second = await insert_event(user.id, "Second", None)

        events, total = await list_events(0, 10)
        assert total == 2
        assert [e.id for e in events] == [second.id, first.id]

    async def test_children_of_missing_parents(self, test_db_engine):
        user = await insert_user("host", None, get_test_password_hash())
        assert await insert_item(999, "Orphan") is None
        assert await insert_comment(user.id, EventRef(999), "?") is None
        assert await insert_comment(user.id, UserRef(999), "?") is None
        assert await delete_event(999) is None
