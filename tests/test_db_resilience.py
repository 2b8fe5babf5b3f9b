"""
Tests for database connection resilience and retry logic.
"""

import pytest
from sqlalchemy.exc import OperationalError
from eventsite import db


@pytest.mark.asyncio
async def test_check_db_connection_healthy(test_db_engine):
    assert await db.check_db_connection() is True


@pytest.mark.asyncio
async def test_retry_on_db_error_retries_on_connection_error():
    call_count = 0

    async def failing_then_success():
        nonlocal call_count
        call_count += 1
        if call_count < 2:
            raise OperationalError("connection reset by peer", None, None)
        return "success"

    result = await db.retry_on_db_error(failing_then_success, max_retries=3, base_delay=0.01)
    assert result == "success"
    assert call_count == 2


@pytest.mark.asyncio
async def test_retry_on_locked_sqlite():
    call_count = 0

    async def locked_once():
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise OperationalError("database is locked", None, None)
        return "ok"

    assert await db.retry_on_db_error(locked_once, base_delay=0.01) == "ok"


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_retries():
    call_count = 0

    async def always_failing():
        nonlocal call_count
        call_count += 1
        raise OperationalError("connection timeout", None, None)

    with pytest.raises(OperationalError):
        await db.retry_on_db_error(always_failing, max_retries=2, base_delay=0.01)

    assert call_count == 2


@pytest.mark.asyncio
async def test_no_retry_on_constraint_violation():
    call_count = 0

    async def constraint_error():
        nonlocal call_count
        call_count += 1
        raise OperationalError("unique constraint violated", None, None)

    with pytest.raises(OperationalError):
        await db.retry_on_db_error(constraint_error, max_retries=3, base_delay=0.01)

    assert call_count == 1


def test_naming_convention_applied():
    from eventsite.models import User
    constraint_names = {c.name for c in User.__table__.constraints}
    assert "uq_users_name" in constraint_names
    assert "uq_users_email" in constraint_names
