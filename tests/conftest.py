"""
Pytest configuration and shared fixtures for testing.
Sets up a throwaway SQLite database per test, seeded roles, and an HTTP client.
"""

import os

# Configure the app before any eventsite imports
os.environ["TEST_MODE"] = "1"  # disables rate limiting
os.environ["SKIP_ENV_FILE"] = "1"
os.environ["APP_ENV"] = "test"
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-eventsite-0123456789abcdef"
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""
os.environ["ENABLE_METRICS"] = "true"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from eventsite import db as app_db
from eventsite.auth import create_access_token, hash_password
from eventsite.crud import insert_user
from eventsite.db import Base
from eventsite.main import app
from eventsite.roles import RoleCode, seed_roles
from eventsite.storage import avatar_storage


@pytest_asyncio.fixture(scope="function")
async def test_db_engine(tmp_path):
    """Fresh SQLite file database with all tables and the seed roles."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    test_session_maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    original_session = app_db.async_session
    app_db.async_session = test_session_maker

    # Tests create tables directly; production uses Alembic migrations
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session_maker() as session:
        await seed_roles(session)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    app_db.async_session = original_session
    await engine.dispose()


@pytest.fixture(autouse=True)
def media_root(tmp_path, monkeypatch):
    """Keep avatar files inside the test's temp directory."""
    root = tmp_path / "media" / "avatars"
    monkeypatch.setattr(avatar_storage, "root", root)
    return root


@pytest_asyncio.fixture(scope="function")
async def client(test_db_engine):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0
    ) as ac:
        yield ac


def auth_headers_for(user) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_user():
    return {
        "name": "ann lee",
        "email": "Ann@Example.COM",
        "password": "password123"
    }


@pytest_asyncio.fixture
async def member(test_db_engine):
    """A regular user with the default role."""
    return await insert_user("member one", "member@example.com", hash_password("password123"))


@pytest_asyncio.fixture
async def admin(test_db_engine):
    return await insert_user(
        "site admin", "admin@example.com", hash_password("password123"), role_code=RoleCode.ADMIN
    )


@pytest.fixture
def member_headers(member):
    return auth_headers_for(member)


@pytest.fixture
def admin_headers(admin):
    return auth_headers_for(admin)
