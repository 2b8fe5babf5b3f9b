"""Async engine and session factory, declarative base, and retry helpers."""

import asyncio

from sqlalchemy import MetaData, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import settings
from .logger import logger

# Constraint names show up in IntegrityError messages; lifecycle.py relies on them.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Substrings of driver errors worth another attempt; anything else fails fast.
RETRYABLE_MARKERS = (
    "connection",
    "timeout",
    "database is locked",
    "server closed the connection",
)


def _engine_options() -> dict:
    """Pool and asyncpg options. SQLite (tests, local runs) takes none of them."""
    if settings.is_sqlite():
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
        "connect_args": {
            "timeout": settings.DB_CONNECT_TIMEOUT,
            "command_timeout": settings.DB_QUERY_TIMEOUT,
        },
    }


engine = create_async_engine(settings.DB_URL, echo=False, **_engine_options())
logger.info(f"Database engine ready: {engine.url.drivername}")

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


def _is_retryable(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


async def retry_on_db_error(func, max_retries: int | None = None, base_delay: float | None = None):
    """Await ``func()``, retrying connection-level failures with exponential backoff.

    Defaults come from DB_RETRY_MAX_ATTEMPTS and DB_RETRY_BASE_DELAY.
    Constraint violations and other errors are raised on the first attempt.
    """
    attempts = max_retries or settings.DB_RETRY_MAX_ATTEMPTS
    delay = settings.DB_RETRY_BASE_DELAY if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except (OperationalError, DBAPIError) as e:
            if attempt == attempts or not _is_retryable(e):
                logger.error(f"Database operation failed on attempt {attempt}/{attempts}: {e}", exc_info=True)
                raise
            logger.warning(f"Database error on attempt {attempt}/{attempts}, retrying in {delay}s: {e}")
            await asyncio.sleep(delay)
            delay *= 2


async def check_db_connection() -> bool:
    """True when ``SELECT 1`` succeeds within two attempts."""
    async def _ping():
        async with async_session() as session:
            await session.execute(text("SELECT 1"))

    try:
        await retry_on_db_error(_ping, max_retries=2, base_delay=0.1)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
    return True


async def dispose_engine():
    try:
        await engine.dispose()
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}", exc_info=True)
        return
    logger.info("Database connections closed")
