"""Settings for eventsite, read from the process environment and ``.env.<APP_ENV>``."""

import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

SUPPORTED_DB_SCHEMES = ("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")


def resolve_env_file() -> str | None:
    """Pick the dotenv file for APP_ENV (default 'dev').

    SKIP_ENV_FILE (containers, tests) means everything comes from the
    process environment. Otherwise the file must exist.
    """
    if os.getenv("SKIP_ENV_FILE"):
        return None
    env_file = f".env.{os.getenv('APP_ENV', 'dev')}"
    if not os.path.exists(env_file):
        raise FileNotFoundError(
            f"'{env_file}' is missing; copy .env.example or set SKIP_ENV_FILE=1"
        )
    return env_file


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=resolve_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==================== Application ====================
    APP_NAME: str = "Eventsite"
    APP_ENV: str = "dev"  # dev | test | production
    DB_URL: str

    # ==================== Database ====================
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_QUERY_TIMEOUT: int = 60  # asyncpg command_timeout
    DB_CONNECT_TIMEOUT: int = 10
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY: float = 0.5  # doubles per attempt

    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # ==================== Listing ====================
    DEFAULT_PAGE: int = 1
    DEFAULT_LIMIT: int = 10
    MAX_LIMIT: int = 100

    # ==================== Field limits ====================
    USER_NAME_MIN_LENGTH: int = 2
    USER_NAME_MAX_LENGTH: int = 16
    USER_EMAIL_MAX_LENGTH: int = 255
    PASSWORD_MIN_LENGTH: int = 6
    PASSWORD_MAX_LENGTH: int = 128
    EVENT_TITLE_MAX_LENGTH: int = 255
    ITEM_NAME_MAX_LENGTH: int = 255
    COMMENT_BODY_MAX_LENGTH: int = 5000

    # ==================== Accounts ====================
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 30
    RESET_PASSWORD_WITHIN_HOURS: int = 6

    # ==================== Rate limits (slowapi syntax) ====================
    RATE_LIMIT_UPLOAD: str = "10/minute"
    RATE_LIMIT_WRITE: str = "60/minute"
    RATE_LIMIT_READ: str = "100/minute"

    GRACEFUL_SHUTDOWN_TIMEOUT: int = 30  # seconds

    # ==================== Logging ====================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = "eventsite.log"  # empty disables the file handler
    LOG_FORMAT: str = "console"  # console | json (file handler only)

    # ==================== Cache ====================
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TTL: int = 300
    CACHE_ENABLED: bool = True

    # ==================== Avatars ====================
    MEDIA_ROOT: str = "media"
    AVATAR_MAX_BYTES: int = 5 * 1024 * 1024
    AVATAR_THUMB_SIZE: int = 50

    @field_validator('DB_URL')
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if not v:
            raise ValueError("DB_URL must be set")
        if not v.startswith(SUPPORTED_DB_SCHEMES):
            raise ValueError(
                f"DB_URL must start with one of {', '.join(SUPPORTED_DB_SCHEMES)}"
            )
        return v

    @field_validator('JWT_SECRET_KEY')
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if len(v or "") < 32:
            raise ValueError("JWT_SECRET_KEY must be set and at least 32 characters long")
        return v

    def get_cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def is_sqlite(self) -> bool:
        return self.DB_URL.startswith("sqlite")


settings = Settings()
