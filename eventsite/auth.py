"""Password hashing, JWT access tokens and password-reset tokens."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
import bcrypt
from .config import settings


# ==================== Password Hashing ====================

def hash_password(password: str) -> str:
    """Hash a plain text password with bcrypt for storage."""
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt())
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Base credential check: plain password against the stored bcrypt hash."""
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


# ==================== JWT Token Management ====================

def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token; expiry defaults to JWT_EXPIRATION_MINUTES."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT token. Returns None if invalid or expired."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ==================== Password Reset Tokens ====================

def generate_reset_token() -> tuple[str, str]:
    """Return (raw token for the user, digest for the database)."""
    raw = secrets.token_urlsafe(32)
    return raw, digest_reset_token(raw)


def digest_reset_token(raw: str) -> str:
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def reset_period_valid(sent_at: datetime | None, now: datetime | None = None) -> bool:
    """True while a reset token issued at ``sent_at`` is still usable."""
    if sent_at is None:
        return False
    if sent_at.tzinfo is None:
        # SQLite hands back naive UTC timestamps
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now - sent_at <= timedelta(hours=settings.RESET_PASSWORD_WITHIN_HOURS)
