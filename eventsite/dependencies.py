"""FastAPI dependencies for authentication and authorization."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from .auth import decode_access_token
from .crud import select_user
from .lifecycle import can_authenticate
from .models import User
from .roles import is_admin
from .schemas import ErrorCode


# ==================== Authentication Dependencies ====================

security = HTTPBearer()


def _unauthorized(error: str, message: str, details: dict | None = None) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message, "details": details or {}},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> User:
    """Resolve the bearer token to a user. 401 if the token is bad, 403 if the account is inactive."""
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized(ErrorCode.INVALID_CREDENTIALS, "Invalid or expired authentication token")

    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized(ErrorCode.INVALID_CREDENTIALS, "Token payload is invalid")

    user = await select_user(int(user_id))
    if user is None:
        raise _unauthorized(ErrorCode.USER_NOT_FOUND, "User not found", {"user_id": user_id})

    # A decodable token for an existing user is the base check; the active flag gates the rest.
    if not can_authenticate(user, credentials_ok=True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": ErrorCode.INACTIVE_USER,
                "message": "User account is inactive",
                "details": {"user_id": user.id},
            },
        )

    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": ErrorCode.FORBIDDEN,
                "message": "Administrator role required",
                "details": {},
            },
        )
    return current_user


def ensure_self_or_admin(user_id: int, current_user: User) -> None:
    """Raise 403 unless ``current_user`` is the target user or an administrator."""
    if current_user.id != user_id and not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": ErrorCode.FORBIDDEN,
                "message": "You can only manage your own account",
                "details": {"user_id": user_id},
            },
        )
