"""Composable user query scopes.

Each scope takes an optional statement and narrows it, so scopes chain:
``fresh_users(since, default_users())``.
"""

from datetime import datetime

from sqlalchemy import Select, select

from .models import User
from .roles import RoleCode, role_id_subquery

SCOPES = ("all", "default", "fresh", "default_fresh")


def _base(stmt: Select | None) -> Select:
    return stmt if stmt is not None else select(User)


def default_users(stmt: Select | None = None) -> Select:
    """Users whose role is the role coded 'default'."""
    return _base(stmt).where(User.role_id == role_id_subquery(RoleCode.DEFAULT))


def fresh_users(since: datetime, stmt: Select | None = None) -> Select:
    """Users created strictly after ``since``."""
    return _base(stmt).where(User.created_at > since)


def default_fresh_users(since: datetime, stmt: Select | None = None) -> Select:
    return fresh_users(since, default_users(stmt))


def apply_scope(scope: str, since: datetime | None = None, stmt: Select | None = None) -> Select:
    """Resolve a scope name from the API into a statement. Time scopes require ``since``."""
    if scope not in SCOPES:
        raise ValueError(f"unknown scope '{scope}'")
    if scope in ("fresh", "default_fresh") and since is None:
        raise ValueError(f"scope '{scope}' requires 'since'")
    if scope == "default":
        return default_users(stmt)
    if scope == "fresh":
        return fresh_users(since, stmt)
    if scope == "default_fresh":
        return default_fresh_users(since, stmt)
    return _base(stmt)
