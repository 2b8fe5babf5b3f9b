"""Role registry and the role capability shared by role-bearing entities."""

from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Role


class RoleCode:
    """Role codes seeded by the initial migration."""
    ADMIN = "admin"
    DEFAULT = "default"


SEED_ROLES = (
    {"code": RoleCode.ADMIN, "name": "Administrator"},
    {"code": RoleCode.DEFAULT, "name": "Member"},
)


@runtime_checkable
class HasRole(Protocol):
    """Anything carrying an optional, already-loaded role."""
    role: Role | None


def role_code(entity: HasRole) -> str | None:
    role = getattr(entity, "role", None)
    return role.code if role is not None else None


def has_role(entity: HasRole, code: str) -> bool:
    return role_code(entity) == code


def is_admin(entity: HasRole) -> bool:
    """True only when the entity's role code is exactly 'admin'; False when no role is set."""
    return has_role(entity, RoleCode.ADMIN)


async def find_role(session: AsyncSession, code: str) -> Role | None:
    result = await session.execute(select(Role).where(Role.code == code))
    return result.scalars().first()


def role_id_subquery(code: str):
    """Scalar subquery resolving a role code to its id, for use inside WHERE clauses."""
    return select(Role.id).where(Role.code == code).scalar_subquery()


async def seed_roles(session: AsyncSession) -> list[Role]:
    """Insert any missing seed roles. Used by local setup and tests; production seeds via Alembic."""
    roles = []
    for data in SEED_ROLES:
        role = await find_role(session, data["code"])
        if role is None:
            role = Role(**data)
            session.add(role)
        roles.append(role)
    await session.commit()
    return roles
