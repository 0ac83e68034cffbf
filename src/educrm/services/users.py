from __future__ import annotations

import uuid
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.db.base import utcnow
from educrm.db.models import Permission, Role, RolePermission, Session, Student, Teacher, User
from educrm.db.repository import Repository, with_tx
from educrm.services.sessions import hash_password, verify_password


async def _email_taken(db: AsyncSession, email: str, exclude: Optional[uuid.UUID] = None) -> bool:
    stmt = sa.select(User.id).where(sa.func.lower(User.email) == email.lower())
    if exclude is not None:
        stmt = stmt.where(User.id != exclude)
    return (await db.execute(stmt)).first() is not None


async def _check_links(db: AsyncSession, data: dict[str, Any]) -> None:
    if data.get("teacher_id") is not None:
        await Repository(db, Teacher).get_or_404(data["teacher_id"])
    if data.get("student_id") is not None:
        await Repository(db, Student).get_or_404(data["student_id"])


async def create_user(db: AsyncSession, data: dict[str, Any]) -> User:
    data = dict(data)
    password = data.pop("password")

    async def _tx() -> User:
        if await _email_taken(db, data["email"]):
            raise errors.duplicate_entry("A user with this email already exists")
        await _check_links(db, data)
        data["email"] = data["email"].lower()
        user = User(**data, password_hash=hash_password(password))
        return await Repository(db, User).create(user)

    return await with_tx(db, _tx)


async def update_user(db: AsyncSession, user_id: uuid.UUID, data: dict[str, Any]) -> User:
    async def _tx() -> User:
        repo = Repository(db, User)
        user = await repo.get_or_404(user_id, for_update=True)
        if data.get("email"):
            data["email"] = data["email"].lower()
            if await _email_taken(db, data["email"], exclude=user.id):
                raise errors.duplicate_entry("A user with this email already exists")
        await _check_links(db, data)
        return await repo.update(user, data)

    return await with_tx(db, _tx)


async def change_password(
    db: AsyncSession,
    user_id: uuid.UUID,
    new_password: str,
    *,
    old_password: Optional[str] = None,
    by_admin: bool = False,
) -> User:
    async def _tx() -> User:
        user = await Repository(db, User).get_or_404(user_id, for_update=True)
        if not by_admin:
            if not old_password or not verify_password(old_password, user.password_hash):
                raise errors.unauthorized("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        await db.flush()
        return user

    return await with_tx(db, _tx)


async def delete_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    """Soft delete the account and revoke its live sessions."""
    async def _tx() -> User:
        user = await Repository(db, User).delete(user_id)
        await db.execute(
            sa.update(Session)
            .where(Session.user_id == user.id, Session.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        return user

    return await with_tx(db, _tx)


# -- permissions -------------------------------------------------------------

async def create_permission(db: AsyncSession, data: dict[str, Any]) -> Permission:
    async def _tx() -> Permission:
        clash = await db.execute(
            sa.select(Permission.id).where(
                sa.or_(
                    Permission.name == data["name"],
                    sa.and_(Permission.resource == data["resource"], Permission.action == data["action"]),
                )
            )
        )
        if clash.first() is not None:
            raise errors.duplicate_entry("Permission already exists")
        return await Repository(db, Permission).create(Permission(**data))

    return await with_tx(db, _tx)


def _role(value: str) -> str:
    try:
        return Role(value).value
    except ValueError:
        raise errors.validation(f"Unknown role: {value}", {"allowed": [r.value for r in Role]}) from None


async def grant(db: AsyncSession, role: str, permission_id: uuid.UUID) -> RolePermission:
    role = _role(role)

    async def _tx() -> RolePermission:
        await Repository(db, Permission).get_or_404(permission_id)
        existing = await db.execute(
            sa.select(RolePermission).where(
                RolePermission.role == role, RolePermission.permission_id == permission_id
            )
        )
        link = existing.scalars().first()
        if link is not None:
            return link
        return await Repository(db, RolePermission).create(RolePermission(role=role, permission_id=permission_id))

    return await with_tx(db, _tx)


async def revoke(db: AsyncSession, role: str, permission_id: uuid.UUID) -> None:
    role = _role(role)

    async def _tx() -> None:
        res = await db.execute(
            sa.delete(RolePermission).where(
                RolePermission.role == role, RolePermission.permission_id == permission_id
            )
        )
        if res.rowcount == 0:
            raise errors.not_found("Role permission")

    await with_tx(db, _tx)
