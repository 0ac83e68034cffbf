from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, JSONB, Base, SoftDeleteMixin, UTCDateTime, UUIDMixin, utcnow


class Role(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    STAFF = "staff"


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    READ = "read"
    LOGIN = "login"
    LOGOUT = "logout"


class User(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "users"
    LABEL: ClassVar[str] = "User"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("email", "first_name", "last_name")

    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    role: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    last_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    phone: Mapped[Optional[str]] = mapped_column(sa.String(20))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("teachers.id"))
    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("students.id"))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


class Session(UUIDMixin, Base):
    __tablename__ = "sessions"
    LABEL: ClassVar[str] = "Session"

    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(sa.String(128), nullable=False, unique=True)
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(sa.String(512))
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    def is_valid(self, now: datetime) -> bool:
        return self.revoked_at is None and now < self.expires_at


class Permission(UUIDMixin, Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),)
    LABEL: ClassVar[str] = "Permission"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name", "resource", "action")

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    resource: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)


class RolePermission(UUIDMixin, Base):
    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role", "permission_id", name="uq_role_permissions_role_permission"),)
    LABEL: ClassVar[str] = "Role permission"

    role: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    permission_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("permissions.id"), nullable=False)


class AuditLog(Base):
    """Append-only: rows are inserted and never updated or deleted."""
    __tablename__ = "audit_logs"
    LABEL: ClassVar[str] = "Audit log"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("resource", "error_msg")

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), index=True)
    action: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(sa.String(50), nullable=False, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    old_value: Mapped[Optional[Any]] = mapped_column(JSONB())
    new_value: Mapped[Optional[Any]] = mapped_column(JSONB())
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(sa.String(512))
    request_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    success: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    error_msg: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=sa.func.now(), index=True
    )
