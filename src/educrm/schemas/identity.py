from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .base import ORMBase, Timestamped, UpdateModel

RoleT = Literal["admin", "teacher", "student", "staff"]


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    role: RoleT
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    is_active: bool = True
    teacher_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None


class UserUpdate(UpdateModel):
    email: Optional[EmailStr] = None
    role: Optional[RoleT] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    is_active: Optional[bool] = None
    teacher_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None


class PasswordChange(BaseModel):
    old_password: Optional[str] = None
    new_password: str = Field(min_length=8, max_length=72)


class UserOut(Timestamped):
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool
    teacher_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    last_login_at: Optional[dt.datetime] = None


class SessionOut(Timestamped):
    user_id: uuid.UUID
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    expires_at: dt.datetime
    revoked_at: Optional[dt.datetime] = None
    last_activity_at: Optional[dt.datetime] = None


class LoginResponse(BaseModel):
    token: str
    session: SessionOut
    user: UserOut


class RevokeAllResult(BaseModel):
    revoked: int


class PermissionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    resource: str = Field(min_length=1, max_length=50)
    action: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None


class PermissionOut(Timestamped):
    name: str
    resource: str
    action: str
    description: Optional[str] = None


class RolePermissionOut(Timestamped):
    role: str
    permission_id: uuid.UUID


class AuditLogOut(ORMBase):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    success: bool
    error_msg: Optional[str] = None
    created_at: dt.datetime
