from __future__ import annotations

import uuid
from datetime import date
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field

from .base import HHMM, Timestamped, UpdateModel

Status = Literal["active", "inactive"]
DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


# ---- teachers --------------------------------------------------------------

class TeacherCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    surname: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=20)
    email: Optional[EmailStr] = None
    status: Status = "active"


class TeacherUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    surname: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, min_length=5, max_length=20)
    email: Optional[EmailStr] = None
    status: Optional[Status] = None


class TeacherOut(Timestamped):
    name: str
    surname: str
    phone: str
    email: Optional[str] = None
    status: str


# ---- courses ---------------------------------------------------------------

class CourseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    monthly_fee: float = Field(ge=0)
    duration: int = Field(ge=1, le=60)


class CourseUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    monthly_fee: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=1, le=60)


class CourseOut(Timestamped):
    title: str
    description: Optional[str] = None
    monthly_fee: float
    duration: int


# ---- timetables ------------------------------------------------------------

def _check_days(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    parts = [p.strip() for p in value.split(",") if p.strip()]
    if not parts:
        raise ValueError("at least one day is required")
    bad = [p for p in parts if p not in DAY_NAMES]
    if bad:
        raise ValueError(f"unknown day(s): {', '.join(bad)}")
    return ",".join(parts)


Days = Annotated[str, AfterValidator(_check_days)]


class TimetableCreate(BaseModel):
    classroom: str = Field(min_length=1, max_length=50)
    start_time: HHMM
    end_time: HHMM
    days: Days = Field(description="Comma separated, e.g. Mon,Wed,Fri")


class TimetableUpdate(UpdateModel):
    classroom: Optional[str] = Field(default=None, min_length=1, max_length=50)
    start_time: Optional[HHMM] = None
    end_time: Optional[HHMM] = None
    days: Optional[Days] = None


class TimetableOut(Timestamped):
    classroom: str
    start_time: str
    end_time: str
    days: str


# ---- groups ----------------------------------------------------------------

class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    course_id: uuid.UUID
    teacher_id: uuid.UUID
    timetable_id: uuid.UUID
    start_date: date
    capacity: int = Field(default=20, ge=1, le=100)


class GroupUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    timetable_id: Optional[uuid.UUID] = None
    start_date: Optional[date] = None
    capacity: Optional[int] = Field(default=None, ge=1, le=100)


class GroupOut(Timestamped):
    name: str
    course_id: uuid.UUID
    teacher_id: uuid.UUID
    timetable_id: uuid.UUID
    start_date: date
    capacity: int
    student_count: int = 0


# ---- students --------------------------------------------------------------

class StudentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    surname: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=20)
    email: Optional[EmailStr] = None
    group_id: Optional[uuid.UUID] = None
    status: Status = "active"


class StudentUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    surname: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, min_length=5, max_length=20)
    email: Optional[EmailStr] = None
    group_id: Optional[uuid.UUID] = None
    status: Optional[Status] = None


class StudentOut(Timestamped):
    name: str
    surname: str
    phone: str
    email: Optional[str] = None
    group_id: Optional[uuid.UUID] = None
    status: str
