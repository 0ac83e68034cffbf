from __future__ import annotations

import uuid
from datetime import date
from typing import ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, Base, SoftDeleteMixin, UUIDMixin


class Teacher(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "teachers"
    LABEL: ClassVar[str] = "Teacher"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name", "surname", "email", "phone")

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    surname: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default="active", server_default="active")


class Course(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "courses"
    LABEL: ClassVar[str] = "Course"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("title", "description")

    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    monthly_fee: Mapped[float] = mapped_column(sa.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    duration: Mapped[int] = mapped_column(sa.Integer, nullable=False)  # months


class Timetable(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "timetables"
    LABEL: ClassVar[str] = "Timetable"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("classroom",)

    classroom: Mapped[str] = mapped_column(sa.String(50), nullable=False, index=True)
    start_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)  # HH:MM
    end_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    days: Mapped[str] = mapped_column(sa.String(64), nullable=False)  # "Mon,Wed,Fri"


class Group(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "groups"
    __table_args__ = (sa.CheckConstraint("capacity >= 1", name="capacity_positive"),)
    LABEL: ClassVar[str] = "Group"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name",)

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("courses.id"), nullable=False, index=True)
    teacher_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("teachers.id"), nullable=False, index=True)
    timetable_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("timetables.id"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=20)


class Student(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "students"
    LABEL: ClassVar[str] = "Student"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("name", "surname", "email", "phone")

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    surname: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("groups.id"), index=True)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default="active", server_default="active")

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()
