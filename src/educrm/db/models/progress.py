from __future__ import annotations

import datetime as dt
import enum
import uuid
from datetime import datetime
from typing import Any, ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from educrm.db.base import GUID, JSONB, Base, SoftDeleteMixin, UTCDateTime, UUIDMixin


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


class Attendance(UUIDMixin, Base):
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("student_id", "group_id", "date", name="uq_attendance_student_group_date"),)
    LABEL: ClassVar[str] = "Attendance"

    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)


class Grade(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("student_id", "group_id", "date", "type", name="uq_grades_student_group_date_type"),
        sa.CheckConstraint("value >= 0 AND value <= 100", name="value_range"),
    )
    LABEL: ClassVar[str] = "Grade"

    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False, index=True)
    course_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("courses.id"), nullable=False, index=True)
    value: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class AssignmentType(str, enum.Enum):
    HOMEWORK = "homework"
    PROJECT = "project"
    QUIZ = "quiz"
    LAB = "lab"
    PRACTICE = "practice"
    READING = "reading"


class AssignmentStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"
    ARCHIVED = "archived"


class SubmissionStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    LATE = "late"
    GRADED = "graded"
    RETURNED = "returned"


class Assignment(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "assignments"
    LABEL: ClassVar[str] = "Assignment"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("title", "description")

    group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False, index=True)
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("courses.id"), index=True)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("teachers.id"), index=True)

    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    instructions: Mapped[Optional[str]] = mapped_column(sa.Text)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=AssignmentType.HOMEWORK.value)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=AssignmentStatus.DRAFT.value)

    assigned_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    closed_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    max_points: Mapped[float] = mapped_column(sa.Float, nullable=False, default=100)
    passing_points: Mapped[float] = mapped_column(sa.Float, nullable=False, default=60)
    weight_percent: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)
    allow_late: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    late_penalty_percent: Mapped[float] = mapped_column(sa.Float, nullable=False, default=10)

    attachments: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())


class AssignmentSubmission(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (UniqueConstraint("assignment_id", "student_id", name="uq_submission_assignment_student"),)
    LABEL: ClassVar[str] = "Submission"

    assignment_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("assignments.id"), nullable=False, index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)

    content: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachments: Mapped[Optional[list[Any]]] = mapped_column(JSONB())
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=SubmissionStatus.PENDING.value)
    attempt_number: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    is_late: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    days_late: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    points_earned: Mapped[Optional[float]] = mapped_column(sa.Float)
    penalty_applied: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)
    final_points: Mapped[Optional[float]] = mapped_column(sa.Float)
    feedback: Mapped[Optional[str]] = mapped_column(sa.Text)
    graded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    graded_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    returned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())


# ---------------------------------------------------------------------------
# Exams
# ---------------------------------------------------------------------------

class ExamType(str, enum.Enum):
    MIDTERM = "midterm"
    FINAL = "final"
    QUIZ = "quiz"
    PRACTICAL = "practical"


class ExamStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Exam(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "exams"
    LABEL: ClassVar[str] = "Exam"
    SEARCH_COLUMNS: ClassVar[tuple[str, ...]] = ("title", "location")

    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=ExamStatus.SCHEDULED.value)

    course_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("courses.id"), nullable=False, index=True)
    group_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("groups.id"), nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    duration: Mapped[int] = mapped_column(sa.Integer, nullable=False)  # minutes

    total_marks: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    passing_marks: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(255))
    instructions: Mapped[Optional[str]] = mapped_column(sa.Text)
    meta_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB())
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())


class ExamResult(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "exam_results"
    __table_args__ = (UniqueConstraint("exam_id", "student_id", name="uq_exam_results_exam_student"),)
    LABEL: ClassVar[str] = "Exam result"

    exam_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("exams.id"), nullable=False, index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("students.id"), nullable=False, index=True)
    marks_obtained: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)
    percentage: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)
    grade: Mapped[Optional[str]] = mapped_column(sa.String(5))
    passed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    absent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    graded_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    graded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
