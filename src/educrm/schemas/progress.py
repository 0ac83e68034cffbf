from __future__ import annotations

import uuid
import datetime as dt
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from .base import ORMBase, Timestamped, UpdateModel

AttendanceStatusT = Literal["present", "absent", "late", "excused"]
AssignmentTypeT = Literal["homework", "project", "quiz", "lab", "practice", "reading"]
AssignmentStatusT = Literal["draft", "published", "closed", "archived"]
ExamTypeT = Literal["midterm", "final", "quiz", "practical"]
ExamStatusT = Literal["scheduled", "in_progress", "completed", "cancelled"]


# ---- attendance ------------------------------------------------------------

class AttendanceMark(BaseModel):
    student_id: uuid.UUID
    date: dt.date
    status: AttendanceStatusT
    notes: Optional[str] = None


class AttendanceRecord(BaseModel):
    student_id: uuid.UUID
    status: AttendanceStatusT
    notes: Optional[str] = None


class AttendanceBatch(BaseModel):
    date: dt.date
    records: list[AttendanceRecord] = Field(min_length=1)


class AttendanceOut(Timestamped):
    student_id: uuid.UUID
    group_id: uuid.UUID
    date: dt.date
    status: str
    notes: Optional[str] = None


# ---- grades ----------------------------------------------------------------

class GradeCreate(BaseModel):
    student_id: uuid.UUID
    value: int = Field(ge=0, le=100)
    type: str = Field(min_length=1, max_length=50)
    date: dt.date
    notes: Optional[str] = None


class GradeRecord(BaseModel):
    student_id: uuid.UUID
    value: int = Field(ge=0, le=100)
    notes: Optional[str] = None


class GradeBatch(BaseModel):
    date: dt.date
    type: str = Field(min_length=1, max_length=50)
    records: list[GradeRecord] = Field(min_length=1)


class GradeUpdate(UpdateModel):
    value: Optional[int] = Field(default=None, ge=0, le=100)
    type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    date: Optional[dt.date] = None
    notes: Optional[str] = None


class GradeOut(Timestamped):
    student_id: uuid.UUID
    group_id: uuid.UUID
    course_id: uuid.UUID
    value: int
    type: str
    date: dt.date
    notes: Optional[str] = None


# ---- assignments -----------------------------------------------------------

class AssignmentCreate(BaseModel):
    group_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    instructions: Optional[str] = None
    type: AssignmentTypeT = "homework"
    status: AssignmentStatusT = "draft"
    assigned_date: Optional[dt.datetime] = None
    due_date: dt.datetime
    max_points: float = Field(default=100, gt=0)
    passing_points: float = Field(default=60, ge=0)
    weight_percent: float = Field(default=0, ge=0, le=100)
    allow_late: bool = True
    late_penalty_percent: float = Field(default=10, ge=0, le=100)
    attachments: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = None


class AssignmentUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    instructions: Optional[str] = None
    type: Optional[AssignmentTypeT] = None
    status: Optional[AssignmentStatusT] = None
    due_date: Optional[dt.datetime] = None
    max_points: Optional[float] = Field(default=None, gt=0)
    passing_points: Optional[float] = Field(default=None, ge=0)
    weight_percent: Optional[float] = Field(default=None, ge=0, le=100)
    allow_late: Optional[bool] = None
    late_penalty_percent: Optional[float] = Field(default=None, ge=0, le=100)
    attachments: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = None


class AssignmentOut(Timestamped):
    group_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    type: str
    status: str
    assigned_date: Optional[dt.datetime] = None
    due_date: dt.datetime
    closed_date: Optional[dt.datetime] = None
    max_points: float
    passing_points: float
    weight_percent: float
    allow_late: bool
    late_penalty_percent: float
    attachments: Optional[list[Any]] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("meta_data", "metadata")
    )
    created_by: Optional[uuid.UUID] = None


class SubmissionCreate(BaseModel):
    student_id: uuid.UUID
    content: Optional[str] = None
    attachments: Optional[list[Any]] = None


class SubmissionGrade(BaseModel):
    points: float = Field(ge=0)
    feedback: Optional[str] = None


class SubmissionOut(Timestamped):
    assignment_id: uuid.UUID
    student_id: uuid.UUID
    content: Optional[str] = None
    attachments: Optional[list[Any]] = None
    status: str
    attempt_number: int
    submitted_at: Optional[dt.datetime] = None
    is_late: bool
    days_late: int
    points_earned: Optional[float] = None
    penalty_applied: float
    final_points: Optional[float] = None
    feedback: Optional[str] = None
    graded_at: Optional[dt.datetime] = None
    graded_by: Optional[uuid.UUID] = None
    returned_at: Optional[dt.datetime] = None


class AssignmentStatistics(BaseModel):
    assignment_id: uuid.UUID
    total_submissions: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    late_count: int = 0
    graded_count: int = 0
    average_points: float = 0.0
    highest_points: float = 0.0
    lowest_points: float = 0.0
    pass_rate: float = 0.0


# ---- exams -----------------------------------------------------------------

class ExamCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    type: ExamTypeT
    course_id: uuid.UUID
    group_id: uuid.UUID
    start_time: dt.datetime
    end_time: dt.datetime
    duration: int = Field(gt=0, description="Minutes")
    total_marks: int = Field(gt=0)
    passing_marks: int = Field(ge=0)
    location: Optional[str] = None
    instructions: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ExamUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[ExamTypeT] = None
    status: Optional[ExamStatusT] = None
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    duration: Optional[int] = Field(default=None, gt=0)
    total_marks: Optional[int] = Field(default=None, gt=0)
    passing_marks: Optional[int] = Field(default=None, ge=0)
    location: Optional[str] = None
    instructions: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ExamOut(Timestamped):
    title: str
    description: Optional[str] = None
    type: str
    status: str
    course_id: uuid.UUID
    group_id: uuid.UUID
    start_time: dt.datetime
    end_time: dt.datetime
    duration: int
    total_marks: int
    passing_marks: int
    location: Optional[str] = None
    instructions: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("meta_data", "metadata")
    )
    created_by: Optional[uuid.UUID] = None


class ExamResultIn(BaseModel):
    student_id: uuid.UUID
    marks_obtained: float = Field(default=0, ge=0)
    absent: bool = False
    remarks: Optional[str] = None


class ExamResultOut(Timestamped):
    exam_id: uuid.UUID
    student_id: uuid.UUID
    marks_obtained: float
    percentage: float
    grade: Optional[str] = None
    passed: bool
    absent: bool
    remarks: Optional[str] = None
    graded_by: Optional[uuid.UUID] = None
    graded_at: Optional[dt.datetime] = None


class ExamStatistics(ORMBase):
    exam_id: uuid.UUID
    total_students: int = 0
    appeared: int = 0
    passed: int = 0
    failed: int = 0
    absent: int = 0
    average_marks: float = 0.0
    highest_marks: float = 0.0
    lowest_marks: float = 0.0
    pass_percentage: float = 0.0
