from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from .academics import CourseOut, GroupOut, StudentOut, TeacherOut
from .base import ORMBase
from .billing import InvoiceOut
from .progress import AssignmentOut, ExamOut, GradeOut


class AttendanceSummary(BaseModel):
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    attendance_rate: float = 0.0


class Dashboard(BaseModel):
    total_students: int
    active_students: int
    new_students_this_month: int
    total_teachers: int
    total_courses: int
    total_groups: int
    revenue_this_month: float
    pending_invoices: int
    outstanding_balance: float
    overdue_invoices: int
    attendance_rate_this_month: float
    period_start: str


class StatusBucket(BaseModel):
    count: int
    total: float
    paid: float
    balance: float


class CourseRevenue(BaseModel):
    course_id: uuid.UUID
    title: str
    revenue: float


class FinancialReport(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    total_invoiced: float
    total_collected: float
    total_outstanding: float
    invoice_count: int
    collection_rate: float
    by_status: dict[str, StatusBucket] = Field(default_factory=dict)
    top_courses: list[CourseRevenue] = Field(default_factory=list)


class GroupAttendance(AttendanceSummary):
    group_id: uuid.UUID
    group_name: str


class AttendanceReport(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    groups: list[GroupAttendance] = Field(default_factory=list)
    total_records: int = 0
    attendance_rate: float = 0.0


class GradeSummary(BaseModel):
    count: int = 0
    average: float = 0.0
    highest: int = 0
    lowest: int = 0


class ExamSummary(BaseModel):
    taken: int = 0
    average_percentage: float = 0.0
    passed: int = 0


class InvoiceSummary(BaseModel):
    count: int = 0
    total: float = 0.0
    paid: float = 0.0
    balance: float = 0.0


class StudentProgress(BaseModel):
    student_id: uuid.UUID
    name: str
    group_id: Optional[uuid.UUID] = None
    attendance: AttendanceSummary
    grades: GradeSummary
    exams: ExamSummary
    invoices: InvoiceSummary


class StudentPortal(ORMBase):
    student: StudentOut
    group: Optional[GroupOut] = None
    course: Optional[CourseOut] = None
    teacher: Optional[TeacherOut] = None
    attendance: AttendanceSummary
    recent_grades: list[GradeOut] = Field(default_factory=list)
    upcoming_assignments: list[AssignmentOut] = Field(default_factory=list)
    open_invoices: list[InvoiceOut] = Field(default_factory=list)


class TeacherGroup(BaseModel):
    id: uuid.UUID
    name: str
    capacity: int
    student_count: int


class TeacherPortal(ORMBase):
    teacher: TeacherOut
    groups: list[TeacherGroup] = Field(default_factory=list)
    total_students: int = 0
    upcoming_exams: list[ExamOut] = Field(default_factory=list)
    submissions_to_grade: int = 0
