# Importing this package registers every mapped table on Base.metadata.
from .academics import Course, Group, Student, Teacher, Timetable
from .billing import (
    Discount,
    DiscountType,
    Invoice,
    InvoiceCounter,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    RecurringFrequency,
    RecurringInvoice,
    RecurringStatus,
)
from .content import (
    CustomField,
    CustomFieldEntity,
    CustomFieldType,
    CustomFieldValue,
    Document,
    DocumentStatus,
    DocumentType,
    Event,
    EventType,
    Message,
    MessageStatus,
    MessageType,
    Notification,
    NotificationStatus,
    NotificationTemplate,
    NotificationType,
    Parent,
    ParentRelation,
    ParentStudent,
)
from .enrollment import (
    PRIORITY_RANK,
    Application,
    ApplicationStatus,
    StudentTransfer,
    TransferReason,
    TransferStatus,
    Waitlist,
    WaitlistPriority,
    WaitlistStatus,
)
from .identity import AuditAction, AuditLog, Permission, Role, RolePermission, Session, User
from .progress import (
    Assignment,
    AssignmentStatus,
    AssignmentSubmission,
    AssignmentType,
    Attendance,
    AttendanceStatus,
    Exam,
    ExamResult,
    ExamStatus,
    ExamType,
    Grade,
    SubmissionStatus,
)

__all__ = [
    "Teacher", "Course", "Timetable", "Group", "Student",
    "Attendance", "AttendanceStatus", "Grade",
    "Assignment", "AssignmentType", "AssignmentStatus", "AssignmentSubmission", "SubmissionStatus",
    "Exam", "ExamType", "ExamStatus", "ExamResult",
    "Discount", "DiscountType", "Invoice", "InvoiceCounter", "InvoiceStatus", "Payment", "PaymentMethod",
    "PaymentStatus", "RecurringInvoice", "RecurringFrequency", "RecurringStatus",
    "Waitlist", "WaitlistStatus", "WaitlistPriority", "PRIORITY_RANK",
    "StudentTransfer", "TransferStatus", "TransferReason",
    "Application", "ApplicationStatus",
    "Document", "DocumentType", "DocumentStatus",
    "Message", "MessageType", "MessageStatus",
    "Notification", "NotificationType", "NotificationStatus", "NotificationTemplate",
    "Event", "EventType", "Parent", "ParentStudent", "ParentRelation",
    "CustomField", "CustomFieldType", "CustomFieldEntity", "CustomFieldValue",
    "User", "Role", "Session", "Permission", "RolePermission", "AuditLog", "AuditAction",
]
