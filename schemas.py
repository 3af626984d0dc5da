"""
Request and record schemas for the School Portal API.

Request payloads are validated here before any route touches the database.
Field names are snake_case; the same names are used in the stored documents.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Literal, get_args
from datetime import date

from class_names import normalize_class_list, normalize_class_name

AlertType = Literal[
    "performance_concern",
    "attendance_issue",
    "behavioral_issue",
    "parent_meeting_required",
    "academic_support_needed",
    "commendation",
    "disciplinary_action",
]
Priority = Literal["low", "normal", "high", "urgent"]
AlertStatus = Literal["active", "in_progress", "resolved", "escalated"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
TeacherType = Literal["class_teacher", "coordinator", "subject_teacher", "director"]

ALERT_TYPES = get_args(AlertType)
PRIORITIES = get_args(Priority)
ALERT_STATUSES = get_args(AlertStatus)
ATTENDANCE_STATUSES = get_args(AttendanceStatus)


# Users
class TeacherSubjectAssignment(BaseModel):
    subject_id: str
    classes: List[str] = Field(default_factory=list)

    @field_validator("classes")
    @classmethod
    def _canonical_classes(cls, v):
        return normalize_class_list(v)


class UserCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    username: Optional[str] = None
    school_id: Optional[str] = Field(None, description="Only honoured for headadmin callers")
    # student profile
    class_name: Optional[str] = None
    section: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    # teacher profile
    department: Optional[TeacherType] = None
    coordinator_classes: List[str] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    is_active: Optional[bool] = None


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    is_active: Optional[bool] = None
    class_name: Optional[str] = None
    section: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    teacher_type: Optional[TeacherType] = None
    coordinator_class: Optional[str] = None
    director_classes: List[str] = Field(default_factory=list)
    teacher_subjects: List[TeacherSubjectAssignment] = Field(default_factory=list)


# Alerts
class AlertCreate(BaseModel):
    student_id: Optional[str] = None
    alert_type: Optional[str] = None
    priority: str = "normal"
    title: Optional[str] = None
    description: Optional[str] = None
    follow_up_date: Optional[str] = None
    parent_notified: bool = False


class AlertUpdate(BaseModel):
    alert_id: Optional[str] = None
    status: Optional[str] = None
    resolution: Optional[str] = None
    follow_up_date: Optional[str] = None
    parent_notified: Optional[bool] = None


# Attendance
class AttendanceEntry(BaseModel):
    student_id: str
    status: str
    arrival_time: Optional[str] = None
    notes: Optional[str] = None


class AttendanceMark(BaseModel):
    date: date
    attendance_records: List[AttendanceEntry] = Field(default_factory=list)
    period: str = "morning"


class AttendanceUpdate(BaseModel):
    student_id: str
    date: date
    status: str
    period: str = "morning"
    arrival_time: Optional[str] = None
    notes: Optional[str] = None


# Assignments and grading
class ReminderCreate(BaseModel):
    assignment_id: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    reminder_type: Literal[
        "submission_reminder", "overdue_alert", "performance_concern", "improvement_needed"
    ] = "submission_reminder"
    message: Optional[str] = None


class AssignmentCreate(BaseModel):
    subject_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    classes: List[str] = Field(..., min_length=1)
    due_date: date
    max_score: float = Field(100, gt=0)

    @field_validator("classes")
    @classmethod
    def _canonical_classes(cls, v):
        return normalize_class_list(v)


class GradeSubmission(BaseModel):
    submission_id: str
    score: float
    feedback: Optional[str] = None


class GradeCreate(BaseModel):
    student_id: str
    subject_id: str
    score: float = Field(..., ge=0)
    max_score: float = Field(100, gt=0)
    term: Optional[str] = None
    academic_year: Optional[str] = None
    assessment_type: str = Field("test", description="test|exam|assignment|quiz")
    assessment_date: Optional[date] = None


class SubmissionCreate(BaseModel):
    assignment_id: Optional[str] = None
    content: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)


# Messages
class MessageCreate(BaseModel):
    to_user_id: str
    subject: Optional[str] = None
    content: str = Field(..., min_length=1)


class NotificationUpdate(BaseModel):
    action: Literal["mark_read", "mark_unread", "mark_all_read"] = "mark_read"
    notification_ids: List[str] = Field(default_factory=list)


# Settings
class SettingsUpdate(BaseModel):
    settings: Optional[Dict[str, Dict[str, Any]]] = None
    setting_type: Optional[str] = None
    setting_key: Optional[str] = None
    value: Any = None


# Academic calendar
class CalendarTerm(BaseModel):
    name: str
    start_date: date
    end_date: date


class CalendarUpdate(BaseModel):
    academic_year: str
    terms: List[CalendarTerm] = Field(..., min_length=1)


# AI test generation
class AITestRequest(BaseModel):
    subject: str = "General"
    topic: Optional[str] = None
    custom_prompt: Optional[str] = None
    question_count: int = Field(10, ge=1, le=50)
    difficulty: Literal["easy", "medium", "hard", "mixed"] = "medium"
    question_types: List[Literal["objective", "theory"]] = Field(default_factory=lambda: ["objective", "theory"])
    exam_type: str = "school_exam"
    target_class: str = "ss1"


def canonical_class(name: Optional[str]) -> Optional[str]:
    return normalize_class_name(name) or None
