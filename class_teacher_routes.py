import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

import database
import notifications
import records
from academic_calendar import load_calendar, resolve_term
from class_names import normalize_class_name
from errors import AppError, NotFound, ValidationError
from pagination import Page, envelope, filter_value, search_filter
from performance import (
    assignments_for_class,
    attendance_rate,
    grade_distribution,
    matches_band,
    overall_average,
    subject_breakdown,
    summarize_class,
    term_trend,
)
from schemas import (
    ALERT_STATUSES,
    ALERT_TYPES,
    ATTENDANCE_STATUSES,
    PRIORITIES,
    AlertCreate,
    AlertUpdate,
    AttendanceMark,
    AttendanceUpdate,
    NotificationUpdate,
    ReminderCreate,
    SettingsUpdate,
)
from scoping import (
    AccessScope,
    find_scoped_student,
    load_scoped_students,
    resolve_teacher_scope,
    student_class,
)
from security import CLASS_ROLES, Principal, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teacher/class", tags=["class-teacher"])
class_teacher = require_roles(*CLASS_ROLES)

NO_CLASS_MESSAGE = "No class assigned to this class teacher"
STUDENT_SEARCH_FIELDS = ("first_name", "last_name", "email", "student_profile.student_id")
PRIORITY_RANK = {"urgent": 3, "high": 2, "normal": 1, "low": 0}
INVALID_STATUS = "Invalid status. Must be: present, absent, late, or excused"

REMINDERS = {
    "submission_reminder": ("Assignment Reminder", "info"),
    "overdue_alert": ("Overdue Assignment", "warning"),
    "performance_concern": ("Performance Concern", "warning"),
    "improvement_needed": ("Improvement Needed", "error"),
}

DEFAULT_SETTINGS = {
    "email_notifications": {
        "student_absent": True,
        "low_performance": True,
        "parent_messages": True,
        "assignment_overdue": True,
        "behavioral_issues": True,
    },
    "dashboard_preferences": {
        "default_view": "performance",
        "students_per_page": 20,
        "show_parent_contacts": True,
        "auto_refresh": False,
        "refresh_interval": 300,
    },
    "grading_preferences": {
        "default_grading_scale": "percentage",
        "rounding_method": "nearest",
        "show_trends": True,
        "highlight_concerns": True,
    },
    "communication_settings": {
        "auto_reply_enabled": False,
        "auto_reply_message": "",
        "signature_enabled": True,
        "allow_parent_direct_contact": True,
    },
    "classroom_management": {
        "attendance_tracking_enabled": True,
        "behavior_tracking_enabled": True,
        "parent_progress_reports": "weekly",
        "failing_grade_threshold": 60,
        "attendance_threshold": 85,
        "consecutive_absences": 3,
    },
}

REPORT_TYPES = [
    {"id": "class_performance", "name": "Class Performance Summary"},
    {"id": "student_progress", "name": "Individual Student Progress"},
    {"id": "attendance_report", "name": "Attendance Analysis"},
    {"id": "behavior_incidents", "name": "Behavioral Incidents Report"},
]
BEHAVIOR_ALERT_TYPES = ("behavioral_issue", "disciplinary_action")


def _teacher_info(user: Principal, scope: AccessScope) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "assigned_classes": scope.assigned_classes}


def _no_class(user: Principal, scope: AccessScope, **empty) -> Dict[str, Any]:
    return envelope({**empty, "teacher_info": _teacher_info(user, scope)}, message=NO_CLASS_MESSAGE)


def _parse_date(value: Optional[str], field: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}")


def _current_term(user: Principal, term: Optional[str] = None, academic_year: Optional[str] = None):
    today = database.utcnow().date()
    calendar = load_calendar(user.school_id, today)
    current = resolve_term(calendar, today, term, academic_year)
    previous = calendar.previous(current) if current is not None and current in calendar.terms else None
    return current, previous


def _term_meta(current) -> Dict[str, Any]:
    return {
        "current_term": current.name if current else None,
        "academic_year": current.academic_year if current else None,
    }


# -------------------- Students -------------------- #

@router.get("/students")
def list_students(
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    class_name: Optional[str] = None,
    sort_by: str = "first_name",
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    pg = Page.of(page, limit, default_limit=50)
    if scope.is_empty:
        return _no_class(user, scope, students=[], pagination=pg.meta(0), class_stats={"total": 0, "by_class": {}})

    students = load_scoped_students(
        user, scope, search_filter(search, STUDENT_SEARCH_FIELDS), class_name=filter_value(class_name)
    )
    rows = [records.student_summary(s) for s in students]
    if sort_by in ("first_name", "last_name", "student_id", "class_name"):
        rows.sort(key=lambda r: (str(r.get(sort_by) or "").lower(), str(r.get("last_name") or "").lower()))

    by_class = Counter(normalize_class_name(r["class_name"]) for r in rows)
    return envelope({
        "students": pg.slice(rows),
        "pagination": pg.meta(len(rows)),
        "class_stats": {"total": len(rows), "by_class": dict(by_class)},
        "teacher_info": _teacher_info(user, scope),
    })


# -------------------- Alerts -------------------- #

def _alert_summary(alerts: List[Dict[str, Any]]) -> Dict[str, int]:
    statuses = Counter(a.get("status") for a in alerts)
    return {
        "total": len(alerts),
        "active": statuses["active"],
        "in_progress": statuses["in_progress"],
        "resolved": statuses["resolved"],
        "escalated": statuses["escalated"],
        "high_priority": sum(1 for a in alerts if a.get("priority") in notifications.ESCALATED_PRIORITIES),
    }


@router.get("/alerts")
def list_alerts(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    type: Optional[str] = None,
    student_id: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    pg = Page.of(page, limit)
    if scope.is_empty:
        return _no_class(user, scope, alerts=[], pagination=pg.meta(0), summary=_alert_summary([]))

    mine = database.get_documents("student_alerts", {"school_id": user.school_id, "created_by": user.id})
    wanted = {
        "status": filter_value(status),
        "priority": filter_value(priority),
        "alert_type": filter_value(type),
        "student_id": filter_value(student_id),
    }
    selected = [a for a in mine if all(v is None or a.get(k) == v for k, v in wanted.items())]
    selected.sort(key=lambda a: a.get("created_at") or datetime.min, reverse=True)
    selected.sort(key=lambda a: PRIORITY_RANK.get(a.get("priority"), 0), reverse=True)

    page_items = pg.slice(selected)
    students = {
        str(s["_id"]): s
        for s in database.get_documents(
            "users", database.id_list_filter(a.get("student_id") for a in page_items)
        )
    }
    alerts = []
    for a in page_items:
        row = database.serialize_doc(a)
        student = students.get(a.get("student_id"))
        row["student"] = records.student_summary(student) if student else None
        alerts.append(row)
    return envelope({
        "alerts": alerts,
        "pagination": pg.meta(len(selected)),
        "summary": _alert_summary(mine),
        "teacher_info": _teacher_info(user, scope),
    })


@router.post("/alerts", status_code=201)
def create_alert(payload: AlertCreate, user: Principal = Depends(class_teacher)):
    if not all([payload.student_id, payload.alert_type, payload.title, payload.description]):
        raise ValidationError("Student ID, alert type, title, and description are required")
    if payload.alert_type not in ALERT_TYPES:
        raise ValidationError("Invalid alert type")
    if payload.priority not in PRIORITIES:
        raise ValidationError("Invalid priority level")
    follow_up = _parse_date(payload.follow_up_date, "follow-up date")

    scope = resolve_teacher_scope(user)
    student = find_scoped_student(user, scope, payload.student_id)

    alert = {
        "student_id": payload.student_id,
        "school_id": user.school_id,
        "created_by": user.id,
        "alert_type": payload.alert_type,
        "priority": payload.priority,
        "status": "active",
        "title": payload.title,
        "description": payload.description,
        "parent_notified": payload.parent_notified,
        "follow_up_date": follow_up,
        "resolution": None,
        "resolved_at": None,
        "resolved_by": None,
        "notifications_expected": len(notifications.expected_audiences(payload.priority)),
    }
    alert_id = database.create_document("student_alerts", alert)
    alert["_id"] = database.oid(alert_id)
    sent = notifications.emit_alert_notifications(alert, user.raw, student)
    logger.info("Alert %s (%s) created by %s for %s", alert_id, payload.priority, user.id, payload.student_id)

    created = database.find_by_id("student_alerts", alert_id)
    return envelope(
        {"alert": database.serialize_doc(created), "notifications_sent": len(sent)},
        message="Alert created successfully",
    )


@router.put("/alerts")
def update_alert(payload: AlertUpdate, user: Principal = Depends(class_teacher)):
    if not payload.alert_id:
        raise ValidationError("Alert ID is required")
    alert = database.find_by_id(
        "student_alerts", payload.alert_id, {"created_by": user.id, "school_id": user.school_id}
    )
    if not alert:
        raise NotFound("Alert not found or access denied")

    changes: Dict[str, Any] = {}
    if payload.status is not None:
        if payload.status not in ALERT_STATUSES:
            raise ValidationError("Invalid status")
        changes["status"] = payload.status
        if payload.status == "resolved" and alert.get("status") != "resolved":
            changes["resolved_at"] = database.utcnow()
            changes["resolved_by"] = user.id
        elif payload.status != "resolved":
            changes["resolved_at"] = None
            changes["resolved_by"] = None
    if payload.resolution is not None:
        changes["resolution"] = payload.resolution
    if payload.follow_up_date is not None:
        changes["follow_up_date"] = _parse_date(payload.follow_up_date, "follow-up date")
    if payload.parent_notified is not None:
        changes["parent_notified"] = payload.parent_notified
    if not changes:
        raise ValidationError("No changes supplied")

    database.update_document("student_alerts", {"_id": alert["_id"]}, changes)
    updated = database.find_by_id("student_alerts", payload.alert_id)
    return envelope({"alert": database.serialize_doc(updated)}, message="Alert updated successfully")


# -------------------- Attendance -------------------- #

def _status_counts(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = Counter(r.get("status") for r in rows)
    return {s: counts[s] for s in ATTENDANCE_STATUSES}


@router.get("/attendance")
def get_attendance(
    date: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    student_id: Optional[str] = None,
    class_name: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    if scope.is_empty:
        return _no_class(user, scope, records=[], summary={})

    day = _parse_date(date, "date")
    start = _parse_date(start_date, "start date")
    end = _parse_date(end_date, "end date")
    if start and end and start > end:
        raise ValidationError("Start date must be on or before end date")

    if student_id:
        student = find_scoped_student(user, scope, student_id)
        end = end or day or database.utcnow().date()
        start = start or day or end - timedelta(days=30)
        history = database.get_documents(
            "attendance",
            {"student_id": student_id, "school_id": user.school_id, "date": {"$gte": start, "$lte": end}},
            sort=[("date", -1)],
        )
        stats = _status_counts(history)
        stats.update({"total_days": len(history), "attendance_rate": attendance_rate(history)})
        return envelope({
            "student": records.student_summary(student),
            "records": database.serialize_list(history),
            "statistics": stats,
            "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        })

    students = load_scoped_students(user, scope, class_name=filter_value(class_name))
    ids = [str(s["_id"]) for s in students]
    if start or end:
        start = start or end
        end = end or start
    else:
        start = end = day or database.utcnow().date()
    found = database.get_documents(
        "attendance",
        {"school_id": user.school_id, "student_id": {"$in": ids}, "date": {"$gte": start, "$lte": end}},
        sort=[("date", 1)],
    )
    by_student = records.group_by(found)

    rows = []
    for s in students:
        own = by_student.get(str(s["_id"]), [])
        row = records.student_summary(s)
        if start == end:
            mark = own[0] if own else None
            row["status"] = mark.get("status") if mark else "not_marked"
            row["arrival_time"] = mark.get("arrival_time") if mark else None
            row["notes"] = mark.get("notes") if mark else None
        else:
            row.update(_status_counts(own))
            row["attendance_rate"] = attendance_rate(own)
        rows.append(row)

    summary = _status_counts(found)
    summary.update({
        "total_students": len(students),
        "total_records": len(found),
        "attendance_rate": attendance_rate(found),
    })
    if start == end:
        summary["not_marked"] = sum(1 for r in rows if r["status"] == "not_marked")
    return envelope({
        "records": rows,
        "summary": summary,
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "teacher_info": _teacher_info(user, scope),
    })


@router.post("/attendance")
def mark_attendance(payload: AttendanceMark, user: Principal = Depends(class_teacher)):
    if not payload.attendance_records:
        raise ValidationError("Attendance records are required")
    scope = resolve_teacher_scope(user)
    successful, failed = [], []
    for entry in payload.attendance_records:
        if entry.status not in ATTENDANCE_STATUSES:
            failed.append({"student_id": entry.student_id, "error": INVALID_STATUS})
            continue
        try:
            find_scoped_student(user, scope, entry.student_id)
        except AppError as exc:
            failed.append({"student_id": entry.student_id, "error": exc.message})
            continue
        database.update_document(
            "attendance",
            {"student_id": entry.student_id, "date": payload.date, "period": payload.period},
            {
                "school_id": user.school_id,
                "status": entry.status,
                "arrival_time": entry.arrival_time,
                "notes": entry.notes,
                "marked_by": user.id,
            },
            upsert=True,
        )
        successful.append({"student_id": entry.student_id, "status": entry.status})

    logger.info(
        "Attendance for %s (%s) marked by %s: %d ok, %d failed",
        payload.date, payload.period, user.id, len(successful), len(failed),
    )
    return envelope(
        {
            "date": payload.date.isoformat(),
            "period": payload.period,
            "successful": successful,
            "failed": failed,
            "summary": {
                "total": len(payload.attendance_records),
                "successful": len(successful),
                "failed": len(failed),
            },
        },
        message="Attendance marked successfully",
    )


@router.put("/attendance")
def update_attendance(payload: AttendanceUpdate, user: Principal = Depends(class_teacher)):
    if payload.status not in ATTENDANCE_STATUSES:
        raise ValidationError(INVALID_STATUS)
    scope = resolve_teacher_scope(user)
    find_scoped_student(user, scope, payload.student_id)
    changes: Dict[str, Any] = {"status": payload.status, "marked_by": user.id}
    if payload.arrival_time is not None:
        changes["arrival_time"] = payload.arrival_time
    if payload.notes is not None:
        changes["notes"] = payload.notes
    filt = {"student_id": payload.student_id, "date": payload.date, "period": payload.period}
    res = database.update_document("attendance", filt, changes)
    if res.matched_count == 0:
        raise NotFound("Attendance record not found")
    updated = database.find_document("attendance", filt)
    return envelope({"record": database.serialize_doc(updated)}, message="Attendance updated successfully")


# -------------------- Performance -------------------- #

@router.get("/performance")
def class_performance(
    page: int = 1,
    limit: int = 20,
    subject: Optional[str] = None,
    performance: Optional[str] = None,
    sort_by: str = "name",
    search: Optional[str] = None,
    class_name: Optional[str] = None,
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    pg = Page.of(page, limit)
    current, previous = _current_term(user, term, academic_year)
    if scope.is_empty:
        return _no_class(user, scope, students=[], pagination=pg.meta(0), overview={}, metadata=_term_meta(current))

    students = load_scoped_students(
        user, scope, search_filter(search, STUDENT_SEARCH_FIELDS), class_name=filter_value(class_name)
    )
    metrics = records.load_metrics(user.school_id, students, current, previous, subject_id=filter_value(subject))
    overview = summarize_class(metrics.values())

    rows = []
    for s in students:
        m = metrics[str(s["_id"])]
        if not matches_band(m, filter_value(performance)):
            continue
        rows.append({**m.as_dict(), **records.student_summary(s)})
    if sort_by == "attendance":
        rows.sort(key=lambda r: r["attendance_rate"], reverse=True)
    elif sort_by == "overall":
        rows.sort(key=lambda r: r["overall_average"], reverse=True)
    else:
        rows.sort(key=lambda r: r["name"].lower())

    return envelope({
        "students": pg.slice(rows),
        "pagination": pg.meta(len(rows)),
        "overview": {
            "total_students": overview.total_students,
            "class_average": overview.class_average,
            "students_above_70": overview.students_above_70,
            "at_risk_students": overview.at_risk_count,
            "average_attendance": overview.average_attendance,
        },
        "metadata": _term_meta(current),
        "teacher_info": _teacher_info(user, scope),
    })


# -------------------- Assignments -------------------- #

def _due(assignment: Dict[str, Any]) -> datetime:
    return assignment.get("due_date") or datetime.max


def _submission_state(assignment, submission, now: datetime) -> str:
    if submission:
        return "late_submission" if submission.get("is_late_submission") else "submitted"
    return "overdue" if _due(assignment) < now else "pending"


@router.get("/assignments")
def class_assignments(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    class_name: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    pg = Page.of(page, limit)
    if scope.is_empty:
        return _no_class(user, scope, assignments=[], pagination=pg.meta(0), summary={})

    students = load_scoped_students(user, scope, class_name=filter_value(class_name))
    assignments = [
        a for a in database.get_documents("assignments", {"school_id": user.school_id}, sort=[("due_date", 1)])
        if any(scope.allows(c) for c in a.get("classes") or [])
    ]
    status = filter_value(status)
    if status:
        assignments = [a for a in assignments if a.get("status", "active") == status]
    ids = [str(a["_id"]) for a in assignments]
    submissions = {
        (s.get("assignment_id"), s.get("student_id")): s
        for s in database.get_documents("assignment_submissions", {"assignment_id": {"$in": ids}})
    }

    now = database.utcnow()
    totals = Counter()
    rows = []
    for a in assignments:
        aid = str(a["_id"])
        audience = [s for s in students if assignments_for_class([a], student_class(s))]
        states = Counter()
        per_student = []
        for s in audience:
            state = _submission_state(a, submissions.get((aid, str(s["_id"]))), now)
            states[state] += 1
            per_student.append({"student_id": str(s["_id"]), "name": records.student_summary(s)["name"], "status": state})
        totals.update(states)
        row = database.serialize_doc(a)
        row.update({"expected": len(audience), "status_counts": dict(states), "students": per_student})
        rows.append(row)

    expected = sum(totals.values())
    done = totals["submitted"] + totals["late_submission"]
    return envelope({
        "assignments": pg.slice(rows),
        "pagination": pg.meta(len(rows)),
        "summary": {
            "total_assignments": len(rows),
            "total_expected": expected,
            "submitted": totals["submitted"],
            "late_submission": totals["late_submission"],
            "pending": totals["pending"],
            "overdue": totals["overdue"],
            "completion_rate": round(done / expected * 100, 1) if expected else 0.0,
        },
        "teacher_info": _teacher_info(user, scope),
    })


@router.post("/assignments")
def send_reminder(payload: ReminderCreate, user: Principal = Depends(class_teacher)):
    if not payload.student_ids:
        raise ValidationError("Student IDs are required")
    scope = resolve_teacher_scope(user)
    assignment = None
    if payload.assignment_id:
        assignment = database.find_by_id("assignments", payload.assignment_id, {"school_id": user.school_id})
        if not assignment or not any(scope.allows(c) for c in assignment.get("classes") or []):
            raise NotFound("Assignment not found")
    students = [find_scoped_student(user, scope, sid) for sid in payload.student_ids]

    title, kind = REMINDERS[payload.reminder_type]
    subject = f'"{assignment["title"]}"' if assignment else "your coursework"
    content = payload.message or f"{title} regarding {subject} from {user.name}."
    sent = [
        nid for nid in (
            notifications.notify_user(str(s["_id"]), user.school_id, title, content, type=kind) for s in students
        )
        if nid
    ]
    return envelope(
        {"reminder_type": payload.reminder_type, "sent": len(sent), "requested": len(students)},
        message="Reminders sent",
    )


# -------------------- Reports -------------------- #

@router.get("/reports")
def class_reports(
    type: Optional[str] = None,
    student_id: Optional[str] = None,
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    if scope.is_empty:
        return _no_class(user, scope, available_reports=[])
    if not type:
        return envelope({"available_reports": REPORT_TYPES, "teacher_info": _teacher_info(user, scope)})
    if type not in {r["id"] for r in REPORT_TYPES}:
        raise ValidationError("Invalid report type")

    current, previous = _current_term(user, term, academic_year)
    meta = {"report_type": type, "generated_at": database.utcnow().isoformat(), **_term_meta(current)}

    if type == "student_progress":
        if not student_id:
            raise ValidationError("student_id is required for student progress reports")
        student = find_scoped_student(user, scope, student_id)
        sid = str(student["_id"])
        m = records.load_metrics(user.school_id, [student], current, previous)[sid]
        alerts = database.get_documents(
            "student_alerts", {"school_id": user.school_id, "student_id": sid}, sort=[("created_at", -1)]
        )
        return envelope({
            **meta,
            "student": records.student_summary(student),
            "metrics": m.as_dict(),
            "alerts": database.serialize_list(alerts),
        })

    students = load_scoped_students(user, scope)
    ids = [str(s["_id"]) for s in students]

    if type == "attendance_report":
        found = records.load_attendance(user.school_id, ids, current)
        by_student = records.group_by(found)
        rows = []
        for s in students:
            own = by_student.get(str(s["_id"]), [])
            rows.append({**records.student_summary(s), **_status_counts(own), "attendance_rate": attendance_rate(own)})
        return envelope({
            **meta,
            "students": rows,
            "summary": {**_status_counts(found), "total_records": len(found), "attendance_rate": attendance_rate(found)},
        })

    if type == "behavior_incidents":
        incidents = database.get_documents(
            "student_alerts",
            {"school_id": user.school_id, "student_id": {"$in": ids}, "alert_type": {"$in": list(BEHAVIOR_ALERT_TYPES)}},
            sort=[("created_at", -1)],
        )
        return envelope({**meta, "incidents": database.serialize_list(incidents), "summary": _alert_summary(incidents)})

    metrics = records.load_metrics(user.school_id, students, current, previous)
    alerts = database.get_documents("student_alerts", {"school_id": user.school_id, "student_id": {"$in": ids}})
    return envelope({
        **meta,
        "class_summary": summarize_class(metrics.values()).as_dict(),
        "students": [{**metrics[str(s["_id"])].as_dict(), **records.student_summary(s)} for s in students],
        "attendance": _status_counts(records.load_attendance(user.school_id, ids, current)),
        "alerts": _alert_summary(alerts),
    })


# -------------------- Notifications -------------------- #

@router.get("/notifications")
def class_notifications(
    page: int = 1,
    limit: int = 20,
    type: Optional[str] = None,
    read: Optional[bool] = None,
    priority: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    pg = Page.of(page, limit)
    base = {"school_id": user.school_id, "user_id": user.id}
    filt: Dict[str, Any] = dict(base)
    for key, value in (("type", type), ("priority", priority)):
        value = filter_value(value)
        if value:
            filt[key] = value
    if read is not None:
        filt["is_read"] = read
    total = database.count_documents("notifications", filt)
    docs = database.get_documents("notifications", filt, limit=pg.limit, skip=pg.skip, sort=[("created_at", -1)])
    unread_by_type = database.group_count("notifications", "type", {**base, "is_read": False})
    return envelope({
        "notifications": database.serialize_list(docs),
        "pagination": pg.meta(total),
        "unread_count": sum(unread_by_type.values()),
        "unread_by_type": unread_by_type,
    })


@router.put("/notifications")
def update_notifications(payload: NotificationUpdate, user: Principal = Depends(class_teacher)):
    base = {"school_id": user.school_id, "user_id": user.id}
    if payload.action == "mark_all_read":
        filt = {**base, "is_read": False}
    else:
        if not payload.notification_ids:
            raise ValidationError("notification_ids are required")
        filt = {**base, **database.id_list_filter(payload.notification_ids)}
    read = payload.action != "mark_unread"
    updated = database.update_documents(
        "notifications", filt, {"is_read": read, "read_at": database.utcnow() if read else None}
    )
    return envelope({"action": payload.action, "updated": updated}, message="Notifications updated")


# -------------------- Calendar -------------------- #

@router.get("/calendar")
def class_calendar(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    today = database.utcnow().date()
    start = _parse_date(start_date, "start date") or today
    end = _parse_date(end_date, "end date") or start + timedelta(days=30)
    if start > end:
        raise ValidationError("Start date must be on or before end date")

    calendar = load_calendar(user.school_id, today)
    current = resolve_term(calendar, today)
    deadlines = [
        {
            "assignment_id": str(a["_id"]),
            "title": a.get("title"),
            "due_date": a["due_date"].isoformat(),
            "classes": a.get("classes") or [],
        }
        for a in database.get_documents(
            "assignments",
            {"school_id": user.school_id, "due_date": {"$gte": start, "$lte": end + timedelta(days=1)}},
            sort=[("due_date", 1)],
        )
        if any(scope.allows(c) for c in a.get("classes") or [])
    ]
    follow_ups = database.get_documents(
        "student_alerts",
        {
            "school_id": user.school_id,
            "created_by": user.id,
            "status": {"$ne": "resolved"},
            "follow_up_date": {"$gte": start, "$lte": end},
        },
        sort=[("follow_up_date", 1)],
    )
    return envelope({
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "terms": [t.as_dict() for t in calendar.terms],
        "current_term": current.as_dict() if current else None,
        "calendar_configured": calendar.configured,
        "deadlines": deadlines,
        "follow_ups": database.serialize_list(follow_ups),
        "teacher_info": _teacher_info(user, scope),
    })


# -------------------- Settings -------------------- #

def _merged_settings(stored: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    stored = stored or {}
    return {section: {**defaults, **(stored.get(section) or {})} for section, defaults in DEFAULT_SETTINGS.items()}


@router.get("/settings")
def get_settings(user: Principal = Depends(class_teacher)):
    scope = resolve_teacher_scope(user)
    profile = user.raw.get("teacher_profile") or {}
    return envelope({
        "settings": _merged_settings(profile.get("settings")),
        "class_settings": {
            "assigned_classes": scope.assigned_classes,
            "primary_class": scope.assigned_classes[0] if scope.assigned_classes else None,
        },
        "teacher_info": {
            **_teacher_info(user, scope),
            "email": user.email,
            "employee_id": profile.get("employee_id"),
            "department": profile.get("department"),
        },
    })


@router.put("/settings")
def update_settings(payload: SettingsUpdate, user: Principal = Depends(class_teacher)):
    if payload.settings:
        updates = payload.settings
    elif payload.setting_type and payload.setting_key and payload.value is not None:
        updates = {payload.setting_type: {payload.setting_key: payload.value}}
    else:
        raise ValidationError("Setting type, key, and value are required")

    changes: Dict[str, Any] = {}
    for section, values in updates.items():
        if section not in DEFAULT_SETTINGS:
            raise ValidationError("Invalid setting type")
        for key, value in values.items():
            changes[f"teacher_profile.settings.{section}.{key}"] = value
    database.update_document("users", database.id_filter(user.id), changes)
    fresh = database.find_by_id("users", user.id) or {}
    return envelope(
        {"settings": _merged_settings((fresh.get("teacher_profile") or {}).get("settings"))},
        message="Settings updated successfully",
    )


# -------------------- Analytics -------------------- #

@router.get("/analytics")
def class_analytics(
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    user: Principal = Depends(class_teacher),
):
    scope = resolve_teacher_scope(user)
    current, previous = _current_term(user, term, academic_year)
    if scope.is_empty:
        return _no_class(user, scope, subjects=[], grade_distribution={}, metadata=_term_meta(current))

    students = load_scoped_students(user, scope)
    ids = [str(s["_id"]) for s in students]
    grades = records.load_grades(user.school_id, ids)
    in_term = [g for g in grades if not current or (
        g.get("term") == current.name and str(g.get("academic_year")) == current.academic_year
    )]
    average = overall_average(in_term)
    prev_grades = [
        g for g in grades
        if previous and g.get("term") == previous.name and str(g.get("academic_year")) == previous.academic_year
    ]
    previous_average = round(overall_average(prev_grades), 1) if prev_grades else None

    return envelope({
        "subjects": subject_breakdown(in_term, records.subject_names(user.school_id)),
        "grade_distribution": grade_distribution(float(g.get("percentage") or 0) for g in in_term),
        "class_average": round(average, 1),
        "previous_average": previous_average,
        "trend": term_trend(average, previous_average),
        "attendance_rate": attendance_rate(records.load_attendance(user.school_id, ids, current)),
        "total_students": len(students),
        "metadata": _term_meta(current),
        "teacher_info": _teacher_info(user, scope),
    })
