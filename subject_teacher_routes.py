import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

import ai_tests
import database
import notifications
import records
from academic_calendar import load_calendar, resolve_term
from errors import AccessDenied, NotFound, ValidationError
from pagination import Page, envelope, filter_value, search_filter
from performance import assignment_completion, assignments_for_class, attendance_rate, overall_average, term_trend
from schemas import AITestRequest, AssignmentCreate, GradeCreate, GradeSubmission
from scoping import find_scoped_student, load_scoped_students, own_subject_ids, resolve_teacher_scope, student_class
from security import SUBJECT_ROLES, Principal, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teacher/subject", tags=["subject-teacher"])
subject_teacher = require_roles(*SUBJECT_ROLES)


def _teaches_subject(user: Principal, subject_id: str) -> bool:
    return database.find_document("teacher_subjects", {"teacher_id": user.id, "subject_id": subject_id}) is not None


def _submission_status(sub: Dict[str, Any]) -> str:
    return "graded" if sub.get("status") == "graded" or sub.get("score") is not None else "pending"


# -------------------- Students -------------------- #

STUDENT_SEARCH_FIELDS = ("first_name", "last_name", "email", "student_profile.student_id")
ATTENDANCE_WINDOW_DAYS = 30
TREND_WINDOW = 5


def _grade_trend(grades: List[Dict[str, Any]]) -> str:
    ordered = sorted(grades, key=lambda g: g.get("assessment_date") or g.get("created_at") or datetime.min)
    recent = ordered[-TREND_WINDOW:]
    older = ordered[-2 * TREND_WINDOW:-TREND_WINDOW]
    if not recent or not older:
        return "stable"
    return term_trend(overall_average(recent), overall_average(older))


def _recent_activity(subs: List[Dict[str, Any]], assignments: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for s in sorted(subs, key=lambda s: s.get("submitted_at") or datetime.min, reverse=True)[:5]:
        a = assignments.get(s.get("assignment_id"), {})
        max_score = float(a.get("max_score") or 100)
        out.append({
            "assignment_id": s.get("assignment_id"),
            "title": a.get("title") or "Assignment",
            "percentage": round(s["score"] / max_score * 100, 1) if s.get("score") is not None else None,
            "submitted_at": s["submitted_at"].isoformat() if s.get("submitted_at") else None,
        })
    return out


@router.get("/students")
def list_students(
    page: int = 1,
    limit: int = 50,
    subject_id: Optional[str] = None,
    class_name: Optional[str] = None,
    search: Optional[str] = None,
    user: Principal = Depends(subject_teacher),
):
    subject_id = filter_value(subject_id)
    scope = resolve_teacher_scope(user, subject_id)
    pg = Page.of(page, limit, default_limit=50)
    teacher_info = {"id": user.id, "name": user.name, "assigned_classes": scope.assigned_classes}
    if scope.is_empty:
        return envelope(
            {"students": [], "pagination": pg.meta(0), "classes": [], "teacher_info": teacher_info},
            message="No classes assigned to this subject teacher",
        )

    students = load_scoped_students(
        user, scope, search_filter(search, STUDENT_SEARCH_FIELDS), class_name=filter_value(class_name)
    )
    students.sort(key=lambda s: (str(student_class(s) or "").upper(), str(s.get("last_name") or "").lower()))
    page_items = pg.slice(students)
    ids = [str(s["_id"]) for s in page_items]

    subject_ids = [subject_id] if subject_id else sorted(own_subject_ids(user))
    grades = records.group_by(database.get_documents(
        "grades", {"school_id": user.school_id, "student_id": {"$in": ids}, "subject_id": {"$in": subject_ids}}
    ))
    teacher_assignments = database.get_documents("assignments", {"school_id": user.school_id, "teacher_id": user.id})
    by_id = {str(a["_id"]): a for a in teacher_assignments}
    subs = records.group_by(database.get_documents(
        "assignment_submissions", {"student_id": {"$in": ids}, "assignment_id": {"$in": list(by_id)}}
    ))
    since = database.utcnow() - timedelta(days=ATTENDANCE_WINDOW_DAYS)
    attendance = records.group_by(database.get_documents(
        "attendance", {"school_id": user.school_id, "student_id": {"$in": ids}, "date": {"$gte": since}}
    ))

    rows = []
    for s in page_items:
        sid = str(s["_id"])
        own_grades = grades.get(sid, [])
        own_subs = subs.get(sid, [])
        expected = assignments_for_class(teacher_assignments, student_class(s))
        rows.append({
            **records.student_summary(s),
            "performance": {
                "average_score": round(overall_average(own_grades), 1),
                "completion_rate": assignment_completion(expected, own_subs),
                "attendance_rate": attendance_rate(attendance.get(sid, [])),
                "assignments_submitted": len(own_subs),
                "missed_assignments": max(0, len(expected) - len(own_subs)),
                "trend": _grade_trend(own_grades),
            },
            "recent_activity": _recent_activity(own_subs, by_id),
        })
    return envelope({
        "students": rows,
        "pagination": pg.meta(len(students)),
        "classes": scope.assigned_classes,
        "teacher_info": teacher_info,
    })


# -------------------- Grading -------------------- #

@router.get("/grading")
def list_submissions(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    assignment_id: Optional[str] = None,
    user: Principal = Depends(subject_teacher),
):
    pg = Page.of(page, limit)
    filt: Dict[str, Any] = {"teacher_id": user.id, "school_id": user.school_id}
    assignment_id = filter_value(assignment_id)
    if assignment_id:
        filt.update(database.id_filter(assignment_id))
    assignments = {str(a["_id"]): a for a in database.get_documents("assignments", filt)}
    subs = database.get_documents(
        "assignment_submissions",
        {"assignment_id": {"$in": list(assignments)}},
        sort=[("submitted_at", -1)],
    )

    summary = Counter(_submission_status(s) for s in subs)
    late = sum(1 for s in subs if s.get("is_late_submission"))
    status = filter_value(status)
    if status == "late":
        subs = [s for s in subs if s.get("is_late_submission")]
    elif status:
        subs = [s for s in subs if _submission_status(s) == status]

    page_items = pg.slice(subs)
    students = {
        str(u["_id"]): u
        for u in database.get_documents("users", database.id_list_filter(s.get("student_id") for s in page_items))
    }
    rows = []
    for s in page_items:
        a = assignments.get(s.get("assignment_id"), {})
        student = students.get(s.get("student_id"))
        rows.append({
            **database.serialize_doc(s),
            "grading_status": _submission_status(s),
            "assignment": {"id": s.get("assignment_id"), "title": a.get("title"), "max_score": a.get("max_score", 100)},
            "student": records.student_summary(student) if student else None,
        })
    return envelope({
        "submissions": rows,
        "pagination": pg.meta(len(subs)),
        "summary": {
            "total": summary["pending"] + summary["graded"],
            "pending": summary["pending"],
            "graded": summary["graded"],
            "late": late,
        },
    })


@router.post("/grading")
def grade_submission(payload: GradeSubmission, user: Principal = Depends(subject_teacher)):
    submission = database.find_by_id("assignment_submissions", payload.submission_id, {"school_id": user.school_id})
    if not submission:
        raise NotFound("Submission not found")
    assignment = database.find_by_id("assignments", submission.get("assignment_id"))
    if not assignment or assignment.get("teacher_id") != user.id:
        raise AccessDenied("You can only grade submissions for your own assignments")
    max_score = float(assignment.get("max_score") or 100)
    if payload.score < 0 or payload.score > max_score:
        raise ValidationError(f"Score must be between 0 and {max_score:g}")

    database.update_document("assignment_submissions", {"_id": submission["_id"]}, {
        "score": payload.score,
        "feedback": payload.feedback,
        "status": "graded",
        "graded_at": database.utcnow(),
        "graded_by": user.id,
    })
    notifications.notify_user(
        submission["student_id"],
        user.school_id,
        "Assignment Graded",
        f"Your {assignment.get('title')} has been graded. Score: {payload.score:g}/{max_score:g}",
        type="success",
    )
    logger.info("Submission %s graded by %s", payload.submission_id, user.id)
    updated = database.find_by_id("assignment_submissions", payload.submission_id)
    return envelope({"submission": database.serialize_doc(updated)}, message="Submission graded successfully")


# -------------------- Grades -------------------- #

@router.post("/grades", status_code=201)
def record_grade(payload: GradeCreate, user: Principal = Depends(subject_teacher)):
    if payload.score > payload.max_score:
        raise ValidationError("score cannot exceed max_score")
    if not _teaches_subject(user, payload.subject_id):
        raise AccessDenied("You are not assigned to this subject")
    scope = resolve_teacher_scope(user)
    find_scoped_student(user, scope, payload.student_id)

    today = database.utcnow().date()
    term = resolve_term(load_calendar(user.school_id, today), today, payload.term, payload.academic_year)
    grade = {
        "student_id": payload.student_id,
        "subject_id": payload.subject_id,
        "school_id": user.school_id,
        "term": term.name if term else payload.term,
        "academic_year": term.academic_year if term else payload.academic_year,
        "score": payload.score,
        "max_score": payload.max_score,
        "percentage": round(max(0.0, min(100.0, payload.score / payload.max_score * 100)), 1),
        "assessment_type": payload.assessment_type,
        "assessment_date": payload.assessment_date or today,
        "recorded_by": user.id,
    }
    gid = database.create_document("grades", grade)
    return envelope({"grade": database.serialize_doc(database.find_by_id("grades", gid))}, message="Grade recorded")


# -------------------- Assignments -------------------- #

@router.post("/assignments", status_code=201)
def create_assignment(payload: AssignmentCreate, user: Principal = Depends(subject_teacher)):
    if not _teaches_subject(user, payload.subject_id):
        raise AccessDenied("You are not assigned to this subject")
    scope = resolve_teacher_scope(user)
    outside = [c for c in payload.classes if not scope.allows(c)]
    if outside:
        raise AccessDenied("You can only create assignments for your assigned classes")
    aid = database.create_document("assignments", {
        **payload.model_dump(),
        "school_id": user.school_id,
        "teacher_id": user.id,
        "status": "active",
    })
    logger.info("Assignment %s created by %s for %s", aid, user.id, ", ".join(payload.classes))
    return envelope(
        {"assignment": database.serialize_doc(database.find_by_id("assignments", aid))},
        message="Assignment created successfully",
    )


# -------------------- AI test generation -------------------- #

@router.post("/ai-generate-test")
def generate_test(payload: AITestRequest, user: Principal = Depends(subject_teacher)):
    if not (payload.topic or "").strip() and not (payload.custom_prompt or "").strip():
        raise ValidationError("Topic or custom prompt is required")
    questions, generated, reason = ai_tests.generate_questions(
        subject=payload.subject,
        topic=payload.topic,
        question_count=payload.question_count,
        difficulty=payload.difficulty,
        question_types=list(payload.question_types),
        exam_type=payload.exam_type,
        target_class=payload.target_class,
        custom_prompt=payload.custom_prompt or "",
    )
    return envelope({
        "questions": questions,
        "metadata": {
            "subject": payload.subject,
            "topic": payload.topic,
            "difficulty": payload.difficulty,
            "exam_type": payload.exam_type,
            "target_class": payload.target_class,
            "total_questions": len(questions),
            "total_marks": sum(q.get("marks") or 0 for q in questions),
            "is_ai_generated": generated,
            "fallback_reason": reason,
            "generated_at": database.utcnow().isoformat(),
            "generated_by": user.id,
        },
    })
