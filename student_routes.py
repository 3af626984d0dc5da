import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

import database
import notifications
import records
from academic_calendar import load_calendar, resolve_term
from errors import ConflictError, NotFound, ValidationError
from pagination import Page, envelope, filter_value, matches_search
from performance import assignments_for_class
from schemas import MessageCreate, SubmissionCreate
from scoping import student_class
from security import Principal, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student", tags=["student"])
student_only = require_roles("student")

MESSAGE_LIMIT = 50
ASSIGNMENT_FILTERS = {
    "pending": ("pending",),
    "active": ("pending",),
    "submitted": ("submitted", "late"),
    "overdue": ("overdue",),
}


def assignment_status(assignment: Dict[str, Any], submission: Optional[Dict[str, Any]], now: datetime) -> str:
    due = assignment.get("due_date")
    if submission:
        return "late" if submission.get("is_late_submission") else "submitted"
    if due is not None and due < now:
        return "overdue"
    return "pending"


def _visible_assignments(user: Principal):
    return assignments_for_class(
        database.get_documents("assignments", {"school_id": user.school_id, "status": {"$ne": "archived"}}),
        student_class(user.raw),
    )


# -------------------- Assignments -------------------- #

@router.get("/assignments")
def list_assignments(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    subject_id: Optional[str] = None,
    search: Optional[str] = None,
    user: Principal = Depends(student_only),
):
    pg = Page.of(page, limit)
    assignments = _visible_assignments(user)
    subject_id = filter_value(subject_id)
    if subject_id:
        assignments = [a for a in assignments if a.get("subject_id") == subject_id]
    assignments = [a for a in assignments if matches_search(a, search, ("title", "description"))]
    assignments.sort(key=lambda a: a.get("due_date") or datetime.max)

    subs = {
        s.get("assignment_id"): s
        for s in database.get_documents("assignment_submissions", {"student_id": user.id})
    }
    names = records.subject_names(user.school_id)
    now = database.utcnow()
    rows = []
    for a in assignments:
        sub = subs.get(str(a["_id"]))
        row = database.serialize_doc(a)
        row.update({
            "subject_name": names.get(a.get("subject_id"), "Unknown"),
            "submission_status": assignment_status(a, sub, now),
            "submission": database.serialize_doc(sub) if sub else None,
        })
        rows.append(row)

    summary = Counter(r["submission_status"] for r in rows)
    status = filter_value(status)
    if status:
        if status not in ASSIGNMENT_FILTERS:
            raise ValidationError("Invalid status filter")
        rows = [r for r in rows if r["submission_status"] in ASSIGNMENT_FILTERS[status]]
    return envelope({
        "assignments": pg.slice(rows),
        "pagination": pg.meta(len(rows)),
        "summary": {
            "total": sum(summary.values()),
            "pending": summary["pending"],
            "submitted": summary["submitted"],
            "late": summary["late"],
            "overdue": summary["overdue"],
        },
    })


@router.post("/assignments", status_code=201)
def submit_assignment(payload: SubmissionCreate, user: Principal = Depends(student_only)):
    if not payload.assignment_id or not (payload.content or "").strip():
        raise ValidationError("Assignment ID and content are required")
    visible = {str(a["_id"]): a for a in _visible_assignments(user)}
    assignment = visible.get(payload.assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    if database.find_document(
        "assignment_submissions", {"assignment_id": payload.assignment_id, "student_id": user.id}
    ):
        raise ConflictError("Assignment already submitted")

    now = database.utcnow()
    due = assignment.get("due_date")
    sid = database.create_document("assignment_submissions", {
        "assignment_id": payload.assignment_id,
        "student_id": user.id,
        "school_id": user.school_id,
        "content": payload.content,
        "attachments": payload.attachments,
        "submitted_at": now,
        "is_late_submission": bool(due and due < now),
        "score": None,
        "feedback": None,
        "status": "submitted",
    })
    if assignment.get("teacher_id"):
        notifications.notify_user(
            assignment["teacher_id"],
            user.school_id,
            "New Submission",
            f"{user.name} submitted {assignment.get('title')}",
        )
    logger.info("Student %s submitted assignment %s", user.id, payload.assignment_id)
    return envelope(
        {"submission": database.serialize_doc(database.find_by_id("assignment_submissions", sid))},
        message="Assignment submitted successfully",
    )


# -------------------- Messages -------------------- #

@router.get("/messages")
def list_messages(conversation_with: Optional[str] = None, user: Principal = Depends(student_only)):
    mine = {"$or": [{"from_user_id": user.id}, {"to_user_id": user.id}]}
    filt: Dict[str, Any] = {"school_id": user.school_id, **mine}
    if conversation_with:
        filt = {
            "school_id": user.school_id,
            "$or": [
                {"from_user_id": user.id, "to_user_id": conversation_with},
                {"from_user_id": conversation_with, "to_user_id": user.id},
            ],
        }
        database.update_documents(
            "messages",
            {"school_id": user.school_id, "from_user_id": conversation_with, "to_user_id": user.id, "is_read": False},
            {"is_read": True, "read_at": database.utcnow()},
        )
    msgs = database.get_documents("messages", filt, limit=MESSAGE_LIMIT, sort=[("created_at", -1)])

    other_ids = {m["to_user_id"] if m.get("from_user_id") == user.id else m.get("from_user_id") for m in msgs}
    people = {str(u["_id"]): u for u in database.get_documents("users", database.id_list_filter(other_ids))}

    conversations: Dict[str, Dict[str, Any]] = {}
    for m in msgs:
        other = m["to_user_id"] if m.get("from_user_id") == user.id else m.get("from_user_id")
        conv = conversations.get(other)
        if conv is None:
            person = people.get(other, {})
            conv = conversations[other] = {
                "participant": {
                    "id": other,
                    "name": f"{person.get('first_name', '')} {person.get('last_name', '')}".strip() or "Unknown",
                    "role": person.get("role"),
                },
                "last_message": database.serialize_doc(m),
                "unread_count": 0,
                "message_count": 0,
            }
        conv["message_count"] += 1
        if m.get("to_user_id") == user.id and not m.get("is_read"):
            conv["unread_count"] += 1

    data: Dict[str, Any] = {
        "conversations": list(conversations.values()),
        "total_unread": sum(c["unread_count"] for c in conversations.values()),
    }
    if conversation_with:
        data["messages"] = database.serialize_list(list(reversed(msgs)))
    return envelope(data)


@router.post("/messages", status_code=201)
def send_message(payload: MessageCreate, user: Principal = Depends(student_only)):
    if payload.to_user_id == user.id:
        raise ValidationError("You cannot send a message to yourself")
    recipient = database.find_by_id("users", payload.to_user_id, {"school_id": user.school_id, "is_active": True})
    if not recipient:
        raise NotFound("Recipient not found")
    mid = database.create_document("messages", {
        "school_id": user.school_id,
        "from_user_id": user.id,
        "to_user_id": payload.to_user_id,
        "subject": payload.subject,
        "content": payload.content,
        "is_read": False,
    })
    return envelope({"message": database.serialize_doc(database.find_by_id("messages", mid))}, message="Message sent")


# -------------------- Performance -------------------- #

@router.get("/performance")
def my_performance(
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    user: Principal = Depends(student_only),
):
    today = database.utcnow().date()
    calendar = load_calendar(user.school_id, today)
    current = resolve_term(calendar, today, term, academic_year)
    previous = calendar.previous(current) if current is not None and current in calendar.terms else None
    metrics = records.load_metrics(user.school_id, [user.raw], current, previous)[user.id]

    recent = [
        g for g in database.get_documents(
            "grades", {"school_id": user.school_id, "student_id": user.id}, sort=[("assessment_date", -1)]
        )
        if current is None or (g.get("term") == current.name and str(g.get("academic_year")) == current.academic_year)
    ][:10]
    names = records.subject_names(user.school_id)
    return envelope({
        "student": records.student_summary(user.raw),
        "metrics": metrics.as_dict(),
        "recent_grades": [
            {**database.serialize_doc(g), "subject_name": names.get(g.get("subject_id"), "Unknown")} for g in recent
        ],
        "metadata": {
            "current_term": current.name if current else None,
            "academic_year": current.academic_year if current else None,
            "previous_term": previous.as_dict() if previous else None,
        },
    })
