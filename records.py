"""
Loading of the grade, attendance and submission records that feed
:mod:`performance`, batched per set of students.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

import database
from academic_calendar import Term
from performance import StudentMetrics, compute_student_metrics, filter_term
from scoping import student_class


def group_by(records: Iterable[Dict[str, Any]], key: str = "student_id") -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for r in records:
        grouped[str(r.get(key))].append(r)
    return grouped


def date_window(term: Optional[Term]) -> Optional[Dict[str, Any]]:
    if term is None:
        return None
    return {"$gte": term.start, "$lte": term.end}


def subject_names(school_id: Optional[str]) -> Dict[str, str]:
    return {
        str(s["_id"]): s.get("name", "Unknown")
        for s in database.get_documents("subjects", {"school_id": school_id})
    }


def load_grades(school_id: Optional[str], student_ids: List[str], subject_id: Optional[str] = None):
    filt: Dict[str, Any] = {"school_id": school_id, "student_id": {"$in": student_ids}}
    if subject_id:
        filt["subject_id"] = subject_id
    return database.get_documents("grades", filt)


def load_attendance(school_id: Optional[str], student_ids: List[str], term: Optional[Term] = None):
    filt: Dict[str, Any] = {"school_id": school_id, "student_id": {"$in": student_ids}}
    window = date_window(term)
    if window:
        filt["date"] = window
    return database.get_documents("attendance", filt)


def load_metrics(
    school_id: Optional[str],
    students: List[Dict[str, Any]],
    term: Optional[Term] = None,
    previous: Optional[Term] = None,
    subject_id: Optional[str] = None,
) -> Dict[str, StudentMetrics]:
    """Metrics for each student, keyed by user id, over ``term`` (all records when None)."""
    ids = [str(s["_id"]) for s in students]
    if not ids:
        return {}
    grades = group_by(load_grades(school_id, ids, subject_id))
    attendance = group_by(load_attendance(school_id, ids, term))
    submissions = group_by(
        database.get_documents("assignment_submissions", {"student_id": {"$in": ids}})
    )
    assignments = database.get_documents("assignments", {"school_id": school_id})
    names = subject_names(school_id)

    out = {}
    for student in students:
        sid = str(student["_id"])
        own = grades.get(sid, [])
        prev_grades = filter_term(own, previous.name, previous.academic_year) if previous else None
        out[sid] = compute_student_metrics(
            student_id=sid,
            class_name=student_class(student),
            grades=own,
            attendance=attendance.get(sid, []),
            assignments=assignments,
            submissions=submissions.get(sid, []),
            term=term.name if term else None,
            academic_year=term.academic_year if term else None,
            previous_grades=prev_grades,
            subject_names=names,
        )
    return out


def student_summary(student: Dict[str, Any]) -> Dict[str, Any]:
    profile = student.get("student_profile") or {}
    return {
        "id": str(student["_id"]),
        "first_name": student.get("first_name"),
        "last_name": student.get("last_name"),
        "name": f"{student.get('first_name', '')} {student.get('last_name', '')}".strip(),
        "email": student.get("email"),
        "student_id": profile.get("student_id"),
        "class_name": profile.get("class_name"),
        "section": profile.get("section"),
        "parent_name": profile.get("parent_name"),
        "parent_phone": profile.get("parent_phone"),
        "parent_email": profile.get("parent_email"),
    }
