"""
Access scope of a teacher: the classes they may act on, and the students in them.

Stored class names are not reliably cased, so student membership is decided in
application code over normalized names rather than pushed to the store as an
exact-match filter.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

import database
from class_names import decode_class_assignment, normalize_class_name, same_class
from errors import AccessDenied, NotFound
from security import Principal

logger = logging.getLogger(__name__)


@dataclass
class AccessScope:
    teacher_id: str
    department: Optional[str]
    assigned_classes: List[str] = field(default_factory=list)
    normalized: FrozenSet[str] = frozenset()

    @classmethod
    def from_classes(cls, teacher_id: str, department: Optional[str], classes: Iterable[str]) -> "AccessScope":
        seen = {}
        for name in classes:
            key = normalize_class_name(name)
            if key and key not in seen:
                seen[key] = str(name).strip()
        return cls(teacher_id, department, list(seen.values()), frozenset(seen))

    @property
    def is_empty(self) -> bool:
        return not self.normalized

    def allows(self, class_name: Optional[str]) -> bool:
        return normalize_class_name(class_name) in self.normalized

    def filter_students(self, students: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [s for s in students if self.allows(student_class(s))]


def student_class(student: Dict[str, Any]) -> Optional[str]:
    return (student.get("student_profile") or {}).get("class_name")


def _teacher_subject_rows(teacher_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("teacher_subjects", {"teacher_id": teacher_id})


def own_subject_ids(principal: Principal, rows: Optional[List[Dict[str, Any]]] = None) -> Set[str]:
    """Subjects assigned to the teacher that belong to the teacher's own school."""
    if rows is None:
        rows = _teacher_subject_rows(principal.id)
    subject_ids = [r.get("subject_id") for r in rows if r.get("subject_id")]
    return {
        str(s["_id"])
        for s in database.get_documents(
            "subjects", {**database.id_list_filter(subject_ids), "school_id": principal.school_id}
        )
    }


def resolve_teacher_scope(principal: Principal, subject_id: Optional[str] = None) -> AccessScope:
    """Classes the teacher may act on; ``subject_id`` narrows a subject teacher to one subject."""
    department = principal.department
    rows = _teacher_subject_rows(principal.id)

    if department == "subject_teacher":
        own = own_subject_ids(principal, rows)
        if subject_id is not None:
            if subject_id not in own:
                raise AccessDenied("You are not assigned to this subject")
            own = {subject_id}
        classes = [c for r in rows if r.get("subject_id") in own for c in (r.get("classes") or [])]
        return AccessScope.from_classes(principal.id, department, classes)

    classes = [c for r in rows for c in (r.get("classes") or [])]
    profile = principal.raw.get("teacher_profile") or {}
    assignment = decode_class_assignment(profile.get("coordinator_class"))
    if assignment is not None:
        classes.extend(assignment.names)
    return AccessScope.from_classes(principal.id, department, classes)


def school_students_filter(principal: Principal, search_filter: Optional[dict] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"school_id": principal.school_id, "role": "student", "is_active": True}
    if search_filter:
        filt.update(search_filter)
    return filt


def load_scoped_students(
    principal: Principal,
    scope: AccessScope,
    search_filter: Optional[dict] = None,
    class_name: Optional[str] = None,
    student_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """All active students of the caller's school inside ``scope``, sorted by name."""
    if scope.is_empty:
        return []
    filt = school_students_filter(principal, search_filter)
    if student_id:
        filt.update(database.id_filter(student_id))
    students = database.get_documents("users", filt, sort=[("first_name", 1), ("last_name", 1)])
    scoped = scope.filter_students(students)
    if class_name:
        scoped = [s for s in scoped if same_class(student_class(s), class_name)]
    return scoped


def find_scoped_student(principal: Principal, scope: AccessScope, student_id: str) -> Dict[str, Any]:
    """Single student in scope; out-of-scope and missing are both reported as not found."""
    student = database.find_by_id(
        "users", student_id, {"school_id": principal.school_id, "role": "student", "is_active": True}
    )
    if not student:
        raise NotFound("Student not found")
    if not scope.allows(student_class(student)):
        logger.info("Teacher %s denied student %s outside assigned classes", principal.id, student_id)
        raise NotFound("Student not found in your assigned class")
    return student
