import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

import database
import notifications
import storage
from academic_calendar import load_calendar, resolve_term
from class_names import (
    MultipleClasses,
    SingleClass,
    decode_class_assignment,
    encode_class_assignment,
    normalize_class_list,
)
from errors import ConflictError, NotFound, ValidationError
from pagination import Page, envelope, filter_value, search_filter
from schemas import CalendarUpdate, StatusUpdate, UserCreate, UserUpdate, canonical_class
from security import ADMIN_ROLES, Principal, hash_password, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
admin_only = require_roles(*ADMIN_ROLES)

CREATABLE_ROLES = ("student", "teacher", "admin")
USER_SEARCH_FIELDS = ("first_name", "last_name", "email", "username")
COORDINATION_SUBJECT = {"name": "Academic Coordination", "code": "COORD", "category": "CORE"}
MIN_PASSWORD_LENGTH = 8


def _target_school(principal: Principal, school_id: Optional[str]) -> str:
    """Admins act on their own school; a head admin names one explicitly."""
    if not principal.is_headadmin:
        return principal.school_id
    if not school_id:
        raise ValidationError("school_id is required")
    return school_id


def teacher_type(user: Dict[str, Any], subject_rows: List[Dict[str, Any]]) -> str:
    profile = user.get("teacher_profile") or {}
    assignment = decode_class_assignment(profile.get("coordinator_class"))
    if isinstance(assignment, MultipleClasses):
        return "director"
    if isinstance(assignment, SingleClass):
        return "coordinator"
    if subject_rows:
        return "subject_teacher"
    return "class_teacher"


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    doc = {k: v for k, v in user.items() if k != "password_hash"}
    out = database.serialize_doc(doc)
    if user.get("role") == "teacher":
        rows = database.get_documents("teacher_subjects", {"teacher_id": str(user["_id"])})
        out["teacher_subjects"] = [
            {"subject_id": r.get("subject_id"), "classes": r.get("classes") or []} for r in rows
        ]
        out["teacher_type"] = teacher_type(user, rows)
    return out


def _ensure_unique(email: Optional[str], username: Optional[str], exclude_id=None, session=None):
    clauses = []
    if email:
        clauses.append({"email": email})
    if username:
        clauses.append({"username": username})
    if not clauses:
        return
    filt: Dict[str, Any] = {"$or": clauses}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if database.find_document("users", filt, session=session):
        raise ConflictError("Email or username already exists")


def _coordination_subject(school_id: str, session=None) -> str:
    existing = database.find_document(
        "subjects", {"school_id": school_id, "code": COORDINATION_SUBJECT["code"]}, session=session
    )
    if existing:
        return str(existing["_id"])
    return database.create_document(
        "subjects", {**COORDINATION_SUBJECT, "school_id": school_id, "classes": []}, session=session
    )


def _scoped_user(principal: Principal, user_id: str) -> Dict[str, Any]:
    user = database.find_by_id("users", user_id, principal.school_filter())
    if not user:
        raise NotFound("User not found")
    return user


# -------------------- Users -------------------- #

@router.get("/users")
def list_users(
    page: int = 1,
    limit: int = 10,
    role: Optional[str] = None,
    search: Optional[str] = None,
    user: Principal = Depends(admin_only),
):
    pg = Page.of(page, limit, default_limit=10)
    filt: Dict[str, Any] = dict(user.school_filter())
    role = filter_value(role)
    if role:
        filt["role"] = role
    sf = search_filter(search, USER_SEARCH_FIELDS)
    if sf:
        filt.update(sf)
    total = database.count_documents("users", filt)
    docs = database.get_documents("users", filt, limit=pg.limit, skip=pg.skip, sort=[("created_at", -1)])
    return envelope({"users": [public_user(d) for d in docs], "pagination": pg.meta(total)})


@router.post("/users", status_code=201)
def create_user(payload: UserCreate, user: Principal = Depends(admin_only)):
    if not all([payload.first_name, payload.last_name, payload.email, payload.password, payload.role]):
        raise ValidationError("Missing required fields: first_name, last_name, email, password, role")
    if payload.role not in CREATABLE_ROLES:
        raise ValidationError("Invalid role. Must be: student, teacher, or admin")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 8 characters long")
    coordinator_classes = normalize_class_list(payload.coordinator_classes)
    if payload.role == "teacher" and payload.department == "coordinator" and not coordinator_classes:
        raise ValidationError("Coordinators must be assigned at least one class")
    school_id = _target_school(user, payload.school_id)
    stamp = int(time.time() * 1000)

    doc: Dict[str, Any] = {
        "school_id": school_id,
        "first_name": payload.first_name.strip(),
        "last_name": payload.last_name.strip(),
        "email": payload.email.strip().lower(),
        "username": payload.username,
        "password_hash": hash_password(payload.password),
        "role": payload.role,
        "is_active": True,
        "created_by": user.id,
    }
    if payload.role == "student":
        doc["student_profile"] = {
            "student_id": f"STU{stamp}",
            "class_name": canonical_class(payload.class_name),
            "section": payload.section,
            "parent_name": payload.parent_name,
            "parent_phone": payload.parent_phone,
            "parent_email": payload.parent_email,
            "admission_date": database.utcnow(),
        }
    else:
        doc["teacher_profile"] = {
            "employee_id": f"{'TCH' if payload.role == 'teacher' else 'ADM'}{stamp}",
            "department": (payload.department or "class_teacher") if payload.role == "teacher" else "administration",
            "coordinator_class": None,
            "joining_date": database.utcnow(),
        }

    def _create(session):
        _ensure_unique(doc["email"], doc["username"], session=session)
        new_id = database.create_document("users", doc, session=session)
        if coordinator_classes:
            subject_id = _coordination_subject(school_id, session=session)
            database.create_document(
                "teacher_subjects",
                {"teacher_id": new_id, "subject_id": subject_id, "classes": coordinator_classes},
                session=session,
            )
        return new_id

    new_id = database.run_transaction(_create)
    logger.info("User %s (%s) created by %s", new_id, payload.role, user.id)
    created = database.find_by_id("users", new_id)
    return envelope({"user": public_user(created)}, message="User created successfully")


@router.get("/users/{user_id}")
def get_user(user_id: str, user: Principal = Depends(admin_only)):
    return envelope({"user": public_user(_scoped_user(user, user_id))})


def _profile_changes(target: Dict[str, Any], payload: UserUpdate) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for f in ("first_name", "last_name", "username", "is_active"):
        value = getattr(payload, f)
        if value is not None:
            changes[f] = value
    if payload.email is not None:
        changes["email"] = payload.email.strip().lower()
    if target.get("role") == "student":
        if payload.class_name is not None:
            changes["student_profile.class_name"] = canonical_class(payload.class_name)
        for f in ("section", "parent_name", "parent_phone", "parent_email"):
            value = getattr(payload, f)
            if value is not None:
                changes[f"student_profile.{f}"] = value
    return changes


def _teacher_type_changes(payload: UserUpdate) -> Dict[str, Any]:
    kind = payload.teacher_type
    if kind == "coordinator":
        if not canonical_class(payload.coordinator_class):
            raise ValidationError("coordinator_class is required for coordinators")
        assignment = SingleClass(payload.coordinator_class)
    elif kind == "director":
        classes = normalize_class_list(payload.director_classes)
        if not classes:
            raise ValidationError("director_classes must contain at least one class")
        assignment = MultipleClasses(tuple(classes))
    else:
        assignment = None
    return {
        "teacher_profile.department": kind,
        "teacher_profile.coordinator_class": encode_class_assignment(assignment),
    }


@router.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, user: Principal = Depends(admin_only)):
    target = _scoped_user(user, user_id)
    changes = _profile_changes(target, payload)
    if payload.teacher_type is not None:
        if target.get("role") != "teacher":
            raise ValidationError("teacher_type can only be set for teachers")
        changes.update(_teacher_type_changes(payload))
    is_teacher = target.get("role") == "teacher"
    replace_subjects = is_teacher and (
        payload.teacher_type == "subject_teacher" or bool(payload.teacher_subjects)
    )
    # a non-subject teacher type clears the old subject rows; supplied rows are written back
    drop_subjects = is_teacher and payload.teacher_type is not None and payload.teacher_type != "subject_teacher"
    if not changes and not replace_subjects:
        raise ValidationError("No changes supplied")

    teacher_id = str(target["_id"])

    def _update(session):
        _ensure_unique(changes.get("email"), changes.get("username"), exclude_id=target["_id"], session=session)
        if changes:
            database.update_document("users", {"_id": target["_id"]}, changes, session=session)
        if replace_subjects or drop_subjects:
            database.delete_documents("teacher_subjects", {"teacher_id": teacher_id}, session=session)
        if replace_subjects:
            for row in payload.teacher_subjects:
                database.create_document(
                    "teacher_subjects",
                    {"teacher_id": teacher_id, "subject_id": row.subject_id, "classes": row.classes},
                    session=session,
                )

    database.run_transaction(_update)
    logger.info("User %s updated by %s", user_id, user.id)
    return envelope({"user": public_user(database.find_by_id("users", user_id))}, message="User updated successfully")


@router.delete("/users/{user_id}")
def delete_user(user_id: str, user: Principal = Depends(admin_only)):
    if user_id == user.id:
        raise ValidationError("You cannot delete your own account")
    target = _scoped_user(user, user_id)
    if target.get("role") == "admin":
        admins = database.count_documents(
            "users", {"school_id": target.get("school_id"), "role": "admin", "is_active": True}
        )
        if admins <= 1:
            raise ValidationError("Cannot delete the last admin in the school")

    def _delete(session):
        database.delete_documents("teacher_subjects", {"teacher_id": user_id}, session=session)
        database.delete_document("users", {"_id": target["_id"]}, session=session)

    database.run_transaction(_delete)
    logger.info("User %s deleted by %s", user_id, user.id)
    return envelope({"id": user_id}, message="User deleted successfully")


@router.patch("/users/{user_id}/toggle-status")
def toggle_user_status(user_id: str, payload: StatusUpdate, user: Principal = Depends(admin_only)):
    if payload.is_active is None:
        raise ValidationError("Invalid status value")
    target = _scoped_user(user, user_id)
    if str(target["_id"]) == user.id and not payload.is_active:
        raise ValidationError("You cannot deactivate your own account")
    database.update_document("users", {"_id": target["_id"]}, {"is_active": payload.is_active})
    logger.info("User %s %s by %s", user_id, "activated" if payload.is_active else "deactivated", user.id)
    return envelope(
        {"user": public_user(database.find_by_id("users", user_id))},
        message=f"User {'activated' if payload.is_active else 'deactivated'} successfully",
    )


# -------------------- Subjects -------------------- #

@router.get("/subjects")
def list_subjects(user: Principal = Depends(admin_only)):
    filt = {**user.school_filter(), "is_active": {"$ne": False}}
    docs = database.get_documents("subjects", filt, sort=[("category", 1), ("name", 1)])
    return envelope({"subjects": database.serialize_list(docs)})


# -------------------- Notifications -------------------- #

def _admin_notification_filter(user: Principal) -> Dict[str, Any]:
    return {**user.school_filter(), "$or": [{"user_id": user.id}, {"user_id": None}]}


@router.get("/notifications")
def list_notifications(
    page: int = 1,
    limit: int = 20,
    type: Optional[str] = None,
    unread_only: bool = False,
    user: Principal = Depends(admin_only),
):
    pg = Page.of(page, limit)
    filt = _admin_notification_filter(user)
    type = filter_value(type)
    if type:
        filt["type"] = type
    if unread_only:
        filt["is_read"] = False
    total = database.count_documents("notifications", filt)
    docs = database.get_documents("notifications", filt, limit=pg.limit, skip=pg.skip, sort=[("created_at", -1)])
    unread = database.count_documents("notifications", {**_admin_notification_filter(user), "is_read": False})
    return envelope({
        "notifications": database.serialize_list(docs),
        "pagination": pg.meta(total),
        "unread_count": unread,
    })


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, user: Principal = Depends(admin_only)):
    filt = {**database.id_filter(notification_id), **_admin_notification_filter(user)}
    res = database.update_document("notifications", filt, {"is_read": True, "read_at": database.utcnow()})
    if res.matched_count == 0:
        raise NotFound("Notification not found")
    return envelope({"id": notification_id}, message="Notification marked as read")


# -------------------- Resources -------------------- #

@router.get("/resources")
def list_resources(
    page: int = 1,
    limit: int = 20,
    resource_type: Optional[str] = None,
    folder: Optional[str] = None,
    search: Optional[str] = None,
    user: Principal = Depends(admin_only),
):
    pg = Page.of(page, limit)
    filt: Dict[str, Any] = dict(user.school_filter())
    for key, value in (("resource_type", resource_type), ("folder", folder)):
        value = filter_value(value)
        if value:
            filt[key] = value
    sf = search_filter(search, ("title",))
    if sf:
        filt.update(sf)
    total = database.count_documents("resources", filt)
    docs = database.get_documents("resources", filt, limit=pg.limit, skip=pg.skip, sort=[("created_at", -1)])
    return envelope({"resources": database.serialize_list(docs), "pagination": pg.meta(total)})


@router.post("/resources", status_code=201)
def upload_resource(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    folder: str = Form("general"),
    school_id: Optional[str] = Form(None),
    user: Principal = Depends(admin_only),
):
    if not file.filename:
        raise ValidationError("Filename required")
    target_school = _target_school(user, school_id)
    content = file.file.read()
    result = storage.get_storage().upload(content, {"filename": file.filename, "folder": f"{target_school}/{folder}"})
    doc = {
        "school_id": target_school,
        "title": title or file.filename,
        "url": result["url"],
        "public_id": result["public_id"],
        "resource_type": result["resource_type"],
        "folder": folder,
        "size": result["size"],
        "uploaded_by": user.id,
    }
    rid = database.create_document("resources", doc)
    logger.info("Resource %s uploaded by %s", rid, user.id)
    return envelope({"resource": database.serialize_doc(database.find_by_id("resources", rid))})


@router.delete("/resources/{resource_id}")
def delete_resource(resource_id: str, user: Principal = Depends(admin_only)):
    resource = database.find_by_id("resources", resource_id, user.school_filter())
    if not resource:
        raise NotFound("Resource not found")
    storage.delete_quietly(storage.get_storage(), resource["public_id"], resource.get("resource_type", "raw"))
    database.delete_document("resources", {"_id": resource["_id"]})
    return envelope({"id": resource_id}, message="Resource deleted successfully")


# -------------------- Academic calendar -------------------- #

@router.get("/academic-calendar")
def get_academic_calendar(school_id: Optional[str] = None, user: Principal = Depends(admin_only)):
    target = _target_school(user, school_id)
    today = database.utcnow().date()
    calendar = load_calendar(target, today)
    current = resolve_term(calendar, today)
    return envelope({
        "school_id": target,
        "configured": calendar.configured,
        "terms": [t.as_dict() for t in calendar.terms],
        "current_term": current.as_dict() if current else None,
    })


@router.put("/academic-calendar")
def update_academic_calendar(payload: CalendarUpdate, school_id: Optional[str] = None, user: Principal = Depends(admin_only)):
    target = _target_school(user, school_id)
    for term in payload.terms:
        if term.start_date > term.end_date:
            raise ValidationError(f"Term '{term.name}' starts after it ends")
    database.update_document(
        "academic_calendars",
        {"school_id": target, "academic_year": payload.academic_year},
        {"terms": [t.model_dump() for t in payload.terms]},
        upsert=True,
    )
    logger.info("Academic calendar %s updated for school %s", payload.academic_year, target)
    return envelope(
        {"school_id": target, "academic_year": payload.academic_year, "terms": len(payload.terms)},
        message="Academic calendar saved",
    )


# -------------------- Alerts -------------------- #

@router.post("/alerts/reconcile")
def reconcile_alerts(school_id: Optional[str] = None, user: Principal = Depends(admin_only)):
    target = school_id if user.is_headadmin else user.school_id
    return envelope(notifications.reconcile_alert_notifications(target))
