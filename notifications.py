"""
Notification side effects.

Alert notifications are written one by one with no enclosing transaction: a
failed write is logged and the remaining ones still go out. Each notification
records the alert it came from and its audience, so
:func:`reconcile_alert_notifications` can later re-emit exactly the ones that
are missing.
"""

import logging
from typing import Any, Dict, List, Optional

import database

logger = logging.getLogger(__name__)

ESCALATED_PRIORITIES = {"high", "urgent"}
AUDIENCE_STUDENT = "student"
AUDIENCE_ADMINS = "admins"
AUDIENCE_USER = "user"


def _full_name(person: Dict[str, Any]) -> str:
    return f"{person.get('first_name', '')} {person.get('last_name', '')}".strip()


def expected_audiences(priority: str) -> List[str]:
    if priority in ESCALATED_PRIORITIES:
        return [AUDIENCE_STUDENT, AUDIENCE_ADMINS]
    return [AUDIENCE_STUDENT]


def build_alert_notifications(alert: Dict[str, Any], creator: Dict[str, Any], student: Dict[str, Any]) -> List[Dict[str, Any]]:
    priority = alert.get("priority", "normal")
    escalated = priority in ESCALATED_PRIORITIES
    alert_id = str(alert.get("_id", alert.get("id", "")))
    docs = [{
        "user_id": alert["student_id"],
        "school_id": alert["school_id"],
        "title": f"Class Teacher Alert: {alert['title']}",
        "content": alert.get("description", ""),
        "type": "warning" if escalated else "info",
        "priority": priority,
        "is_read": False,
        "is_global": False,
        "audience": AUDIENCE_STUDENT,
        "source_alert_id": alert_id,
    }]
    if escalated:
        docs.append({
            "user_id": None,
            "school_id": alert["school_id"],
            "title": "Urgent Student Alert from Class Teacher",
            "content": (
                f"{_full_name(creator)} has flagged {_full_name(student)} for: "
                f"{alert['title']}. Priority: {priority}"
            ),
            "type": "warning",
            "priority": priority,
            "is_read": False,
            "is_global": False,
            "audience": AUDIENCE_ADMINS,
            "source_alert_id": alert_id,
        })
    return docs


def _write_all(docs: List[Dict[str, Any]]) -> List[str]:
    created = []
    for doc in docs:
        try:
            created.append(database.create_document("notifications", doc))
        except Exception:
            logger.exception(
                "Failed to write %s notification for alert %s", doc.get("audience"), doc.get("source_alert_id")
            )
    return created


def emit_alert_notifications(alert: Dict[str, Any], creator: Dict[str, Any], student: Dict[str, Any]) -> List[str]:
    """Write the notifications for a new alert; returns the ids that were written."""
    created = _write_all(build_alert_notifications(alert, creator, student))
    expected = len(expected_audiences(alert.get("priority", "normal")))
    if len(created) < expected:
        logger.warning("Alert %s emitted %d of %d notifications", alert.get("_id"), len(created), expected)
    return created


def reconcile_alert_notifications(school_id: Optional[str]) -> Dict[str, int]:
    """Re-emit notifications missing for the school's alerts."""
    filt: Dict[str, Any] = {"school_id": school_id} if school_id else {}
    alerts = database.get_documents("student_alerts", filt)
    checked = repaired = 0
    for alert in alerts:
        checked += 1
        alert_id = str(alert["_id"])
        present = {
            n.get("audience")
            for n in database.get_documents("notifications", {"source_alert_id": alert_id})
        }
        missing = [a for a in expected_audiences(alert.get("priority", "normal")) if a not in present]
        if not missing:
            continue
        creator = database.find_by_id("users", alert.get("created_by")) or {}
        student = database.find_by_id("users", alert.get("student_id")) or {}
        docs = [d for d in build_alert_notifications(alert, creator, student) if d["audience"] in missing]
        repaired += len(_write_all(docs))
    logger.info("Reconciled alert notifications for school %s: %d alerts, %d re-emitted", school_id, checked, repaired)
    return {"alerts_checked": checked, "notifications_created": repaired}


def notify_user(
    user_id: str,
    school_id: Optional[str],
    title: str,
    content: str,
    type: str = "info",
    priority: str = "normal",
) -> Optional[str]:
    try:
        return database.create_document("notifications", {
            "user_id": user_id,
            "school_id": school_id,
            "title": title,
            "content": content,
            "type": type,
            "priority": priority,
            "is_read": False,
            "is_global": False,
            "audience": AUDIENCE_USER,
            "source_alert_id": None,
        })
    except Exception:
        logger.exception("Failed to notify user %s: %s", user_id, title)
        return None
