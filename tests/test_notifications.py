import pytest

import database
import notifications

CREATOR = {"first_name": "Grace", "last_name": "Hopper"}
STUDENT = {"first_name": "Alan", "last_name": "Turing"}


def _alert(priority, **extra):
    alert = {
        "student_id": "stu1",
        "school_id": "sch1",
        "created_by": "t1",
        "priority": priority,
        "title": "Missed tests",
        "description": "Missed three tests in a row",
    }
    alert.update(extra)
    return alert


@pytest.mark.parametrize("priority,count", [("urgent", 2), ("high", 2), ("normal", 1), ("low", 1)])
def test_alert_notification_count(priority, count):
    assert len(notifications.build_alert_notifications(_alert(priority, _id="a1"), CREATOR, STUDENT)) == count


def test_admin_notification_content():
    student_n, admin_n = notifications.build_alert_notifications(_alert("urgent", _id="a1"), CREATOR, STUDENT)
    assert student_n["user_id"] == "stu1"
    assert student_n["title"] == "Class Teacher Alert: Missed tests"
    assert student_n["type"] == "warning"
    assert admin_n["user_id"] is None
    assert admin_n["is_global"] is False
    assert admin_n["school_id"] == "sch1"
    assert admin_n["content"] == "Grace Hopper has flagged Alan Turing for: Missed tests. Priority: urgent"
    assert {student_n["source_alert_id"], admin_n["source_alert_id"]} == {"a1"}


def test_low_priority_student_notification_is_info():
    (only,) = notifications.build_alert_notifications(_alert("low", _id="a1"), CREATOR, STUDENT)
    assert only["type"] == "info"
    assert only["audience"] == notifications.AUDIENCE_STUDENT


def test_emit_writes_each_notification(db):
    alert_id = database.create_document("student_alerts", _alert("urgent"))
    alert = database.find_by_id("student_alerts", alert_id)
    ids = notifications.emit_alert_notifications(alert, CREATOR, STUDENT)
    assert len(ids) == 2
    assert db.notifications.count_documents({"source_alert_id": alert_id}) == 2


def test_failed_write_does_not_block_the_other_and_is_reconciled(db, monkeypatch):
    alert_id = database.create_document("student_alerts", _alert("high"))
    alert = database.find_by_id("student_alerts", alert_id)
    real_create = database.create_document

    def flaky_create(collection, data, session=None):
        if collection == "notifications" and data.get("audience") == notifications.AUDIENCE_ADMINS:
            raise RuntimeError("write failed")
        return real_create(collection, data, session=session)

    monkeypatch.setattr(database, "create_document", flaky_create)
    ids = notifications.emit_alert_notifications(alert, CREATOR, STUDENT)
    assert len(ids) == 1
    monkeypatch.setattr(database, "create_document", real_create)

    result = notifications.reconcile_alert_notifications("sch1")
    assert result == {"alerts_checked": 1, "notifications_created": 1}
    audiences = {n["audience"] for n in db.notifications.find({"source_alert_id": alert_id})}
    assert audiences == {notifications.AUDIENCE_STUDENT, notifications.AUDIENCE_ADMINS}

    assert notifications.reconcile_alert_notifications("sch1")["notifications_created"] == 0


def test_notify_user(db):
    nid = notifications.notify_user("u1", "sch1", "Assignment Graded", "Well done", type="success")
    doc = database.find_by_id("notifications", nid)
    assert doc["audience"] == notifications.AUDIENCE_USER
    assert doc["is_read"] is False
