from datetime import datetime

import pytest

import config
import database


@pytest.fixture
def subject_class(seed):
    school = seed.school()
    maths = seed.subject(school)
    teacher = seed.teacher(school, "subject_teacher", classes=["SS1 Silver"], subject_id=maths)
    return seed, school, maths, teacher


def _assignment(seed, school, teacher, subject, max_score=20, title="Algebra homework"):
    return str(seed.db.assignments.insert_one({
        "school_id": school, "teacher_id": teacher, "subject_id": subject, "title": title,
        "classes": ["SS1 SILVER"], "due_date": datetime(2030, 1, 1), "max_score": max_score, "status": "active",
    }).inserted_id)


def _submission(seed, school, assignment, student, late=False):
    return str(seed.db.assignment_submissions.insert_one({
        "school_id": school, "assignment_id": assignment, "student_id": student, "content": "x = 2",
        "submitted_at": database.utcnow(), "is_late_submission": late, "score": None, "status": "submitted",
    }).inserted_id)


def test_class_teachers_cannot_use_subject_routes(client, seed):
    school = seed.school()
    teacher = seed.teacher(school, classes=["SS1 Silver"])
    assert client.get("/teacher/subject/grading", headers=seed.headers(teacher)).status_code == 403


def test_create_assignment(client, subject_class):
    seed, school, maths, teacher = subject_class
    r = client.post("/teacher/subject/assignments", headers=seed.headers(teacher), json={
        "subject_id": maths, "title": "Quadratics", "classes": ["ss1  silver"], "due_date": "2030-02-01",
    })
    assert r.status_code == 201
    assignment = r.json()["data"]["assignment"]
    assert assignment["classes"] == ["SS1 SILVER"]
    assert assignment["status"] == "active"
    assert assignment["teacher_id"] == teacher
    assert assignment["due_date"].startswith("2030-02-01")


def test_create_assignment_outside_scope(client, subject_class):
    seed, school, maths, teacher = subject_class
    headers = seed.headers(teacher)
    r = client.post("/teacher/subject/assignments", headers=headers, json={
        "subject_id": maths, "title": "Quadratics", "classes": ["SS1 Silver", "SS2 Gold"], "due_date": "2030-02-01",
    })
    assert r.status_code == 403
    assert r.json() == {"error": "You can only create assignments for your assigned classes"}

    physics = seed.subject(school, "Physics", "PHY")
    r = client.post("/teacher/subject/assignments", headers=headers, json={
        "subject_id": physics, "title": "Motion", "classes": ["SS1 Silver"], "due_date": "2030-02-01",
    })
    assert r.json() == {"error": "You are not assigned to this subject"}


def test_grading_queue(client, subject_class):
    seed, school, maths, teacher = subject_class
    amy = seed.student(school, "SS1 Silver", "Amy")
    ben = seed.student(school, "SS1 Silver", "Ben")
    assignment = _assignment(seed, school, teacher, maths)
    _submission(seed, school, assignment, amy)
    _submission(seed, school, assignment, ben, late=True)
    other_teacher = seed.teacher(school, "subject_teacher", classes=["SS1 Silver"], subject_id=maths)
    _submission(seed, school, _assignment(seed, school, other_teacher, maths), amy)

    r = client.get("/teacher/subject/grading", headers=seed.headers(teacher))
    data = r.json()["data"]
    assert data["summary"] == {"total": 2, "pending": 2, "graded": 0, "late": 1}
    assert {s["student"]["first_name"] for s in data["submissions"]} == {"Amy", "Ben"}
    assert all(s["assignment"]["max_score"] == 20 for s in data["submissions"])

    r = client.get("/teacher/subject/grading?status=late", headers=seed.headers(teacher))
    assert [s["student"]["first_name"] for s in r.json()["data"]["submissions"]] == ["Ben"]


def test_grade_submission(client, subject_class):
    seed, school, maths, teacher = subject_class
    amy = seed.student(school, "SS1 Silver", "Amy")
    submission = _submission(seed, school, _assignment(seed, school, teacher, maths), amy)
    headers = seed.headers(teacher)

    r = client.post("/teacher/subject/grading", headers=headers, json={"submission_id": submission, "score": 25})
    assert r.status_code == 400
    assert r.json() == {"error": "Score must be between 0 and 20"}

    r = client.post("/teacher/subject/grading", headers=headers, json={
        "submission_id": submission, "score": 17.5, "feedback": "Good work",
    })
    assert r.status_code == 200
    graded = r.json()["data"]["submission"]
    assert graded["status"] == "graded"
    assert graded["score"] == 17.5
    assert graded["graded_by"] == teacher

    note = seed.db.notifications.find_one({"user_id": amy})
    assert note["title"] == "Assignment Graded"
    assert note["content"] == "Your Algebra homework has been graded. Score: 17.5/20"
    assert note["type"] == "success"

    summary = client.get("/teacher/subject/grading", headers=headers).json()["data"]["summary"]
    assert summary["graded"] == 1 and summary["pending"] == 0


def test_cannot_grade_another_teachers_submission(client, subject_class):
    seed, school, maths, teacher = subject_class
    amy = seed.student(school, "SS1 Silver")
    other = seed.teacher(school, "subject_teacher", classes=["SS1 Silver"], subject_id=maths)
    submission = _submission(seed, school, _assignment(seed, school, other, maths), amy)

    r = client.post("/teacher/subject/grading", headers=seed.headers(teacher), json={"submission_id": submission, "score": 5})
    assert r.status_code == 403
    assert r.json() == {"error": "You can only grade submissions for your own assignments"}

    r = client.post("/teacher/subject/grading", headers=seed.headers(teacher), json={"submission_id": "missing", "score": 5})
    assert r.status_code == 404


def test_record_grade(client, subject_class):
    seed, school, maths, teacher = subject_class
    amy = seed.student(school, "ss1 silver")
    r = client.post("/teacher/subject/grades", headers=seed.headers(teacher), json={
        "student_id": amy, "subject_id": maths, "score": 33, "max_score": 40,
        "term": "First Term", "academic_year": "2019",
    })
    assert r.status_code == 201
    grade = r.json()["data"]["grade"]
    assert grade["percentage"] == 82.5
    assert grade["term"] == "First Term"
    assert grade["academic_year"] == "2019"
    assert grade["school_id"] == school


def test_record_grade_rejections(client, subject_class):
    seed, school, maths, teacher = subject_class
    headers = seed.headers(teacher)
    outsider = seed.student(school, "SS2 Gold")
    r = client.post("/teacher/subject/grades", headers=headers, json={
        "student_id": outsider, "subject_id": maths, "score": 10,
    })
    assert r.status_code == 404

    amy = seed.student(school, "SS1 Silver")
    r = client.post("/teacher/subject/grades", headers=headers, json={
        "student_id": amy, "subject_id": maths, "score": 50, "max_score": 40,
    })
    assert r.json() == {"error": "score cannot exceed max_score"}


def test_ai_generate_test_falls_back_without_key(client, subject_class, monkeypatch):
    seed, _, _, teacher = subject_class
    monkeypatch.setattr(config, "GOOGLE_API_KEY", None)
    headers = seed.headers(teacher)

    r = client.post("/teacher/subject/ai-generate-test", headers=headers, json={"subject": "Physics"})
    assert r.json() == {"error": "Topic or custom prompt is required"}

    r = client.post("/teacher/subject/ai-generate-test", headers=headers, json={
        "subject": "Physics", "topic": "Motion", "question_count": 4, "target_class": "ss2",
    })
    assert r.status_code == 200
    data = r.json()["data"]
    meta = data["metadata"]
    assert meta["is_ai_generated"] is False
    assert meta["fallback_reason"] == "GOOGLE_API_KEY not configured"
    assert meta["total_questions"] == 4
    assert meta["total_marks"] == sum(q["marks"] for q in data["questions"])
    assert meta["generated_by"] == teacher


def test_student_roster_with_performance(client, subject_class):
    seed, school, maths, teacher = subject_class
    amy = seed.student(school, "ss1 silver", "Amy", "Adams")
    seed.student(school, "SS1 Silver", "Ben", "Bello")
    seed.student(school, "SS2 Gold", "Cal", "Cole")
    done = _assignment(seed, school, teacher, maths, title="Sets")
    _assignment(seed, school, teacher, maths, title="Logic")
    _submission(seed, school, done, amy)
    for pct in (60, 80):
        seed.db.grades.insert_one({"school_id": school, "student_id": amy, "subject_id": maths, "percentage": pct})
    seed.db.attendance.insert_one({
        "school_id": school, "student_id": amy, "date": database.utcnow(), "status": "present",
    })

    r = client.get("/teacher/subject/students", headers=seed.headers(teacher))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["classes"] == ["SS1 Silver"]
    assert [s["first_name"] for s in data["students"]] == ["Amy", "Ben"]
    perf = data["students"][0]["performance"]
    assert perf["average_score"] == 70.0
    assert perf["completion_rate"] == 50.0
    assert perf["attendance_rate"] == 100.0
    assert perf["assignments_submitted"] == 1
    assert perf["missed_assignments"] == 1
    assert perf["trend"] == "stable"
    assert data["students"][0]["recent_activity"][0]["title"] == "Sets"
    assert data["students"][1]["performance"]["average_score"] == 0.0


def test_student_roster_narrowed_to_one_subject(client, subject_class):
    seed, school, maths, teacher = subject_class
    physics = seed.subject(school, "Physics", "PHY")
    seed.db.teacher_subjects.insert_one({"teacher_id": teacher, "subject_id": physics, "classes": ["SS3 Red"]})
    seed.student(school, "SS1 Silver", "Amy")
    seed.student(school, "SS3 Red", "Rex")
    headers = seed.headers(teacher)

    everyone = client.get("/teacher/subject/students", headers=headers).json()["data"]
    assert {s["first_name"] for s in everyone["students"]} == {"Amy", "Rex"}

    r = client.get(f"/teacher/subject/students?subject_id={physics}", headers=headers)
    assert [s["first_name"] for s in r.json()["data"]["students"]] == ["Rex"]

    chemistry = seed.subject(school, "Chemistry", "CHM")
    r = client.get(f"/teacher/subject/students?subject_id={chemistry}", headers=headers)
    assert r.status_code == 403
    assert r.json() == {"error": "You are not assigned to this subject"}


def test_student_roster_without_classes(client, seed):
    school = seed.school()
    teacher = seed.teacher(school, "subject_teacher")
    r = client.get("/teacher/subject/students", headers=seed.headers(teacher))
    assert r.json()["message"] == "No classes assigned to this subject teacher"
    assert r.json()["data"]["students"] == []
