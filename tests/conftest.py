import itertools
import os
import tempfile

# must be set before config is imported
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="school-portal-uploads-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import storage
from security import create_access_token


@pytest.fixture
def db(monkeypatch):
    mongo = mongomock.MongoClient()["school_portal_test"]
    monkeypatch.setattr(database, "db", mongo)
    # mongomock has no sessions; run the unit of work directly
    monkeypatch.setattr(database, "run_transaction", lambda callback: callback(None))
    return mongo


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "_storage", storage.LocalObjectStorage(str(tmp_path), "/static"))
    return tmp_path


@pytest.fixture
def client(db, upload_dir):
    import main

    return TestClient(main.app)


class Seeder:
    def __init__(self, mongo):
        self.db = mongo
        self._n = itertools.count(1)

    def school(self, name="Green Valley College"):
        return str(self.db.schools.insert_one({"name": name}).inserted_id)

    def subject(self, school_id, name="Mathematics", code="MTH"):
        return str(self.db.subjects.insert_one({"name": name, "code": code, "school_id": school_id}).inserted_id)

    def user(self, role, school_id, first_name="Test", last_name="User", **extra):
        n = next(self._n)
        doc = {
            "role": role,
            "school_id": school_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": f"{first_name}.{last_name}.{n}@example.com".lower(),
            "username": f"{first_name}{n}".lower(),
            "password_hash": "unused",
            "is_active": True,
            "created_at": database.utcnow(),
        }
        doc.update(extra)
        return str(self.db.users.insert_one(doc).inserted_id)

    def student(self, school_id, class_name, first_name="Stu", last_name="Dent", **extra):
        profile = {"student_id": f"STU{next(self._n)}", "class_name": class_name}
        return self.user("student", school_id, first_name, last_name, student_profile=profile, **extra)

    def teacher(self, school_id, department="class_teacher", classes=(), subject_id=None,
                coordinator_class=None, first_name="Tee", last_name="Cher"):
        teacher_id = self.user(
            "teacher", school_id, first_name, last_name,
            teacher_profile={"employee_id": f"TCH{next(self._n)}", "department": department,
                             "coordinator_class": coordinator_class},
        )
        if classes:
            self.db.teacher_subjects.insert_one({
                "teacher_id": teacher_id,
                "subject_id": subject_id or self.subject(school_id),
                "classes": list(classes),
            })
        return teacher_id

    def admin(self, school_id, first_name="Ada", last_name="Min"):
        return self.user("admin", school_id, first_name, last_name,
                         teacher_profile={"employee_id": f"ADM{next(self._n)}", "department": "administration"})

    def headadmin(self):
        return self.user("headadmin", None, "Head", "Admin")

    def headers(self, user_id):
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def seed(db):
    return Seeder(db)
