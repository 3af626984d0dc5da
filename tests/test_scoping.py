import pytest

import database
from errors import NotFound
from scoping import find_scoped_student, load_scoped_students, resolve_teacher_scope
from security import principal_from_user


def _principal(user_id):
    return principal_from_user(database.find_by_id("users", user_id))


def test_class_teacher_scope_includes_coordinator_classes(seed):
    school = seed.school()
    teacher = seed.teacher(school, "director", classes=["SS1 Silver"], coordinator_class='["SS2 GOLD", "ss1 silver"]')
    scope = resolve_teacher_scope(_principal(teacher))
    assert scope.assigned_classes == ["SS1 Silver", "SS2 GOLD"]
    assert scope.allows("ss2 gold")


def test_coordinator_single_class(seed):
    school = seed.school()
    teacher = seed.teacher(school, "coordinator", coordinator_class="JSS3 A")
    scope = resolve_teacher_scope(_principal(teacher))
    assert scope.assigned_classes == ["JSS3 A"]


def test_subject_teacher_ignores_subjects_from_other_schools(seed):
    school, other = seed.school(), seed.school("Elsewhere")
    foreign_subject = seed.subject(other, "Chemistry", "CHM")
    teacher = seed.teacher(school, "subject_teacher", classes=["SS1 Silver"])
    seed.db.teacher_subjects.insert_one({"teacher_id": teacher, "subject_id": foreign_subject, "classes": ["SS3 Red"]})
    scope = resolve_teacher_scope(_principal(teacher))
    assert scope.assigned_classes == ["SS1 Silver"]


def test_teacher_without_classes_has_empty_scope(seed):
    school = seed.school()
    teacher = seed.teacher(school)
    principal = _principal(teacher)
    scope = resolve_teacher_scope(principal)
    assert scope.is_empty
    assert load_scoped_students(principal, scope) == []


def test_load_scoped_students_filters_by_normalized_class(seed):
    school, other = seed.school(), seed.school("Elsewhere")
    teacher = seed.teacher(school, classes=["SS1 Silver"])
    a = seed.student(school, "SS1 Silver", "Amy")
    b = seed.student(school, "ss1  silver", "Ben")
    seed.student(school, "SS2 Gold", "Cal")
    seed.student(other, "SS1 Silver", "Dee")
    seed.student(school, "SS1 Silver", "Eve", is_active=False)
    principal = _principal(teacher)
    students = load_scoped_students(principal, resolve_teacher_scope(principal))
    assert [str(s["_id"]) for s in students] == [a, b]


def test_find_scoped_student(seed):
    school = seed.school()
    teacher = seed.teacher(school, classes=["SS1 Silver"])
    inside = seed.student(school, "ss1 silver")
    outside = seed.student(school, "SS2 Gold")
    principal = _principal(teacher)
    scope = resolve_teacher_scope(principal)
    assert str(find_scoped_student(principal, scope, inside)["_id"]) == inside
    with pytest.raises(NotFound, match="assigned class"):
        find_scoped_student(principal, scope, outside)
    with pytest.raises(NotFound):
        find_scoped_student(principal, scope, "not-an-id")
