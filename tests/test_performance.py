from performance import (
    StudentMetrics,
    assignment_completion,
    attendance_rate,
    classify,
    compute_student_metrics,
    grade_distribution,
    matches_band,
    overall_average,
    subject_breakdown,
    summarize_class,
    term_trend,
    trend,
)


def _att(*statuses):
    return [{"status": s} for s in statuses]


def test_overall_average():
    assert overall_average([]) == 0
    assert overall_average([{"percentage": 80}, {"percentage": 60}]) == 70


def test_overall_average_filters_term_and_clamps():
    grades = [
        {"percentage": 90, "term": "First Term", "academic_year": "2024"},
        {"percentage": 50, "term": "Second Term", "academic_year": "2024"},
        {"percentage": 140, "term": "First Term", "academic_year": "2023"},
    ]
    assert overall_average(grades, term="First Term", academic_year="2024") == 90
    assert overall_average(grades, term="First Term", academic_year="2023") == 100
    assert overall_average(grades, term="Third Term") == 0


def test_attendance_rate():
    assert attendance_rate([]) == 0
    assert attendance_rate(_att("present", "late", "absent", "absent")) == 50.0
    assert attendance_rate(_att("present", "present", "excused")) == 66.7


def test_classify():
    assert classify(45, 90) == "at_risk"
    assert classify(72, 95) == "good"
    assert classify(85, 70) == "at_risk"
    assert classify(85, 80) == "excellent"
    assert classify(65, 80) == "average"
    assert classify(55, 80) == "poor"


def test_trends():
    assert trend(50) == "stable"
    assert trend(49.9) == "declining"
    assert term_trend(70, 60) == "improving"
    assert term_trend(60, 70) == "declining"
    assert term_trend(63, 60) == "stable"
    assert term_trend(40, None) == "declining"


def test_assignment_completion_only_counts_the_students_class():
    assignments = [
        {"_id": "a1", "classes": ["SS1 SILVER"]},
        {"_id": "a2", "classes": ["SS1 SILVER", "SS2 GOLD"]},
        {"_id": "a3", "classes": ["SS2 GOLD"]},
    ]
    submissions = [{"assignment_id": "a1"}, {"assignment_id": "a1"}, {"assignment_id": "a3"}]
    assert assignment_completion(assignments, submissions, "ss1 silver") == 50.0
    assert assignment_completion(assignments, [], "SS3") == 0.0


def test_subject_breakdown():
    grades = [
        {"subject_id": "m", "percentage": 80},
        {"subject_id": "m", "percentage": 60},
        {"subject_id": "e", "percentage": 90},
        {"subject_id": "x", "percentage": 10},
    ]
    rows = subject_breakdown(grades, {"m": "Mathematics", "e": "English"})
    assert rows == [
        {"name": "English", "average": 90.0, "grade_count": 1},
        {"name": "Mathematics", "average": 70.0, "grade_count": 2},
        {"name": "Unknown", "average": 10.0, "grade_count": 1},
    ]


def test_compute_student_metrics_with_previous_term():
    grades = [
        {"percentage": 80, "term": "Second Term", "academic_year": "2024", "subject_id": "m"},
        {"percentage": 70, "term": "Second Term", "academic_year": "2024", "subject_id": "m"},
    ]
    previous = [{"percentage": 60, "term": "First Term", "academic_year": "2023"}]
    m = compute_student_metrics(
        "s1", "SS1 Silver", grades, _att("present", "present", "late", "absent"), [], [],
        term="Second Term", academic_year="2024", previous_grades=previous,
        subject_names={"m": "Mathematics"},
    )
    assert m.overall_average == 75.0
    assert m.attendance_rate == 75.0
    assert m.present_days == 3 and m.total_days == 4
    assert m.previous_average == 60.0
    assert m.trend == "improving"
    assert m.classification == "good"
    assert m.subject_breakdown[0]["name"] == "Mathematics"


def _metrics(avg, att):
    return StudentMetrics("s", avg, att, 0, 0, 0.0, trend(avg), classify(avg, att))


def test_matches_band():
    assert matches_band(_metrics(85, 90), "excellent")
    assert matches_band(_metrics(75, 90), "good")
    assert not matches_band(_metrics(75, 90), "excellent")
    assert matches_band(_metrics(90, 50), "at_risk")
    assert matches_band(_metrics(10, 10), "all")


def test_summarize_class():
    summary = summarize_class([_metrics(70, 100), _metrics(40, 90), _metrics(90, 60)])
    assert summary.total_students == 3
    assert summary.class_average == 66.7
    assert summary.students_above_70 == 2
    assert summary.at_risk_count == 2
    assert summarize_class([]).class_average == 0


def test_grade_distribution():
    assert grade_distribution([95, 80, 72, 65, 51, 49]) == {"A": 2, "B": 1, "C": 1, "D": 1, "F": 1}
