"""
Performance aggregation over grade, attendance and submission records.

Everything here is pure: callers fetch the records and decide what to persist.
Records are the plain dicts stored in the database.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from class_names import normalize_class_name

PRESENT_STATUSES = {"present", "late"}
TREND_THRESHOLD = 5.0
AT_RISK_AVERAGE = 50.0
AT_RISK_ATTENDANCE = 75.0

Record = Mapping[str, Any]


def _clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def filter_term(grades: Iterable[Record], term: Optional[str] = None, academic_year: Optional[str] = None) -> List[Record]:
    out = []
    for g in grades:
        if term is not None and g.get("term") != term:
            continue
        if academic_year is not None and str(g.get("academic_year")) != str(academic_year):
            continue
        out.append(g)
    return out


def overall_average(grades: Iterable[Record], term: Optional[str] = None, academic_year: Optional[str] = None) -> float:
    """Unweighted mean of grade percentages; each assessment counts once."""
    selected = filter_term(grades, term, academic_year)
    return _clamp_percent(_mean([float(g.get("percentage") or 0) for g in selected]))


def attendance_rate(records: Iterable[Record]) -> float:
    records = list(records)
    if not records:
        return 0.0
    present = sum(1 for r in records if r.get("status") in PRESENT_STATUSES)
    return round(present / len(records) * 100, 1)


def assignments_for_class(assignments: Iterable[Record], class_name: Optional[str]) -> List[Record]:
    key = normalize_class_name(class_name)
    if not key:
        return []
    return [a for a in assignments if key in {normalize_class_name(c) for c in a.get("classes") or []}]


def assignment_completion(
    assignments: Iterable[Record], submissions: Iterable[Record], class_name: Optional[str] = None
) -> float:
    assignments = list(assignments)
    if class_name is not None:
        assignments = assignments_for_class(assignments, class_name)
    if not assignments:
        return 0.0
    ids = {str(a.get("_id", a.get("id"))) for a in assignments}
    submitted = {str(s.get("assignment_id")) for s in submissions if str(s.get("assignment_id")) in ids}
    return round(_clamp_percent(len(submitted) / len(assignments) * 100), 1)


def trend(average: float) -> str:
    return "stable" if average >= AT_RISK_AVERAGE else "declining"


def term_trend(current: float, previous: Optional[float]) -> str:
    if previous is None:
        return trend(current)
    delta = current - previous
    if delta > TREND_THRESHOLD:
        return "improving"
    if delta < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def is_at_risk(average: float, attendance: float) -> bool:
    return average < AT_RISK_AVERAGE or attendance < AT_RISK_ATTENDANCE


def classify(average: float, attendance: float) -> str:
    if is_at_risk(average, attendance):
        return "at_risk"
    if average >= 80:
        return "excellent"
    if average >= 70:
        return "good"
    if average >= 60:
        return "average"
    return "poor"


def subject_breakdown(grades: Iterable[Record], subject_names: Mapping[str, str]) -> List[Dict[str, Any]]:
    buckets: Dict[str, List[float]] = {}
    for g in grades:
        name = subject_names.get(str(g.get("subject_id")), "Unknown")
        buckets.setdefault(name, []).append(float(g.get("percentage") or 0))
    return [
        {"name": name, "average": round(_mean(scores), 1), "grade_count": len(scores)}
        for name, scores in sorted(buckets.items())
    ]


@dataclass
class StudentMetrics:
    student_id: str
    overall_average: float
    attendance_rate: float
    present_days: int
    total_days: int
    assignment_completion: float
    trend: str
    classification: str
    previous_average: Optional[float] = None
    subject_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_student_metrics(
    student_id: str,
    class_name: Optional[str],
    grades: Iterable[Record],
    attendance: Iterable[Record],
    assignments: Iterable[Record],
    submissions: Iterable[Record],
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    previous_grades: Optional[Iterable[Record]] = None,
    subject_names: Optional[Mapping[str, str]] = None,
) -> StudentMetrics:
    grades = filter_term(grades, term, academic_year)
    attendance = list(attendance)
    average = overall_average(grades)
    rate = attendance_rate(attendance)

    previous = None
    if previous_grades is not None:
        previous_grades = list(previous_grades)
        previous = round(overall_average(previous_grades), 1) if previous_grades else None

    return StudentMetrics(
        student_id=student_id,
        overall_average=round(average, 1),
        attendance_rate=rate,
        present_days=sum(1 for r in attendance if r.get("status") in PRESENT_STATUSES),
        total_days=len(attendance),
        assignment_completion=assignment_completion(assignments, submissions, class_name),
        trend=term_trend(average, previous),
        classification=classify(average, rate),
        previous_average=previous,
        subject_breakdown=subject_breakdown(grades, subject_names or {}),
    )


def matches_band(metrics: StudentMetrics, band: Optional[str]) -> bool:
    """Performance filter: average ranges, except ``at_risk`` which uses the risk rule."""
    if not band or band == "all":
        return True
    avg = metrics.overall_average
    if band == "excellent":
        return avg >= 80
    if band == "good":
        return 70 <= avg < 80
    if band == "average":
        return 60 <= avg < 70
    if band == "poor":
        return avg < 60
    if band == "at_risk":
        return is_at_risk(avg, metrics.attendance_rate)
    return True


@dataclass
class ClassSummary:
    total_students: int
    class_average: float
    average_attendance: float
    at_risk_count: int
    students_above_70: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize_class(metrics: Iterable[StudentMetrics]) -> ClassSummary:
    metrics = list(metrics)
    return ClassSummary(
        total_students=len(metrics),
        class_average=round(_mean([m.overall_average for m in metrics]), 1),
        average_attendance=round(_mean([m.attendance_rate for m in metrics]), 1),
        at_risk_count=sum(1 for m in metrics if m.classification == "at_risk"),
        students_above_70=sum(1 for m in metrics if m.overall_average >= 70),
    )


def grade_distribution(percentages: Iterable[float]) -> Dict[str, int]:
    bands = {"A": 0, "B": 0, "C": 0, "D": 0, "F": 0}
    for p in percentages:
        if p >= 80:
            bands["A"] += 1
        elif p >= 70:
            bands["B"] += 1
        elif p >= 60:
            bands["C"] += 1
        elif p >= 50:
            bands["D"] += 1
        else:
            bands["F"] += 1
    return bands
