"""
Academic terms per school.

Schools store their term boundaries in ``academic_calendars``. A school without a
stored calendar gets the default three-term layout: First Term September to
December, Second Term January to April, Third Term May to August.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import database

FIRST_TERM = "First Term"
SECOND_TERM = "Second Term"
THIRD_TERM = "Third Term"


@dataclass(frozen=True)
class Term:
    name: str
    academic_year: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "academic_year": self.academic_year,
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }


class AcademicCalendar:
    def __init__(self, terms: List[Term], configured: bool = True):
        self.terms = sorted(terms, key=lambda t: t.start)
        self.configured = configured

    def term_for(self, day: date) -> Optional[Term]:
        for term in self.terms:
            if term.contains(day):
                return term
        return None

    def find(self, name: str, academic_year: str) -> Optional[Term]:
        for term in self.terms:
            if term.name == name and term.academic_year == str(academic_year):
                return term
        return None

    def latest_started(self, day: date) -> Optional[Term]:
        """Term containing ``day``, or the most recent one before it during a break."""
        started = [t for t in self.terms if t.start <= day]
        return started[-1] if started else None

    def previous(self, term: Term) -> Optional[Term]:
        earlier = [t for t in self.terms if t.end < term.start]
        return earlier[-1] if earlier else None


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def default_calendar(year: int) -> AcademicCalendar:
    """Month-based layout covering ``year`` and the last term of the year before.

    Terms are keyed by the calendar year they fall in.
    """
    y, prev = str(year), str(year - 1)
    terms = [
        Term(FIRST_TERM, prev, date(year - 1, 9, 1), date(year - 1, 12, 31)),
        Term(SECOND_TERM, y, date(year, 1, 1), date(year, 4, 30)),
        Term(THIRD_TERM, y, date(year, 5, 1), date(year, 8, 31)),
        Term(FIRST_TERM, y, date(year, 9, 1), date(year, 12, 31)),
    ]
    return AcademicCalendar(terms, configured=False)


def calendar_from_docs(docs: List[Dict[str, Any]]) -> AcademicCalendar:
    terms = []
    for doc in docs:
        for t in doc.get("terms") or []:
            terms.append(
                Term(t["name"], str(doc["academic_year"]), _as_date(t["start_date"]), _as_date(t["end_date"]))
            )
    return AcademicCalendar(terms)


def load_calendar(school_id: Optional[str], today: Optional[date] = None) -> AcademicCalendar:
    today = today or database.utcnow().date()
    docs = database.get_documents("academic_calendars", {"school_id": school_id}) if school_id else []
    if docs:
        return calendar_from_docs(docs)
    return default_calendar(today.year)


def resolve_term(
    calendar: AcademicCalendar,
    today: date,
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
) -> Optional[Term]:
    """Explicit term/year wins; otherwise the term containing ``today``."""
    if term:
        year = str(academic_year) if academic_year else str(today.year)
        found = calendar.find(term, year)
        if found is not None:
            return found
        # unknown to the calendar: an open window keyed only by name/year
        return Term(term, year, date.min, date.max)
    return calendar.latest_started(today)
