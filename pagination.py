import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

MAX_LIMIT = 100


@dataclass
class Page:
    page: int
    limit: int

    @classmethod
    def of(cls, page: Optional[int], limit: Optional[int], default_limit: int = 20) -> "Page":
        p = page if page and page > 0 else 1
        lim = limit if limit and limit > 0 else default_limit
        return cls(p, min(lim, MAX_LIMIT))

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def slice(self, items: Sequence[Any]) -> List[Any]:
        return list(items[self.skip:self.skip + self.limit])

    def meta(self, total: int) -> Dict[str, int]:
        return {
            "total": total,
            "page": self.page,
            "limit": self.limit,
            "pages": math.ceil(total / self.limit) if self.limit else 0,
        }


def envelope(data: Dict[str, Any], message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def search_filter(search: Optional[str], fields: Iterable[str]) -> Optional[Dict[str, Any]]:
    """Case-insensitive substring ``$or`` over a fixed set of fields."""
    if not search or not search.strip():
        return None
    pattern = re.escape(search.strip())
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def matches_search(doc: Dict[str, Any], search: Optional[str], fields: Iterable[str]) -> bool:
    if not search or not search.strip():
        return True
    needle = search.strip().lower()
    for f in fields:
        value = _get_path(doc, f)
        if value is not None and needle in str(value).lower():
            return True
    return False


def filter_value(value: Optional[str]) -> Optional[str]:
    """Query filters default to ``all``, which means no filter."""
    if value is None or value == "" or value == "all":
        return None
    return value
