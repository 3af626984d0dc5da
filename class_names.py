"""
Class-name canonicalization.

Class names are free text ("ss1 silver", "SS1  Silver") and are compared only
through :func:`normalize_class_name`. The legacy ``coordinator_class`` profile
field holds either one class name or a JSON-encoded list of them; it is decoded
into a :class:`ClassAssignment` at the persistence boundary.
"""

import json
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

_WHITESPACE = re.compile(r"\s+")


def normalize_class_name(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return _WHITESPACE.sub(" ", str(raw).strip().upper())


def same_class(a: Optional[str], b: Optional[str]) -> bool:
    return normalize_class_name(a) == normalize_class_name(b)


def normalize_class_list(names: Optional[Iterable[str]]) -> List[str]:
    """Canonical, de-duplicated class names in first-seen order; blanks dropped."""
    out: List[str] = []
    for name in names or []:
        key = normalize_class_name(name)
        if key and key not in out:
            out.append(key)
    return out


@dataclass(frozen=True)
class SingleClass:
    name: str

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True)
class MultipleClasses:
    class_names: Tuple[str, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return self.class_names


ClassAssignment = Union[SingleClass, MultipleClasses]


def decode_class_assignment(raw) -> Optional[ClassAssignment]:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        names = tuple(n for n in raw if isinstance(n, str) and n.strip())
        return MultipleClasses(names) if names else None
    text = str(raw).strip()
    if not text:
        return None
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            names = tuple(n for n in parsed if isinstance(n, str) and n.strip())
            return MultipleClasses(names) if names else None
    return SingleClass(text)


def encode_class_assignment(assignment: Optional[ClassAssignment]) -> Optional[str]:
    if assignment is None:
        return None
    if isinstance(assignment, SingleClass):
        return normalize_class_name(assignment.name) or None
    names = normalize_class_list(assignment.names)
    return json.dumps(names) if names else None
