import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
import database
from errors import AccessDenied, AuthenticationRequired

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ADMIN_ROLES = ("admin", "headadmin")
CLASS_ROLES = ("class_teacher", "coordinator", "director")
SUBJECT_ROLES = ("subject_teacher",)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = database.utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


@dataclass
class Principal:
    id: str
    role: str
    school_id: Optional[str]
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    department: Optional[str] = None
    school: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_headadmin(self) -> bool:
        return self.role == "headadmin"

    def has_any_role(self, roles) -> bool:
        return self.role in roles or (self.department is not None and self.department in roles)

    def school_filter(self) -> Dict[str, Any]:
        """Tenant filter every non-head-admin query is intersected with."""
        return {} if self.is_headadmin else {"school_id": self.school_id}


def _token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization") or request.headers.get("Authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return request.cookies.get("auth_token")


def principal_from_user(user: Dict[str, Any]) -> Principal:
    school = None
    if user.get("school_id"):
        school = database.find_by_id("schools", user["school_id"])
    profile = user.get("teacher_profile") or {}
    return Principal(
        id=str(user["_id"]),
        role=user.get("role"),
        school_id=user.get("school_id"),
        first_name=user.get("first_name", ""),
        last_name=user.get("last_name", ""),
        email=user.get("email"),
        department=profile.get("department") if user.get("role") == "teacher" else None,
        school=database.serialize_doc(school) if school else None,
        raw=user,
    )


def token_subject(request: Request) -> Optional[str]:
    """User id from a valid bearer header or ``auth_token`` cookie, without touching the database."""
    token = _token_from_request(request)
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        logger.info("Rejected token on %s", request.url.path)
        return None
    return payload.get("sub")


def get_current_user(request: Request) -> Optional[Principal]:
    """Resolve the caller; None when anonymous, invalid or inactive."""
    user_id = token_subject(request)
    if not user_id:
        return None
    user = database.find_by_id("users", user_id)
    if not user or not user.get("is_active", True):
        return None
    return principal_from_user(user)


def require_roles(*roles: str):
    def _dep(user: Optional[Principal] = Depends(get_current_user)) -> Principal:
        if user is None:
            raise AuthenticationRequired()
        if roles and not user.has_any_role(roles):
            raise AccessDenied()
        return user
    return _dep
