"""
Database helpers for MongoDB.

Collections are addressed by name and documents are plain dicts. Pydantic models
are accepted wherever a document is written; ``date`` values are widened to
``datetime`` because BSON has no date-only type.
"""

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import ExecutionTimeout

import config
from errors import InternalError, TransactionTimeout

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None

if config.DATABASE_URL:
    client = MongoClient(
        config.DATABASE_URL,
        serverSelectionTimeoutMS=5000,
        waitQueueTimeoutMS=config.TX_MAX_WAIT_MS,
    )
    db = client[config.DATABASE_NAME]

SortSpec = List[Tuple[str, int]]


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    if db is None:
        raise InternalError("Database not available", details="Check DATABASE_URL and DATABASE_NAME")
    return db


def _session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


def to_bson(value: Any) -> Any:
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


def oid(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def id_filter(value: Any) -> Dict[str, Any]:
    """Filter matching a document by its string id; matches nothing when the id is malformed."""
    parsed = oid(value)
    return {"_id": parsed} if parsed is not None else {"_id": {"$in": []}}


def id_list_filter(values: Iterable[Any]) -> Dict[str, Any]:
    return {"_id": {"$in": [o for o in (oid(v) for v in values) if o is not None]}}


def create_document(collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    doc = to_bson(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = get_db()[collection_name].insert_one(doc, **_session_kwargs(session))
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[SortSpec] = None,
    skip: Optional[int] = None,
    session=None,
) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(to_bson(filter_dict or {}), **_session_kwargs(session))
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_document(collection_name: str, filter_dict: dict, session=None) -> Optional[Dict[str, Any]]:
    return get_db()[collection_name].find_one(to_bson(filter_dict), **_session_kwargs(session))


def find_by_id(collection_name: str, doc_id: Any, extra: Optional[dict] = None, session=None):
    filt = id_filter(doc_id)
    if extra:
        filt.update(extra)
    return find_document(collection_name, filt, session=session)


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    return get_db()[collection_name].count_documents(to_bson(filter_dict or {}))


def update_document(collection_name: str, filter_dict: dict, changes: dict, upsert: bool = False, session=None):
    values = to_bson(changes)
    values["updated_at"] = utcnow()
    update: Dict[str, Any] = {"$set": values}
    if upsert:
        update["$setOnInsert"] = {"created_at": values["updated_at"]}
    return get_db()[collection_name].update_one(
        to_bson(filter_dict), update, upsert=upsert, **_session_kwargs(session)
    )


def update_documents(collection_name: str, filter_dict: dict, changes: dict, session=None) -> int:
    values = to_bson(changes)
    values["updated_at"] = utcnow()
    res = get_db()[collection_name].update_many(to_bson(filter_dict), {"$set": values}, **_session_kwargs(session))
    return res.modified_count


def delete_document(collection_name: str, filter_dict: dict, session=None) -> int:
    return get_db()[collection_name].delete_one(to_bson(filter_dict), **_session_kwargs(session)).deleted_count


def delete_documents(collection_name: str, filter_dict: dict, session=None) -> int:
    return get_db()[collection_name].delete_many(to_bson(filter_dict), **_session_kwargs(session)).deleted_count


def group_count(collection_name: str, field: str, filter_dict: Optional[dict] = None) -> Dict[Any, int]:
    pipeline = [
        {"$match": to_bson(filter_dict or {})},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in get_db()[collection_name].aggregate(pipeline)}


def run_transaction(callback: Callable[[Any], Any]) -> Any:
    """Run ``callback(session)`` inside a multi-document transaction.

    Waiting for a pooled connection is bounded by ``TX_MAX_WAIT_MS`` (set on the
    client) and the whole unit of work by ``TX_TIMEOUT_MS``. Overrunning aborts
    the transaction and raises :class:`TransactionTimeout`.
    """
    if client is None:
        raise InternalError("Database not available")
    deadline = time.monotonic() + config.TX_TIMEOUT_MS / 1000.0

    def _bounded(session):
        result = callback(session)
        if time.monotonic() > deadline:
            raise TransactionTimeout()
        return result

    try:
        with client.start_session() as session:
            return session.with_transaction(_bounded, max_commit_time_ms=config.TX_TIMEOUT_MS)
    except ExecutionTimeout as exc:
        raise TransactionTimeout() from exc


def ensure_indexes() -> None:
    d = get_db()
    d["users"].create_index([("email", ASCENDING)], unique=True)
    d["users"].create_index([("school_id", ASCENDING), ("role", ASCENDING)])
    d["attendance"].create_index(
        [("student_id", ASCENDING), ("date", ASCENDING), ("period", ASCENDING)], unique=True
    )
    d["grades"].create_index([("student_id", ASCENDING), ("term", ASCENDING), ("academic_year", ASCENDING)])
    d["notifications"].create_index([("school_id", ASCENDING), ("user_id", ASCENDING), ("created_at", DESCENDING)])
    d["student_alerts"].create_index([("school_id", ASCENDING), ("created_by", ASCENDING)])
    logger.info("Database indexes ensured")


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, dict):
            d[k] = serialize_doc(v)
        elif hasattr(v, "isoformat"):
            d[k] = v.isoformat()
    return d


def serialize_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]
