"""
Database helpers for SkillSync

MongoDB connection plus the small set of helpers every router uses.
Collection names are the lowercase snake_case of the schema class:
- User -> "user"
- CollaborationRequest -> "collaboration_request"
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

USER_SUMMARY_FIELDS = ("name", "avatar", "reputation")


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def to_oid(id_str: str, not_found: str = "Not found") -> ObjectId:
    """Convert a path id; a malformed id is reported like a missing document."""
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=404, detail=not_found)


def find_or_404(database: Database, collection_name: str, id_str: str, not_found: str) -> dict:
    doc = database[collection_name].find_one({"_id": to_oid(id_str, not_found)})
    if not doc:
        raise HTTPException(status_code=404, detail=not_found)
    return doc


def find_item(items: Iterable[dict], item_id: str) -> Optional[dict]:
    """Embedded array lookup by sub-document id."""
    for item in items:
        if str(item.get("_id")) == item_id:
            return item
    return None


def serialize(value: Any) -> Any:
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            if k == "_id":
                d["id"] = serialize(v)
            else:
                d[k] = serialize(v)
        return d
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def user_summary(user: dict, fields: Iterable[str] = USER_SUMMARY_FIELDS) -> dict:
    summary = {"id": str(user["_id"])}
    for field in fields:
        summary[field] = serialize(user.get(field))
    return summary


def _targets(doc: dict, path: str):
    """Yield (container, key) pairs addressed by a dotted path through arrays."""
    head, _, rest = path.partition(".")
    if not rest:
        yield doc, head
        return
    value = doc.get(head)
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict):
                yield from _targets(item, rest)
    elif isinstance(value, dict):
        yield from _targets(value, rest)


def populate(database: Database, doc: dict, *paths: str, fields: Iterable[str] = USER_SUMMARY_FIELDS) -> dict:
    """Replace user id references at the given paths with user summaries, in place."""
    if not doc:
        return doc
    fields = tuple(fields)
    targets = [t for path in paths for t in _targets(doc, path)]

    ids = set()
    for container, key in targets:
        value = container.get(key)
        refs = value if isinstance(value, list) else [value]
        ids.update(r for r in refs if isinstance(r, str) and ObjectId.is_valid(r))
    if not ids:
        return doc

    users = {
        str(u["_id"]): user_summary(u, fields)
        for u in database["user"].find({"_id": {"$in": [ObjectId(i) for i in ids]}})
    }

    for container, key in targets:
        value = container.get(key)
        if isinstance(value, list):
            container[key] = [users.get(v, v) if isinstance(v, str) else v for v in value]
        elif isinstance(value, str):
            container[key] = users.get(value, value)
    return doc


def paginate(cursor, page: int, limit: int):
    return cursor.skip((page - 1) * limit).limit(limit)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index([("reputation.score", DESCENDING)])
    database["session"].create_index("token_hash", unique=True)
    database["problem"].create_index([("category", ASCENDING), ("status", ASCENDING)])
    database["problem"].create_index("author")
    database["problem"].create_index("collaborators.user")
    database["project"].create_index("owner")
    database["project"].create_index("members.user")
    database["challenge"].create_index([("start_date", ASCENDING), ("end_date", ASCENDING)])
    database["collaboration_request"].create_index(
        [("problem", ASCENDING), ("requester", ASCENDING)], unique=True
    )
    database["collaboration_request"].create_index([("problem_author", ASCENDING), ("status", ASCENDING)])
    database["collaboration_message"].create_index([("problem", ASCENDING), ("created_at", ASCENDING)])
    database["reputation_event"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def object_ids(ids: Iterable[str]) -> List[ObjectId]:
    return [ObjectId(i) for i in ids if ObjectId.is_valid(i)]


def id_filter(ids: Iterable[str]) -> Dict[str, Any]:
    return {"_id": {"$in": object_ids(ids)}}
