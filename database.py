"""
Document store access.

One MongoClient is created on first use and shared by every request for the
life of the process. Collections used by the API:
- user
- request
- payments
- blogs
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.results import DeleteResult, UpdateResult

import config

log = logging.getLogger(__name__)

USERS = "user"
REQUESTS = "request"
PAYMENTS = "payments"
BLOGS = "blogs"

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


class DatabaseUnavailable(RuntimeError):
    pass


def get_db() -> Database:
    """Return the shared database handle, connecting on first call."""
    global _client, _db
    if _db is not None:
        return _db
    if not config.DATABASE_URL:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL.")
    log.info("Connecting to MongoDB database %s", config.DATABASE_NAME)
    _client = MongoClient(config.DATABASE_URL)
    _db = _client[config.DATABASE_NAME]
    return _db


def reset_db(db: Optional[Database] = None) -> None:
    """Swap the cached handle, e.g. for an in-memory database in tests."""
    global _client, _db
    _client = None
    _db = db


def ensure_indexes() -> None:
    db = get_db()
    db[PAYMENTS].create_index([("transactionId", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)])


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def parse_object_id(value: str) -> ObjectId:
    # raises bson.errors.InvalidId, rendered as 400 by the app
    return ObjectId(value)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one record, stamping createdAt unless it is already set.

    Returns the inserted id as a string.
    """
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude_none=True)
    else:
        doc = dict(data)
    doc.setdefault("createdAt", datetime.now(timezone.utc))
    result = get_db()[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[str] = "createdAt",
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort, -1)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    return get_db()[collection_name].count_documents(filter_dict or {})


def sum_field(collection_name: str, field: str) -> float:
    """Sum a numeric field across a whole collection."""
    rows = list(get_db()[collection_name].aggregate([
        {"$group": {"_id": None, "total": {"$sum": f"${field}"}}},
    ]))
    return rows[0]["total"] if rows else 0


def mutation_result(result: Union[UpdateResult, DeleteResult]) -> Dict[str, Any]:
    """Render a pymongo update or delete result the way the driver reports it."""
    if hasattr(result, "matched_count"):
        upserted = result.upserted_id
        return {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedId": str(upserted) if upserted is not None else None,
        }
    return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}
