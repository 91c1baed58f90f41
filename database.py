"""
MongoDB access

One pymongo client per process; the driver owns the connection pool.
Collections are named after the lowercase schema class name:
- User -> "user"
- Task -> "task"
- Topic -> "topic"
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# ObjectIds grow with insertion time; natural order is not guaranteed.
INSERTION_ORDER = [("_id", ASCENDING)]

# MongoClient connects lazily, so importing this module never blocks.
client: MongoClient = MongoClient(
    _settings.database_url,
    tz_aware=True,
    serverSelectionTimeoutMS=5000,
)
db: Database = client[_settings.database_name]


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["task"].create_index([("owner", ASCENDING), ("status", ASCENDING)])
    database["task"].create_index([("owner", ASCENDING), ("notified", ASCENDING)])
    database["topic"].create_index([("owner", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse an id from a URL; None when it is not a valid ObjectId."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a validated document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = database[collection_name].insert_one(doc)
    return str(res.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    """Matching documents, oldest first unless `sort` says otherwise."""
    cursor = database[collection_name].find(filter_dict or {}).sort(sort or INSERTION_ORDER)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(database: Database, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return database[collection_name].find_one({"_id": oid})
