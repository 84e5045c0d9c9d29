"""
MongoDB access helpers.

Collections are named after the lowercased schema class (User -> "user").
References between documents are stored as ObjectId strings.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import Settings

logger = logging.getLogger(__name__)


def get_database(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("Using MongoDB database %s", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db.user.create_index("email", unique=True)
    db.user.create_index("username", unique=True)
    db.movie.create_index("slug", unique=True)
    db.tag.create_index("name", unique=True)
    db.watchlist.create_index([("user_id", ASCENDING), ("name", ASCENDING)], unique=True)
    db.review.create_index([("anime_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    db.report.create_index(
        [("reporter_id", ASCENDING), ("target_type", ASCENDING), ("target_id", ASCENDING)],
        unique=True,
    )
    db.report.create_index([("status", ASCENDING), ("created_at", DESCENDING)])


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its _id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = now_utc()
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Any]] = None,
    skip: int = 0,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(db: Database, collection_name: str, id_str: str, projection: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Look up a document by id string; malformed ids simply find nothing."""
    if not ObjectId.is_valid(id_str):
        return None
    return db[collection_name].find_one({"_id": ObjectId(id_str)}, projection)


def user_summary(db: Database, user_id: Optional[str], fields=("username", "avatar")) -> Optional[Dict[str, Any]]:
    """Resolve a user reference into a small public projection."""
    if not user_id:
        return None
    doc = find_by_id(db, "user", user_id, {f: 1 for f in fields})
    if not doc:
        return None
    return serialize_doc(doc)


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def contains(text: str) -> Dict[str, Any]:
    """Case-insensitive substring match on a literal string."""
    return {"$regex": re.escape(text), "$options": "i"}
