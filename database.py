"""
Database helpers

Shared MongoDB handle for the API plus a few document helpers. Collection
names are the lowercased schema class names (product, order, payment, ...).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "jewellery_store")
NEWEST_FIRST = [("created_at", DESCENDING)]

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]


def _resolve(database: Optional[Database]) -> Database:
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not initialized (set DATABASE_URL)")
    return target


def is_connected(database: Optional[Database] = None) -> bool:
    target = database if database is not None else db
    if target is None:
        return False
    try:
        target.client.admin.command("ping")
        return True
    except PyMongoError as exc:
        logger.warning("database ping failed: %s", exc)
        return False


def ensure_indexes(database: Optional[Database] = None) -> None:
    target = _resolve(database)
    target["product"].create_index("slug", unique=True)
    target["promocode"].create_index("code", unique=True)
    target["user"].create_index("email", unique=True)
    target["cartitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    target["goldrate"].create_index([("carat", ASCENDING), ("date", DESCENDING)])
    target["silverrate"].create_index([("purity_mark", ASCENDING), ("date", DESCENDING)])
    target["diamondprice"].create_index([("diamond_type", ASCENDING), ("date", DESCENDING)])
    target["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    target = _resolve(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = target[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort: Optional[List[tuple]] = None,
    database: Optional[Database] = None,
    projection: Optional[dict] = None,
) -> List[Dict[str, Any]]:
    target = _resolve(database)
    cursor = target[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return ObjectId(str(value))


def serialize(value: Any) -> Any:
    """Make a Mongo document JSON friendly (ObjectId -> str, datetimes in UTC)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value
