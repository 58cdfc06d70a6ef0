"""
MongoDB connection and small document helpers.

``db`` is ``None`` when DATABASE_URL is not configured; callers check for
that and fall back to in-memory collaborators.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]
    logger.info(f"MongoDB configured: database={DATABASE_NAME}")


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the inserted id as str."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")

    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database=None,
) -> List[Dict[str, Any]]:
    """Return documents matching filter_dict, newest first."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")

    cursor = target[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
