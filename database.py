"""
MongoDB access helpers (Flames platform conventions)

`db` is None when DATABASE_URL / DATABASE_NAME are not set; callers decide whether
to fall back to another store.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    # MongoClient connects lazily, so importing this module never blocks
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
    logger.info("MongoDB configured for database %s", DATABASE_NAME)


def to_str_id(doc):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    # Convert datetimes to isoformat
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a single document, stamping created_at/updated_at. Returns the id as a string."""
    database = db if database is None else database
    if database is None:
        raise RuntimeError("Database not available. Set DATABASE_URL and DATABASE_NAME.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    logger.debug("Inserted %s into %s", result.inserted_id, collection_name)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    database=None,
) -> List[Dict[str, Any]]:
    database = db if database is None else database
    if database is None:
        raise RuntimeError("Database not available. Set DATABASE_URL and DATABASE_NAME.")

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
