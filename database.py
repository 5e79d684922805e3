"""
MongoDB access helpers.

Collections are named after the lowercase schema class (see schemas.py).
`db` is the process-wide handle; routes receive it through `get_db` so that
tests can swap in another database.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

from errors import ValidationError
from schemas import AFFILIATION, USER

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "assetverse")

client = MongoClient(DATABASE_URL, tz_aware=True)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    """Unique keys backing "one user per email" and "one affiliation per employee and company"."""
    database[USER].create_index("email", unique=True)
    database[AFFILIATION].create_index([("employee_id", 1), ("company_key", 1)], unique=True)


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


def create_document(database: Database, collection_name: str, data: Dict) -> str:
    """Insert `data` with created/updated timestamps and return the new id."""
    doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc.setdefault("updated_at", stamp)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort: Optional[List] = None,
) -> List[Dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def paginate(
    database: Database,
    collection_name: str,
    query: Dict,
    page: int,
    limit: int,
    sort: Optional[List] = None,
) -> Dict:
    """Page through a collection; `page` is 1-based."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = database[collection_name].count_documents(query)
    items = get_documents(database, collection_name, query, limit=limit, skip=(page - 1) * limit, sort=sort)
    return {
        "items": items,
        "total": total,
        "page": page,
        "total_pages": -(-total // limit),
    }


def serialize(doc: Optional[Dict]) -> Optional[Dict]:
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        elif isinstance(value, ObjectId):
            out[key] = str(value)
        else:
            out[key] = value
    return out
