"""
Database connection for DairyDrop

Reads DATABASE_URL / DATABASE_NAME from the environment (a .env file is
honoured). When DATABASE_URL is unset, `client` and `db` are None and the
API reports the database as unavailable.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "dairydrop")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Dict[str, Any], database=None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available")
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = target[collection_name].insert_one(doc)
    return str(res.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[list] = None, database=None) -> List[Dict[str, Any]]:
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available")
    cursor = target[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)
