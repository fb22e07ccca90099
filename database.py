"""
MongoDB access helpers.

The database handle is created once from Settings and handed to every
service; nothing in here keeps a module-level connection.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

CATEGORY = "category"
PRODUCT = "product"
USER = "user"
ORDER = "order"
CUSTOMIZED_ORDER = "customizedorder"
NOTIFICATION = "notification"
CONTACT_MESSAGE = "contactmessage"


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[CATEGORY].create_index([("slug", ASCENDING)], unique=True)
    db[CATEGORY].create_index([("parent", ASCENDING)])
    db[USER].create_index([("uid", ASCENDING)], unique=True)
    db[ORDER].create_index([("userId", ASCENDING)])
    db[CUSTOMIZED_ORDER].create_index([("uid", ASCENDING)])
    db[NOTIFICATION].create_index([("uid", ASCENDING)])


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID")


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with createdAt/updatedAt and return it with its _id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    stamp = now_utc()
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List[tuple]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(value: Any) -> Any:
    """Make a stored document JSON-friendly: every ObjectId becomes its hex string."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value
