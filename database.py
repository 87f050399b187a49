import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo import monitoring

from config import Settings

logger = logging.getLogger(__name__)

Sort = List[Tuple[str, int]]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form MongoDB hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_str_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    if doc.get("_id"):
        doc["id"] = str(doc["_id"])
        del doc["_id"]
    return doc


def _object_id(doc_id: str) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    if not ObjectId.is_valid(doc_id):
        return None
    return ObjectId(doc_id)


class ConnectionLogger(monitoring.ServerListener):
    """Logs when the server drops out of or comes back into the topology."""

    def opened(self, event):
        logger.info("MongoDB server %s opened", event.server_address)

    def description_changed(self, event):
        previous = event.previous_description.server_type_name
        new = event.new_description.server_type_name
        if previous == new:
            return
        if new == "Unknown":
            logger.warning("MongoDB server %s disconnected", event.server_address)
        else:
            logger.info("MongoDB server %s is now %s", event.server_address, new)

    def closed(self, event):
        logger.warning("MongoDB server %s closed", event.server_address)


class Store:
    """Thin document-store wrapper over a pymongo database handle."""

    def __init__(self, db):
        self.db = db

    @property
    def name(self) -> str:
        return self.db.name

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        self.db["user"].create_index("email", unique=True)
        self.db["subject"].create_index("user_id")
        self.db["topic"].create_index("subject_id")
        self.db["resource"].create_index([("subject_id", ASCENDING), ("type", ASCENDING)])
        self.db["resource"].create_index("topic_id")
        self.db["gradingcomponent"].create_index("subject_id", unique=True)
        self.db["score"].create_index([("subject_id", ASCENDING), ("component_name", ASCENDING)])
        self.db["attendance"].create_index([("subject_id", ASCENDING), ("date", DESCENDING)])
        self.db["deadline"].create_index([("subject_id", ASCENDING), ("due_date", ASCENDING)])
        self.db["deadline"].create_index("priority")
        self.db["studysession"].create_index([("user_id", ASCENDING), ("date", DESCENDING)])
        self.db["studysession"].create_index("subject_id")

    def create_document(self, collection_name: str, data: Any) -> str:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        data = dict(data)
        now = utcnow()
        if "created_at" not in data:
            data["created_at"] = now
        data["updated_at"] = now
        result = self.db[collection_name].insert_one(data)
        return str(result.inserted_id)

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        filter_dict = filter_dict or {}
        cursor = self.db[collection_name].find(filter_dict)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(int(limit))
        return [_to_str_id(doc) for doc in cursor]

    def get_document_by_id(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        doc = self.db[collection_name].find_one({"_id": oid})
        return _to_str_id(doc) if doc else None

    def find_document(
        self, collection_name: str, filter_dict: Dict[str, Any], sort: Optional[Sort] = None
    ) -> Optional[Dict[str, Any]]:
        doc = self.db[collection_name].find_one(filter_dict, sort=sort)
        return _to_str_id(doc) if doc else None

    def count_documents(self, collection_name: str, filter_dict: Dict[str, Any]) -> int:
        return self.db[collection_name].count_documents(filter_dict)

    def update_document(
        self, collection_name: str, doc_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Apply a $set to one document and return it as stored afterwards."""
        oid = _object_id(doc_id)
        if oid is None:
            return None
        updates = dict(updates)
        updates["updated_at"] = utcnow()
        doc = self.db[collection_name].find_one_and_update(
            {"_id": oid}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
        return _to_str_id(doc) if doc else None

    def upsert_document(
        self, collection_name: str, filter_dict: Dict[str, Any], data: Dict[str, Any]
    ) -> Dict[str, Any]:
        now = utcnow()
        data = dict(data)
        data["updated_at"] = now
        doc = self.db[collection_name].find_one_and_update(
            filter_dict,
            {"$set": data, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _to_str_id(doc)

    def delete_document(self, collection_name: str, doc_id: str) -> bool:
        oid = _object_id(doc_id)
        if oid is None:
            return False
        result = self.db[collection_name].delete_one({"_id": oid})
        return result.deleted_count > 0

    def delete_documents(self, collection_name: str, filter_dict: Dict[str, Any]) -> int:
        result = self.db[collection_name].delete_many(filter_dict)
        return result.deleted_count


def connect(settings: Settings) -> Store:
    client = MongoClient(settings.database_url, event_listeners=[ConnectionLogger()])
    return Store(client[settings.database_name])
