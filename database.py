"""
MongoDB access for chats and messages.

The gateway never touches this module: it is the durable side of message
delivery, used by the HTTP routes in main.py.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from schemas import STATUS_ORDER, Chat as ChatSchema, Message as MessageSchema, status_rank

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "chat_app")

_client: Optional[MongoClient] = None


def get_database() -> Database:
    global _client
    if _client is None:
        _client = MongoClient(DATABASE_URL)
    return _client[DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, dict], db: Optional[Database] = None) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id as a string."""
    db = db if db is not None else get_database()
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = doc.get("created_at") or now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None, db: Optional[Database] = None) -> List[dict]:
    db = db if db is not None else get_database()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])  # serialize
    return doc


def _object_id(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


class ChatStore:
    """Chat and message persistence over the `chat` and `message` collections."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db if db is not None else get_database()

    def get_chat(self, chat_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(chat_id)
        if oid is None:
            return None
        return serialize(self.db["chat"].find_one({"_id": oid}))

    def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        return get_documents("chat", {"participant_ids": user_id}, sort=[("updated_at", DESCENDING)], db=self.db)

    def find_individual_chat(self, user_id: str, other_user_id: str) -> Optional[Dict[str, Any]]:
        return serialize(self.db["chat"].find_one({
            "type": "individual",
            "participant_ids": {"$all": [user_id, other_user_id]},
        }))

    def create_chat(self, chat: ChatSchema) -> Dict[str, Any]:
        chat_id = create_document("chat", chat, db=self.db)
        return self.get_chat(chat_id)

    def list_messages(self, chat_id: str) -> List[Dict[str, Any]]:
        return get_documents("message", {"chat_id": chat_id}, sort=[("created_at", ASCENDING)], db=self.db)

    def get_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(message_id)
        if oid is None:
            return None
        return serialize(self.db["message"].find_one({"_id": oid}))

    def create_message(self, message: MessageSchema) -> Dict[str, Any]:
        """Persist a message and point its chat's last_message_id at it."""
        message_id = create_document("message", message, db=self.db)
        self.db["chat"].update_one(
            {"_id": ObjectId(message.chat_id)},
            {"$set": {"last_message_id": message_id, "updated_at": datetime.now(timezone.utc)}},
        )
        return self.get_message(message_id)

    def advance_status(self, message_id: str, status: str) -> Optional[Dict[str, Any]]:
        """Move a message's status forward to `status`.

        A status at or beyond `status` is left untouched. Returns the stored
        message, or None when the message does not exist.
        """
        oid = _object_id(message_id)
        if oid is None:
            return None
        earlier = STATUS_ORDER[: status_rank(status)]
        updated = self.db["message"].find_one_and_update(
            {"_id": oid, "status": {"$in": earlier}},
            {"$set": {"status": status, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            return self.get_message(message_id)
        return serialize(updated)
