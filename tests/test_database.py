from collections import defaultdict

import pytest
from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument

from database import ChatStore


class FakeCursor(list):
    def __init__(self, docs, collection):
        super().__init__(docs)
        self.collection = collection

    def sort(self, spec):
        self.collection.sorts.append(spec)
        return self

    def limit(self, n):
        return FakeCursor(self[:n], self.collection)


class FakeCollection:
    """Just enough of a pymongo collection to drive ChatStore queries."""

    def __init__(self):
        self.docs = {}
        self.updates = []
        self.sorts = []

    def find_one(self, filter_dict):
        doc = self.docs.get(filter_dict["_id"])
        return dict(doc) if doc else None

    def find(self, filter_dict):
        matches = [dict(d) for d in self.docs.values() if all(d.get(k) == v for k, v in filter_dict.items())]
        return FakeCursor(matches, self)

    def find_one_and_update(self, filter_dict, update, return_document):
        assert return_document is ReturnDocument.AFTER
        self.updates.append(filter_dict)
        doc = self.docs.get(filter_dict["_id"])
        if doc is None or doc["status"] not in filter_dict["status"]["$in"]:
            return None
        doc.update(update["$set"])
        return dict(doc)


@pytest.fixture
def db():
    return defaultdict(FakeCollection)


@pytest.fixture
def message_id(db):
    oid = ObjectId()
    db["message"].docs[oid] = {"_id": oid, "chat_id": "c1", "sender_id": "A", "receiver_id": "B", "status": "sent"}
    return str(oid)


@pytest.mark.parametrize("status,earlier", [("delivered", ["sent"]), ("read", ["sent", "delivered"])])
def test_advance_status_only_matches_earlier_statuses(db, message_id, status, earlier):
    stored = ChatStore(db=db).advance_status(message_id, status)

    assert db["message"].updates == [{"_id": ObjectId(message_id), "status": {"$in": earlier}}]
    assert stored["status"] == status
    assert stored["_id"] == message_id


def test_advance_status_never_regresses(db, message_id):
    store = ChatStore(db=db)
    store.advance_status(message_id, "read")

    stored = store.advance_status(message_id, "delivered")

    assert stored["status"] == "read"
    assert db["message"].docs[ObjectId(message_id)]["status"] == "read"


def test_advance_status_repeated_is_unchanged(db, message_id):
    store = ChatStore(db=db)
    store.advance_status(message_id, "delivered")

    assert store.advance_status(message_id, "delivered")["status"] == "delivered"


def test_advance_status_unknown_message(db):
    store = ChatStore(db=db)

    assert store.advance_status(str(ObjectId()), "read") is None
    assert store.advance_status("not-an-object-id", "read") is None
    assert len(db["message"].updates) == 1


def test_list_messages_sorted_oldest_first(db, message_id):
    messages = ChatStore(db=db).list_messages("c1")

    assert [m["_id"] for m in messages] == [message_id]
    assert db["message"].sorts == [[("created_at", ASCENDING)]]
