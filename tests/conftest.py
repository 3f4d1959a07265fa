import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from jose import jwt

import main
from gateway import Gateway
from schemas import status_rank
from security import ALGORITHM, SECRET_KEY


class FakeWebSocket:
    """Stands in for a Starlette WebSocket; records what the gateway sends."""

    def __init__(self, token: Optional[str] = None, frames=None, headers=None):
        self.query_params = {"token": token} if token else {}
        self.headers = headers or {}
        self.inbound = list(frames or [])
        self.sent = []
        self.accepted = False
        self.closed_with = None
        self.send_error: Optional[BaseException] = None

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        self.closed_with = code

    async def send_json(self, frame):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)

    async def receive(self):
        if not self.inbound:
            return {"type": "websocket.disconnect", "code": 1000}
        item = self.inbound.pop(0)
        if isinstance(item, dict) and item.get("type", "").startswith("websocket."):
            return item
        return {"type": "websocket.receive", "text": item if isinstance(item, str) else json.dumps(item)}

    def events(self, name: str):
        return [frame["data"] for frame in self.sent if frame["type"] == name]


class InMemoryStore:
    """Dict-backed stand-in for database.ChatStore."""

    def __init__(self):
        self.chats = {}
        self.messages = {}

    def get_chat(self, chat_id):
        return self.chats.get(chat_id)

    def list_chats(self, user_id):
        return [c for c in self.chats.values() if user_id in c["participant_ids"]]

    def find_individual_chat(self, user_id, other_user_id):
        for chat in self.chats.values():
            if chat["type"] == "individual" and {user_id, other_user_id} <= set(chat["participant_ids"]):
                return chat
        return None

    def create_chat(self, chat):
        doc = chat.model_dump()
        doc["_id"] = str(ObjectId())
        self.chats[doc["_id"]] = doc
        return doc

    def list_messages(self, chat_id):
        return [m for m in self.messages.values() if m["chat_id"] == chat_id]

    def get_message(self, message_id):
        return self.messages.get(message_id)

    def create_message(self, message):
        doc = message.model_dump()
        doc["_id"] = str(ObjectId())
        doc["created_at"] = datetime.now(timezone.utc)
        self.messages[doc["_id"]] = doc
        self.chats[message.chat_id]["last_message_id"] = doc["_id"]
        return doc

    def advance_status(self, message_id, status):
        doc = self.messages.get(message_id)
        if doc is not None and status_rank(doc["status"]) < status_rank(status):
            doc["status"] = status
        return doc


@pytest.fixture
def make_token():
    def _make(user_id: str, expires_in: timedelta = timedelta(minutes=5), secret: str = SECRET_KEY, claim: str = "sub") -> str:
        payload = {claim: user_id, "exp": datetime.now(timezone.utc) + expires_in}
        return jwt.encode(payload, secret, algorithm=ALGORITHM)
    return _make


@pytest.fixture
def gateway():
    return Gateway()


@pytest.fixture
def connect(gateway, make_token):
    """Admit a fake connection for `user_id` and return it with the ack cleared."""
    async def _connect(user_id: str) -> FakeWebSocket:
        ws = FakeWebSocket(token=make_token(user_id))
        assert await gateway.connect(ws) == user_id
        ws.sent.clear()
        return ws
    return _connect


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    main.app.state.gateway = Gateway()
    main.app.dependency_overrides[main.get_store] = lambda: store
    try:
        with TestClient(main.app) as test_client:
            yield test_client
    finally:
        main.app.dependency_overrides.clear()


@pytest.fixture
def auth_header(make_token):
    def _header(user_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _header


@pytest.fixture
def fake_websocket():
    return FakeWebSocket
