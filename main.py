import logging
import os
from typing import List, Literal, Optional

from fastapi import FastAPI, HTTPException, Depends, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field
from starlette.concurrency import run_in_threadpool

import events
from database import ChatStore
from gateway import Gateway
from schemas import Chat as ChatSchema, Message as MessageSchema, MessageType
from security import get_current_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CLIENT_URL = os.getenv("CLIENT_URL", "*")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in CLIENT_URL.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One gateway per process; routes reach it only through get_gateway
app.state.gateway = Gateway()

# ------------ Dependencies ------------

def get_store() -> ChatStore:
    return ChatStore()

def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway

# ------------ Models (request/response) ------------

class ChatCreate(events.Payload):
    participant_ids: List[str] = Field(..., min_length=1)
    type: Literal["individual", "group"] = "individual"
    group_name: Optional[str] = None

class MessageCreate(events.Payload):
    chat_id: str
    content: str = Field(..., min_length=1)
    receiver_id: str
    type: MessageType = "text"

class StatusUpdate(events.Payload):
    status: Literal["delivered", "read"]

# ------------ Chats ------------

@app.get("/chats")
def my_chats(user_id: str = Depends(get_current_user_id), store: ChatStore = Depends(get_store)):
    return store.list_chats(user_id)

@app.post("/chats", status_code=201)
def create_chat(data: ChatCreate, user_id: str = Depends(get_current_user_id), store: ChatStore = Depends(get_store)):
    participants = list(dict.fromkeys(data.participant_ids + [user_id]))

    if data.type == "individual":
        if len(participants) != 2:
            raise HTTPException(status_code=400, detail="An individual chat needs exactly one other participant")
        other = next(p for p in participants if p != user_id)
        existing = store.find_individual_chat(user_id, other)
        if existing:
            return existing
        chat = ChatSchema(participant_ids=participants)
    else:
        if not data.group_name:
            raise HTTPException(status_code=400, detail="Group chats need a name")
        if len(participants) < 2:
            raise HTTPException(status_code=400, detail="A group chat needs at least one other participant")
        chat = ChatSchema(participant_ids=participants, type="group", group_name=data.group_name, group_admin=user_id)

    return store.create_chat(chat)

@app.get("/chats/{chat_id}/messages")
def fetch_messages(chat_id: str, user_id: str = Depends(get_current_user_id), store: ChatStore = Depends(get_store)):
    chat = store.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if user_id not in chat.get("participant_ids", []):
        raise HTTPException(status_code=403, detail="Not a participant of this chat")
    return store.list_messages(chat_id)

# ------------ Messages ------------

def _new_message_event(message: dict) -> events.NewMessage:
    return events.NewMessage(
        sender_id=message["sender_id"],
        chat_id=message["chat_id"],
        content=message["content"],
        receiver_id=message["receiver_id"],
        message_id=message["_id"],
        type=message.get("type"),
        status=message.get("status"),
        created_at=message.get("created_at"),
    )

@app.post("/messages", status_code=201)
async def send_message(
    msg: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    store: ChatStore = Depends(get_store),
    gateway: Gateway = Depends(get_gateway),
):
    chat = await run_in_threadpool(store.get_chat, msg.chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    participants = chat.get("participant_ids", [])
    if user_id not in participants or msg.receiver_id not in participants:
        raise HTTPException(status_code=403, detail="Not a participant of this chat")

    message = await run_in_threadpool(store.create_message, MessageSchema(
        chat_id=msg.chat_id,
        sender_id=user_id,
        receiver_id=msg.receiver_id,
        content=msg.content,
        type=msg.type,
    ))

    # Live push is best-effort; the stored message is what the receiver fetches later
    delivered = await gateway.push_to_user(msg.receiver_id, events.NEW_MESSAGE, _new_message_event(message))
    logger.debug("Message %s stored, live push %s", message["_id"], "sent" if delivered else "skipped")
    return message

@app.patch("/messages/{message_id}/status")
async def update_message_status(
    message_id: str,
    update: StatusUpdate,
    user_id: str = Depends(get_current_user_id),
    store: ChatStore = Depends(get_store),
    gateway: Gateway = Depends(get_gateway),
):
    message = await run_in_threadpool(store.get_message, message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message["receiver_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the receiver can update a message status")

    previous_status = message["status"]
    message = await run_in_threadpool(store.advance_status, message_id, update.status)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message["status"] == previous_status:
        return message

    await gateway.push_to_user(message["sender_id"], events.MESSAGE_STATUS_UPDATE, events.MessageStatusUpdate(
        message_id=message["_id"],
        status=message["status"],
        user_id=user_id,
        chat_id=message["chat_id"],
    ))
    return message

# ------------ Presence & WebSockets ------------

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.app.state.gateway.serve(websocket)

# --------- Health ---------

@app.get("/")
def root():
    return {"message": "Chat backend running"}

@app.get("/health")
def health(gateway: Gateway = Depends(get_gateway)):
    return {"status": "ok", "online": gateway.connected_count}
