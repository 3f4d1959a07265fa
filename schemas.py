"""
Database Schemas for the chat backend

Each Pydantic model represents a collection in MongoDB. The collection name is the
lowercase of the class name (handled by our database helpers at usage time).
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime

ChatType = Literal["individual", "group"]
MessageType = Literal["text", "image", "file"]
MessageStatus = Literal["sent", "delivered", "read"]

# Status only ever moves forward along this sequence
STATUS_ORDER: List[str] = ["sent", "delivered", "read"]


def status_rank(status: str) -> int:
    return STATUS_ORDER.index(status)


class Chat(BaseModel):
    participant_ids: List[str] = Field(..., min_length=2, description="User IDs (as strings)")
    type: ChatType = Field(default="individual")
    group_name: Optional[str] = None
    group_admin: Optional[str] = Field(None, description="User ID of the group admin")
    last_message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Message(BaseModel):
    chat_id: str = Field(..., description="Chat ID")
    sender_id: str = Field(..., description="User ID of sender")
    receiver_id: str = Field(..., description="User ID of receiver")
    content: str = Field(..., min_length=1, description="Text content or attachment URL")
    type: MessageType = Field(default="text")
    status: MessageStatus = Field(default="sent")
    created_at: Optional[datetime] = None
