"""
WebSocket wire contract.

Every frame, in both directions, is a JSON object ``{"type": <event>, "data": {...}}``.
Payload keys are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ------------ Inbound (client -> server) ------------

class MessagePayload(Payload):
    # unknown keys (client temp ids, message type) ride along to the receiver
    model_config = ConfigDict(extra="allow")

    chat_id: str
    content: str = Field(..., min_length=1)
    receiver_id: str

class TypingPayload(Payload):
    chat_id: str
    receiver_id: str

class StatusAckPayload(Payload):
    message_id: str
    sender_id: str = Field(..., description="Sender of the acknowledged message")
    chat_id: Optional[str] = None

class ClientErrorPayload(Payload):
    type: str
    details: str = ""


class MessageEvent(BaseModel):
    type: Literal["message"]
    data: MessagePayload

class TypingEvent(BaseModel):
    type: Literal["typing"]
    data: TypingPayload

class StopTypingEvent(BaseModel):
    type: Literal["stopTyping"]
    data: TypingPayload

class MessageDeliveredEvent(BaseModel):
    type: Literal["messageDelivered"]
    data: StatusAckPayload

class MessageReadEvent(BaseModel):
    type: Literal["messageRead"]
    data: StatusAckPayload

class ClientErrorEvent(BaseModel):
    type: Literal["clientError"]
    data: ClientErrorPayload


InboundEvent = Annotated[
    Union[
        MessageEvent,
        TypingEvent,
        StopTypingEvent,
        MessageDeliveredEvent,
        MessageReadEvent,
        ClientErrorEvent,
    ],
    Field(discriminator="type"),
]

inbound_event = TypeAdapter(InboundEvent)


def parse_inbound(frame: object) -> InboundEvent:
    """Validate a decoded frame; raises pydantic.ValidationError on anything else."""
    return inbound_event.validate_python(frame)


# ------------ Outbound (server -> client) ------------

NEW_MESSAGE = "newMessage"
USER_TYPING = "userTyping"
USER_STOPPED_TYPING = "userStoppedTyping"
MESSAGE_STATUS_UPDATE = "messageStatusUpdate"
CONNECTED = "connected"
ERROR = "error"


class NewMessage(Payload):
    sender_id: str
    chat_id: str
    content: str
    receiver_id: str
    message_id: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None

class UserTyping(Payload):
    chat_id: str
    user_id: str

class MessageStatusUpdate(Payload):
    message_id: str
    status: Literal["sent", "delivered", "read"]
    user_id: str
    chat_id: Optional[str] = None

class Connected(Payload):
    user_id: str

class ErrorNotice(Payload):
    message: str


def build_frame(event: str, payload: Union[BaseModel, dict]) -> dict:
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        data = payload
    return {"type": event, "data": data}
