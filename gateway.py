"""
Presence & delivery over WebSocket.

The gateway keeps the only record of which users are reachable right now and
forwards events between them. Pushes are best-effort: nothing is queued,
retried or acknowledged, and an offline receiver simply misses the live event.
Durability is the message store's job (see database.ChatStore).
"""

import json
import logging
from functools import partial
from typing import Callable, Dict, Optional, Union

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

import events
from security import AuthenticationError, extract_credential, verify_token

logger = logging.getLogger(__name__)

# Close code sent when a handshake credential is rejected
POLICY_VIOLATION = 1008

TRANSPORT_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)

FAILURE_MESSAGES = {
    "message": "Failed to send message",
}


class Gateway:
    """Maps each user id to at most one live connection and routes events to it.

    A second connection for the same user replaces the first in the mapping;
    the earlier socket stays open but no longer receives pushes.
    All mutation happens on the event loop thread, so no locking is done.
    """

    def __init__(self, verifier: Callable[[Optional[str]], str] = verify_token):
        self._verify = verifier
        self._connections: Dict[str, WebSocket] = {}
        self._handlers = {
            "message": self._on_message,
            "typing": partial(self._on_typing, events.USER_TYPING),
            "stopTyping": partial(self._on_typing, events.USER_STOPPED_TYPING),
            "messageDelivered": partial(self._on_status_ack, "delivered"),
            "messageRead": partial(self._on_status_ack, "read"),
            "clientError": self._on_client_error,
        }

    # ------------ Presence ------------

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._connections

    @property
    def connected_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> Optional[str]:
        """Admit a connection if its handshake credential verifies.

        Returns the user id, or None after closing a rejected socket. A rejected
        socket never reaches the mapping.
        """
        try:
            user_id = self._verify(extract_credential(websocket))
        except AuthenticationError as exc:
            logger.warning("Rejected websocket handshake: %s", exc)
            await websocket.close(code=POLICY_VIOLATION)
            return None

        await websocket.accept()
        previous = self._connections.get(user_id)
        self._connections[user_id] = websocket
        if previous is not None and previous is not websocket:
            logger.info("User %s opened a new connection; replacing the previous one", user_id)
        logger.info("User connected: %s", user_id)

        await self._send(user_id, websocket, events.build_frame(events.CONNECTED, events.Connected(user_id=user_id)))
        return user_id

    def disconnect(self, user_id: str) -> None:
        # unconditional, even if a newer connection owns the entry
        if self._connections.pop(user_id, None) is not None:
            logger.info("User disconnected: %s", user_id)

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection from handshake to close."""
        user_id = await self.connect(websocket)
        if user_id is None:
            return
        try:
            while True:
                frame = await self._receive(websocket)
                await self.dispatch(user_id, websocket, frame)
        except WebSocketDisconnect:
            pass
        except TRANSPORT_ERRORS:
            logger.exception("Transport error on connection of %s", user_id)
        finally:
            self.disconnect(user_id)

    # ------------ Delivery ------------

    async def push_to_user(self, user_id: str, event: str, payload: Union[BaseModel, dict]) -> bool:
        """Send `event` to the user's live connection, if there is one.

        Fire-and-forget: returns whether the frame was handed to the transport
        and never raises for an offline user.
        """
        websocket = self._connections.get(user_id)
        if websocket is None:
            logger.debug("%s is offline; dropping %s", user_id, event)
            return False
        return await self._send(user_id, websocket, events.build_frame(event, payload))

    async def dispatch(self, user_id: str, websocket: WebSocket, frame: object) -> None:
        """Route one inbound frame from `user_id`.

        Malformed frames and handler failures are reported back to the sender
        as an `error` event; the connection stays open.
        """
        try:
            event = events.parse_inbound(frame)
        except ValidationError as exc:
            logger.warning("Invalid event from %s: %d validation error(s)", user_id, exc.error_count())
            await self._send_error(user_id, websocket, "Invalid event")
            return

        try:
            await self._handlers[event.type](user_id, event.data)
        except Exception:
            logger.exception("Error handling %s from %s", event.type, user_id)
            await self._send_error(user_id, websocket, FAILURE_MESSAGES.get(event.type, f"Failed to handle {event.type}"))

    async def _on_message(self, sender_id: str, data: events.MessagePayload) -> None:
        # the authenticated sender overrides any senderId the client put in the payload
        payload = {**data.model_dump(by_alias=True), "senderId": sender_id}
        await self.push_to_user(data.receiver_id, events.NEW_MESSAGE, payload)

    async def _on_typing(self, event: str, sender_id: str, data: events.TypingPayload) -> None:
        await self.push_to_user(data.receiver_id, event, events.UserTyping(chat_id=data.chat_id, user_id=sender_id))

    async def _on_status_ack(self, status: str, acker_id: str, data: events.StatusAckPayload) -> None:
        update = events.MessageStatusUpdate(
            message_id=data.message_id,
            status=status,
            user_id=acker_id,
            chat_id=data.chat_id,
        )
        await self.push_to_user(data.sender_id, events.MESSAGE_STATUS_UPDATE, update)

    async def _on_client_error(self, user_id: str, data: events.ClientErrorPayload) -> None:
        logger.warning("Client error from %s: %s %s", user_id, data.type, data.details)

    # ------------ Transport ------------

    async def _receive(self, websocket: WebSocket) -> object:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        raw = message.get("text")
        if raw is None:
            raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def _send(self, user_id: str, websocket: WebSocket, frame: dict) -> bool:
        try:
            await websocket.send_json(frame)
        except TRANSPORT_ERRORS:
            logger.exception("Transport error while sending to %s", user_id)
            if self._connections.get(user_id) is websocket:
                del self._connections[user_id]
            return False
        return True

    async def _send_error(self, user_id: str, websocket: WebSocket, message: str) -> None:
        await self._send(user_id, websocket, events.build_frame(events.ERROR, events.ErrorNotice(message=message)))
