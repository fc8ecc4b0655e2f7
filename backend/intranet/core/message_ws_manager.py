import json
import logging
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from fastapi import WebSocket

from intranet.core.exceptions import AuthError
from intranet.core.security import TokenIdentity, verify_access_token

logger = logging.getLogger(__name__)

AUTH_FRAME = "auth"
NEW_MESSAGE_FRAME = "new_message_notification"
MESSAGE_NOTIFICATION_FRAME = "message_notification"


def _as_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class MessageNotificationManager:
    """
    Live connection table for new-message pointers.

    A socket is only registered once it has sent a valid ``auth`` frame.
    Broadcasts carry a conversation id and a message id, never content;
    clients re-fetch through the REST message list.
    """

    def __init__(self):
        # id(websocket) -> (websocket, identity)
        self.active_connections: Dict[int, Tuple[WebSocket, TokenIdentity]] = {}
        self._lock = Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        logger.info("Message socket opened", extra={"context": {"connection": id(websocket)}})

    def authenticate(self, websocket: WebSocket, token: Optional[str]) -> TokenIdentity:
        identity = verify_access_token(token)
        with self._lock:
            self.active_connections[id(websocket)] = (websocket, identity)
        logger.info(
            "Message socket authenticated",
            extra={"context": {"connection": id(websocket), "user_id": identity.user_id, "role": identity.role}},
        )
        return identity

    def identity_for(self, websocket: WebSocket) -> Optional[TokenIdentity]:
        with self._lock:
            entry = self.active_connections.get(id(websocket))
        return entry[1] if entry else None

    def disconnect(self, websocket: WebSocket) -> Optional[TokenIdentity]:
        with self._lock:
            entry = self.active_connections.pop(id(websocket), None)
        identity = entry[1] if entry else None
        logger.info(
            "Message socket closed",
            extra={"context": {"connection": id(websocket), "user_id": identity.user_id if identity else None}},
        )
        return identity

    def connection_count(self) -> int:
        with self._lock:
            return len(self.active_connections)

    async def broadcast_new_message(
        self,
        conversation_id: int,
        message_id: int,
        sender_id: Optional[int] = None,
    ) -> int:
        """Send a pointer to every authenticated socket not owned by ``sender_id``."""
        payload = {
            "type": MESSAGE_NOTIFICATION_FRAME,
            "conversationId": conversation_id,
            "messageId": message_id,
        }
        with self._lock:
            targets = [
                websocket
                for websocket, identity in self.active_connections.values()
                if sender_id is None or identity.user_id != sender_id
            ]

        delivered = 0
        stale: List[WebSocket] = []
        for websocket in targets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception:
                stale.append(websocket)

        for websocket in stale:
            logger.info("Pruning dead message socket", extra={"context": {"connection": id(websocket)}})
            self.disconnect(websocket)
        return delivered

    async def handle_message(self, websocket: WebSocket, message: dict) -> None:
        # Raw ASGI receive event; only text frames carry the JSON protocol.
        text = message.get("text")
        if text is None:
            logger.warning("Ignoring binary socket frame", extra={"context": {"connection": id(websocket)}})
            return
        await self.handle_frame(websocket, text)

    async def handle_frame(self, websocket: WebSocket, raw: str) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed socket frame", extra={"context": {"connection": id(websocket)}})
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object socket frame", extra={"context": {"connection": id(websocket)}})
            return

        frame_type = data.get("type")
        if frame_type == AUTH_FRAME:
            await self._handle_auth(websocket, data.get("token"))
        elif frame_type == NEW_MESSAGE_FRAME:
            await self._handle_new_message(websocket, data)
        else:
            logger.warning(
                "Ignoring unknown socket frame type",
                extra={"context": {"connection": id(websocket), "type": frame_type}},
            )

    async def _handle_auth(self, websocket: WebSocket, token: Any) -> None:
        try:
            self.authenticate(websocket, token if isinstance(token, str) else None)
        except AuthError as exc:
            # A failed re-auth drops any identity the socket held before.
            with self._lock:
                previous = self.active_connections.pop(id(websocket), None)
            logger.warning(
                "Message socket authentication failed",
                extra={
                    "context": {
                        "connection": id(websocket),
                        "reason": exc.message,
                        "previous_user_id": previous[1].user_id if previous else None,
                    }
                },
            )
            await websocket.send_json({"type": AUTH_FRAME, "status": "error", "message": exc.message})
            return
        await websocket.send_json({"type": AUTH_FRAME, "status": "success"})

    async def _handle_new_message(self, websocket: WebSocket, data: dict) -> None:
        identity = self.identity_for(websocket)
        if identity is None:
            logger.warning(
                "Notification from unauthenticated socket ignored",
                extra={"context": {"connection": id(websocket)}},
            )
            return

        conversation_id = _as_id(data.get("conversationId"))
        message_id = _as_id(data.get("messageId"))
        if conversation_id is None or message_id is None:
            logger.warning(
                "Notification frame without ids ignored",
                extra={"context": {"connection": id(websocket), "user_id": identity.user_id}},
            )
            return

        delivered = await self.broadcast_new_message(conversation_id, message_id, sender_id=identity.user_id)
        logger.info(
            "New message notification relayed",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "user_id": identity.user_id,
                    "delivered": delivered,
                }
            },
        )


message_ws_manager = MessageNotificationManager()
