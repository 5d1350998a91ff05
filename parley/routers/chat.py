#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Chat WebSocket router - Random matchmaking, anonymous sessions and live notifications.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# ConnectionManager.connect: Registers and accepts a connection (one per user).
# ConnectionManager.disconnect: Removes connection and per-user state.
# ConnectionManager.send_json: Safe send method handling disconnects.
# ConnectionManager.check_rate_limit: Rate limiter for inbound WebSocket messages.
# ConnectionManager.get_online_count: Number of active connections.
# chat_websocket: Main WebSocket endpoint handling the client message loop.
# _handle_message: Dispatches one client message to matchmaking or sessions.
# _cleanup: Cancels search and ends the active session when the socket goes away.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# router: FastAPI router.
# logger: Logger instance.
# manager: Global ConnectionManager instance.
# ConnectionManager: Class managing WebSocket state.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# asyncio, logging: Standard libs.
# fastapi: Framework (APIRouter, WebSocket, etc).
# typing: hints.
# parley.dependencies: Service providers.
# parley.routers.auth: user auth.
# parley.models.chat: WebSocket message models.
# parley.exceptions: Domain errors reported to the client.

import asyncio
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from typing import Optional, Dict

from parley.dependencies import Services, get_services
from parley.routers.auth import get_ws_user, UserInfo
from parley.models.chat import (
    SearchingMessage,
    ChatMessageEvent,
    SessionEndedMessage,
    ErrorMessage,
    PongMessage,
)
from parley.exceptions import ParleyError, ValidationError
from parley.constants import (
    WS_RATE_LIMIT_WINDOW_SECONDS,
    WS_MAX_MESSAGES_PER_WINDOW,
    WS_CLOSE_POLICY_VIOLATION,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}
        self._message_counts: Dict[str, int] = {}
        self._window_start: Dict[str, float] = {}
        self._rate_limit_window: float = WS_RATE_LIMIT_WINDOW_SECONDS
        self._max_messages_per_window: int = WS_MAX_MESSAGES_PER_WINDOW

    def check_rate_limit(self, user_id: str) -> bool:
        current_time = asyncio.get_running_loop().time()
        if current_time - self._window_start.get(user_id, 0.0) > self._rate_limit_window:
            self._window_start[user_id] = current_time
            self._message_counts[user_id] = 0

        count = self._message_counts.get(user_id, 0)
        if count >= self._max_messages_per_window:
            return False

        self._message_counts[user_id] = count + 1
        return True

    async def connect(self, websocket: WebSocket, user_id: str) -> bool:
        """Returns False without accepting if the user already has a live connection"""
        if user_id in self.active_connections:
            return False
        self.active_connections[user_id] = websocket
        self._send_locks[user_id] = asyncio.Lock()
        try:
            await websocket.accept()
        except Exception:
            self.disconnect(user_id, websocket)
            raise
        logger.info(f"User {user_id} connected")
        return True

    def disconnect(self, user_id: str, websocket: Optional[WebSocket] = None):
        current = self.active_connections.get(user_id)
        if current is None or (websocket is not None and current is not websocket):
            return
        del self.active_connections[user_id]
        self._send_locks.pop(user_id, None)
        self._message_counts.pop(user_id, None)
        self._window_start.pop(user_id, None)

    async def send_json(self, user_id: str, data: dict):
        websocket = self.active_connections.get(user_id)
        if websocket is None:
            logger.debug(f"Dropping {data.get('type')} for offline user {user_id}")
            return
        try:
            async with self._send_locks[user_id]:
                await websocket.send_json(data)
        except Exception as e:
            logger.error(f"Error sending JSON to {user_id}: {e}")
            self.disconnect(user_id, websocket)

    def get_online_count(self) -> int:
        return len(self.active_connections)


manager = ConnectionManager()


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Missing or invalid '{key}'")
    return value


async def _handle_message(services: Services, user_id: str, data: dict) -> None:
    message_type = data.get("type")

    if message_type == "find_partner":
        session = await services.matchmaking.find_partner(user_id)
        if session is None:
            position = services.matchmaking.position(user_id)
            if position >= 0:
                await manager.send_json(user_id, SearchingMessage(position=position).model_dump(mode="json"))

    elif message_type == "cancel_search":
        await services.matchmaking.cancel(user_id)

    elif message_type == "chat_message":
        session_id = _require_str(data, "session_id")
        message = await services.sessions.relay_message(session_id, user_id, data.get("text"))
        echo = ChatMessageEvent(session_id=session_id, sender="you", text=message.text, sent_at=message.sent_at)
        await manager.send_json(user_id, echo.model_dump(mode="json"))

    elif message_type == "end_session":
        session_id = _require_str(data, "session_id")
        session = services.sessions.get_session(session_id)
        if await services.sessions.end_session(session_id, user_id):
            ended = SessionEndedMessage(session_id=session_id, reason=session.end_reason)
            await manager.send_json(user_id, ended.model_dump(mode="json"))

    elif message_type == "ping":
        await manager.send_json(user_id, PongMessage().model_dump(mode="json"))

    else:
        raise ValidationError(f"Unknown message type: {message_type}")


async def _cleanup(services: Services, user_id: str) -> None:
    try:
        await services.matchmaking.cancel(user_id)
    except Exception as e:
        logger.error(f"Error cancelling search for {user_id}: {e}")

    session = services.sessions.active_session_for(user_id)
    if session:
        try:
            await services.sessions.on_disconnect(session.session_id, user_id)
        except Exception as e:
            logger.error(f"Error handling session disconnect: {e}")


@router.websocket("/ws")
async def chat_websocket(
    websocket: WebSocket,
    user: UserInfo = Depends(get_ws_user),
    services: Services = Depends(get_services)
):
    user_id = user.uid

    if not await manager.connect(websocket, user_id):
        logger.warning(f"Rejected second connection for user {user_id}")
        await websocket.close(code=WS_CLOSE_POLICY_VIOLATION, reason="Already connected")
        return

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                error_msg = ErrorMessage(code="invalid_message", message="Messages must be JSON objects")
                await manager.send_json(user_id, error_msg.model_dump())
                continue

            if not isinstance(data, dict) or not data.get("type"):
                logger.warning(f"Received message without type from {user_id}")
                error_msg = ErrorMessage(code="invalid_message", message="Missing message type")
                await manager.send_json(user_id, error_msg.model_dump())
                continue

            if not manager.check_rate_limit(user_id):
                logger.warning(f"Rate limit exceeded for user {user_id}")
                error_msg = ErrorMessage(
                    code="rate_limited",
                    message="Too many messages. Please slow down."
                )
                await manager.send_json(user_id, error_msg.model_dump())
                continue

            try:
                await _handle_message(services, user_id, data)
            except ParleyError as e:
                logger.info(f"{data.get('type')} from {user_id} rejected: {e}")
                await manager.send_json(user_id, ErrorMessage(code=e.code, message=e.message).model_dump())

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.exception(f"WebSocket error for user {user_id}: {e}")
    finally:
        await _cleanup(services, user_id)
        manager.disconnect(user_id, websocket)
        logger.info(f"Cleaned up connection for user {user_id}")
