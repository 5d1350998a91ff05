#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Session coordinator - Lifecycle of anonymous one-to-one chat sessions (Active -> Ended).

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# SessionCoordinator.start: Starts the periodic purge of ended sessions.
# SessionCoordinator.stop: Stops the purge task.
# SessionCoordinator.create_session: Registers a new Active session for two users.
# SessionCoordinator.get_session: Retrieves session by id.
# SessionCoordinator.active_session_for: Finds the Active session of a user.
# SessionCoordinator.relay_message: Appends a message and forwards it to the partner.
# SessionCoordinator.end_session: Ends a session (idempotent) and notifies the partner.
# SessionCoordinator.on_disconnect: Same as end_session, reason "disconnect".
# SessionCoordinator.purge_ended: Drops ended sessions past their retention window, remembering their participants.
# SessionCoordinator.shutdown: Ends every Active session, notifying both sides.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# SessionCoordinator: Owner of the session table.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# asyncio: Locks and background task.
# collections: Bounded memory of purged sessions.
# logging: Logging.
# uuid: Session ids.
# datetime: Timestamps.
# typing: Type hints.
# parley.models.chat: Session records and push messages.
# parley.exceptions: Domain errors.
# parley.utils: Retry and text helpers.
# parley.constants: Aliases and end reasons.

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from parley.models.chat import (
    ChatMessage,
    ChatSession,
    SessionState,
    ServerMessage,
    ChatMessageEvent,
    SessionEndedMessage,
)
from parley.exceptions import ConflictError, ForbiddenError, InvalidSessionError, ValidationError
from parley.utils.retry import notify_with_retry
from parley.utils.text import clean_message_text
from parley.constants import (
    STRANGER_ALIAS,
    END_REASON_LEFT,
    END_REASON_DISCONNECT,
    END_REASON_SHUTDOWN,
    PURGED_SESSION_MEMORY,
)

logger = logging.getLogger(__name__)


class SessionCoordinator:
    """
    Manages ephemeral chat sessions.

    Responsibilities:
    - Track sessions and which user is in which Active session
    - Relay messages between the two participants
    - Guarantee that ending (explicit or by disconnect) is terminal
    """

    def __init__(
        self,
        notify: Optional[Callable[[str, dict], Awaitable[None]]] = None,
        retention_seconds: int = 300,
        cleanup_interval_seconds: int = 60,
    ):
        self._notify = notify
        self._retention = timedelta(seconds=retention_seconds)
        self._cleanup_interval = cleanup_interval_seconds
        self._sessions: Dict[str, ChatSession] = {}
        self._user_sessions: Dict[str, str] = {}  # uid -> active session_id
        self._purged: "OrderedDict[str, Tuple[str, str]]" = OrderedDict()  # session_id -> participants
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def set_notifier(self, notify: Optional[Callable[[str, dict], Awaitable[None]]]) -> None:
        self._notify = notify

    async def _push(self, user_id: str, message: ServerMessage) -> None:
        if self._notify is None:
            return
        await notify_with_retry(
            self._notify,
            user_id,
            message.model_dump(mode="json"),
            label=f"{message.type} for {user_id}"
        )

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
            logger.info("Started ended-session cleanup task")

    async def stop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _periodic_cleanup(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self.purge_ended()
            except asyncio.CancelledError:
                logger.info("Ended-session cleanup task cancelled")
                break
            except Exception as e:
                logger.warning(f"Error in session cleanup: {e}")

    @property
    def active_count(self) -> int:
        return len(self._user_sessions) // 2

    async def create_session(self, user_a: str, user_b: str) -> ChatSession:
        if user_a == user_b:
            raise ValidationError("A session needs two different users", context={"user_id": user_a})

        async with self._lock:
            for uid in (user_a, user_b):
                if uid in self._user_sessions:
                    raise ConflictError(
                        "User is already in a chat session",
                        context={"user_id": uid, "session_id": self._user_sessions[uid]}
                    )
            session = ChatSession(session_id=str(uuid.uuid4()), participant_a=user_a, participant_b=user_b)
            self._sessions[session.session_id] = session
            self._user_sessions[user_a] = session.session_id
            self._user_sessions[user_b] = session.session_id

        logger.info(f"Session {session.session_id} started: {user_a} <-> {user_b}")
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def active_session_for(self, user_id: str) -> Optional[ChatSession]:
        session_id = self._user_sessions.get(user_id)
        return self._sessions.get(session_id) if session_id else None

    async def relay_message(self, session_id: str, sender_id: str, text: str) -> ChatMessage:
        text = clean_message_text(text)

        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise InvalidSessionError(session_id, "Session not found")
            if session.state == SessionState.ENDED:
                raise InvalidSessionError(session_id, "Session has ended")
            if not session.is_participant(sender_id):
                raise ForbiddenError("Not a participant of this session", context={"session_id": session_id})

            message = ChatMessage(sender_id=sender_id, text=text)
            session.messages.append(message)
            partner = session.partner_of(sender_id)

        await self._push(partner, ChatMessageEvent(
            session_id=session_id,
            sender=STRANGER_ALIAS,
            text=message.text,
            sent_at=message.sent_at
        ))
        return message

    async def end_session(self, session_id: str, requester_id: str, reason: str = END_REASON_LEFT) -> bool:
        """End the session. Returns False if it had already ended."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                participants = self._purged.get(session_id)
                if participants is None:
                    raise InvalidSessionError(session_id, "Session not found")
                if requester_id not in participants:
                    raise ForbiddenError("Not a participant of this session", context={"session_id": session_id})
                logger.debug(f"Session {session_id} already purged, ignoring {reason} from {requester_id}")
                return False
            if not session.is_participant(requester_id):
                raise ForbiddenError("Not a participant of this session", context={"session_id": session_id})
            if session.state == SessionState.ENDED:
                logger.debug(f"Session {session_id} already ended, ignoring {reason} from {requester_id}")
                return False
            self._mark_ended(session, requester_id, reason)
            partner = session.partner_of(requester_id)

        logger.info(f"Session {session_id} ended by {requester_id} ({reason})")
        await self._push(partner, SessionEndedMessage(session_id=session_id, reason=reason))
        return True

    async def on_disconnect(self, session_id: str, user_id: str) -> bool:
        return await self.end_session(session_id, user_id, reason=END_REASON_DISCONNECT)

    def _mark_ended(self, session: ChatSession, ended_by: Optional[str], reason: str) -> None:
        session.state = SessionState.ENDED
        session.ended_at = datetime.now(timezone.utc)
        session.ended_by = ended_by
        session.end_reason = reason
        for uid in (session.participant_a, session.participant_b):
            if self._user_sessions.get(uid) == session.session_id:
                del self._user_sessions[uid]

    async def purge_ended(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            expired = [
                sid for sid, s in self._sessions.items()
                if s.state == SessionState.ENDED and s.ended_at and now - s.ended_at >= self._retention
            ]
            for sid in expired:
                session = self._sessions.pop(sid)
                self._purged[sid] = (session.participant_a, session.participant_b)
            while len(self._purged) > PURGED_SESSION_MEMORY:
                self._purged.popitem(last=False)
        if expired:
            logger.debug(f"Purged {len(expired)} ended sessions")
        return len(expired)

    async def shutdown(self) -> int:
        async with self._lock:
            active: List[ChatSession] = [
                s for s in self._sessions.values() if s.state == SessionState.ACTIVE
            ]
            for session in active:
                self._mark_ended(session, None, END_REASON_SHUTDOWN)

        for session in active:
            for uid in (session.participant_a, session.participant_b):
                await self._push(uid, SessionEndedMessage(session_id=session.session_id, reason=END_REASON_SHUTDOWN))
            logger.info(f"Ended active session {session.session_id} during shutdown")

        await self.stop()
        return len(active)
