#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Chat models - Random chat sessions, matchmaking tickets and WebSocket message types.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# ChatSession.is_participant: Checks membership.
# ChatSession.partner_of: Returns the other participant.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# SessionState: Session state machine (Active -> Ended).
# MatchmakingTicket: Dataclass for a user waiting in the queue.
# ChatMessage: Dataclass for an ephemeral session message.
# ChatSession: Dataclass for an ephemeral one-to-one session.
# ServerMessage: Base class for messages from server.
# SearchingMessage, MatchFoundMessage, ChatMessageEvent, SessionEndedMessage,
# FriendAddedMessage, FriendRemovedMessage, ErrorMessage, PongMessage: Server pushes.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# pydantic: Data validation.
# dataclasses: Runtime state containers.
# datetime: Time handling.
# typing: Type hints.
# enum: Enumerations.

from pydantic import BaseModel
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Literal, List
from enum import Enum


class SessionState(str, Enum):
    """Session state machine"""
    ACTIVE = "active"
    ENDED = "ended"  # Terminal


@dataclass
class MatchmakingTicket:
    user_id: str
    enqueued_at: float  # Monotonic loop time


@dataclass
class ChatMessage:
    sender_id: str
    text: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ChatSession:
    """Anonymous session between two strangers. Never persisted."""
    session_id: str
    participant_a: str
    participant_b: str
    state: SessionState = SessionState.ACTIVE
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None
    end_reason: Optional[str] = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def partner_of(self, user_id: str) -> str:
        return self.participant_b if user_id == self.participant_a else self.participant_a


# WebSocket Message Types

class ServerMessage(BaseModel):
    """Base server message"""
    type: str


class SearchingMessage(ServerMessage):
    type: Literal["searching"] = "searching"
    position: int


class MatchFoundMessage(ServerMessage):
    type: Literal["match_found"] = "match_found"
    session_id: str
    partner: str  # Alias only, identities stay hidden


class ChatMessageEvent(ServerMessage):
    type: Literal["chat_message"] = "chat_message"
    session_id: str
    sender: str
    text: str
    sent_at: datetime


class SessionEndedMessage(ServerMessage):
    type: Literal["session_ended"] = "session_ended"
    session_id: str
    reason: str


class FriendAddedMessage(ServerMessage):
    type: Literal["friend_added"] = "friend_added"
    friend_id: str
    display_name: str


class FriendRemovedMessage(ServerMessage):
    type: Literal["friend_removed"] = "friend_removed"
    friend_id: str


class ErrorMessage(ServerMessage):
    type: Literal["error"] = "error"
    code: str
    message: str


class PongMessage(ServerMessage):
    type: Literal["pong"] = "pong"
