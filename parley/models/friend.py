#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Friend models - Definitions for friend edges, friend requests and conversation messages.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# pair_key: Builds the unordered key for a pair of users.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# FriendEdge: Directed friendship record (owner -> friend).
# FriendInfo: Model for friend details in lists.
# FriendRequestStatus: Enum for request status.
# FriendRequest: Model for a friend request.
# FriendRequestResponse: Model for API response.
# PendingRemoval: Marker for a friendship removal in progress.
# Message: Durable message in a friend conversation.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# pydantic: Data validation.
# datetime: Time handling.
# typing: Type hints.
# enum: Enumerations.

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional
from enum import Enum


def pair_key(user_a: str, user_b: str) -> str:
    """Unordered key for {user_a, user_b}; identical for both argument orders"""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FriendEdge(BaseModel):
    """One direction of a friendship. Always stored alongside its reverse edge."""
    owner_id: str
    friend_id: str
    friend_display_name: str
    created_at: datetime = Field(default_factory=_now)
    pending_deletion: bool = False

    @property
    def pair_key(self) -> str:
        return pair_key(self.owner_id, self.friend_id)


class FriendInfo(BaseModel):
    """Friend info for listing"""
    user_id: str
    display_name: str
    added_at: datetime


class FriendRequestStatus(str, Enum):
    """Friend request status"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class FriendRequest(BaseModel):
    """Friend request model"""
    id: str
    from_user_id: str
    to_user_id: str
    status: FriendRequestStatus = FriendRequestStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None


class FriendRequestResponse(BaseModel):
    """Friend request response for API"""
    id: str
    from_user_id: str
    from_display_name: str
    sent_at: datetime


class PendingRemoval(BaseModel):
    """Written before a friendship removal starts, cleared once it completes"""
    pair_key: str
    user_a: str
    user_b: str
    started_at: datetime = Field(default_factory=_now)


class Message(BaseModel):
    """Immutable message between two friends"""
    id: str
    conversation_key: str
    sender_id: str
    text: str
    created_at: datetime = Field(default_factory=_now)
