#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Store interfaces - Contracts for relationship/profile storage and conversation storage.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# RelationshipStore.*: Profiles, username index, friend edges, friend requests, removal markers.
# ConversationStore.*: Messages keyed by unordered pair key.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# RelationshipStore: Abstract base for relationship storage.
# ConversationStore: Abstract base for conversation storage.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# abc: Abstract base classes.
# typing: Type hints.
# parley.models: Record types.

from abc import ABC, abstractmethod
from typing import List, Optional

from parley.models.user import UserProfile, ProfileUpdate
from parley.models.friend import (
    FriendEdge,
    FriendRequest,
    FriendRequestStatus,
    PendingRemoval,
    Message,
)


class RelationshipStore(ABC):
    """
    Durable storage for profiles and friend edges.

    Edges are written and deleted in pairs only; the store never exposes a
    single-direction write to callers. Connectivity failures surface as
    StoreUnavailableError.
    """

    async def ping(self) -> bool:
        return True

    # Profiles

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]: ...

    @abstractmethod
    async def create_profile(self, profile: UserProfile) -> UserProfile:
        """Insert profile if absent, otherwise return the stored one"""

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserProfile]: ...

    @abstractmethod
    async def save_profile(self, user_id: str, update: ProfileUpdate) -> UserProfile:
        """Write profile fields. Raises ConflictError if the username index rejects the write."""

    # Friend edges

    @abstractmethod
    async def get_edge(self, owner_id: str, friend_id: str) -> Optional[FriendEdge]: ...

    @abstractmethod
    async def list_edges(self, owner_id: str) -> List[FriendEdge]: ...

    @abstractmethod
    async def insert_edge_pair(self, forward: FriendEdge, reverse: FriendEdge) -> None:
        """Create both directions or neither. Raises ConflictError if either exists."""

    @abstractmethod
    async def mark_pair_pending(self, removal: PendingRemoval) -> None:
        """Persist the removal marker and flag both edges as pending deletion"""

    @abstractmethod
    async def delete_edge_pair(self, user_a: str, user_b: str) -> int: ...

    @abstractmethod
    async def list_pending_removals(self) -> List[PendingRemoval]: ...

    @abstractmethod
    async def clear_pending_removal(self, key: str) -> None: ...

    @abstractmethod
    async def update_friend_display_name(self, friend_id: str, display_name: str) -> int: ...

    # Friend requests

    @abstractmethod
    async def create_request(self, request: FriendRequest) -> None: ...

    @abstractmethod
    async def get_request(self, request_id: str) -> Optional[FriendRequest]: ...

    @abstractmethod
    async def find_pending_request(self, user_a: str, user_b: str) -> Optional[FriendRequest]:
        """Pending request in either direction"""

    @abstractmethod
    async def list_incoming_requests(self, user_id: str, limit: int) -> List[FriendRequest]: ...

    @abstractmethod
    async def set_request_status(self, request_id: str, status: FriendRequestStatus) -> None: ...


class ConversationStore(ABC):
    """Durable storage for friend conversations, keyed by pair_key()"""

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def append_message(self, message: Message) -> None: ...

    @abstractmethod
    async def list_messages(self, conversation_key: str, limit: int) -> List[Message]:
        """Oldest first; equal timestamps keep insertion order"""

    @abstractmethod
    async def delete_conversation(self, conversation_key: str) -> int: ...
