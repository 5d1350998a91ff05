#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# In-memory stores - Process-local backend for development and tests.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# MemoryRelationshipStore.*: RelationshipStore over dicts indexed by owner and username.
# MemoryConversationStore.*: ConversationStore over lists indexed by pair key.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# MemoryRelationshipStore: Dict-backed relationship store.
# MemoryConversationStore: Dict-backed conversation store.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# datetime: Timestamps.
# typing: Type hints.
# parley.stores.base: Store contracts.
# parley.models: Record types.
# parley.exceptions: ConflictError, NotFoundError.

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from parley.stores.base import RelationshipStore, ConversationStore
from parley.models.user import UserProfile, ProfileUpdate
from parley.models.friend import (
    FriendEdge,
    FriendRequest,
    FriendRequestStatus,
    PendingRemoval,
    Message,
    pair_key,
)
from parley.exceptions import ConflictError, NotFoundError


# No method awaits anything, so each call runs without interleaving on the event loop.

class MemoryRelationshipStore(RelationshipStore):

    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}
        self._usernames: Dict[str, str] = {}  # username -> user_id
        self._edges: Dict[str, Dict[str, FriendEdge]] = {}  # owner_id -> friend_id -> edge
        self._removals: Dict[str, PendingRemoval] = {}
        self._requests: Dict[str, FriendRequest] = {}

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        profile = self._profiles.get(user_id)
        return profile.model_copy() if profile else None

    async def create_profile(self, profile: UserProfile) -> UserProfile:
        existing = self._profiles.get(profile.user_id)
        if existing:
            return existing.model_copy()
        if profile.username:
            if profile.username in self._usernames:
                raise ConflictError("Username already exists", context={"username": profile.username})
            self._usernames[profile.username] = profile.user_id
        self._profiles[profile.user_id] = profile.model_copy()
        return profile

    async def find_by_username(self, username: str) -> Optional[UserProfile]:
        user_id = self._usernames.get(username)
        if user_id is None:
            return None
        return await self.get_profile(user_id)

    async def save_profile(self, user_id: str, update: ProfileUpdate) -> UserProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise NotFoundError("User not found", context={"user_id": user_id})

        owner = self._usernames.get(update.username)
        if owner is not None and owner != user_id:
            raise ConflictError("Username already exists", context={"username": update.username})

        if profile.username and profile.username != update.username:
            self._usernames.pop(profile.username, None)
        self._usernames[update.username] = user_id

        updated = profile.model_copy(update={
            "username": update.username,
            "name": update.name,
            "bio": update.bio,
            "gender": update.gender,
            "updated_at": datetime.now(timezone.utc),
        })
        self._profiles[user_id] = updated
        return updated.model_copy()

    async def get_edge(self, owner_id: str, friend_id: str) -> Optional[FriendEdge]:
        edge = self._edges.get(owner_id, {}).get(friend_id)
        return edge.model_copy() if edge else None

    async def list_edges(self, owner_id: str) -> List[FriendEdge]:
        edges = self._edges.get(owner_id, {}).values()
        return sorted((e.model_copy() for e in edges), key=lambda e: e.created_at)

    async def insert_edge_pair(self, forward: FriendEdge, reverse: FriendEdge) -> None:
        if (forward.friend_id in self._edges.get(forward.owner_id, {})
                or reverse.friend_id in self._edges.get(reverse.owner_id, {})):
            raise ConflictError(
                "Friendship already exists",
                context={"pair": pair_key(forward.owner_id, forward.friend_id)}
            )
        self._edges.setdefault(forward.owner_id, {})[forward.friend_id] = forward.model_copy()
        self._edges.setdefault(reverse.owner_id, {})[reverse.friend_id] = reverse.model_copy()

    async def mark_pair_pending(self, removal: PendingRemoval) -> None:
        self._removals[removal.pair_key] = removal.model_copy()
        for owner, friend in ((removal.user_a, removal.user_b), (removal.user_b, removal.user_a)):
            edge = self._edges.get(owner, {}).get(friend)
            if edge:
                edge.pending_deletion = True

    async def delete_edge_pair(self, user_a: str, user_b: str) -> int:
        deleted = 0
        for owner, friend in ((user_a, user_b), (user_b, user_a)):
            owned = self._edges.get(owner)
            if owned and owned.pop(friend, None) is not None:
                deleted += 1
                if not owned:
                    del self._edges[owner]
        return deleted

    async def list_pending_removals(self) -> List[PendingRemoval]:
        return [r.model_copy() for r in self._removals.values()]

    async def clear_pending_removal(self, key: str) -> None:
        self._removals.pop(key, None)

    async def update_friend_display_name(self, friend_id: str, display_name: str) -> int:
        updated = 0
        for owned in self._edges.values():
            edge = owned.get(friend_id)
            if edge:
                edge.friend_display_name = display_name
                updated += 1
        return updated

    async def create_request(self, request: FriendRequest) -> None:
        if request.id in self._requests:
            raise ConflictError("Friend request already exists", context={"request_id": request.id})
        self._requests[request.id] = request.model_copy()

    async def get_request(self, request_id: str) -> Optional[FriendRequest]:
        request = self._requests.get(request_id)
        return request.model_copy() if request else None

    async def find_pending_request(self, user_a: str, user_b: str) -> Optional[FriendRequest]:
        wanted: Tuple[Tuple[str, str], ...] = ((user_a, user_b), (user_b, user_a))
        for request in self._requests.values():
            if (request.status == FriendRequestStatus.PENDING
                    and (request.from_user_id, request.to_user_id) in wanted):
                return request.model_copy()
        return None

    async def list_incoming_requests(self, user_id: str, limit: int) -> List[FriendRequest]:
        incoming = [
            r for r in self._requests.values()
            if r.to_user_id == user_id and r.status == FriendRequestStatus.PENDING
        ]
        incoming.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy() for r in incoming[:limit]]

    async def set_request_status(self, request_id: str, status: FriendRequestStatus) -> None:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError("Friend request not found", context={"request_id": request_id})
        request.status = status
        request.updated_at = datetime.now(timezone.utc)


class MemoryConversationStore(ConversationStore):

    def __init__(self):
        self._conversations: Dict[str, List[Message]] = {}

    async def append_message(self, message: Message) -> None:
        self._conversations.setdefault(message.conversation_key, []).append(message.model_copy())

    async def list_messages(self, conversation_key: str, limit: int) -> List[Message]:
        # sorted() is stable, so equal timestamps keep insertion order
        messages = sorted(self._conversations.get(conversation_key, []), key=lambda m: m.created_at)
        return [m.model_copy() for m in messages[-limit:]] if limit > 0 else []

    async def delete_conversation(self, conversation_key: str) -> int:
        return len(self._conversations.pop(conversation_key, []))
