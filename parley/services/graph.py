#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Graph service - Friendships, profiles and friend conversations kept consistent across both stores.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# GraphService.ensure_user: Creates the profile record on first sign-in.
# GraphService.get_profile: Fetches a profile or raises NotFoundError.
# GraphService.check_username_unique: True if no other user owns the username.
# GraphService.update_profile: Double-checked username write plus edge name refresh.
# GraphService.are_friends: Visible edge check.
# GraphService.add_friend: Creates both edges as one unit.
# GraphService.list_friends: Edges owned by a user, with stored display names.
# GraphService.remove_friend: Two-phase removal of both edges and the conversation.
# GraphService.recover_pending_removals: Finishes removals interrupted by a crash.
# GraphService.send_friend_request / list_friend_requests / accept_friend_request / decline_friend_request: Consent flow.
# GraphService.send_message / list_messages: Friend conversations.
# GraphService.set_removal_listener: Hook run after a friendship is removed.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# Notifier: Callback type used to push events to a connected user.
# GraphService: Graph consistency engine.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# asyncio: Locks.
# logging: Logging.
# uuid: Ids.
# weakref: Lock registry that frees idle locks.
# datetime: Timestamps.
# typing: Type hints.
# parley.stores.base: Store contracts.
# parley.models: Records and push messages.
# parley.exceptions: Domain errors.
# parley.utils: Retry and text helpers.
# parley.constants: Limits.

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from parley.stores.base import RelationshipStore, ConversationStore
from parley.models.user import UserProfile, ProfileUpdate
from parley.models.friend import (
    FriendEdge,
    FriendInfo,
    FriendRequest,
    FriendRequestResponse,
    FriendRequestStatus,
    PendingRemoval,
    Message,
    pair_key,
)
from parley.models.chat import ServerMessage, FriendAddedMessage, FriendRemovedMessage
from parley.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from parley.utils.retry import notify_with_retry, retry_store_call
from parley.utils.text import clean_message_text
from parley.constants import CONVERSATION_PAGE_LIMIT, FRIEND_REQUEST_LIST_LIMIT

logger = logging.getLogger(__name__)

Notifier = Callable[[str, dict], Awaitable[None]]


class GraphService:
    """
    Owns every write to the friend graph.

    - Both directions of a friendship are created and removed together,
      serialized per unordered pair.
    - Removing a friendship cascades to the pair's conversation. A removal
      marker is written first and the edges are flagged, so readers treat the
      friendship as gone before any message is deleted; a crash leaves the
      marker behind for recover_pending_removals().
    - Username writes re-check uniqueness under a lock immediately before
      committing; the store's unique index rejects cross-process races.
    """

    def __init__(
        self,
        relationships: RelationshipStore,
        conversations: ConversationStore,
        notify: Optional[Notifier] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.2,
    ):
        self.relationships = relationships
        self.conversations = conversations
        self._notify = notify
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._pair_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._username_lock = asyncio.Lock()
        self._on_removed: Optional[Callable[[], Awaitable[object]]] = None

    def set_notifier(self, notify: Optional[Notifier]) -> None:
        self._notify = notify

    def set_removal_listener(self, listener: Optional[Callable[[], Awaitable[object]]]) -> None:
        self._on_removed = listener

    def _pair_lock(self, key: str) -> asyncio.Lock:
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        return lock

    async def _retry(self, call, *args, label: str):
        return await retry_store_call(
            call,
            *args,
            attempts=self._retry_attempts,
            delay=self._retry_delay,
            label=label
        )

    async def _push(self, user_id: str, message: ServerMessage) -> None:
        if self._notify is None:
            return
        await notify_with_retry(
            self._notify,
            user_id,
            message.model_dump(mode="json"),
            label=f"{message.type} for {user_id}"
        )

    # Profiles

    async def ensure_user(self, user_id: str, email: str = "", display_name: str = "") -> UserProfile:
        profile = UserProfile(user_id=user_id, email=email, name=display_name)
        return await self.relationships.create_profile(profile)

    async def get_profile(self, user_id: str) -> UserProfile:
        profile = await self._retry(self.relationships.get_profile, user_id, label="get_profile")
        if profile is None:
            raise NotFoundError("User not found", context={"user_id": user_id})
        return profile

    async def check_username_unique(self, candidate: str, excluding_user_id: Optional[str] = None) -> bool:
        owner = await self._retry(self.relationships.find_by_username, candidate, label="find_by_username")
        return owner is None or owner.user_id == excluding_user_id

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> UserProfile:
        async with self._username_lock:
            current = await self.get_profile(user_id)
            if not await self.check_username_unique(update.username, user_id):
                raise ConflictError("Username already exists", context={"username": update.username})
            profile = await self.relationships.save_profile(user_id, update)

            # Under the lock so back-to-back renames reach the edges in order
            if profile.display_label != current.display_label:
                refreshed = await self._retry(
                    self.relationships.update_friend_display_name,
                    user_id,
                    profile.display_label,
                    label="update_friend_display_name"
                )
                logger.info(f"Refreshed display name of {user_id} on {refreshed} friend edges")

        logger.info(f"Profile updated for {user_id}")
        return profile

    # Friend edges

    async def are_friends(self, user_a: str, user_b: str) -> bool:
        edge = await self._retry(self.relationships.get_edge, user_a, user_b, label="get_edge")
        return edge is not None and not edge.pending_deletion

    async def add_friend(self, user_a: str, user_b: str) -> FriendInfo:
        if user_a == user_b:
            raise ValidationError("Cannot add yourself as a friend", context={"user_id": user_a})

        key = pair_key(user_a, user_b)
        async with self._pair_lock(key):
            profile_a = await self.get_profile(user_a)
            profile_b = await self.get_profile(user_b)
            forward = await self._retry(self.relationships.get_edge, user_a, user_b, label="get_edge")
            reverse = await self._retry(self.relationships.get_edge, user_b, user_a, label="get_edge")
            if forward or reverse:
                pending = any(e.pending_deletion for e in (forward, reverse) if e)
                detail = "Friendship removal in progress" if pending else "Already friends"
                raise ConflictError(detail, context={"pair": key})

            now = datetime.now(timezone.utc)
            await self.relationships.insert_edge_pair(
                FriendEdge(owner_id=user_a, friend_id=user_b,
                           friend_display_name=profile_b.display_label, created_at=now),
                FriendEdge(owner_id=user_b, friend_id=user_a,
                           friend_display_name=profile_a.display_label, created_at=now),
            )
            profile_a = await self._refresh_edge_name(profile_a)
            profile_b = await self._refresh_edge_name(profile_b)

        logger.info(f"Friendship created: {user_a} <-> {user_b}")
        await self._push(user_a, FriendAddedMessage(friend_id=user_b, display_name=profile_b.display_label))
        await self._push(user_b, FriendAddedMessage(friend_id=user_a, display_name=profile_a.display_label))
        return FriendInfo(user_id=user_b, display_name=profile_b.display_label, added_at=now)

    async def _refresh_edge_name(self, written: UserProfile) -> UserProfile:
        """A rename that landed while the edges were written may have missed them"""
        latest = await self.get_profile(written.user_id)
        if latest.display_label != written.display_label:
            await self._retry(
                self.relationships.update_friend_display_name,
                latest.user_id,
                latest.display_label,
                label="update_friend_display_name"
            )
            logger.debug(f"Display name of {latest.user_id} changed during add_friend, edges refreshed")
        return latest

    async def list_friends(self, user_id: str) -> List[FriendInfo]:
        edges = await self._retry(self.relationships.list_edges, user_id, label="list_edges")
        return [
            FriendInfo(user_id=edge.friend_id, display_name=edge.friend_display_name, added_at=edge.created_at)
            for edge in edges
            if not edge.pending_deletion
        ]

    async def remove_friend(self, user_a: str, user_b: str, missing_ok: bool = True) -> bool:
        """
        Remove the friendship and its conversation as one unit.

        Returns False when there was nothing to remove (repeat calls are
        harmless); raises NotFoundError instead when missing_ok is False.
        """
        key = pair_key(user_a, user_b)
        async with self._pair_lock(key):
            forward = await self._retry(self.relationships.get_edge, user_a, user_b, label="get_edge")
            reverse = await self._retry(self.relationships.get_edge, user_b, user_a, label="get_edge")
            if forward is None and reverse is None:
                if not missing_ok:
                    raise NotFoundError("Friendship not found", context={"pair": key})
                logger.debug(f"No friendship to remove: {user_a} <-> {user_b}")
                return False

            removal = PendingRemoval(pair_key=key, user_a=user_a, user_b=user_b)
            await self._retry(self.relationships.mark_pair_pending, removal, label="mark_pair_pending")
            await self._complete_removal(removal)

        logger.info(f"Friendship removed: {user_a} <-> {user_b}")
        await self._push(user_a, FriendRemovedMessage(friend_id=user_b))
        await self._push(user_b, FriendRemovedMessage(friend_id=user_a))
        if self._on_removed is not None:
            await self._on_removed()
        return True

    async def _complete_removal(self, removal: PendingRemoval) -> None:
        # Every step is idempotent, so a retry or a recovery pass can replay it
        deleted_messages = await self._retry(
            self.conversations.delete_conversation, removal.pair_key, label="delete_conversation"
        )
        deleted_edges = await self._retry(
            self.relationships.delete_edge_pair, removal.user_a, removal.user_b, label="delete_edge_pair"
        )
        await self._retry(self.relationships.clear_pending_removal, removal.pair_key, label="clear_pending_removal")
        logger.debug(
            f"Removal {removal.pair_key} complete: {deleted_edges} edges, {deleted_messages} messages"
        )

    async def recover_pending_removals(self) -> int:
        removals = await self._retry(self.relationships.list_pending_removals, label="list_pending_removals")
        for removal in removals:
            async with self._pair_lock(removal.pair_key):
                await self._complete_removal(removal)
            logger.info(f"Recovered interrupted friend removal {removal.pair_key}")
        if removals:
            logger.info(f"Recovery pass finished {len(removals)} pending removals")
        return len(removals)

    # Friend requests

    async def send_friend_request(self, from_user_id: str, to_user_id: str) -> FriendRequest:
        if from_user_id == to_user_id:
            raise ValidationError("Cannot send friend request to yourself")

        await self.get_profile(to_user_id)

        key = pair_key(from_user_id, to_user_id)
        async with self._pair_lock(key):
            if await self.are_friends(from_user_id, to_user_id):
                raise ConflictError("Already friends with this user", context={"pair": key})
            existing = await self._retry(
                self.relationships.find_pending_request, from_user_id, to_user_id, label="find_pending_request"
            )
            if existing:
                raise ConflictError("Friend request already pending", context={"request_id": existing.id})

            request = FriendRequest(id=str(uuid.uuid4()), from_user_id=from_user_id, to_user_id=to_user_id)
            await self.relationships.create_request(request)

        logger.info(f"Friend request sent: {from_user_id} -> {to_user_id}")
        return request

    async def list_friend_requests(self, user_id: str) -> List[FriendRequestResponse]:
        requests = await self._retry(
            self.relationships.list_incoming_requests, user_id, FRIEND_REQUEST_LIST_LIMIT,
            label="list_incoming_requests"
        )
        responses = []
        for request in requests:
            sender = await self._retry(self.relationships.get_profile, request.from_user_id, label="get_profile")
            if sender is None:
                continue
            responses.append(FriendRequestResponse(
                id=request.id,
                from_user_id=request.from_user_id,
                from_display_name=sender.display_label,
                sent_at=request.created_at
            ))
        return responses

    async def _pending_request_for(self, user_id: str, request_id: str) -> FriendRequest:
        request = await self._retry(self.relationships.get_request, request_id, label="get_request")
        if (request is None
                or request.to_user_id != user_id
                or request.status != FriendRequestStatus.PENDING):
            raise NotFoundError("Friend request not found", context={"request_id": request_id})
        return request

    async def accept_friend_request(self, user_id: str, request_id: str) -> FriendInfo:
        """Both parties have now consented, so the friendship is created"""
        request = await self._pending_request_for(user_id, request_id)
        try:
            friend = await self.add_friend(user_id, request.from_user_id)
        except ConflictError:
            # Settled only if the friendship really exists; a pending removal
            # leaves the request open for a later accept
            if await self.are_friends(user_id, request.from_user_id):
                await self.relationships.set_request_status(request_id, FriendRequestStatus.ACCEPTED)
            raise
        await self.relationships.set_request_status(request_id, FriendRequestStatus.ACCEPTED)
        logger.info(f"Friend request accepted: {request.from_user_id} -> {user_id}")
        return friend

    async def decline_friend_request(self, user_id: str, request_id: str) -> None:
        request = await self._pending_request_for(user_id, request_id)
        await self.relationships.set_request_status(request_id, FriendRequestStatus.DECLINED)
        logger.info(f"Friend request declined: {request.from_user_id} -> {user_id}")

    # Friend conversations

    async def send_message(self, sender_id: str, friend_id: str, text: str) -> Message:
        text = clean_message_text(text)
        key = pair_key(sender_id, friend_id)
        # Same lock as remove_friend, so nothing is appended behind a cascade delete
        async with self._pair_lock(key):
            if not await self.are_friends(sender_id, friend_id):
                raise ForbiddenError("You can only message friends", context={"friend_id": friend_id})
            message = Message(id=str(uuid.uuid4()), conversation_key=key, sender_id=sender_id, text=text)
            await self.conversations.append_message(message)
        return message

    async def list_messages(
        self,
        user_id: str,
        friend_id: str,
        limit: int = CONVERSATION_PAGE_LIMIT,
    ) -> List[Message]:
        key = pair_key(user_id, friend_id)
        async with self._pair_lock(key):
            if not await self.are_friends(user_id, friend_id):
                raise ForbiddenError("You can only read conversations with friends", context={"friend_id": friend_id})
            return await self._retry(self.conversations.list_messages, key, limit, label="list_messages")
