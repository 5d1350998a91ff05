#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# MongoDB stores - Motor-backed relationship and conversation storage.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# translate_store_errors: Decorator mapping driver connectivity errors to StoreUnavailableError.
# MongoRelationshipStore.*: RelationshipStore over users/friends/friend_requests/friend_removals.
# MongoConversationStore.*: ConversationStore over messages.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# MongoRelationshipStore: Relationship store implementation.
# MongoConversationStore: Conversation store implementation.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# functools: Decorator helpers.
# logging: Logging.
# uuid: Edge/message ids.
# datetime: Timestamps.
# typing: Type hints.
# motor.motor_asyncio: Async MongoDB driver.
# pymongo: Return document options and error types.
# parley.stores.base: Store contracts.
# parley.models: Record types.
# parley.exceptions: Domain errors.

import functools
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, ConnectionFailure, DuplicateKeyError, PyMongoError

from parley.stores.base import RelationshipStore, ConversationStore
from parley.models.user import UserProfile, ProfileUpdate
from parley.models.friend import (
    FriendEdge,
    FriendRequest,
    FriendRequestStatus,
    PendingRemoval,
    Message,
)
from parley.exceptions import ConflictError, NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}


def translate_store_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except ConnectionFailure as e:
            logger.warning(f"MongoDB unavailable during {func.__name__}: {e}")
            raise StoreUnavailableError(
                "Storage is temporarily unavailable",
                context={"operation": func.__name__}
            ) from e
    return wrapper


async def _ping(db: AsyncIOMotorDatabase) -> bool:
    try:
        await db.command("ping")
        return True
    except PyMongoError as e:
        logger.warning(f"MongoDB ping failed: {e}")
        return False


def _pair_filter(user_a: str, user_b: str) -> dict:
    return {"$or": [
        {"owner_id": user_a, "friend_id": user_b},
        {"owner_id": user_b, "friend_id": user_a},
    ]}


def _profile_doc(profile: UserProfile) -> dict:
    doc = profile.model_dump()
    doc["gender"] = profile.gender.value
    return doc


class MongoRelationshipStore(RelationshipStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @translate_store_errors
    async def ping(self) -> bool:
        return await _ping(self.db)

    @translate_store_errors
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        doc = await self.db.users.find_one({"user_id": user_id}, NO_ID)
        return UserProfile(**doc) if doc else None

    @translate_store_errors
    async def create_profile(self, profile: UserProfile) -> UserProfile:
        try:
            await self.db.users.update_one(
                {"user_id": profile.user_id},
                {"$setOnInsert": _profile_doc(profile)},
                upsert=True
            )
        except DuplicateKeyError as e:
            raise ConflictError("Username already exists", context={"username": profile.username}) from e
        doc = await self.db.users.find_one({"user_id": profile.user_id}, NO_ID)
        return UserProfile(**doc)

    @translate_store_errors
    async def find_by_username(self, username: str) -> Optional[UserProfile]:
        doc = await self.db.users.find_one({"username": username}, NO_ID)
        return UserProfile(**doc) if doc else None

    @translate_store_errors
    async def save_profile(self, user_id: str, update: ProfileUpdate) -> UserProfile:
        try:
            doc = await self.db.users.find_one_and_update(
                {"user_id": user_id},
                {"$set": {
                    "username": update.username,
                    "name": update.name,
                    "bio": update.bio,
                    "gender": update.gender.value,
                    "updated_at": datetime.now(timezone.utc),
                }},
                projection=NO_ID,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            # Unique index is the final arbiter when two writers race past the pre-check
            raise ConflictError("Username already exists", context={"username": update.username}) from e
        if doc is None:
            raise NotFoundError("User not found", context={"user_id": user_id})
        return UserProfile(**doc)

    @translate_store_errors
    async def get_edge(self, owner_id: str, friend_id: str) -> Optional[FriendEdge]:
        doc = await self.db.friends.find_one({"owner_id": owner_id, "friend_id": friend_id}, NO_ID)
        return FriendEdge(**doc) if doc else None

    @translate_store_errors
    async def list_edges(self, owner_id: str) -> List[FriendEdge]:
        cursor = self.db.friends.find({"owner_id": owner_id}, NO_ID).sort("created_at", 1)
        return [FriendEdge(**doc) async for doc in cursor]

    async def insert_edge_pair(self, forward: FriendEdge, reverse: FriendEdge) -> None:
        edge_ids = [str(uuid.uuid4()), str(uuid.uuid4())]
        docs = []
        for edge_id, edge in zip(edge_ids, (forward, reverse)):
            doc = edge.model_dump()
            doc["edge_id"] = edge_id
            doc["pair_key"] = edge.pair_key
            docs.append(doc)

        try:
            await self.db.friends.insert_many(docs, ordered=True)
            return
        except (BulkWriteError, DuplicateKeyError) as e:
            await self._rollback_edges(edge_ids)
            raise ConflictError("Friendship already exists", context={"pair": forward.pair_key}) from e
        except ConnectionFailure as e:
            await self._rollback_edges(edge_ids)
            raise StoreUnavailableError(
                "Storage is temporarily unavailable",
                context={"operation": "insert_edge_pair"}
            ) from e

    async def _rollback_edges(self, edge_ids: List[str]) -> None:
        """Compensate a partially applied pair insert"""
        try:
            await self.db.friends.delete_many({"edge_id": {"$in": edge_ids}})
        except ConnectionFailure as e:
            logger.error(f"Failed to roll back edge insert {edge_ids}: {e}")

    @translate_store_errors
    async def mark_pair_pending(self, removal: PendingRemoval) -> None:
        await self.db.friend_removals.update_one(
            {"pair_key": removal.pair_key},
            {"$setOnInsert": removal.model_dump()},
            upsert=True
        )
        await self.db.friends.update_many(
            _pair_filter(removal.user_a, removal.user_b),
            {"$set": {"pending_deletion": True}}
        )

    @translate_store_errors
    async def delete_edge_pair(self, user_a: str, user_b: str) -> int:
        result = await self.db.friends.delete_many(_pair_filter(user_a, user_b))
        return result.deleted_count

    @translate_store_errors
    async def list_pending_removals(self) -> List[PendingRemoval]:
        cursor = self.db.friend_removals.find({}, NO_ID).sort("started_at", 1)
        return [PendingRemoval(**doc) async for doc in cursor]

    @translate_store_errors
    async def clear_pending_removal(self, key: str) -> None:
        await self.db.friend_removals.delete_one({"pair_key": key})

    @translate_store_errors
    async def update_friend_display_name(self, friend_id: str, display_name: str) -> int:
        result = await self.db.friends.update_many(
            {"friend_id": friend_id},
            {"$set": {"friend_display_name": display_name}}
        )
        return result.modified_count

    @translate_store_errors
    async def create_request(self, request: FriendRequest) -> None:
        doc = request.model_dump()
        doc["request_id"] = doc.pop("id")
        doc["status"] = request.status.value
        try:
            await self.db.friend_requests.insert_one(doc)
        except DuplicateKeyError as e:
            raise ConflictError("Friend request already exists", context={"request_id": request.id}) from e

    @staticmethod
    def _request_from_doc(doc: dict) -> FriendRequest:
        doc = dict(doc)
        doc["id"] = doc.pop("request_id")
        return FriendRequest(**doc)

    @translate_store_errors
    async def get_request(self, request_id: str) -> Optional[FriendRequest]:
        doc = await self.db.friend_requests.find_one({"request_id": request_id}, NO_ID)
        return self._request_from_doc(doc) if doc else None

    @translate_store_errors
    async def find_pending_request(self, user_a: str, user_b: str) -> Optional[FriendRequest]:
        doc = await self.db.friend_requests.find_one({
            "$or": [
                {"from_user_id": user_a, "to_user_id": user_b, "status": FriendRequestStatus.PENDING.value},
                {"from_user_id": user_b, "to_user_id": user_a, "status": FriendRequestStatus.PENDING.value}
            ]
        }, NO_ID)
        return self._request_from_doc(doc) if doc else None

    @translate_store_errors
    async def list_incoming_requests(self, user_id: str, limit: int) -> List[FriendRequest]:
        cursor = self.db.friend_requests.find({
            "to_user_id": user_id,
            "status": FriendRequestStatus.PENDING.value
        }, NO_ID).sort("created_at", -1).limit(limit)
        return [self._request_from_doc(doc) async for doc in cursor]

    @translate_store_errors
    async def set_request_status(self, request_id: str, status: FriendRequestStatus) -> None:
        result = await self.db.friend_requests.update_one(
            {"request_id": request_id},
            {"$set": {
                "status": status.value,
                "updated_at": datetime.now(timezone.utc)
            }}
        )
        if result.matched_count == 0:
            raise NotFoundError("Friend request not found", context={"request_id": request_id})


class MongoConversationStore(ConversationStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @translate_store_errors
    async def ping(self) -> bool:
        return await _ping(self.db)

    @translate_store_errors
    async def append_message(self, message: Message) -> None:
        doc = message.model_dump()
        doc["message_id"] = doc.pop("id")
        await self.db.messages.insert_one(doc)

    @translate_store_errors
    async def list_messages(self, conversation_key: str, limit: int) -> List[Message]:
        # _id breaks timestamp ties in insertion order
        cursor = self.db.messages.find(
            {"conversation_key": conversation_key}
        ).sort([("created_at", -1), ("_id", -1)]).limit(limit)
        messages = []
        async for doc in cursor:
            doc.pop("_id", None)
            doc["id"] = doc.pop("message_id")
            messages.append(Message(**doc))
        messages.reverse()
        return messages

    @translate_store_errors
    async def delete_conversation(self, conversation_key: str) -> int:
        result = await self.db.messages.delete_many({"conversation_key": conversation_key})
        return result.deleted_count
