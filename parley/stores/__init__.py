"""Parley storage backends"""

import logging
from typing import Tuple

from parley.config import Settings
from parley.database import Database
from parley.stores.base import RelationshipStore, ConversationStore
from parley.stores.memory import MemoryRelationshipStore, MemoryConversationStore
from parley.stores.mongo import MongoRelationshipStore, MongoConversationStore

logger = logging.getLogger(__name__)


async def open_stores(settings: Settings) -> Tuple[RelationshipStore, ConversationStore]:
    """Connect the configured backend and return (relationships, conversations)"""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory stores - data is lost on restart")
        return MemoryRelationshipStore(), MemoryConversationStore()

    await Database.connect()
    db = Database.get_db()
    return MongoRelationshipStore(db), MongoConversationStore(db)


async def close_stores(settings: Settings) -> None:
    if settings.store_backend == "mongo":
        await Database.disconnect()


__all__ = [
    "RelationshipStore",
    "ConversationStore",
    "MemoryRelationshipStore",
    "MemoryConversationStore",
    "MongoRelationshipStore",
    "MongoConversationStore",
    "open_stores",
    "close_stores",
]
