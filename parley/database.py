#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Database - MongoDB connection management and indexing.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# Database.connect: Establishes connection to MongoDB.
# Database.disconnect: Closes connection.
# Database._create_indexes: Creates required indexes for collections.
# Database.get_db: Returns the database instance.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# Database: Static class managing the MongoDB client and database connection.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# motor.motor_asyncio: Async MongoDB driver.
# typing: Type hints.
# logging: Logging.
# parley.config.get_settings: App settings.

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional
import logging

from parley.config import get_settings

logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager"""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect(cls) -> None:
        """Establish connection to MongoDB"""
        settings = get_settings()
        try:
            cls.client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
            cls.db = cls.client[settings.mongodb_database]

            # Verify connection
            await cls.client.admin.command('ping')
            logger.info(f"Connected to MongoDB: {settings.mongodb_database}")

            await cls._create_indexes()

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    @classmethod
    async def disconnect(cls) -> None:
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    async def _create_indexes(cls) -> None:
        """Create necessary indexes for collections"""
        if cls.db is None:
            return

        # Users collection indexes
        await cls.db.users.create_index("user_id", unique=True)
        # Usernames are unique once set; profiles without one are not indexed
        await cls.db.users.create_index(
            "username",
            unique=True,
            partialFilterExpression={"username": {"$type": "string"}}
        )

        # Friend edges - one document per direction
        await cls.db.friends.create_index(
            [("owner_id", 1), ("friend_id", 1)],
            unique=True
        )
        await cls.db.friends.create_index("edge_id", unique=True)
        await cls.db.friends.create_index("pair_key", background=True)
        await cls.db.friends.create_index("friend_id", background=True)

        # Removal markers for the two-phase friend removal
        await cls.db.friend_removals.create_index("pair_key", unique=True)

        # Friend requests collection indexes
        await cls.db.friend_requests.create_index("request_id", unique=True)
        await cls.db.friend_requests.create_index(
            [("from_user_id", 1), ("to_user_id", 1), ("status", 1)],
            background=True
        )
        await cls.db.friend_requests.create_index(
            [("to_user_id", 1), ("status", 1), ("created_at", -1)],
            background=True
        )

        # Conversation messages, read in timestamp order per pair
        await cls.db.messages.create_index("message_id", unique=True)
        await cls.db.messages.create_index(
            [("conversation_key", 1), ("created_at", 1)],
            background=True
        )

        logger.info("Database indexes created")

    @classmethod
    def get_db(cls) -> AsyncIOMotorDatabase:
        """Get database instance"""
        if cls.db is None:
            raise RuntimeError("Database not connected. Call Database.connect() first.")
        return cls.db
