"""
Shared fixtures.

Tests run against the in-memory stores; no MongoDB or Firebase needed.
"""

import os

os.environ["STORE_BACKEND"] = "memory"

import pytest

from parley.config import get_settings
from parley.stores.memory import MemoryRelationshipStore, MemoryConversationStore
from parley.services.graph import GraphService
from parley.services.sessions import SessionCoordinator
from parley.services.matchmaking import MatchmakingQueue

get_settings.cache_clear()


class Outbox:
    """Collects pushed messages per user in place of live WebSockets."""

    def __init__(self):
        self.sent = []

    async def __call__(self, user_id: str, data: dict):
        self.sent.append((user_id, data))

    def for_user(self, user_id: str, message_type: str = None):
        return [
            data for uid, data in self.sent
            if uid == user_id and (message_type is None or data["type"] == message_type)
        ]


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def relationships():
    return MemoryRelationshipStore()


@pytest.fixture
def conversations():
    return MemoryConversationStore()


@pytest.fixture
def graph(relationships, conversations, outbox):
    return GraphService(relationships, conversations, notify=outbox, retry_delay=0)


@pytest.fixture
def sessions(outbox):
    return SessionCoordinator(notify=outbox, retention_seconds=60)


@pytest.fixture
def matchmaking(sessions, graph, outbox):
    queue = MatchmakingQueue(sessions, are_friends=graph.are_friends, notify=outbox)
    graph.set_removal_listener(queue.retry_pairs)
    return queue
