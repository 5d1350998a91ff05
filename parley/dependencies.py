#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Dependencies - Wiring of the core services and FastAPI dependency providers.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# build_services: Creates graph service, session coordinator and matchmaking queue, and links removals to re-pairing.
# get_services: Dependency returning the Services bundle from app state.
# get_graph: Dependency returning the GraphService.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# Services: Dataclass holding the three shared resources.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# dataclasses: Services bundle.
# typing: Type hints.
# starlette.requests: Connection type shared by HTTP and WebSocket.
# parley.config: Settings.
# parley.stores.base: Store contracts.
# parley.services: Core services.

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from starlette.requests import HTTPConnection

from parley.config import Settings
from parley.stores.base import RelationshipStore, ConversationStore
from parley.services.graph import GraphService
from parley.services.sessions import SessionCoordinator
from parley.services.matchmaking import MatchmakingQueue


@dataclass
class Services:
    graph: GraphService
    sessions: SessionCoordinator
    matchmaking: MatchmakingQueue


def build_services(
    relationships: RelationshipStore,
    conversations: ConversationStore,
    settings: Settings,
    notify: Optional[Callable[[str, dict], Awaitable[None]]] = None,
) -> Services:
    graph = GraphService(
        relationships,
        conversations,
        notify=notify,
        retry_attempts=settings.store_retry_attempts,
        retry_delay=settings.store_retry_delay_seconds,
    )
    sessions = SessionCoordinator(
        notify=notify,
        retention_seconds=settings.ended_session_retention_seconds,
        cleanup_interval_seconds=settings.session_cleanup_interval_seconds,
    )
    matchmaking = MatchmakingQueue(
        sessions,
        are_friends=graph.are_friends,
        notify=notify,
        max_scan=settings.matchmaking_max_scan,
        retry_interval_seconds=settings.matchmaking_retry_interval_seconds,
    )
    # Former friends waiting in the queue may now be paired
    graph.set_removal_listener(matchmaking.retry_pairs)
    return Services(graph=graph, sessions=sessions, matchmaking=matchmaking)


def get_services(conn: HTTPConnection) -> Services:
    return conn.app.state.services


def get_graph(conn: HTTPConnection) -> GraphService:
    return conn.app.state.services.graph
