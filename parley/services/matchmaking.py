#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Matchmaking queue - FIFO pairing of users searching for a random chat partner.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# MatchmakingQueue.enqueue: Adds a ticket; one per user.
# MatchmakingQueue.cancel: Removes a ticket; no-op when absent.
# MatchmakingQueue.try_pair: Pairs the oldest compatible tickets into a session.
# MatchmakingQueue.find_partner: Enqueue, then pair until nothing compatible remains.
# MatchmakingQueue.retry_pairs: Re-runs pairing for tickets that were left waiting.
# MatchmakingQueue.start: Starts the periodic pairing retry.
# MatchmakingQueue.stop: Stops the retry task.
# MatchmakingQueue._find_pair: Bounded FIFO scan for a compatible pair.
# MatchmakingQueue.position: Helper to get rank in queue.
# MatchmakingQueue.waiting_seconds: Helper to get duration in queue.
# MatchmakingQueue.shutdown: Drops all tickets and refuses new ones.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# MatchmakingQueue: Shared ticket collection guarded by one lock.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# asyncio: Locks and loop time.
# logging: Logging.
# typing: Type hints.
# parley.models.chat: Tickets, sessions and push messages.
# parley.services.sessions: Session hand-off.
# parley.exceptions: Domain errors.
# parley.utils.retry: Notification retries.
# parley.constants: Partner alias.

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from parley.models.chat import MatchmakingTicket, ChatSession, ServerMessage, MatchFoundMessage
from parley.services.sessions import SessionCoordinator
from parley.exceptions import AlreadySearchingError, ConflictError, ParleyError
from parley.utils.retry import notify_with_retry
from parley.constants import STRANGER_ALIAS

logger = logging.getLogger(__name__)


class MatchmakingQueue:
    """
    Holds users searching for a random partner.

    - Tickets are kept in enqueue order; pairing always prefers the oldest
    - Friends and identical users are never paired; an incompatible ticket
      keeps its place and waits for a later attempt
    - enqueue / cancel / try_pair are serialized by one lock
    """

    def __init__(
        self,
        sessions: SessionCoordinator,
        are_friends: Callable[[str, str], Awaitable[bool]],
        notify: Optional[Callable[[str, dict], Awaitable[None]]] = None,
        max_scan: int = 256,
        retry_interval_seconds: float = 5,
    ):
        self._sessions = sessions
        self._are_friends = are_friends
        self._notify = notify
        self._max_scan = max(1, max_scan)
        self._tickets: List[MatchmakingTicket] = []
        self._ticketed: Set[str] = set()
        self._lock = asyncio.Lock()
        self._closed = False
        self._retry_interval = retry_interval_seconds
        self._retry_task: Optional[asyncio.Task] = None
        self._scan_offset = 0  # Pairs already checked by a scan cut short

    def set_notifier(self, notify: Optional[Callable[[str, dict], Awaitable[None]]]) -> None:
        self._notify = notify

    async def _push(self, user_id: str, message: ServerMessage) -> None:
        if self._notify is None:
            return
        await notify_with_retry(
            self._notify,
            user_id,
            message.model_dump(mode="json"),
            label=f"{message.type} for {user_id}"
        )

    def start(self) -> None:
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.create_task(self._periodic_retry())
            logger.info("Started matchmaking retry task")

    async def stop(self) -> None:
        if self._retry_task:
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
            self._retry_task = None

    async def _periodic_retry(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._retry_interval)
                await self.retry_pairs()
            except asyncio.CancelledError:
                logger.info("Matchmaking retry task cancelled")
                break
            except Exception as e:
                logger.warning(f"Error in matchmaking retry: {e}")

    @property
    def size(self) -> int:
        return len(self._tickets)

    def is_searching(self, user_id: str) -> bool:
        return user_id in self._ticketed

    def position(self, user_id: str) -> int:
        """Position in queue (0-indexed), -1 if not searching"""
        for index, ticket in enumerate(self._tickets):
            if ticket.user_id == user_id:
                return index
        return -1

    def waiting_seconds(self, user_id: str) -> int:
        for ticket in self._tickets:
            if ticket.user_id == user_id:
                return int(asyncio.get_running_loop().time() - ticket.enqueued_at)
        return 0

    async def enqueue(self, user_id: str) -> MatchmakingTicket:
        async with self._lock:
            if self._closed:
                raise ConflictError("Matchmaking is shutting down")
            if user_id in self._ticketed:
                raise AlreadySearchingError(user_id)
            active = self._sessions.active_session_for(user_id)
            if active:
                raise ConflictError(
                    "Already in a chat session",
                    context={"user_id": user_id, "session_id": active.session_id}
                )

            ticket = MatchmakingTicket(
                user_id=user_id,
                enqueued_at=asyncio.get_running_loop().time()
            )
            self._tickets.append(ticket)
            self._ticketed.add(user_id)

        logger.info(f"Added {user_id} to matchmaking queue (size {len(self._tickets)})")
        return ticket

    async def cancel(self, user_id: str) -> bool:
        async with self._lock:
            if user_id not in self._ticketed:
                logger.debug(f"Cancel for {user_id} ignored, no ticket")
                return False
            self._remove_tickets({user_id})
        logger.info(f"Removed {user_id} from matchmaking queue")
        return True

    def _remove_tickets(self, user_ids: Set[str]) -> None:
        self._tickets = [t for t in self._tickets if t.user_id not in user_ids]
        self._ticketed -= user_ids

    async def _compatible(self, first: MatchmakingTicket, second: MatchmakingTicket) -> bool:
        if first.user_id == second.user_id:
            return False
        return not await self._are_friends(first.user_id, second.user_id)

    async def _find_pair(self) -> Optional[Tuple[MatchmakingTicket, MatchmakingTicket]]:
        """
        Oldest ticket first; when it has no compatible partner it stays where it
        is and the next ticket becomes the head. At most max_scan checks per call;
        a scan cut short resumes after the last checked pair on the next call.
        """
        skip = self._scan_offset
        checks = 0
        tickets = list(self._tickets)
        for index, head in enumerate(tickets):
            for candidate in tickets[index + 1:]:
                if skip:
                    skip -= 1
                    continue
                if checks >= self._max_scan:
                    self._scan_offset += checks
                    logger.debug(f"Pair scan limit of {self._max_scan} exhausted, resuming at {self._scan_offset}")
                    return None
                checks += 1
                if await self._compatible(head, candidate):
                    self._scan_offset = 0
                    return head, candidate
        self._scan_offset = 0
        return None

    async def try_pair(self) -> Optional[ChatSession]:
        async with self._lock:
            if len(self._tickets) < 2:
                return None
            pair = await self._find_pair()
            if pair is None:
                return None
            first, second = pair
            # Tickets are only dropped once the session exists
            session = await self._sessions.create_session(first.user_id, second.user_id)
            self._remove_tickets({first.user_id, second.user_id})

        logger.info(f"Paired {first.user_id} with {second.user_id} in session {session.session_id}")
        for uid in (first.user_id, second.user_id):
            await self._push(uid, MatchFoundMessage(session_id=session.session_id, partner=STRANGER_ALIAS))
        return session

    async def find_partner(self, user_id: str) -> Optional[ChatSession]:
        """Returns the session formed for user_id, or None while still searching"""
        await self.enqueue(user_id)
        own_session = None
        try:
            while True:
                session = await self.try_pair()
                if session is None:
                    break
                if session.is_participant(user_id):
                    own_session = session
        except ParleyError as e:
            if own_session is not None:
                logger.warning(f"Pairing stopped after matching {user_id}: {e}")
                return own_session
            # The caller sees the error, so it must not be left searching
            await self.cancel(user_id)
            raise
        return own_session

    async def retry_pairs(self) -> int:
        """
        Pairs whatever became compatible since the last attempt, e.g. after a
        friendship was removed or a scan stopped at its limit.
        """
        paired = 0
        try:
            while await self.try_pair() is not None:
                paired += 1
        except ParleyError as e:
            logger.warning(f"Matchmaking retry stopped after {paired} pairs: {e}")
        if paired:
            logger.info(f"Matchmaking retry formed {paired} sessions")
        return paired

    async def shutdown(self) -> List[str]:
        await self.stop()
        async with self._lock:
            self._closed = True
            cancelled = [t.user_id for t in self._tickets]
            self._tickets = []
            self._ticketed.clear()
        if cancelled:
            logger.info(f"Dropped {len(cancelled)} matchmaking tickets during shutdown")
        return cancelled
