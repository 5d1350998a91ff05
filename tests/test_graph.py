"""
Tests for GraphService

Friend edges, cascade removal, username uniqueness, friend requests and
friend conversations, all against the in-memory stores.
"""

import asyncio

import pytest

from parley.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from parley.models.friend import pair_key
from parley.models.user import ProfileUpdate
from parley.services.graph import GraphService
from parley.stores.memory import MemoryConversationStore, MemoryRelationshipStore


async def make_users(graph, *user_ids):
    for uid in user_ids:
        await graph.ensure_user(uid, email=f"{uid}@example.com", display_name=uid.title())


class PausingConversationStore(MemoryConversationStore):
    """Blocks inside delete_conversation until released."""

    def __init__(self):
        super().__init__()
        self.delete_started = asyncio.Event()
        self.release = asyncio.Event()

    async def delete_conversation(self, conversation_key: str) -> int:
        self.delete_started.set()
        await self.release.wait()
        return await super().delete_conversation(conversation_key)


class CrashingConversationStore(MemoryConversationStore):
    """Fails the first delete_conversation with a non-retryable error."""

    def __init__(self):
        super().__init__()
        self.crashes_left = 1

    async def delete_conversation(self, conversation_key: str) -> int:
        if self.crashes_left:
            self.crashes_left -= 1
            raise RuntimeError("process died")
        return await super().delete_conversation(conversation_key)


class RenamingRelationshipStore(MemoryRelationshipStore):
    """Renames bob through the graph just before the edge pair is written."""

    graph = None

    async def insert_edge_pair(self, forward, reverse) -> None:
        await self.graph.update_profile("bob", ProfileUpdate(username="builder"))
        await super().insert_edge_pair(forward, reverse)


class FlakyConversationStore(MemoryConversationStore):
    """Reports the store as unavailable a fixed number of times."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def delete_conversation(self, conversation_key: str) -> int:
        if self.failures:
            self.failures -= 1
            raise StoreUnavailableError("down")
        return await super().delete_conversation(conversation_key)


class TestFriendEdges:
    """Tests for adding, listing and removing friendships."""

    @pytest.mark.asyncio
    async def test_add_friend_is_visible_from_both_sides(self, graph):
        await make_users(graph, "alice", "bob")

        info = await graph.add_friend("alice", "bob")

        assert info.user_id == "bob"
        assert [f.user_id for f in await graph.list_friends("alice")] == ["bob"]
        assert [f.user_id for f in await graph.list_friends("bob")] == ["alice"]
        assert await graph.are_friends("alice", "bob")
        assert await graph.are_friends("bob", "alice")

    @pytest.mark.asyncio
    async def test_add_friend_twice_conflicts(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        with pytest.raises(ConflictError):
            await graph.add_friend("bob", "alice")

        assert len(await graph.list_friends("alice")) == 1

    @pytest.mark.asyncio
    async def test_cannot_friend_yourself(self, graph):
        await make_users(graph, "alice")

        with pytest.raises(ValidationError):
            await graph.add_friend("alice", "alice")

    @pytest.mark.asyncio
    async def test_add_unknown_user(self, graph):
        await make_users(graph, "alice")

        with pytest.raises(NotFoundError):
            await graph.add_friend("alice", "ghost")

    @pytest.mark.asyncio
    async def test_concurrent_adds_create_one_friendship(self, graph, relationships):
        await make_users(graph, "alice", "bob")

        results = await asyncio.gather(
            graph.add_friend("alice", "bob"),
            graph.add_friend("bob", "alice"),
            return_exceptions=True
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert len(await relationships.list_edges("alice")) == 1
        assert len(await relationships.list_edges("bob")) == 1

    @pytest.mark.asyncio
    async def test_add_pushes_friend_added_to_both(self, graph, outbox):
        await make_users(graph, "alice", "bob")

        await graph.add_friend("alice", "bob")

        assert outbox.for_user("alice", "friend_added")[0]["friend_id"] == "bob"
        assert outbox.for_user("bob", "friend_added")[0]["friend_id"] == "alice"

    @pytest.mark.asyncio
    async def test_remove_deletes_edges_and_conversation(self, graph, conversations):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        await graph.send_message("alice", "bob", "hi")
        await graph.send_message("bob", "alice", "hello")

        removed = await graph.remove_friend("bob", "alice")

        assert removed is True
        assert await graph.list_friends("alice") == []
        assert await graph.list_friends("bob") == []
        assert await conversations.list_messages(pair_key("alice", "bob"), 100) == []
        with pytest.raises(ForbiddenError):
            await graph.list_messages("alice", "bob")

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        assert await graph.remove_friend("alice", "bob") is True
        assert await graph.remove_friend("alice", "bob") is False

        with pytest.raises(NotFoundError):
            await graph.remove_friend("alice", "bob", missing_ok=False)

    @pytest.mark.asyncio
    async def test_remove_pushes_friend_removed_to_both(self, graph, outbox):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        await graph.remove_friend("alice", "bob")

        assert outbox.for_user("alice", "friend_removed") == [{"type": "friend_removed", "friend_id": "bob"}]
        assert outbox.for_user("bob", "friend_removed") == [{"type": "friend_removed", "friend_id": "alice"}]

    @pytest.mark.asyncio
    async def test_friends_can_be_added_again_after_removal(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        await graph.remove_friend("alice", "bob")

        await graph.add_friend("bob", "alice")

        assert await graph.are_friends("alice", "bob")


class TestRemovalAtomicity:
    """Readers never see a half-removed friendship."""

    @pytest.mark.asyncio
    async def test_readers_see_friendship_gone_while_removal_runs(self, relationships):
        conversations = PausingConversationStore()
        graph = GraphService(relationships, conversations, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        await graph.send_message("alice", "bob", "hi")

        removal = asyncio.create_task(graph.remove_friend("alice", "bob"))
        await conversations.delete_started.wait()

        # Edges still stored but flagged, conversation not yet deleted
        assert await graph.list_friends("alice") == []
        assert await graph.list_friends("bob") == []
        assert not await graph.are_friends("alice", "bob")

        reader = asyncio.create_task(graph.list_messages("bob", "alice"))
        await asyncio.sleep(0)
        assert not reader.done()

        conversations.release.set()
        assert await removal is True
        with pytest.raises(ForbiddenError):
            await reader

    @pytest.mark.asyncio
    async def test_message_during_removal_is_rejected(self, relationships):
        conversations = PausingConversationStore()
        graph = GraphService(relationships, conversations, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        removal = asyncio.create_task(graph.remove_friend("alice", "bob"))
        await conversations.delete_started.wait()
        writer = asyncio.create_task(graph.send_message("bob", "alice", "wait"))
        conversations.release.set()

        await removal
        with pytest.raises(ForbiddenError):
            await writer
        assert await conversations.list_messages(pair_key("alice", "bob"), 10) == []

    @pytest.mark.asyncio
    async def test_add_during_removal_waits_for_it(self, relationships):
        conversations = PausingConversationStore()
        graph = GraphService(relationships, conversations, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        removal = asyncio.create_task(graph.remove_friend("alice", "bob"))
        await conversations.delete_started.wait()
        adder = asyncio.create_task(graph.add_friend("bob", "alice"))
        conversations.release.set()

        await removal
        # The add waited for the pair lock, so it ran after the removal finished
        info = await adder
        assert info.user_id == "alice"

    @pytest.mark.asyncio
    async def test_interrupted_removal_is_completed_by_recovery(self, relationships):
        conversations = CrashingConversationStore()
        graph = GraphService(relationships, conversations, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        await graph.send_message("alice", "bob", "hi")

        with pytest.raises(RuntimeError):
            await graph.remove_friend("alice", "bob")

        # Marker survives and the flagged edges are already hidden
        assert len(await relationships.list_pending_removals()) == 1
        assert await graph.list_friends("alice") == []
        with pytest.raises(ConflictError):
            await graph.add_friend("alice", "bob")

        recovered = await graph.recover_pending_removals()

        assert recovered == 1
        assert await relationships.list_pending_removals() == []
        assert await relationships.list_edges("alice") == []
        assert await relationships.list_edges("bob") == []
        assert await conversations.list_messages(pair_key("alice", "bob"), 10) == []

    @pytest.mark.asyncio
    async def test_recovery_with_nothing_pending(self, graph):
        assert await graph.recover_pending_removals() == 0

    @pytest.mark.asyncio
    async def test_transient_store_failure_is_retried(self, relationships):
        conversations = FlakyConversationStore(failures=2)
        graph = GraphService(relationships, conversations, retry_attempts=3, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        assert await graph.remove_friend("alice", "bob") is True
        assert await relationships.list_pending_removals() == []

    @pytest.mark.asyncio
    async def test_store_failure_after_retries_leaves_marker(self, relationships):
        conversations = FlakyConversationStore(failures=5)
        graph = GraphService(relationships, conversations, retry_attempts=2, retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        with pytest.raises(StoreUnavailableError):
            await graph.remove_friend("alice", "bob")

        assert not await graph.are_friends("alice", "bob")
        assert len(await relationships.list_pending_removals()) == 1


class TestProfiles:
    """Tests for profiles and username uniqueness."""

    @pytest.mark.asyncio
    async def test_ensure_user_is_idempotent(self, graph):
        first = await graph.ensure_user("alice", display_name="Alice")
        second = await graph.ensure_user("alice", display_name="Someone Else")

        assert first.name == "Alice"
        assert second.name == "Alice"

    @pytest.mark.asyncio
    async def test_get_unknown_profile(self, graph):
        with pytest.raises(NotFoundError):
            await graph.get_profile("ghost")

    @pytest.mark.asyncio
    async def test_username_taken_by_someone_else(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.update_profile("alice", ProfileUpdate(username="neo"))

        assert await graph.check_username_unique("neo") is False
        assert await graph.check_username_unique("neo", excluding_user_id="alice") is True
        with pytest.raises(ConflictError):
            await graph.update_profile("bob", ProfileUpdate(username="neo"))

    @pytest.mark.asyncio
    async def test_usernames_are_case_sensitive(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.update_profile("alice", ProfileUpdate(username="Neo"))

        profile = await graph.update_profile("bob", ProfileUpdate(username="neo"))

        assert profile.username == "neo"

    @pytest.mark.asyncio
    async def test_keeping_own_username_is_allowed(self, graph):
        await make_users(graph, "alice")
        await graph.update_profile("alice", ProfileUpdate(username="neo"))

        profile = await graph.update_profile("alice", ProfileUpdate(username="neo", bio="hello"))

        assert profile.bio == "hello"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, graph):
        await make_users(graph, "alice", "bob")

        results = await asyncio.gather(
            graph.update_profile("alice", ProfileUpdate(username="neo")),
            graph.update_profile("bob", ProfileUpdate(username="neo")),
            return_exceptions=True
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(winners) == 1
        owner = await graph.relationships.find_by_username("neo")
        assert owner.user_id == winners[0].user_id

    @pytest.mark.asyncio
    async def test_released_username_can_be_claimed(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.update_profile("alice", ProfileUpdate(username="neo"))
        await graph.update_profile("alice", ProfileUpdate(username="trinity"))

        profile = await graph.update_profile("bob", ProfileUpdate(username="neo"))

        assert profile.username == "neo"

    @pytest.mark.asyncio
    async def test_username_change_updates_friend_lists(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        await graph.update_profile("bob", ProfileUpdate(username="builder"))

        friends = await graph.list_friends("alice")
        assert friends[0].display_name == "builder"

    @pytest.mark.asyncio
    async def test_rename_while_friendship_is_written(self, conversations):
        relationships = RenamingRelationshipStore()
        graph = GraphService(relationships, conversations, retry_delay=0)
        relationships.graph = graph
        await make_users(graph, "alice", "bob")

        info = await graph.add_friend("alice", "bob")

        assert info.display_name == "builder"
        friends = await graph.list_friends("alice")
        assert friends[0].display_name == "builder"

    def test_blank_username_rejected(self):
        with pytest.raises(ValueError):
            ProfileUpdate(username="   ")


class TestFriendRequests:
    """Tests for the request / accept / decline flow."""

    @pytest.mark.asyncio
    async def test_accept_creates_friendship(self, graph):
        await make_users(graph, "alice", "bob")
        request = await graph.send_friend_request("alice", "bob")

        incoming = await graph.list_friend_requests("bob")
        assert [r.id for r in incoming] == [request.id]
        assert incoming[0].from_display_name == "Alice"

        await graph.accept_friend_request("bob", request.id)

        assert await graph.are_friends("alice", "bob")
        assert await graph.list_friend_requests("bob") == []

    @pytest.mark.asyncio
    async def test_request_alone_does_not_create_friendship(self, graph):
        await make_users(graph, "alice", "bob")

        await graph.send_friend_request("alice", "bob")

        assert not await graph.are_friends("alice", "bob")

    @pytest.mark.asyncio
    async def test_decline(self, graph):
        await make_users(graph, "alice", "bob")
        request = await graph.send_friend_request("alice", "bob")

        await graph.decline_friend_request("bob", request.id)

        assert not await graph.are_friends("alice", "bob")
        with pytest.raises(NotFoundError):
            await graph.accept_friend_request("bob", request.id)

    @pytest.mark.asyncio
    async def test_only_recipient_can_accept(self, graph):
        await make_users(graph, "alice", "bob")
        request = await graph.send_friend_request("alice", "bob")

        with pytest.raises(NotFoundError):
            await graph.accept_friend_request("alice", request.id)

    @pytest.mark.asyncio
    async def test_duplicate_request_either_direction(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.send_friend_request("alice", "bob")

        with pytest.raises(ConflictError):
            await graph.send_friend_request("alice", "bob")
        with pytest.raises(ConflictError):
            await graph.send_friend_request("bob", "alice")

    @pytest.mark.asyncio
    async def test_request_to_existing_friend(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        with pytest.raises(ConflictError):
            await graph.send_friend_request("alice", "bob")

    @pytest.mark.asyncio
    async def test_accept_during_removal_keeps_request_pending(self, relationships):
        graph = GraphService(relationships, CrashingConversationStore(), retry_delay=0)
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        with pytest.raises(RuntimeError):
            await graph.remove_friend("alice", "bob")
        request = await graph.send_friend_request("alice", "bob")

        with pytest.raises(ConflictError):
            await graph.accept_friend_request("bob", request.id)

        assert [r.id for r in await graph.list_friend_requests("bob")] == [request.id]

        await graph.recover_pending_removals()
        await graph.accept_friend_request("bob", request.id)
        assert await graph.are_friends("alice", "bob")
        assert await graph.list_friend_requests("bob") == []

    @pytest.mark.asyncio
    async def test_accept_when_already_friends_settles_request(self, graph):
        await make_users(graph, "alice", "bob")
        request = await graph.send_friend_request("alice", "bob")
        await graph.add_friend("alice", "bob")

        with pytest.raises(ConflictError):
            await graph.accept_friend_request("bob", request.id)

        assert await graph.list_friend_requests("bob") == []

    @pytest.mark.asyncio
    async def test_request_validation(self, graph):
        await make_users(graph, "alice")

        with pytest.raises(ValidationError):
            await graph.send_friend_request("alice", "alice")
        with pytest.raises(NotFoundError):
            await graph.send_friend_request("alice", "ghost")


class TestConversations:
    """Tests for durable friend conversations."""

    @pytest.mark.asyncio
    async def test_messages_oldest_first(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        for text in ("one", "two", "three"):
            await graph.send_message("alice", "bob", text)

        messages = await graph.list_messages("bob", "alice")

        assert [m.text for m in messages] == ["one", "two", "three"]
        assert all(m.conversation_key == "alice:bob" for m in messages)

    @pytest.mark.asyncio
    async def test_limit_keeps_most_recent(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")
        for i in range(5):
            await graph.send_message("alice", "bob", f"m{i}")

        messages = await graph.list_messages("alice", "bob", limit=2)

        assert [m.text for m in messages] == ["m3", "m4"]

    @pytest.mark.asyncio
    async def test_strangers_cannot_message(self, graph):
        await make_users(graph, "alice", "bob")

        with pytest.raises(ForbiddenError):
            await graph.send_message("alice", "bob", "hi")

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, graph):
        await make_users(graph, "alice", "bob")
        await graph.add_friend("alice", "bob")

        with pytest.raises(ValidationError):
            await graph.send_message("alice", "bob", "   ")
