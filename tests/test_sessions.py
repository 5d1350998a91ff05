"""
Tests for SessionCoordinator

Relay, termination rules and retention of anonymous chat sessions.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from parley.exceptions import ConflictError, ForbiddenError, InvalidSessionError, ValidationError
from parley.models.chat import SessionState
from parley.services.sessions import SessionCoordinator


class TestSessionRelay:
    """Tests for relaying messages inside a session."""

    @pytest.mark.asyncio
    async def test_relay_reaches_partner_anonymously(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")

        await sessions.relay_message(session.session_id, "alice", "hi")

        pushed = outbox.for_user("bob", "chat_message")
        assert len(pushed) == 1
        assert pushed[0]["text"] == "hi"
        assert pushed[0]["sender"] == "Stranger"
        assert "alice" not in str(pushed[0])
        assert outbox.for_user("alice", "chat_message") == []
        assert [m.text for m in session.messages] == ["hi"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_relay(self, sessions):
        session = await sessions.create_session("alice", "bob")

        with pytest.raises(ForbiddenError):
            await sessions.relay_message(session.session_id, "mallory", "hi")

    @pytest.mark.asyncio
    async def test_unknown_session(self, sessions):
        with pytest.raises(InvalidSessionError):
            await sessions.relay_message("nope", "alice", "hi")

    @pytest.mark.asyncio
    async def test_message_text_is_validated(self, sessions):
        session = await sessions.create_session("alice", "bob")

        with pytest.raises(ValidationError):
            await sessions.relay_message(session.session_id, "alice", "")
        with pytest.raises(ValidationError):
            await sessions.relay_message(session.session_id, "alice", "x" * 5000)


class TestSessionLifecycle:
    """Tests for creating and ending sessions."""

    @pytest.mark.asyncio
    async def test_user_can_only_be_in_one_session(self, sessions):
        await sessions.create_session("alice", "bob")

        with pytest.raises(ConflictError):
            await sessions.create_session("alice", "carol")

    @pytest.mark.asyncio
    async def test_session_needs_two_users(self, sessions):
        with pytest.raises(ValidationError):
            await sessions.create_session("alice", "alice")

    @pytest.mark.asyncio
    async def test_end_notifies_partner_and_is_terminal(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")

        assert await sessions.end_session(session.session_id, "alice") is True

        assert session.state == SessionState.ENDED
        assert session.ended_by == "alice"
        assert outbox.for_user("bob", "session_ended") == [
            {"type": "session_ended", "session_id": session.session_id, "reason": "left"}
        ]
        with pytest.raises(InvalidSessionError):
            await sessions.relay_message(session.session_id, "bob", "still there?")

    @pytest.mark.asyncio
    async def test_end_twice_is_a_noop(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")
        await sessions.end_session(session.session_id, "alice")

        assert await sessions.end_session(session.session_id, "bob") is False
        assert await sessions.end_session(session.session_id, "alice") is False

        assert len(outbox.for_user("bob", "session_ended")) == 1
        assert outbox.for_user("alice", "session_ended") == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_end(self, sessions):
        session = await sessions.create_session("alice", "bob")

        with pytest.raises(ForbiddenError):
            await sessions.end_session(session.session_id, "mallory")
        assert session.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_disconnect_ends_session(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")

        await sessions.on_disconnect(session.session_id, "bob")

        assert session.state == SessionState.ENDED
        assert session.end_reason == "disconnect"
        assert outbox.for_user("alice", "session_ended")[0]["reason"] == "disconnect"
        assert sessions.active_session_for("alice") is None

    @pytest.mark.asyncio
    async def test_simultaneous_end_and_disconnect(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")

        results = await asyncio.gather(
            sessions.end_session(session.session_id, "alice"),
            sessions.on_disconnect(session.session_id, "bob"),
        )

        assert sorted(results) == [False, True]
        assert len(outbox.for_user("alice", "session_ended")) + len(outbox.for_user("bob", "session_ended")) == 1

    @pytest.mark.asyncio
    async def test_participants_free_after_end(self, sessions):
        session = await sessions.create_session("alice", "bob")
        await sessions.end_session(session.session_id, "bob")

        fresh = await sessions.create_session("alice", "carol")

        assert sessions.active_session_for("alice") is fresh
        assert sessions.active_count == 1

    @pytest.mark.asyncio
    async def test_end_then_message_scenario(self, sessions, outbox):
        session = await sessions.create_session("a", "b")
        await sessions.relay_message(session.session_id, "a", "hello")
        await sessions.relay_message(session.session_id, "b", "hey")

        await sessions.end_session(session.session_id, "a")

        with pytest.raises(InvalidSessionError):
            await sessions.relay_message(session.session_id, "b", "bye")
        assert [m["text"] for m in outbox.for_user("b", "chat_message")] == ["hello"]
        assert [m["text"] for m in outbox.for_user("a", "chat_message")] == ["hey"]


class TestSessionRetention:
    """Tests for purging and shutdown."""

    @pytest.mark.asyncio
    async def test_purge_only_drops_old_ended_sessions(self, sessions):
        old = await sessions.create_session("alice", "bob")
        live = await sessions.create_session("carol", "dave")
        await sessions.end_session(old.session_id, "alice")

        assert await sessions.purge_ended() == 0

        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert await sessions.purge_ended(now=later) == 1
        assert sessions.get_session(old.session_id) is None
        assert sessions.get_session(live.session_id) is live

    @pytest.mark.asyncio
    async def test_ended_session_still_reports_invalid_until_purged(self, sessions):
        session = await sessions.create_session("alice", "bob")
        await sessions.end_session(session.session_id, "alice")

        with pytest.raises(InvalidSessionError) as exc:
            await sessions.relay_message(session.session_id, "bob", "hi")

        assert exc.value.message == "Session has ended"

    @pytest.mark.asyncio
    async def test_end_after_purge_is_still_a_noop(self, sessions, outbox):
        session = await sessions.create_session("alice", "bob")
        await sessions.end_session(session.session_id, "alice")
        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert await sessions.purge_ended(now=later) == 1
        sent_before = len(outbox.sent)

        assert await sessions.end_session(session.session_id, "bob") is False
        assert await sessions.on_disconnect(session.session_id, "alice") is False
        assert len(outbox.sent) == sent_before

        with pytest.raises(ForbiddenError):
            await sessions.end_session(session.session_id, "mallory")
        with pytest.raises(InvalidSessionError):
            await sessions.relay_message(session.session_id, "bob", "hi")

    @pytest.mark.asyncio
    async def test_unknown_session_end_is_invalid(self, sessions):
        with pytest.raises(InvalidSessionError):
            await sessions.end_session("never-existed", "alice")

    @pytest.mark.asyncio
    async def test_shutdown_ends_everything(self, outbox):
        coordinator = SessionCoordinator(notify=outbox, cleanup_interval_seconds=3600)
        coordinator.start()
        session = await coordinator.create_session("alice", "bob")

        ended = await coordinator.shutdown()

        assert ended == 1
        assert session.state == SessionState.ENDED
        assert outbox.for_user("alice", "session_ended")[0]["reason"] == "shutdown"
        assert outbox.for_user("bob", "session_ended")[0]["reason"] == "shutdown"
        assert coordinator.active_count == 0
