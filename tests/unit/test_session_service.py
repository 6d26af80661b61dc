"""Unit tests for session state and the session store."""

import time

import pytest

from lisa_voice.exceptions import SessionNotFound
from lisa_voice.models.conversation import ConversationPhase
from lisa_voice.services.session_service import ConversationTurn, Session, SessionStore


class TestSession:
    """Tests for Session."""

    def test_defaults(self):
        """Test a fresh session's state."""
        session = Session(session_id="abc")

        assert session.phase == ConversationPhase.IDLE
        assert len(session.history) == 0
        assert session.interruption_count == 0
        assert session.is_busy is False

    def test_history_is_bounded(self):
        """Test that the oldest turns are dropped first."""
        session = Session(session_id="abc", history_max_turns=4)

        for i in range(6):
            session.add_turn("user", f"turn {i}")

        assert [t.content for t in session.history] == ["turn 2", "turn 3", "turn 4", "turn 5"]

    def test_recent_history(self):
        """Test slicing the most recent turns."""
        session = Session(session_id="abc")
        for i in range(10):
            session.add_turn("user" if i % 2 == 0 else "assistant", f"turn {i}")

        recent = session.recent_history(3)

        assert [t.content for t in recent] == ["turn 7", "turn 8", "turn 9"]
        assert session.recent_history(0) == []

    def test_context_line(self):
        """Test rendering turns for prompts."""
        assert ConversationTurn(role="user", content="hi").as_context_line() == "Human: hi"
        assert ConversationTurn(role="assistant", content="hello").as_context_line() == "Assistant: hello"

    @pytest.mark.asyncio
    async def test_busy_while_locked(self):
        """Test that holding the turn lock marks the session busy."""
        session = Session(session_id="abc")

        async with session.turn_lock:
            assert session.is_busy is True
        assert session.is_busy is False


class TestSessionStore:
    """Tests for SessionStore."""

    def test_get_or_create(self, session_store, settings):
        """Test lazy creation and reuse."""
        first = session_store.get_or_create("s1")
        second = session_store.get_or_create("s1")

        assert first is second
        assert len(session_store) == 1
        assert first.history.maxlen == settings.history_max_turns

    def test_get_missing(self, session_store):
        """Test looking up an unknown session."""
        assert session_store.get("nope") is None
        with pytest.raises(SessionNotFound):
            session_store.require("nope")

    def test_remove(self, session_store):
        """Test removing a session marks it ended."""
        session = session_store.get_or_create("s1")

        removed = session_store.remove("s1")

        assert removed is session
        assert session.phase == ConversationPhase.ENDED
        assert session_store.remove("s1") is None
        assert session_store.session_ids() == []

    def test_sweep_idle(self, session_store):
        """Test that only idle sessions are swept."""
        idle = session_store.get_or_create("idle")
        session_store.get_or_create("active")
        idle.last_activity_at = time.time() - 600

        removed = session_store.sweep_idle(max_idle_seconds=300)

        assert removed == ["idle"]
        assert session_store.session_ids() == ["active"]

    @pytest.mark.asyncio
    async def test_sweep_skips_busy_sessions(self, session_store):
        """Test that a session with a turn in flight is never swept."""
        busy = session_store.get_or_create("busy")
        busy.last_activity_at = time.time() - 600

        async with busy.turn_lock:
            assert session_store.sweep_idle(max_idle_seconds=300) == []

        assert session_store.sweep_idle(max_idle_seconds=300) == ["busy"]

    @pytest.mark.asyncio
    async def test_start_stop(self, settings):
        """Test starting and stopping the sweep task."""
        store = SessionStore(settings)

        await store.start()
        assert store._sweep_task is not None

        await store.stop()
        assert store._sweep_task is None
