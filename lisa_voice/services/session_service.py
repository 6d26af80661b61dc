"""
Session Service - Owns per-connection conversation state.

Handles:
- Lazy session creation keyed by the transport connection id
- Bounded conversation history (oldest turns dropped first)
- Per-session turn lock so one utterance is processed at a time
- Periodic idle sweep
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Optional

import structlog

from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import SessionNotFound
from lisa_voice.models.conversation import ConversationPhase

logger = structlog.get_logger()


@dataclass
class ConversationTurn:
    """A single turn in the conversation."""

    role: str  # "user" or "assistant"
    content: str
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_context_line(self) -> str:
        speaker = "Human" if self.role == "user" else "Assistant"
        return f"{speaker}: {self.content}"


@dataclass
class Session:
    """Conversation state for one connected client."""

    session_id: str
    history_max_turns: int = 50
    started_at: float = field(default_factory=time.time)
    last_speech_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    history: Deque[ConversationTurn] = field(init=False)
    current_topic: Optional[str] = None
    awaiting_user_input: bool = False
    is_user_speaking: bool = False
    is_assistant_speaking: bool = False
    interruption_count: int = 0
    phase: ConversationPhase = ConversationPhase.IDLE
    slots: dict[str, Any] = field(default_factory=dict)
    pending_intent: Optional[str] = None
    last_filler_at: float = 0.0
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=self.history_max_turns)

    @property
    def is_busy(self) -> bool:
        """Whether a turn is in flight."""
        return self.turn_lock.locked()

    @property
    def duration_seconds(self) -> float:
        return time.time() - self.started_at

    def add_turn(self, role: str, content: str, metadata: Optional[dict[str, Any]] = None) -> None:
        self.history.append(ConversationTurn(role=role, content=content, metadata=metadata or {}))
        self.touch()

    def recent_history(self, limit: int = 6) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        return list(self.history)[-limit:]

    def touch(self) -> None:
        self.last_activity_at = time.time()


class SessionStore:
    """
    In-memory session table.

    Mutations never await, so on a single event loop they cannot
    interleave; the idle sweep iterates over a snapshot.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, Session] = {}
        self._sweep_task: Optional[asyncio.Task[None]] = None

    def __len__(self) -> int:
        return len(self._sessions)

    async def start(self) -> None:
        """Start the idle sweep task."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the idle sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        """Periodically discard idle sessions."""
        while True:
            await asyncio.sleep(self._settings.session_sweep_interval_seconds)
            try:
                self.sweep_idle()
            except Exception as e:
                logger.error("session_sweep_error", error=str(e))

    def get_or_create(self, session_id: str) -> Session:
        """Get existing session or create a new one."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
            return session

        session = Session(
            session_id=session_id,
            history_max_turns=self._settings.history_max_turns,
        )
        self._sessions[session_id] = session
        logger.info("session_created", session_id=session_id, total=len(self._sessions))
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Get session by ID."""
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        """Get session by ID or raise SessionNotFound."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def remove(self, session_id: str) -> Optional[Session]:
        """Remove a session, returning it if it existed."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.phase = ConversationPhase.ENDED
            logger.info(
                "session_removed",
                session_id=session_id,
                turn_count=len(session.history),
                duration_seconds=round(session.duration_seconds, 1),
            )
        return session

    def sweep_idle(self, max_idle_seconds: Optional[float] = None) -> list[str]:
        """
        Discard sessions with no activity for max_idle_seconds.

        Sessions with a turn in flight are skipped.

        Returns:
            IDs of removed sessions
        """
        max_idle = max_idle_seconds if max_idle_seconds is not None else self._settings.session_idle_timeout_seconds
        now = time.time()
        expired = [
            session_id
            for session_id, session in list(self._sessions.items())
            if now - session.last_activity_at > max_idle and not session.is_busy
        ]

        for session_id in expired:
            self.remove(session_id)

        if expired:
            logger.info("sessions_sweep_complete", count=len(expired), remaining=len(self._sessions))
        return expired

    def session_ids(self) -> list[str]:
        return list(self._sessions)
