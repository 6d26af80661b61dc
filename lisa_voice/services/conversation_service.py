"""
Conversation Service - Per-session conversation state machine.

Handles:
- Interim hypotheses (attentive fillers, never classified)
- Continuous speech (topic-aware backchannel after silence)
- Final utterances (classify, compose, execute, record)
- Interruption, start/end conversation, and statistics

Turns for one session are serialized by the session's turn lock;
different sessions run in parallel.
"""
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

import structlog

from lisa_voice.config import Settings, get_settings
from lisa_voice.models.conversation import (
    ConversationPhase,
    Emotion,
    Intent,
    IntentResult,
    Topic,
    Utterance,
)
from lisa_voice.models.schemas import ConversationStats, VoiceResponse
from lisa_voice.services.action_executor import ActionExecutor
from lisa_voice.services.intent_classifier import IntentClassifier
from lisa_voice.services.phrases import (
    APOLOGY_DEFAULT,
    APOLOGY_FRUSTRATED,
    CLOSING_MESSAGE,
    INTERIM_FILLERS,
    INTERRUPTION_PHRASES,
    LISTENING_PROMPT,
    NO_ACTIVE_CONVERSATION,
    WRAP_UP_PROMPT,
    PhraseSelector,
    topic_fillers,
)
from lisa_voice.services.response_composer import (
    Action,
    ResponseComposer,
    coerce_order_slots,
    missing_order_slots,
)
from lisa_voice.services.session_service import Session, SessionStore

logger = structlog.get_logger()

CONVERSATION_STARTED = "conversation_started"
CONVERSATION_ENDED = "conversation_ended"
FALLBACK_PROVIDERS = {"rules", "template"}


@dataclass
class ConversationConfig:
    """Tunables for the conversation state machine."""
    silence_timeout_ms: int = 1500
    max_conversation_minutes: int = 30
    enable_filler_words: bool = True
    enable_thinking_sounds: bool = True
    response_style: str = "conversational_telephonic"
    interim_filler_min_chars: int = 50
    interim_filler_cooldown_ms: int = 2000
    active_window_seconds: int = 30
    history_context_turns: int = 6

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConversationConfig":
        settings = settings or get_settings()
        return cls(
            silence_timeout_ms=settings.silence_timeout_ms,
            max_conversation_minutes=settings.max_conversation_length,
            enable_filler_words=settings.enable_filler_words,
            enable_thinking_sounds=settings.enable_thinking_sounds,
            response_style=settings.ai_response_style,
            interim_filler_min_chars=settings.interim_filler_min_chars,
            interim_filler_cooldown_ms=settings.interim_filler_cooldown_ms,
            active_window_seconds=settings.active_window_seconds,
        )


class ConversationService:
    """
    Drives one conversational turn at a time per session.

    Args:
        session_store: Owner of session state
        classifier: Intent provider chain
        composer: Reply generation and composition
        executor: Side-effecting actions
        config: Conversation tunables
        selector: Phrase picker, injectable for tests
    """

    def __init__(
        self,
        session_store: SessionStore,
        classifier: IntentClassifier,
        composer: ResponseComposer,
        executor: ActionExecutor,
        config: Optional[ConversationConfig] = None,
        selector: Optional[PhraseSelector] = None,
    ) -> None:
        self.sessions = session_store
        self.classifier = classifier
        self.composer = composer
        self.executor = executor
        self.config = config or ConversationConfig()
        self.selector = selector or PhraseSelector()

    async def process_speech(
        self,
        session_id: str,
        transcript: str,
        is_final: bool = True,
        interim_results: bool = False,
    ) -> VoiceResponse:
        """Single entry point for recognized speech."""
        transcript = (transcript or "").strip()

        if not is_final:
            session = self.sessions.get_or_create(session_id)
            if interim_results:
                return self._handle_interim(session, transcript)
            return self._handle_continuous_speech(session)

        return await self._handle_final(session_id, transcript)

    async def process_utterance(
        self,
        session_id: str,
        utterance: Utterance,
        interim_results: bool = False,
    ) -> VoiceResponse:
        return await self.process_speech(
            session_id,
            utterance.transcript,
            is_final=utterance.is_final,
            interim_results=interim_results,
        )

    def _handle_interim(self, session: Session, transcript: str) -> VoiceResponse:
        session.is_user_speaking = True
        session.touch()

        if session.is_busy:
            return VoiceResponse.silent()

        session.phase = ConversationPhase.LISTENING

        if not self.config.enable_thinking_sounds:
            return VoiceResponse.silent()
        if len(transcript) <= self.config.interim_filler_min_chars:
            return VoiceResponse.silent()

        now = time.time()
        if (now - session.last_filler_at) * 1000 < self.config.interim_filler_cooldown_ms:
            return VoiceResponse.silent()

        session.last_filler_at = now
        phrase = self.selector.pick(INTERIM_FILLERS)
        return VoiceResponse(
            text=phrase,
            filler_word=phrase,
            is_thinking=True,
            should_speak=True,
            confidence=0.5,
        )

    def _handle_continuous_speech(self, session: Session) -> VoiceResponse:
        now = time.time()
        silence_ms = (now - session.last_speech_at) * 1000
        session.last_speech_at = now
        session.touch()

        if (
            not self.config.enable_filler_words
            or silence_ms <= self.config.silence_timeout_ms
            or session.is_assistant_speaking
            or session.is_busy
        ):
            return VoiceResponse.silent()

        phrase = self.selector.pick(topic_fillers(session.current_topic))
        return VoiceResponse(
            text=phrase,
            filler_word=phrase,
            is_thinking=True,
            should_speak=True,
            confidence=0.3,
        )

    async def _handle_final(self, session_id: str, transcript: str) -> VoiceResponse:
        existing = self.sessions.get(session_id)
        session = existing or self.sessions.get_or_create(session_id)
        created = existing is None

        async with session.turn_lock:
            if session.phase == ConversationPhase.ENDED:
                # Ended by the turn we were queued behind
                return await self._handle_final(session_id, transcript)
            return await self._run_turn(session, transcript, created)

    async def _run_turn(self, session: Session, transcript: str, created: bool) -> VoiceResponse:
        session_id = session.session_id
        start_time = time.time()

        session.is_user_speaking = False
        session.last_speech_at = start_time
        session.phase = ConversationPhase.PROCESSING

        context = session.recent_history(self.config.history_context_turns)
        session.add_turn("user", transcript)

        if session.duration_seconds > self.config.max_conversation_minutes * 60:
            session.phase = ConversationPhase.LONG_RUNNING
            logger.info(
                "conversation_wrap_up",
                session_id=session_id,
                duration_seconds=round(session.duration_seconds),
            )
            return VoiceResponse(text=WRAP_UP_PROMPT, should_speak=True, confidence=0.8)

        intent: Optional[IntentResult] = None
        try:
            intent = await self.classifier.classify(transcript, context)

            if intent.is_intent(Intent.END_CONVERSATION):
                return await self._end_from_intent(session, intent, created)

            intent = self._fill_order_slots(session, intent)
            order_slots = {**session.slots, **coerce_order_slots(intent.parameters)}
            missing = missing_order_slots(order_slots)

            history = session.recent_history(self.config.history_context_turns)
            raw_text, provider = await self.composer.generate(transcript, history, intent)
            composed = self.composer.compose(
                raw_text,
                intent,
                generated_by_llm=provider not in FALLBACK_PROVIDERS,
                missing_slots=missing,
            )
            response = composed.response

            session.add_turn("assistant", response.text, {"intent": intent.intent, "action": response.action})
            session.current_topic = intent.topic
            session.awaiting_user_input = intent.requires_user_input or response.text.rstrip().endswith("?")
            session.phase = ConversationPhase.RESPONDING

            if response.action:
                parameters = order_slots if response.action == Action.ORDER_CREATED else composed.action_parameters
                result = await self.executor.execute(response.action, parameters, session_id)
                response.data = {**(response.data or {}), **result}

                if response.action == Action.ORDER_CREATED and result.get("statusCode") in (200, 201):
                    session.slots.clear()
                    session.pending_intent = None

            if session.phase != ConversationPhase.ENDED:
                session.phase = ConversationPhase.IDLE

            logger.info(
                "turn_completed",
                session_id=session_id,
                intent=intent.intent,
                confidence=intent.confidence,
                provider=intent.provider,
                action=response.action,
                latency_ms=round((time.time() - start_time) * 1000, 1),
            )
            return response

        except Exception as e:
            logger.error(
                "turn_failed",
                session_id=session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            emotion = intent.emotion if intent is not None else Emotion.NEUTRAL.value
            text = APOLOGY_FRUSTRATED if emotion == Emotion.FRUSTRATED.value else APOLOGY_DEFAULT
            session.add_turn("assistant", text, {"error": type(e).__name__})
            session.phase = ConversationPhase.IDLE
            return VoiceResponse(text=text, should_speak=True, confidence=0.5)

    def _fill_order_slots(self, session: Session, intent: IntentResult) -> IntentResult:
        """Merge order parameters into the session draft across turns."""
        pending = session.pending_intent == Intent.CREATE_ORDER.value

        if intent.is_intent(Intent.CREATE_ORDER) or (pending and intent.is_intent(Intent.GENERAL)):
            session.pending_intent = Intent.CREATE_ORDER.value
            session.slots.update(coerce_order_slots(intent.parameters))
            intent = replace(intent, intent=Intent.CREATE_ORDER.value, topic=Topic.ORDER_CREATION.value)

            if not missing_order_slots(session.slots):
                intent.natural_response = (
                    f"Perfect! I'll place that order for {session.slots['quantity']} "
                    f"{session.slots['glass_type']} glass now."
                )
                intent.requires_user_input = False
            logger.debug("order_slots_updated", session_id=session.session_id, slots=sorted(session.slots))

        elif pending:
            logger.info("order_draft_abandoned", session_id=session.session_id, intent=intent.intent)
            session.slots.clear()
            session.pending_intent = None

        return intent

    async def _end_from_intent(self, session: Session, intent: IntentResult, created: bool) -> VoiceResponse:
        if created:
            # The session only exists because of this utterance
            self.sessions.remove(session.session_id)
            return self._no_active_conversation()

        data = await self.executor.execute(Action.END_CONVERSATION, {}, session.session_id)
        logger.info("conversation_ended", session_id=session.session_id, reason="intent")
        return VoiceResponse(
            text=CLOSING_MESSAGE,
            action=Action.END_CONVERSATION,
            data=data,
            should_speak=True,
            confidence=intent.confidence,
        )

    @staticmethod
    def _no_active_conversation() -> VoiceResponse:
        return VoiceResponse(
            text="",
            data={"message": NO_ACTIVE_CONVERSATION},
            should_speak=False,
            confidence=0.0,
        )

    def handle_interruption(self, session_id: str) -> VoiceResponse:
        """
        User barged in while the assistant was speaking.

        History is untouched; an unknown session still gets a re-engagement
        phrase so the caller always hears something.
        """
        session = self.sessions.get(session_id)
        if session is not None:
            session.interruption_count += 1
            session.is_assistant_speaking = False
            session.is_user_speaking = True
            session.touch()
            logger.info(
                "conversation_interrupted",
                session_id=session_id,
                interruption_count=session.interruption_count,
            )
        else:
            logger.debug("interruption_without_session", session_id=session_id)

        phrase = self.selector.pick(INTERRUPTION_PHRASES)
        return VoiceResponse(text=phrase, should_speak=True, confidence=0.7)

    def start_conversation(self, session_id: str) -> VoiceResponse:
        session = self.sessions.get_or_create(session_id)
        session.phase = ConversationPhase.LISTENING
        logger.info("conversation_started", session_id=session_id)
        return VoiceResponse(
            text=LISTENING_PROMPT,
            action=CONVERSATION_STARTED,
            data={"sessionId": session_id},
            should_speak=True,
            confidence=1.0,
        )

    def end_conversation(self, session_id: str) -> VoiceResponse:
        """End a conversation. Calling it again returns the no-op response."""
        if self.sessions.remove(session_id) is None:
            return self._no_active_conversation()

        logger.info("conversation_ended", session_id=session_id, reason="request")
        return VoiceResponse(
            text=CLOSING_MESSAGE,
            action=CONVERSATION_ENDED,
            data={
                "message": "Conversation ended successfully",
                "action": Action.END_CONVERSATION,
                "sessionId": session_id,
            },
            should_speak=True,
            confidence=1.0,
        )

    def clear_session(self, session_id: str) -> None:
        """Drop session state on transport teardown."""
        self.sessions.remove(session_id)

    def set_assistant_speaking(self, session_id: str, speaking: bool) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return
        session.is_assistant_speaking = speaking
        if speaking:
            session.is_user_speaking = False
        session.touch()

    def get_conversation_stats(self, session_id: str) -> ConversationStats:
        session = self.sessions.get(session_id)
        if session is None:
            return ConversationStats(session_id=session_id, exists=False)

        return ConversationStats(
            session_id=session_id,
            duration_seconds=round(session.duration_seconds, 2),
            message_count=len(session.history),
            interruption_count=session.interruption_count,
            current_topic=session.current_topic,
            is_active=(time.time() - session.last_speech_at) < self.config.active_window_seconds,
        )

    def get_session_snapshot(self, session_id: str) -> dict[str, Any]:
        """
        Current state of a session.

        Raises:
            SessionNotFound: no conversation for session_id
        """
        session = self.sessions.require(session_id)
        return {
            "sessionId": session.session_id,
            "phase": session.phase.value,
            "currentTopic": session.current_topic,
            "awaitingUserInput": session.awaiting_user_input,
            "slots": dict(session.slots),
            "history": [{"role": t.role, "content": t.content} for t in session.history],
        }
