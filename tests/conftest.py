"""Shared pytest fixtures for testing."""

import os

import numpy as np
import pytest

# Set test environment before the app reads settings
os.environ["ENVIRONMENT"] = "test"
os.environ["LLM_PROVIDERS"] = ""
os.environ["ASR_PROVIDERS"] = "mock"
os.environ["ORDER_STORE_URL"] = ""
os.environ["RATE_LIMIT_REQUESTS"] = "1000"
for _key in ("GROQ_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "DEEPGRAM_API_KEY"):
    os.environ[_key] = ""

from lisa_voice.adapters.order_store import InMemoryOrderStore  # noqa: E402
from lisa_voice.config import Settings  # noqa: E402
from lisa_voice.services.action_executor import ActionExecutor  # noqa: E402
from lisa_voice.services.conversation_service import ConversationConfig, ConversationService  # noqa: E402
from lisa_voice.services.intent_classifier import IntentClassifier  # noqa: E402
from lisa_voice.services.phrases import PhraseSelector  # noqa: E402
from lisa_voice.services.response_composer import ResponseComposer  # noqa: E402
from lisa_voice.services.session_service import SessionStore  # noqa: E402

SAMPLE_RATE = 16000


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with no networked providers."""
    return Settings(
        environment="test",
        llm_providers="",
        asr_providers="mock",
        order_store_url="",
        groq_api_key="",
        openai_api_key="",
        anthropic_api_key="",
        deepgram_api_key="",
    )


@pytest.fixture
def session_store(settings) -> SessionStore:
    return SessionStore(settings)


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def first_phrase() -> PhraseSelector:
    """Deterministic selector that always picks the first phrase."""
    return PhraseSelector(lambda pool: pool[0])


@pytest.fixture
def conversation_config() -> ConversationConfig:
    return ConversationConfig(
        silence_timeout_ms=1500,
        max_conversation_minutes=30,
        interim_filler_min_chars=50,
        interim_filler_cooldown_ms=2000,
    )


@pytest.fixture
def make_conversation(session_store, order_store, first_phrase, conversation_config):
    """Factory building a ConversationService over the given providers."""

    def _make(providers=(), store=None, timeout_seconds: float = 1.0) -> ConversationService:
        classifier = IntentClassifier(list(providers), timeout_seconds=timeout_seconds)
        return ConversationService(
            session_store=session_store,
            classifier=classifier,
            composer=ResponseComposer(classifier.chain),
            executor=ActionExecutor(store or order_store, session_store),
            config=conversation_config,
            selector=first_phrase,
        )

    return _make


@pytest.fixture
def conversation(make_conversation) -> ConversationService:
    """Conversation service with only the rule-based provider."""
    return make_conversation()


# =============================================================================
# Audio Fixtures
# =============================================================================


def tone_pcm(frequency: float, duration_ms: float, amplitude: float = 0.3) -> bytes:
    """PCM16 sine tone."""
    n = int(SAMPLE_RATE * duration_ms / 1000)
    t = np.arange(n) / SAMPLE_RATE
    samples = amplitude * np.sin(2 * np.pi * frequency * t)
    return (samples * 32767).astype("<i2").tobytes()


def silence_pcm(duration_ms: float) -> bytes:
    return b"\x00\x00" * int(SAMPLE_RATE * duration_ms / 1000)


@pytest.fixture
def speech_audio() -> bytes:
    """One second of a voice-band tone."""
    return tone_pcm(300, 1000)


@pytest.fixture
def silent_audio() -> bytes:
    """Two seconds of digital silence."""
    return silence_pcm(2000)


@pytest.fixture
def make_tone():
    return tone_pcm


@pytest.fixture
def make_silence():
    return silence_pcm
