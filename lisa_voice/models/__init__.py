"""Data models for the voice engine."""
from .conversation import (
    ConversationPhase,
    Emotion,
    Intent,
    IntentResult,
    Topic,
    Utterance,
)
from .schemas import (
    ConversationStats,
    ErrorResponse,
    HealthResponse,
    VoiceCommandRequest,
    VoiceConfigResponse,
    VoiceResponse,
)

__all__ = [
    "ConversationPhase",
    "Emotion",
    "Intent",
    "IntentResult",
    "Topic",
    "Utterance",
    "ConversationStats",
    "ErrorResponse",
    "HealthResponse",
    "VoiceCommandRequest",
    "VoiceConfigResponse",
    "VoiceResponse",
]
