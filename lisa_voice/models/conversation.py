"""
Conversation domain types.

This module defines the intents, emotions and turn phases shared by the
classifier, the response composer and the conversation state machine.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ConversationPhase(str, Enum):
    """States of the per-session conversation state machine."""

    IDLE = "idle"
    LISTENING = "listening"              # Interim hypotheses arriving
    PROCESSING = "processing"            # Final utterance being classified
    RESPONDING = "responding"            # Response composed, action running
    LONG_RUNNING = "long_running"        # Wrap-up guard tripped
    ENDED = "ended"


class Intent(str, Enum):
    """Closed set of intents the engine acts on."""

    CREATE_ORDER = "CREATE_ORDER"
    SEARCH_ORDERS = "SEARCH_ORDERS"
    SEARCH_CUSTOMERS = "SEARCH_CUSTOMERS"
    GENERATE_PDF = "GENERATE_PDF"
    GREETING = "GREETING"
    HELP = "HELP"
    COMPLAINT = "COMPLAINT"
    END_CONVERSATION = "END_CONVERSATION"
    GENERAL = "GENERAL"


class Emotion(str, Enum):
    """Caller emotion as seen by the classifier."""

    NEUTRAL = "neutral"
    EXCITED = "excited"
    FRUSTRATED = "frustrated"
    CONFUSED = "confused"


class Topic(str, Enum):
    """Topic labels used to pick contextual filler phrases."""

    ORDER_CREATION = "order_creation"
    SEARCH = "search"
    REPORTS = "reports"
    GENERAL = "general"


# Labels returned by language models that map onto the closed set
INTENT_ALIASES: Dict[str, str] = {
    "PLACE_ORDER": Intent.CREATE_ORDER.value,
    "NEW_ORDER": Intent.CREATE_ORDER.value,
    "CHECK_ORDER": Intent.SEARCH_ORDERS.value,
    "FIND_ORDERS": Intent.SEARCH_ORDERS.value,
    "GET_REPORTS": Intent.GENERATE_PDF.value,
    "GOODBYE": Intent.END_CONVERSATION.value,
    "CASUAL_CONVERSATION": Intent.GENERAL.value,
    "GENERAL_INQUIRY": Intent.GENERAL.value,
    "NONE": Intent.GENERAL.value,
    "GET_INFO": Intent.HELP.value,
    "CLARIFICATION": Intent.HELP.value,
}

EMOTION_ALIASES: Dict[str, str] = {
    "positive": Emotion.EXCITED.value,
    "happy": Emotion.EXCITED.value,
    "negative": Emotion.FRUSTRATED.value,
    "angry": Emotion.FRUSTRATED.value,
}


def normalize_intent(label: Optional[str]) -> str:
    """Map a provider intent label onto the closed set, keeping unknown extensions."""
    if not label or not str(label).strip():
        return Intent.GENERAL.value
    key = str(label).strip().upper().replace(" ", "_").replace("-", "_")
    return INTENT_ALIASES.get(key, key)


def normalize_emotion(label: Optional[str]) -> str:
    """Map a provider emotion label onto the supported emotions."""
    if not label:
        return Emotion.NEUTRAL.value
    key = str(label).strip().lower()
    key = EMOTION_ALIASES.get(key, key)
    if key in {e.value for e in Emotion}:
        return key
    return Emotion.NEUTRAL.value


@dataclass
class IntentResult:
    """
    Structured output of intent classification.

    Attributes:
        intent: Intent label, always set
        confidence: Classification confidence (0.0 - 1.0)
        parameters: Extracted slot values
        emotion: Caller emotion
        requires_user_input: Whether more input is needed to act
        topic: Topic label for filler selection
        natural_response: Template reply used when no model generates one
        provider: Name of the provider that produced the result
    """
    intent: str = Intent.GENERAL.value
    confidence: float = 0.5
    parameters: Dict[str, Any] = field(default_factory=dict)
    emotion: str = Emotion.NEUTRAL.value
    requires_user_input: bool = False
    topic: str = Topic.GENERAL.value
    natural_response: str = ""
    provider: str = "rules"

    def __post_init__(self) -> None:
        self.intent = normalize_intent(self.intent)
        self.emotion = normalize_emotion(self.emotion)
        self.confidence = max(0.0, min(1.0, float(self.confidence)))

    def is_intent(self, intent: Intent) -> bool:
        return self.intent == intent.value


@dataclass
class Utterance:
    """One unit of speech input."""
    transcript: str
    is_final: bool = True
    timestamp: float = field(default_factory=time.time)


__all__ = [
    "ConversationPhase",
    "Intent",
    "Emotion",
    "Topic",
    "IntentResult",
    "Utterance",
    "normalize_intent",
    "normalize_emotion",
]
