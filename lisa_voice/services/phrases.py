"""Fixed phrase pools spoken by the conversation engine."""
import random
from typing import Callable, Optional, Sequence

from lisa_voice.models.conversation import Topic

INTERIM_FILLERS = [
    "Mm-hmm...",
    "I see...",
    "Right...",
    "Uh-huh...",
    "LISA's listening...",
    "Go on...",
]

TOPIC_FILLERS: dict[str, list[str]] = {
    Topic.ORDER_CREATION.value: [
        "Got it, so far we have...",
        "Okay, let me make sure...",
        "Right, and for the...",
        "Perfect, so LISA has...",
    ],
    Topic.SEARCH.value: [
        "Let me check that for you...",
        "LISA's searching now...",
        "Looking that up...",
        "One moment while I find that...",
    ],
    Topic.GENERAL.value: [
        "Mm-hmm...",
        "I see...",
        "Right...",
        "Okay...",
        "Sure...",
        "Uh-huh...",
        "LISA's thinking...",
        "Let me help with that...",
    ],
}

INTERRUPTION_PHRASES = [
    "Oh, go ahead!",
    "Sorry, what were you saying?",
    "Yes?",
    "LISA's listening...",
    "Sure, I'm here!",
    "What can I help with?",
]

WELCOME_MESSAGE = "Hi! This is LISA, your glass order assistant. How can I help you today?"
LISTENING_PROMPT = (
    "Great! I'm listening continuously now. Just talk to me naturally, "
    "and say 'stop' or 'finish' when you're done."
)
CLOSING_MESSAGE = "Thanks for chatting with me! Feel free to start a new conversation anytime."
WRAP_UP_PROMPT = "We've been chatting for a while! Is there anything specific I can help you wrap up?"
NO_ACTIVE_CONVERSATION = "No active conversation found"
APOLOGY_FRUSTRATED = "I apologize for the confusion. Let me try to help you better."
APOLOGY_DEFAULT = "Sorry about that. Could you repeat what you need help with?"
DEFAULT_REPLY = "Sorry, I didn't quite catch that. Could you say that again?"

SLOT_PROMPTS = {
    "glass_type": "What type of glass do you need?",
    "quantity": "How many pieces do you need?",
}


def topic_fillers(topic: Optional[str]) -> list[str]:
    return TOPIC_FILLERS.get(topic or "", TOPIC_FILLERS[Topic.GENERAL.value])


class PhraseSelector:
    """Uniform random choice over a phrase pool. Tests inject choose."""

    def __init__(self, choose: Optional[Callable[[Sequence[str]], str]] = None) -> None:
        self._choose = choose or random.choice

    def pick(self, pool: Sequence[str]) -> str:
        return self._choose(pool)
