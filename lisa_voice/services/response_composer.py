"""
Response Composer - Turns model text and intent into the spoken response.

Steps:
- Extract the embedded [ACTION:name] tag and rename it to the canonical action
- Strip bracketed annotations from the visible text
- Prefix an emotion-aware opener when the text does not already address it
"""
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from lisa_voice.exceptions import AllProvidersFailed
from lisa_voice.models.conversation import Emotion, Intent, IntentResult
from lisa_voice.models.schemas import VoiceResponse
from lisa_voice.services.phrases import DEFAULT_REPLY, SLOT_PROMPTS
from lisa_voice.services.provider_chain import ProviderChain
from lisa_voice.services.session_service import ConversationTurn

logger = structlog.get_logger()

ACTION_TAG_PATTERN = re.compile(r"\[ACTION:(\w+)(?::(\{.*?\}))?\]", re.IGNORECASE | re.DOTALL)
ANY_ACTION_TAG_PATTERN = re.compile(r"\[ACTION:.*?\]", re.IGNORECASE | re.DOTALL)
BRACKET_PATTERN = re.compile(r"\[.*?\]", re.DOTALL)


class Action:
    """Canonical action names shared with the executor and clients."""

    SEARCH_RESULTS = "search_results"
    ORDER_CREATED = "order_created"
    PDF_REQUESTED = "pdf_requested"
    END_CONVERSATION = "end_conversation"


ACTION_ALIASES: dict[str, str] = {
    "search": Action.SEARCH_RESULTS,
    "search_orders": Action.SEARCH_RESULTS,
    "orders_found": Action.SEARCH_RESULTS,
    "search_results": Action.SEARCH_RESULTS,
    "create": Action.ORDER_CREATED,
    "create_order": Action.ORDER_CREATED,
    "place_order": Action.ORDER_CREATED,
    "order_created": Action.ORDER_CREATED,
    "pdf": Action.PDF_REQUESTED,
    "generate_pdf": Action.PDF_REQUESTED,
    "pdf_requested": Action.PDF_REQUESTED,
    "end": Action.END_CONVERSATION,
    "end_conversation": Action.END_CONVERSATION,
    "goodbye": Action.END_CONVERSATION,
}

INTENT_ACTIONS: dict[str, str] = {
    Intent.SEARCH_ORDERS.value: Action.SEARCH_RESULTS,
    Intent.CREATE_ORDER.value: Action.ORDER_CREATED,
    Intent.GENERATE_PDF.value: Action.PDF_REQUESTED,
    Intent.END_CONVERSATION.value: Action.END_CONVERSATION,
}

# emotion -> (prefix, markers that make the prefix redundant)
EMOTION_PREFIXES: dict[str, tuple[str, tuple[str, ...]]] = {
    Emotion.FRUSTRATED.value: ("I understand, and I'm here to help. ", ("understand", "sorry", "apolog")),
    Emotion.EXCITED.value: ("That's great! ", ("great", "awesome", "wonderful")),
    Emotion.CONFUSED.value: ("No worries, let me clarify that. ", ("no worries", "clarify", "let me explain")),
}

REQUIRED_ORDER_SLOTS = ("glass_type", "quantity")

# slot -> numeric type; values that cannot be read as a positive number are dropped
NUMERIC_ORDER_SLOTS: dict[str, type] = {
    "quantity": int,
    "width": float,
    "height": float,
    "thickness": float,
    "unit_price": float,
}

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "dozen": 12, "fifteen": 15, "twenty": 20, "thirty": 30, "forty": 40,
    "fifty": 50, "hundred": 100,
}

NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")


@dataclass
class ActionTag:
    """Action extracted from model text."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    raw: str = ""


@dataclass
class ComposedResponse:
    """Composed reply plus the parameters its action should run with."""

    response: VoiceResponse
    action_parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> Optional[str]:
        return self.response.action


def canonical_action(name: str) -> str:
    key = name.strip().lower()
    return ACTION_ALIASES.get(key, key)


def parse_action_tag(text: str) -> Optional[ActionTag]:
    """Return the first action tag in text, or None."""
    match = ACTION_TAG_PATTERN.search(text or "")
    if not match:
        return None

    parameters: dict[str, Any] = {}
    if match.group(2):
        try:
            decoded = json.loads(match.group(2))
        except json.JSONDecodeError:
            logger.warning("action_tag_params_invalid", tag=match.group(0)[:100])
        else:
            if isinstance(decoded, dict):
                parameters = decoded

    return ActionTag(name=canonical_action(match.group(1)), parameters=parameters, raw=match.group(1))


def strip_tags(text: str) -> str:
    """Remove action tags and any other bracketed annotation."""
    text = ANY_ACTION_TAG_PATTERN.sub("", text or "")
    text = BRACKET_PATTERN.sub("", text)
    return " ".join(text.split())


def apply_emotion_prefix(text: str, emotion: str) -> str:
    entry = EMOTION_PREFIXES.get(emotion)
    if not entry:
        return text
    prefix, markers = entry
    lowered = text.lower()
    if any(marker in lowered for marker in markers):
        return text
    return prefix + text


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    text = value.strip().lower().replace(",", "")
    match = NUMBER_PATTERN.search(text)
    if match:
        return float(match.group(0))
    for word in re.findall(r"[a-z]+", text):
        if word in NUMBER_WORDS:
            return float(NUMBER_WORDS[word])
    return None


def coerce_order_slots(slots: dict[str, Any]) -> dict[str, Any]:
    """
    Normalize order parameters from any classifier.

    Numeric slots accept numbers, digit strings ("5 pieces") and number
    words ("five"). Empty values and numbers that are not positive (or not
    whole, for quantity) are dropped so the slot counts as missing.
    """
    coerced: dict[str, Any] = {}
    for name, value in slots.items():
        if value is None or value == "":
            continue

        cast = NUMERIC_ORDER_SLOTS.get(name)
        if cast is None:
            coerced[name] = value
            continue

        number = _parse_number(value)
        if number is None or not math.isfinite(number) or number <= 0 or (cast is int and not number.is_integer()):
            logger.debug("order_slot_dropped", slot=name, value=str(value)[:50])
            continue
        coerced[name] = cast(number)
    return coerced


def missing_order_slots(slots: dict[str, Any]) -> list[str]:
    return [name for name in REQUIRED_ORDER_SLOTS if slots.get(name) in (None, "", 0)]


class ResponseComposer:
    """
    Generates and composes the assistant reply for one turn.

    Generation runs over the same provider chain as classification, so the
    rule-based templates back every failure.
    """

    def __init__(self, chain: ProviderChain, style: str = "conversational_telephonic") -> None:
        self.chain = chain
        self.style = style

    async def generate(
        self,
        text: str,
        history: Sequence[ConversationTurn],
        intent: IntentResult,
    ) -> tuple[str, str]:
        """
        Generate raw reply text.

        Returns:
            (raw_text, provider_name)
        """

        async def call(provider):
            reply = await provider.generate_response(text, history, intent, self.style)
            return reply, provider.name

        try:
            return await self.chain.run("generate_response", call)
        except AllProvidersFailed:
            # Only reachable when the chain has no fallback
            return intent.natural_response or DEFAULT_REPLY, "template"

    def compose(
        self,
        raw_text: str,
        intent: IntentResult,
        generated_by_llm: bool = False,
        missing_slots: Optional[list[str]] = None,
    ) -> ComposedResponse:
        """Build the response from raw text and classification."""
        tag = parse_action_tag(raw_text)
        action_params: dict[str, Any] = {}

        if tag is not None:
            action: Optional[str] = tag.name
            action_params = tag.parameters
        else:
            action = INTENT_ACTIONS.get(intent.intent)

        text = strip_tags(raw_text)

        # An order cannot be placed until the required slots are filled
        if action == Action.ORDER_CREATED and missing_slots:
            action = None
            action_params = {}
            prompt = SLOT_PROMPTS[missing_slots[0]]
            if prompt.lower() not in text.lower():
                text = prompt

        if not text:
            text = DEFAULT_REPLY

        text = apply_emotion_prefix(text, intent.emotion)

        response = VoiceResponse(
            text=text,
            action=action,
            should_speak=True,
            confidence=0.9 if generated_by_llm else intent.confidence,
        )
        logger.debug(
            "response_composed",
            action=action,
            intent=intent.intent,
            emotion=intent.emotion,
            generated_by_llm=generated_by_llm,
        )
        return ComposedResponse(
            response=response,
            action_parameters={**intent.parameters, **action_params},
        )
