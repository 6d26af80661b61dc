"""
Intent Classifier - Maps an utterance plus recent history to an IntentResult.

Classification runs through a priority-ordered provider chain. Each
networked provider is time-boxed; the rule-based provider is always the
last element and never raises, so classify() always yields a result.
"""
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Pattern, Sequence

import structlog

from lisa_voice.adapters.llm_adapter import LLMAdapter, LLMMessage, create_llm_adapters
from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import ProviderError
from lisa_voice.models.conversation import Emotion, Intent, IntentResult, Topic
from lisa_voice.services.provider_chain import ProviderChain
from lisa_voice.services.session_service import ConversationTurn

logger = structlog.get_logger()


INTENT_TOPICS: dict[str, str] = {
    Intent.CREATE_ORDER.value: Topic.ORDER_CREATION.value,
    Intent.SEARCH_ORDERS.value: Topic.SEARCH.value,
    Intent.SEARCH_CUSTOMERS.value: Topic.SEARCH.value,
    Intent.GENERATE_PDF.value: Topic.REPORTS.value,
}

INTENT_TEMPLATES: dict[str, str] = {
    Intent.GREETING.value: "Hello! I'm LISA, your Glass Order Management assistant. How can I help you today?",
    Intent.CREATE_ORDER.value: "I'll help you create a new glass order. What type of glass do you need?",
    Intent.SEARCH_ORDERS.value: "Let me pull up those orders for you.",
    Intent.SEARCH_CUSTOMERS.value: "I'll help you find customer information. What details are you looking for?",
    Intent.GENERATE_PDF.value: "I'll get that PDF report started for you.",
    Intent.HELP.value: (
        "I can help you create orders, search for information, manage customers, "
        "and generate reports. What would you like to do?"
    ),
    Intent.COMPLAINT.value: "I'm sorry to hear that. Let me see what I can do to make it right.",
    Intent.END_CONVERSATION.value: "Thanks for chatting with me! Feel free to start a new conversation anytime.",
    Intent.GENERAL.value: (
        "I understand you need help with the Glass Order Management system. "
        "Could you be more specific about what you'd like to do?"
    ),
}

RESPONSE_STYLES: dict[str, str] = {
    "conversational_telephonic": (
        "You are speaking on the phone. Keep replies to one or two short, friendly "
        "sentences and never use lists or formatting."
    ),
    "concise": "Answer in a single short sentence.",
    "detailed": "Give complete answers, but keep them easy to follow when spoken aloud.",
}


def intent_topic(intent: str) -> str:
    return INTENT_TOPICS.get(intent, Topic.GENERAL.value)


def template_for(intent: str) -> str:
    return INTENT_TEMPLATES.get(intent, INTENT_TEMPLATES[Intent.GENERAL.value])


@dataclass
class IntentRule:
    """One entry of the ordered rule table."""

    intent: Intent
    patterns: list[str]
    confidence: float
    requires_user_input: bool = False

    def __post_init__(self) -> None:
        self._compiled: list[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self._compiled)


# First match wins
DEFAULT_RULES: list[IntentRule] = [
    IntentRule(
        Intent.GREETING,
        [r"\b(hi|hello|hey|howdy|greetings)\b", r"\bgood (morning|afternoon|evening)\b"],
        confidence=0.9,
    ),
    IntentRule(
        Intent.END_CONVERSATION,
        [
            r"\b(stop|end|finish|goodbye|bye|done|quit|exit)\b",
            r"\b(hang up|that's all|that is all|see you)\b",
        ],
        confidence=0.9,
    ),
    IntentRule(
        Intent.CREATE_ORDER,
        [r"\b(create|new|add|make|place|start)\b.*\border\b", r"\border\b.*\bnew\b"],
        confidence=0.8,
        requires_user_input=True,
    ),
    IntentRule(
        Intent.GENERATE_PDF,
        [r"\b(pdf|reports?|invoice)\b"],
        confidence=0.8,
    ),
    IntentRule(
        Intent.SEARCH_ORDERS,
        [
            r"\b(find|search|show|list|get|check|look up|pull up|status)\b.*\borders?\b",
            r"\borders?\b.*\b(today|week|month|status|pending|delivered)\b",
        ],
        confidence=0.8,
    ),
    IntentRule(
        Intent.SEARCH_CUSTOMERS,
        [
            r"\b(find|search|show|list|get|look up)\b.*\b(customers?|clients?)\b",
            r"\b(customers?|clients?)\b.*\b(info|information|details|contact)\b",
        ],
        confidence=0.8,
        requires_user_input=True,
    ),
    IntentRule(
        Intent.HELP,
        [r"\b(help|assist|support)\b", r"\bhow do i\b", r"\bwhat can you do\b"],
        confidence=0.9,
    ),
]

EMOTION_CUES: list[tuple[Emotion, Pattern[str]]] = [
    (
        Emotion.FRUSTRATED,
        re.compile(
            r"\b(frustrat\w*|annoy\w*|angry|ridiculous|useless|terrible|awful|still waiting)\b"
            r"|\bnot working\b|\bdoesn't work\b",
            re.IGNORECASE,
        ),
    ),
    (
        Emotion.CONFUSED,
        re.compile(
            r"\b(confus\w*|unclear)\b|\bdon't understand\b|\bwhat do you mean\b|\bnot sure\b",
            re.IGNORECASE,
        ),
    ),
    (
        Emotion.EXCITED,
        re.compile(r"\b(great|awesome|amazing|excellent|fantastic|perfect|love)\b", re.IGNORECASE),
    ),
]

GLASS_TYPE_PATTERN = re.compile(
    r"\b(tempered|laminated|insulated|low[- ]?e|clear float|clear|float|frosted|tinted|bullet ?proof)\b",
    re.IGNORECASE,
)
DIMENSIONS_PATTERN = re.compile(r"\b(\d{2,5})\s*(?:x|by|\*)\s*(\d{2,5})\b", re.IGNORECASE)
QUANTITY_PATTERN = re.compile(
    r"\b(\d+)\s*(?:pieces?|pcs|units?|panes?|panels?|sheets?)\b"
    r"|\bquantity\s+(?:of\s+)?(\d+)\b",
    re.IGNORECASE,
)
CUSTOMER_PATTERN = re.compile(r"\b(?i:customer|for)\s+([A-Z][\w&'.-]*(?:\s+[A-Z][\w&'.-]*)*)")
ORDER_ID_PATTERN = re.compile(r"\border\s*(?:number|#|no\.?)?\s*#?\s*([A-Z]{2,}-[\w-]+|\d+)\b", re.IGNORECASE)

GLASS_TYPE_NAMES = {
    "low e": "Low-E",
    "lowe": "Low-E",
    "low-e": "Low-E",
    "bulletproof": "Bulletproof",
    "bullet proof": "Bulletproof",
    "clear float": "Clear Float",
}


def detect_emotion(text: str) -> str:
    for emotion, pattern in EMOTION_CUES:
        if pattern.search(text):
            return emotion.value
    return Emotion.NEUTRAL.value


def extract_parameters(text: str) -> dict[str, Any]:
    """Pull order slots out of free text."""
    params: dict[str, Any] = {}

    match = GLASS_TYPE_PATTERN.search(text)
    if match:
        raw = match.group(1).lower()
        params["glass_type"] = GLASS_TYPE_NAMES.get(raw, raw.title())

    match = DIMENSIONS_PATTERN.search(text)
    if match:
        params["width"] = int(match.group(1))
        params["height"] = int(match.group(2))

    match = QUANTITY_PATTERN.search(text)
    if match:
        params["quantity"] = int(match.group(1) or match.group(2))

    match = CUSTOMER_PATTERN.search(text)
    if match:
        params["customer_name"] = match.group(1).strip()

    match = ORDER_ID_PATTERN.search(text)
    if match:
        params["order_id"] = match.group(1).upper()

    lowered = text.lower()
    if "today" in lowered:
        params["date_range"] = "today"
    elif "this week" in lowered or "last week" in lowered:
        params["date_range"] = "week"
    elif "this month" in lowered or "last month" in lowered:
        params["date_range"] = "month"

    return params


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


class ConversationProvider(ABC):
    """A backend that can both classify an utterance and reply to it."""

    name: str = "provider"

    @abstractmethod
    async def classify(self, text: str, history: Sequence[ConversationTurn]) -> IntentResult:
        """Classify an utterance given recent history."""
        pass

    @abstractmethod
    async def generate_response(
        self,
        text: str,
        history: Sequence[ConversationTurn],
        intent: IntentResult,
        style: str = "conversational_telephonic",
    ) -> str:
        """Produce the raw reply text, possibly carrying an [ACTION:...] tag."""
        pass


class RuleBasedConversationProvider(ConversationProvider):
    """
    Deterministic keyword classifier.

    The availability backstop of the whole engine. It must never raise,
    whatever the input.
    """

    name = "rules"

    def __init__(self, rules: Optional[list[IntentRule]] = None) -> None:
        self.rules = rules if rules is not None else DEFAULT_RULES

    def match(self, text: str) -> IntentResult:
        normalized = (text or "").replace("’", "'").strip()

        rule = next((r for r in self.rules if r.matches(normalized)), None)
        if rule is None:
            intent = Intent.GENERAL.value
            confidence = 0.5
            requires_input = True
        else:
            intent = rule.intent.value
            confidence = rule.confidence
            requires_input = rule.requires_user_input

        return IntentResult(
            intent=intent,
            confidence=confidence,
            parameters=extract_parameters(normalized),
            emotion=detect_emotion(normalized),
            requires_user_input=requires_input,
            topic=intent_topic(intent),
            natural_response=template_for(intent),
            provider=self.name,
        )

    async def classify(self, text: str, history: Sequence[ConversationTurn]) -> IntentResult:
        return self.match(text)

    async def generate_response(
        self,
        text: str,
        history: Sequence[ConversationTurn],
        intent: IntentResult,
        style: str = "conversational_telephonic",
    ) -> str:
        return intent.natural_response or template_for(intent.intent)


class LLMConversationProvider(ConversationProvider):
    """Classification and reply generation backed by a chat model."""

    CLASSIFY_PROMPT = """You classify requests for LISA, a voice assistant for a glass order management system.

Recent conversation:
{history}

User said: "{text}"

Intents: {intents}
Emotions: neutral, excited, frustrated, confused
Topics: order_creation, search, reports, general

Extract parameters when present: glass_type, quantity, width, height, customer_name, order_id, date_range.

Respond with a single JSON object only:
{{"intent": "...", "confidence": 0.0, "parameters": {{}}, "emotion": "neutral", "topic": "general", "requiresUserInput": false, "naturalResponse": "..."}}"""

    PERSONA_PROMPT = """You are {agent}, a friendly voice assistant for a glass order management system.
You help callers create glass orders, search orders and customers, and generate PDF reports.
{style}

The caller's intent looks like {intent} and they sound {emotion}.
When the caller's request needs the system to act, end your reply with exactly one tag:
[ACTION:search_orders], [ACTION:create_order], [ACTION:generate_pdf] or [ACTION:end_conversation].
Never read the tag aloud or mention it."""

    def __init__(self, adapter: LLMAdapter, settings: Optional[Settings] = None) -> None:
        self.adapter = adapter
        self.settings = settings or get_settings()
        self.name = adapter.name

    async def classify(self, text: str, history: Sequence[ConversationTurn]) -> IntentResult:
        recent = list(history)[-3:]
        prompt = self.CLASSIFY_PROMPT.format(
            history="\n".join(t.as_context_line() for t in recent) or "(none)",
            text=text,
            intents=", ".join(i.value for i in Intent),
        )

        response = await self.adapter.complete(
            [LLMMessage(role="user", content=prompt)],
            max_tokens=self.settings.intent_max_tokens,
            temperature=self.settings.intent_temperature,
            json_mode=True,
        )
        data = self._parse_json(response.text)

        raw_params = data.get("parameters") or {}
        if not isinstance(raw_params, dict):
            raw_params = {}
        parameters = extract_parameters(text)
        parameters.update({_snake_case(k): v for k, v in raw_params.items() if v not in (None, "")})

        result = IntentResult(
            intent=data.get("intent"),
            confidence=self._as_float(data.get("confidence"), 0.7),
            parameters=parameters,
            emotion=data.get("emotion"),
            requires_user_input=bool(data.get("requiresUserInput", data.get("requires_user_input", False))),
            natural_response=str(data.get("naturalResponse") or ""),
            provider=self.name,
        )
        topic = str(data.get("topic") or "")
        result.topic = topic if topic in {t.value for t in Topic} else intent_topic(result.intent)
        if not result.natural_response:
            result.natural_response = template_for(result.intent)
        return result

    async def generate_response(
        self,
        text: str,
        history: Sequence[ConversationTurn],
        intent: IntentResult,
        style: str = "conversational_telephonic",
    ) -> str:
        system = self.PERSONA_PROMPT.format(
            agent=self.settings.agent_name,
            style=RESPONSE_STYLES.get(style, RESPONSE_STYLES["conversational_telephonic"]),
            intent=intent.intent,
            emotion=intent.emotion,
        )
        messages = [LLMMessage(role="system", content=system)]
        # The current utterance is already the last user turn in history
        for turn in list(history)[-6:]:
            messages.append(LLMMessage(role="user" if turn.role == "user" else "assistant", content=turn.content))
        if messages[-1].role != "user":
            messages.append(LLMMessage(role="user", content=text))

        response = await self.adapter.complete(
            messages,
            max_tokens=self.settings.response_max_tokens,
            temperature=self.settings.response_temperature,
        )
        reply = (response.text or "").strip()
        if not reply:
            raise ProviderError(self.name, "Empty response")
        return reply

    def _parse_json(self, text: str) -> dict[str, Any]:
        """Return the first JSON object in the reply, ignoring any trailing text."""
        text = text or ""
        start = text.find("{")
        if start < 0:
            raise ProviderError(self.name, "No JSON object in classification reply")
        try:
            data, _ = json.JSONDecoder().raw_decode(text, start)
        except json.JSONDecodeError as e:
            raise ProviderError(self.name, f"Invalid JSON in classification reply: {e}") from e
        return data

    @staticmethod
    def _as_float(value: Any, default: float) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return default


class IntentClassifier:
    """
    Provider chain for classification.

    The rule-based provider is appended as the guaranteed fallback; the
    same chain is shared with the response composer.
    """

    def __init__(
        self,
        providers: Sequence[ConversationProvider] = (),
        timeout_seconds: float = 8.0,
        fallback: Optional[RuleBasedConversationProvider] = None,
    ) -> None:
        self.fallback = fallback or RuleBasedConversationProvider()
        self.chain: ProviderChain[ConversationProvider] = ProviderChain(
            [*providers, self.fallback],
            timeout_seconds=timeout_seconds,
        )

    @property
    def provider_names(self) -> list[str]:
        return self.chain.names

    async def classify(self, text: str, history: Sequence[ConversationTurn] = ()) -> IntentResult:
        result = await self.chain.run("classify", lambda p: p.classify(text, history))
        logger.debug(
            "intent_classified",
            intent=result.intent,
            confidence=result.confidence,
            emotion=result.emotion,
            provider=result.provider,
        )
        return result


def create_intent_classifier(
    settings: Optional[Settings] = None,
    adapters: Optional[Sequence[LLMAdapter]] = None,
) -> IntentClassifier:
    """Build the classifier from the configured LLM providers."""
    settings = settings or get_settings()
    if adapters is None:
        adapters = create_llm_adapters(settings)
    providers = [LLMConversationProvider(adapter, settings) for adapter in adapters]
    logger.info("intent_classifier_created", providers=[p.name for p in providers] + ["rules"])
    return IntentClassifier(providers, timeout_seconds=settings.provider_timeout_seconds)
