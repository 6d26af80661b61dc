"""
LLM Adapter - Abstract interface and implementations for language model providers.

This module provides:
- Abstract LLMAdapter interface
- GroqAdapter, OpenAIAdapter and AnthropicAdapter over the vendor SDKs
- MockLLMAdapter for tests and offline development
- create_llm_adapters() building the configured priority list
"""
import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import ProviderError, ProviderUnavailable

logger = structlog.get_logger()


@dataclass
class LLMResponse:
    """Response from LLM completion."""

    text: str
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""


@dataclass
class LLMMessage:
    """Chat message for LLM."""

    role: str  # "system", "user", "assistant"
    content: str


class LLMAdapter(ABC):
    """
    Abstract base class for LLM adapters.

    Implementations raise ProviderUnavailable when they cannot be used at
    all and ProviderError when a call fails.
    """

    name: str = "llm"

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop_sequences: list[str] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: List of chat messages (system, user, assistant)
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0-1)
            stop_sequences: Sequences that stop generation
            json_mode: Ask the provider for a JSON object reply

        Returns:
            LLMResponse with generated text and metadata
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if the LLM service is available."""
        pass


class MockLLMAdapter(LLMAdapter):
    """
    Mock LLM adapter for testing.

    Returns queued replies first, then falls back to pattern-matched
    replies carrying [ACTION:...] tags. Can be told to fail or to stall.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        fail_with: Exception | None = None,
        delay_seconds: float = 0.0,
        name: str = "mock",
    ) -> None:
        self.name = name
        self.responses = list(responses or [])
        self.fail_with = fail_with
        self.delay_seconds = delay_seconds
        self.call_count = 0
        self.last_messages: list[LLMMessage] = []

        # Pattern: (regex, response, action tag)
        self.patterns: list[tuple[str, str, str | None]] = [
            (
                r"\b(hello|hi|hey|good morning|good afternoon)\b",
                "Hi there! This is LISA. How can I help with your glass orders today?",
                None,
            ),
            (
                r"\b(bye|goodbye|stop|that's all)\b",
                "Thanks for chatting with me! Have a great day.",
                "end_conversation",
            ),
            (
                r"\b(create|new|place)\b.*\border\b",
                "Sure, let's set up a new order. What type of glass do you need?",
                "create_order",
            ),
            (
                r"\b(find|search|show|list)\b.*\borders?\b",
                "Let me pull up those orders for you.",
                "search_orders",
            ),
            (
                r"\b(pdf|report)\b",
                "I'll get that report started for you.",
                "generate_pdf",
            ),
        ]

        self.default_response = (
            "I can help you create orders, search orders and generate reports. "
            "What would you like to do?"
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop_sequences: list[str] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate a mock response."""
        self.call_count += 1
        self.last_messages = messages

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.fail_with is not None:
            raise self.fail_with

        if self.responses:
            return LLMResponse(text=self.responses.pop(0), model="mock-llm")

        user_message = ""
        for msg in reversed(messages):
            if msg.role == "user":
                user_message = msg.content.lower()
                break

        response_text = self.default_response
        for pattern, response, action in self.patterns:
            if re.search(pattern, user_message, re.IGNORECASE):
                response_text = f"{response} [ACTION:{action}]" if action else response
                break

        logger.debug(
            "mock_llm_response",
            user_message=user_message[:50],
            response=response_text[:50],
        )

        return LLMResponse(
            text=response_text,
            finish_reason="stop",
            usage={"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
            model="mock-llm",
        )

    async def is_available(self) -> bool:
        return self.fail_with is None


class _ChatCompletionsAdapter(LLMAdapter):
    """Shared logic for OpenAI-compatible chat completion clients."""

    def __init__(self, api_key: str, model: str) -> None:
        self.api_key = api_key
        self.model = model
        self._client = None

    @abstractmethod
    def _get_client(self):
        """Return the SDK client, raising ProviderUnavailable without credentials."""

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop_sequences: list[str] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens or 1024,
            "temperature": temperature if temperature is not None else 0.7,
        }
        if stop_sequences:
            kwargs["stop"] = stop_sequences
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.error(f"{self.name}_error", error=str(e))
            raise ProviderError(self.name, str(e)) from e

        if not response.choices:
            raise ProviderError(self.name, "Empty completion")

        choice = response.choices[0]
        usage = response.usage

        logger.debug(
            f"{self.name}_completion",
            model=self.model,
            tokens=usage.total_tokens if usage else 0,
            finish_reason=choice.finish_reason,
        )

        return LLMResponse(
            text=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
            usage={
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
            model=response.model or self.model,
        )

    async def is_available(self) -> bool:
        try:
            client = self._get_client()
            await client.models.list()
            return True
        except Exception as e:
            logger.warning(f"{self.name}_unavailable", error=str(e))
            return False


class GroqAdapter(_ChatCompletionsAdapter):
    """
    Groq LLM adapter for low-latency inference.

    Primary provider: Llama models on Groq infrastructure.
    """

    name = "groq"

    def __init__(self, api_key: str, model: str = "llama-3.3-70b-versatile") -> None:
        super().__init__(api_key, model)

    def _get_client(self):
        """Get or create the Groq client."""
        if not self.api_key:
            raise ProviderUnavailable(self.name, "GROQ_API_KEY is not set")
        if self._client is None:
            try:
                from groq import AsyncGroq
            except ImportError as e:
                raise ProviderUnavailable(self.name, "groq package not installed") from e
            self._client = AsyncGroq(api_key=self.api_key)
        return self._client


class OpenAIAdapter(_ChatCompletionsAdapter):
    """OpenAI LLM adapter using the openai Python client."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
    ) -> None:
        super().__init__(api_key, model)
        self.base_url = base_url

    def _get_client(self):
        """Get or create the OpenAI client."""
        if not self.api_key:
            raise ProviderUnavailable(self.name, "OPENAI_API_KEY is not set")
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ProviderUnavailable(self.name, "openai package not installed") from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client


class AnthropicAdapter(LLMAdapter):
    """Anthropic Claude adapter using the anthropic Python client."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        """Get or create the Anthropic client."""
        if not self.api_key:
            raise ProviderUnavailable(self.name, "ANTHROPIC_API_KEY is not set")
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ProviderUnavailable(self.name, "anthropic package not installed") from e
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop_sequences: list[str] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate a completion using Anthropic Claude."""
        client = self._get_client()

        # Extract system message if present
        system_message = None
        chat_messages = []
        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                chat_messages.append({"role": msg.role, "content": msg.content})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or 1024,
            "messages": chat_messages,
        }
        if system_message:
            kwargs["system"] = system_message
        if temperature is not None:
            kwargs["temperature"] = temperature
        if stop_sequences:
            kwargs["stop_sequences"] = stop_sequences

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            logger.error("anthropic_error", error=str(e))
            raise ProviderError(self.name, str(e)) from e

        text = "".join(block.text for block in response.content if hasattr(block, "text"))

        logger.debug(
            "anthropic_completion",
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )

        return LLMResponse(
            text=text,
            finish_reason=response.stop_reason or "end_turn",
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            model=response.model,
        )

    async def is_available(self) -> bool:
        try:
            self._get_client()
            return True
        except ProviderUnavailable as e:
            logger.warning("anthropic_unavailable", error=e.message)
            return False


def create_llm_adapter(provider: str, settings: Settings | None = None) -> LLMAdapter | None:
    """
    Create one LLM adapter.

    Args:
        provider: Provider name ("groq", "openai", "anthropic", "mock")
        settings: Settings to read keys and models from

    Returns:
        Configured adapter, or None when the provider has no API key
    """
    settings = settings or get_settings()
    provider = provider.lower()

    if provider == "mock":
        return MockLLMAdapter()

    if provider == "groq":
        if not settings.groq_api_key:
            logger.warning("llm_provider_unconfigured", provider=provider, key="GROQ_API_KEY")
            return None
        return GroqAdapter(api_key=settings.groq_api_key, model=settings.groq_model)

    if provider == "openai":
        if not settings.openai_api_key:
            logger.warning("llm_provider_unconfigured", provider=provider, key="OPENAI_API_KEY")
            return None
        return OpenAIAdapter(api_key=settings.openai_api_key, model=settings.openai_model)

    if provider == "anthropic":
        if not settings.anthropic_api_key:
            logger.warning("llm_provider_unconfigured", provider=provider, key="ANTHROPIC_API_KEY")
            return None
        return AnthropicAdapter(api_key=settings.anthropic_api_key, model=settings.anthropic_model)

    logger.warning("llm_provider_unknown", provider=provider)
    return None


def create_llm_adapters(settings: Settings | None = None) -> list[LLMAdapter]:
    """Build the configured providers in priority order, skipping unconfigured ones."""
    settings = settings or get_settings()
    adapters = []
    for name in settings.llm_provider_list:
        adapter = create_llm_adapter(name, settings)
        if adapter is not None:
            adapters.append(adapter)
    return adapters
