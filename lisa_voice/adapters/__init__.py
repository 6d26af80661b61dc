"""Adapters for external services (LLM, speech recognition, order store)."""
from .asr_adapter import (
    DeepgramTranscriber,
    MockTranscriber,
    TranscriptionAdapter,
    TranscriptionResult,
    WhisperTranscriber,
    create_transcription_adapters,
    transcribe_with_fallback,
)
from .llm_adapter import (
    AnthropicAdapter,
    GroqAdapter,
    LLMAdapter,
    LLMMessage,
    LLMResponse,
    MockLLMAdapter,
    OpenAIAdapter,
    create_llm_adapter,
    create_llm_adapters,
)
from .order_store import HttpOrderStore, InMemoryOrderStore, Order, OrderStore, create_order_store

__all__ = [
    "DeepgramTranscriber",
    "MockTranscriber",
    "TranscriptionAdapter",
    "TranscriptionResult",
    "WhisperTranscriber",
    "create_transcription_adapters",
    "transcribe_with_fallback",
    "AnthropicAdapter",
    "GroqAdapter",
    "LLMAdapter",
    "LLMMessage",
    "LLMResponse",
    "MockLLMAdapter",
    "OpenAIAdapter",
    "create_llm_adapter",
    "create_llm_adapters",
    "HttpOrderStore",
    "InMemoryOrderStore",
    "Order",
    "OrderStore",
    "create_order_store",
]
