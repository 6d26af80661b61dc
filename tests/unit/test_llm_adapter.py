"""Unit tests for language model adapters."""

import pytest

from lisa_voice.adapters.llm_adapter import (
    AnthropicAdapter,
    GroqAdapter,
    LLMMessage,
    MockLLMAdapter,
    OpenAIAdapter,
    _ChatCompletionsAdapter,
    create_llm_adapter,
    create_llm_adapters,
)
from lisa_voice.exceptions import ProviderUnavailable


class TestMockLLMAdapter:
    """Tests for the mock adapter."""

    @pytest.mark.asyncio
    async def test_queued_responses_first(self):
        """Test that queued replies are returned in order."""
        adapter = MockLLMAdapter(responses=["one", "two"])
        messages = [LLMMessage(role="user", content="hello")]

        assert (await adapter.complete(messages)).text == "one"
        assert (await adapter.complete(messages)).text == "two"
        assert "LISA" in (await adapter.complete(messages)).text
        assert adapter.call_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text,tag",
        [
            ("show me my orders", "[ACTION:search_orders]"),
            ("place a new order", "[ACTION:create_order]"),
            ("send me a pdf", "[ACTION:generate_pdf]"),
            ("goodbye", "[ACTION:end_conversation]"),
        ],
    )
    async def test_pattern_tags(self, text, tag):
        """Test that pattern replies carry action tags."""
        adapter = MockLLMAdapter()

        response = await adapter.complete([LLMMessage(role="user", content=text)])

        assert response.text.endswith(tag)

    @pytest.mark.asyncio
    async def test_failure(self):
        """Test the configured failure."""
        adapter = MockLLMAdapter(fail_with=RuntimeError("rate limited"))

        with pytest.raises(RuntimeError):
            await adapter.complete([LLMMessage(role="user", content="hi")])
        assert await adapter.is_available() is False


class TestAdapterFactory:
    """Tests for building adapters from settings."""

    def test_unconfigured_providers(self, settings):
        """Test that providers without keys are skipped."""
        assert create_llm_adapter("groq", settings) is None
        assert create_llm_adapter("openai", settings) is None
        assert create_llm_adapter("anthropic", settings) is None
        assert create_llm_adapter("gemini", settings) is None

    def test_configured_providers(self, settings):
        """Test building providers in priority order."""
        settings.groq_api_key = "gsk-test"
        settings.anthropic_api_key = "sk-ant-test"
        settings.llm_providers = "anthropic, groq, openai"

        adapters = create_llm_adapters(settings)

        assert [type(a) for a in adapters] == [AnthropicAdapter, GroqAdapter]

    def test_mock_provider(self, settings):
        """Test the mock provider."""
        assert isinstance(create_llm_adapter("MOCK", settings), MockLLMAdapter)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("adapter_cls", [GroqAdapter, OpenAIAdapter, AnthropicAdapter])
    async def test_missing_key_is_unavailable(self, adapter_cls):
        """Test that calling an adapter without a key raises ProviderUnavailable."""
        adapter = adapter_cls(api_key="")

        with pytest.raises(ProviderUnavailable):
            await adapter.complete([LLMMessage(role="user", content="hi")])
        assert await adapter.is_available() is False

    def test_chat_completions_base_is_abstract(self):
        """Test that the shared chat completions base needs a client factory."""
        with pytest.raises(TypeError):
            _ChatCompletionsAdapter(api_key="key", model="model")

        class NoClientAdapter(_ChatCompletionsAdapter):
            name = "no-client"

        with pytest.raises(TypeError):
            NoClientAdapter(api_key="key", model="model")
