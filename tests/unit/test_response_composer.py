"""Unit tests for response composition."""

import pytest

from lisa_voice.adapters.llm_adapter import MockLLMAdapter
from lisa_voice.models.conversation import IntentResult
from lisa_voice.services.intent_classifier import IntentClassifier, LLMConversationProvider
from lisa_voice.services.phrases import DEFAULT_REPLY
from lisa_voice.services.response_composer import (
    Action,
    ResponseComposer,
    apply_emotion_prefix,
    parse_action_tag,
    strip_tags,
)


@pytest.fixture
def composer():
    return ResponseComposer(IntentClassifier([]).chain)


class TestActionTags:
    """Tests for action tag parsing."""

    @pytest.mark.parametrize(
        "raw,action",
        [
            ("[ACTION:search]", Action.SEARCH_RESULTS),
            ("[ACTION:search_orders]", Action.SEARCH_RESULTS),
            ("[ACTION:orders_found]", Action.SEARCH_RESULTS),
            ("[ACTION:create_order]", Action.ORDER_CREATED),
            ("[ACTION:place_order]", Action.ORDER_CREATED),
            ("[ACTION:generate_pdf]", Action.PDF_REQUESTED),
            ("[ACTION:goodbye]", Action.END_CONVERSATION),
            ("[ACTION:Dance]", "dance"),
        ],
    )
    def test_canonical_names(self, raw, action):
        """Test renaming raw tags to canonical actions."""
        assert parse_action_tag(f"Sure thing. {raw}").name == action

    def test_tag_parameters(self):
        """Test JSON parameters embedded in the tag."""
        tag = parse_action_tag('Done. [ACTION:create_order:{"quantity": 4}]')

        assert tag.name == Action.ORDER_CREATED
        assert tag.parameters == {"quantity": 4}

    def test_invalid_tag_parameters(self):
        """Test that broken JSON parameters are dropped."""
        tag = parse_action_tag("Done. [ACTION:create_order:{quantity: four}]")

        assert tag.name == Action.ORDER_CREATED
        assert tag.parameters == {}

    def test_no_tag(self):
        """Test text without a tag."""
        assert parse_action_tag("Just talking.") is None


class TestTextCleanup:
    """Tests for tag stripping and emotion prefixes."""

    def test_strip_tags(self):
        """Test removing action tags and other bracketed notes."""
        text = strip_tags("Let me look.  [ACTION:search_orders] [pause] Okay!")

        assert text == "Let me look. Okay!"

    def test_strip_everything(self):
        """Test text that is only annotations."""
        assert strip_tags("[ACTION:end]") == ""

    @pytest.mark.parametrize(
        "emotion,text,expected",
        [
            ("frustrated", "Let me fix that.", "I understand, and I'm here to help. Let me fix that."),
            ("frustrated", "Sorry about that.", "Sorry about that."),
            ("excited", "Your order is in.", "That's great! Your order is in."),
            ("excited", "Awesome, your order is in.", "Awesome, your order is in."),
            ("confused", "Orders are listed by date.", "No worries, let me clarify that. Orders are listed by date."),
            ("neutral", "Here you go.", "Here you go."),
        ],
    )
    def test_emotion_prefix(self, emotion, text, expected):
        """Test the emotion prefix table and its markers."""
        assert apply_emotion_prefix(text, emotion) == expected


class TestResponseComposer:
    """Tests for ResponseComposer.compose and generate."""

    def test_tag_drives_action(self, composer):
        """Test that an embedded tag sets the action and is stripped."""
        intent = IntentResult(intent="GENERAL", confidence=0.6)

        composed = composer.compose("Pulling those up. [ACTION:search]", intent, generated_by_llm=True)

        assert composed.response.action == Action.SEARCH_RESULTS
        assert composed.response.text == "Pulling those up."
        assert composed.response.confidence == 0.9

    def test_intent_drives_action_without_tag(self, composer):
        """Test deriving the action from the intent."""
        intent = IntentResult(intent="SEARCH_ORDERS", confidence=0.8, parameters={"date_range": "week"})

        composed = composer.compose("Let me pull up those orders for you.", intent)

        assert composed.action == Action.SEARCH_RESULTS
        assert composed.action_parameters == {"date_range": "week"}
        assert composed.response.confidence == 0.8

    def test_no_action_for_greeting(self, composer):
        """Test that conversational intents carry no action."""
        composed = composer.compose("Hello!", IntentResult(intent="GREETING", confidence=0.9))

        assert composed.response.action is None
        assert composed.response.should_speak is True

    def test_missing_slots_block_order(self, composer):
        """Test that an order is not placed until its slots are filled."""
        intent = IntentResult(intent="CREATE_ORDER", confidence=0.8)

        composed = composer.compose("Creating it now! [ACTION:create_order]", intent, missing_slots=["quantity"])

        assert composed.response.action is None
        assert composed.response.text == "How many pieces do you need?"

    def test_empty_text_gets_default(self, composer):
        """Test that stripped-empty text becomes the default reply."""
        composed = composer.compose("[ACTION:end_conversation]", IntentResult(intent="GENERAL"))

        assert composed.response.text == DEFAULT_REPLY
        assert composed.action == Action.END_CONVERSATION

    def test_tag_parameters_override_intent(self, composer):
        """Test merging tag parameters over classifier parameters."""
        intent = IntentResult(intent="SEARCH_ORDERS", parameters={"customer_name": "Acme", "date_range": "today"})

        composed = composer.compose('Okay. [ACTION:search:{"date_range": "week"}]', intent)

        assert composed.action_parameters == {"customer_name": "Acme", "date_range": "week"}

    @pytest.mark.asyncio
    async def test_generate_falls_back_to_template(self):
        """Test that generation failures end in the intent template."""
        adapter = MockLLMAdapter(fail_with=RuntimeError("rate limited"))
        classifier = IntentClassifier([LLMConversationProvider(adapter)], timeout_seconds=0.5)
        composer = ResponseComposer(classifier.chain)
        intent = IntentResult(intent="HELP", natural_response="I can help with orders.")

        text, provider = await composer.generate("help", [], intent)

        assert text == "I can help with orders."
        assert provider == "rules"

    @pytest.mark.asyncio
    async def test_generate_with_model(self):
        """Test generation through a working model."""
        adapter = MockLLMAdapter(responses=["Sure! [ACTION:generate_pdf]"])
        classifier = IntentClassifier([LLMConversationProvider(adapter)])
        composer = ResponseComposer(classifier.chain)

        text, provider = await composer.generate("pdf please", [], IntentResult(intent="GENERATE_PDF"))

        assert text == "Sure! [ACTION:generate_pdf]"
        assert provider == "mock"
