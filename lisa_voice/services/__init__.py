"""Services for the LISA conversation engine."""
from .action_executor import ActionExecutor
from .conversation_service import ConversationConfig, ConversationService
from .intent_classifier import (
    ConversationProvider,
    IntentClassifier,
    LLMConversationProvider,
    RuleBasedConversationProvider,
    create_intent_classifier,
)
from .phrases import PhraseSelector
from .provider_chain import ProviderChain
from .response_composer import ResponseComposer
from .session_service import ConversationTurn, Session, SessionStore

__all__ = [
    "ActionExecutor",
    "ConversationConfig",
    "ConversationService",
    "ConversationProvider",
    "IntentClassifier",
    "LLMConversationProvider",
    "RuleBasedConversationProvider",
    "create_intent_classifier",
    "PhraseSelector",
    "ProviderChain",
    "ResponseComposer",
    "ConversationTurn",
    "Session",
    "SessionStore",
]
