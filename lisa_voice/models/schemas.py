"""
Pydantic schemas for the voice engine API.

Defines the turn response sent back to clients and the REST request and
response models.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VoiceResponse(BaseModel):
    """Output of one conversational turn."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "text": "I can help you find orders. Here is what I found.",
                    "action": "search_results",
                    "data": {"count": 3, "statusCode": 200},
                    "shouldSpeak": True,
                    "fillerWord": None,
                    "isThinking": False,
                    "confidence": 0.9,
                }
            ]
        },
    )

    text: str = Field("", description="Text to speak, may be empty")
    action: Optional[str] = Field(None, description="Canonical action name")
    data: Optional[dict[str, Any]] = Field(None, description="Action executor payload")
    should_speak: bool = Field(True, description="Whether the client should speak the text")
    filler_word: Optional[str] = Field(None, description="Short interjection spoken instead of the text")
    is_thinking: bool = Field(False, description="Filler-only response")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Response confidence")

    @classmethod
    def silent(cls) -> "VoiceResponse":
        """No-op response for states that should not speak."""
        return cls(text="", should_speak=False, confidence=0.0)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class VoiceCommandRequest(BaseModel):
    """Request model for the REST voice command endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "sessionId": "session-abc",
                    "transcript": "Show me orders from this week",
                    "isEndOfSpeech": True,
                    "interimResults": False,
                }
            ]
        },
    )

    session_id: str = Field(..., min_length=1, max_length=128, description="Session identifier")
    transcript: str = Field("", max_length=10000, description="User transcript")
    is_end_of_speech: bool = Field(True, description="Whether this is a final transcript")
    interim_results: bool = Field(False, description="Whether the recognizer streams interim results")


class ConversationStats(BaseModel):
    """Statistics for one conversation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    exists: bool = True
    duration_seconds: float = 0.0
    message_count: int = 0
    interruption_count: int = 0
    current_topic: Optional[str] = None
    is_active: bool = False


class VoiceConfigResponse(BaseModel):
    """Public view of the conversation configuration."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent: str
    providers: list[str]
    silence_timeout_ms: int
    max_conversation_length: int
    ai_response_style: str
    enable_filler_words: bool
    enable_thinking_sounds: bool
    voice_activity_threshold: float


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""

    status: Literal["healthy", "degraded", "unhealthy"]
    service: str
    version: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")
