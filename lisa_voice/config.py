"""Configuration for the LISA voice engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service settings
    service_name: str = "lisa-voice"
    host: str = "0.0.0.0"
    port: int = 3001
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "info"
    cors_origins: str = "*"

    # Rate limiting for the REST turn endpoint
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60

    # Conversation behaviour
    agent_name: str = "LISA"
    silence_timeout_ms: int = 1500
    max_conversation_length: int = Field(default=30, description="Minutes before the wrap-up prompt")
    enable_filler_words: bool = True
    enable_thinking_sounds: bool = True
    ai_response_style: str = "conversational_telephonic"
    interim_filler_min_chars: int = 50
    interim_filler_cooldown_ms: int = 2000
    history_max_turns: int = 50
    session_idle_timeout_seconds: int = 300
    session_sweep_interval_seconds: int = 60
    active_window_seconds: int = 30

    # WebSocket connections
    max_connections_per_ip: int = 3
    connection_idle_timeout_seconds: int = 300
    connection_active_window_seconds: int = 60

    # Language model providers, highest priority first
    llm_providers: str = ""
    groq_api_key: str = Field(default="", description="Groq API key")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    groq_model: str = "llama-3.3-70b-versatile"
    openai_model: str = "gpt-4o"
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    provider_timeout_seconds: float = 8.0
    intent_temperature: float = 0.1
    intent_max_tokens: int = 200
    response_temperature: float = 0.8
    response_max_tokens: int = 150

    # Transcription providers, highest priority first
    asr_providers: str = "deepgram,whisper"
    deepgram_api_key: str = Field(default="", description="Deepgram API key")
    deepgram_model: str = "nova-2"
    deepgram_language: str = "en-US"
    whisper_model: str = "whisper-1"
    audio_sample_rate: int = 16000

    # Voice activity detection
    vad_enabled: bool = True
    vad_volume_threshold: float = 0.02
    vad_min_speech_ms: int = 500
    vad_max_silence_ms: int = 1500
    vad_pitch_min: float = 0.02
    vad_pitch_max: float = 0.8
    vad_centroid_min_hz: float = 150.0
    vad_centroid_max_hz: float = 1600.0
    vad_history_size: int = 10

    # Order store
    order_store_url: str = ""
    order_store_timeout_seconds: float = 5.0

    @property
    def llm_provider_list(self) -> list[str]:
        """Configured language model providers in priority order."""
        return [p.strip().lower() for p in self.llm_providers.split(",") if p.strip()]

    @property
    def asr_provider_list(self) -> list[str]:
        """Configured transcription providers in priority order."""
        return [p.strip().lower() for p in self.asr_providers.split(",") if p.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
