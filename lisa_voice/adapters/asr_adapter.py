"""
Transcription adapters for captured speech segments.

Provides:
- TranscriptionAdapter interface: transcribe(audio) -> text + confidence
- DeepgramTranscriber over the Deepgram pre-recorded REST API
- WhisperTranscriber over the OpenAI audio API
- MockTranscriber for tests
- transcribe_with_fallback() for callers that want priority ordering

Streaming recognizers on the client usually deliver text directly; these
adapters cover audio captured server-side by the VAD.
"""
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx
import structlog

from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import ProviderError, ProviderUnavailable
from lisa_voice.services.provider_chain import ProviderChain
from lisa_voice.voice.audio import pcm16_to_wav

logger = structlog.get_logger()


@dataclass
class TranscriptionResult:
    """Text recognized from an audio segment."""
    text: str
    confidence: float = 0.0
    provider: str = ""
    duration_ms: float = 0.0
    latency_ms: float = 0.0


class TranscriptionAdapter(ABC):
    """Abstract base class for batch transcription providers."""

    name: str = "asr"

    @abstractmethod
    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> TranscriptionResult:
        """
        Transcribe a PCM16 mono audio segment.

        Raises:
            ProviderUnavailable: No credentials or client library
            ProviderError: Provider failed or returned a malformed payload
        """
        pass


class DeepgramTranscriber(TranscriptionAdapter):
    """Deepgram pre-recorded transcription over HTTP."""

    name = "deepgram"
    API_URL = "https://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        language: str = "en-US",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self._client = client

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> TranscriptionResult:
        if not self.api_key:
            raise ProviderUnavailable(self.name, "DEEPGRAM_API_KEY is not set")

        params = {
            "model": self.model,
            "language": self.language,
            "smart_format": "true",
            "punctuate": "true",
        }
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "audio/wav",
        }
        body = pcm16_to_wav(audio, sample_rate)

        start_time = time.time()
        try:
            if self._client is not None:
                response = await self._client.post(self.API_URL, params=params, headers=headers, content=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.API_URL, params=params, headers=headers, content=body)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"Deepgram request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(self.name, f"Deepgram error {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            alternative = data["results"]["channels"][0]["alternatives"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "Malformed Deepgram response") from e

        latency = (time.time() - start_time) * 1000
        return TranscriptionResult(
            text=(alternative.get("transcript") or "").strip(),
            confidence=float(alternative.get("confidence") or 0.0),
            provider=self.name,
            duration_ms=float(data.get("metadata", {}).get("duration", 0.0)) * 1000,
            latency_ms=latency,
        )


class WhisperTranscriber(TranscriptionAdapter):
    """OpenAI Whisper transcription via the openai client."""

    name = "whisper"

    def __init__(self, api_key: str, model: str = "whisper-1", language: str = "en") -> None:
        self.api_key = api_key
        self.model = model
        self.language = language
        self._client = None

    def _get_client(self):
        if not self.api_key:
            raise ProviderUnavailable(self.name, "OPENAI_API_KEY is not set")
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ProviderUnavailable(self.name, "openai package not installed") from e
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> TranscriptionResult:
        client = self._get_client()
        wav_data = pcm16_to_wav(audio, sample_rate)

        start_time = time.time()
        try:
            response = await client.audio.transcriptions.create(
                model=self.model,
                file=("audio.wav", wav_data, "audio/wav"),
                language=self.language[:2],
                response_format="verbose_json",
            )
        except Exception as e:
            raise ProviderError(self.name, f"Whisper request failed: {e}") from e

        segments = getattr(response, "segments", None) or []
        logprobs = [s.avg_logprob for s in segments if getattr(s, "avg_logprob", None) is not None]
        confidence = math.exp(sum(logprobs) / len(logprobs)) if logprobs else 0.9

        return TranscriptionResult(
            text=(response.text or "").strip(),
            confidence=min(1.0, confidence),
            provider=self.name,
            duration_ms=float(getattr(response, "duration", 0.0) or 0.0) * 1000,
            latency_ms=(time.time() - start_time) * 1000,
        )


class MockTranscriber(TranscriptionAdapter):
    """Scriptable transcriber for tests."""

    def __init__(
        self,
        results: Optional[list[str]] = None,
        fail_with: Optional[Exception] = None,
        confidence: float = 0.95,
        name: str = "mock",
    ) -> None:
        self.name = name
        self.results = list(results or [])
        self.fail_with = fail_with
        self.confidence = confidence
        self.calls: list[bytes] = []

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> TranscriptionResult:
        self.calls.append(audio)
        if self.fail_with is not None:
            raise self.fail_with
        text = self.results.pop(0) if self.results else ""
        return TranscriptionResult(
            text=text,
            confidence=self.confidence,
            provider=self.name,
            duration_ms=len(audio) / 2 * 1000 / sample_rate,
        )


def create_transcription_adapters(settings: Settings | None = None) -> list[TranscriptionAdapter]:
    """Build the configured transcription providers in priority order."""
    settings = settings or get_settings()
    adapters: list[TranscriptionAdapter] = []

    for name in settings.asr_provider_list:
        if name == "deepgram":
            adapters.append(DeepgramTranscriber(
                api_key=settings.deepgram_api_key,
                model=settings.deepgram_model,
                language=settings.deepgram_language,
                timeout=settings.provider_timeout_seconds,
            ))
        elif name == "whisper":
            adapters.append(WhisperTranscriber(
                api_key=settings.openai_api_key,
                model=settings.whisper_model,
            ))
        elif name == "mock":
            adapters.append(MockTranscriber())
        else:
            logger.warning("asr_provider_unknown", provider=name)

    return adapters


async def transcribe_with_fallback(
    adapters: Sequence[TranscriptionAdapter],
    audio: bytes,
    sample_rate: int = 16000,
    timeout_seconds: float = 10.0,
) -> TranscriptionResult:
    """
    Try each adapter in order until one succeeds.

    Raises:
        AllProvidersFailed: every adapter failed or timed out
    """
    chain = ProviderChain(list(adapters), timeout_seconds=timeout_seconds, guaranteed_fallback=False)
    return await chain.run(
        "transcribe",
        lambda adapter: adapter.transcribe(audio, sample_rate),
    )
