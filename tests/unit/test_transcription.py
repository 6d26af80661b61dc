"""Unit tests for transcription adapters."""

import io
import wave

import httpx
import pytest

from lisa_voice.adapters.asr_adapter import (
    DeepgramTranscriber,
    MockTranscriber,
    WhisperTranscriber,
    create_transcription_adapters,
    transcribe_with_fallback,
)
from lisa_voice.exceptions import AllProvidersFailed, ProviderError, ProviderUnavailable
from lisa_voice.voice.audio import pcm16_to_wav


def deepgram_payload(transcript="show me orders", confidence=0.93):
    return {
        "metadata": {"duration": 1.5},
        "results": {"channels": [{"alternatives": [{"transcript": transcript, "confidence": confidence}]}]},
    }


class TestDeepgramTranscriber:
    """Tests for the Deepgram adapter."""

    @pytest.mark.asyncio
    async def test_transcribe(self, speech_audio):
        """Test a successful transcription."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Token dg-key"
            assert request.url.params["model"] == "nova-2"
            assert request.content[:4] == b"RIFF"
            return httpx.Response(200, json=deepgram_payload())

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transcriber = DeepgramTranscriber("dg-key", client=client)
            result = await transcriber.transcribe(speech_audio)

        assert result.text == "show me orders"
        assert result.confidence == pytest.approx(0.93)
        assert result.provider == "deepgram"
        assert result.duration_ms == pytest.approx(1500)

    @pytest.mark.asyncio
    async def test_missing_key(self, speech_audio):
        """Test that a missing key makes the provider unavailable."""
        with pytest.raises(ProviderUnavailable):
            await DeepgramTranscriber("").transcribe(speech_audio)

    @pytest.mark.asyncio
    async def test_error_status(self, speech_audio):
        """Test that an error status is a provider error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ProviderError):
                await DeepgramTranscriber("dg-key", client=client).transcribe(speech_audio)

    @pytest.mark.asyncio
    async def test_malformed_payload(self, speech_audio):
        """Test that an unexpected payload is a provider error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"results": {}}))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ProviderError):
                await DeepgramTranscriber("dg-key", client=client).transcribe(speech_audio)


class TestTranscriptionFallback:
    """Tests for priority-ordered transcription."""

    @pytest.mark.asyncio
    async def test_first_success(self, speech_audio):
        """Test that the first working adapter answers."""
        broken = MockTranscriber(fail_with=ProviderError("deepgram", "down"), name="deepgram")
        working = MockTranscriber(results=["list orders"], name="whisper")

        result = await transcribe_with_fallback([broken, working], speech_audio)

        assert result.text == "list orders"
        assert result.provider == "whisper"
        assert len(broken.calls) == 1

    @pytest.mark.asyncio
    async def test_all_failed(self, speech_audio):
        """Test that failure of every adapter is reported."""
        adapters = [
            DeepgramTranscriber(""),
            MockTranscriber(fail_with=RuntimeError("boom")),
        ]

        with pytest.raises(AllProvidersFailed) as exc_info:
            await transcribe_with_fallback(adapters, speech_audio)

        assert set(exc_info.value.errors) == {"deepgram", "mock"}

    @pytest.mark.asyncio
    async def test_whisper_without_key(self, speech_audio):
        """Test that Whisper without a key is skipped."""
        with pytest.raises(AllProvidersFailed):
            await transcribe_with_fallback([WhisperTranscriber("")], speech_audio)

    def test_factory(self, settings):
        """Test building adapters from settings."""
        settings.asr_providers = "deepgram,whisper,mock,carrier-pigeon"

        adapters = create_transcription_adapters(settings)

        assert [a.name for a in adapters] == ["deepgram", "whisper", "mock"]


class TestWavHelper:
    """Tests for the WAV container helper."""

    def test_pcm16_to_wav(self, speech_audio):
        """Test wrapping PCM16 in a WAV header."""
        data = pcm16_to_wav(speech_audio, 16000)

        with wave.open(io.BytesIO(data), "rb") as wav:
            assert wav.getnchannels() == 1
            assert wav.getsampwidth() == 2
            assert wav.getframerate() == 16000
            assert wav.getnframes() == len(speech_audio) // 2
