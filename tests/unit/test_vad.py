"""Unit tests for voice activity detection."""

import numpy as np
import pytest

from lisa_voice.voice.audio import AudioFrame, split_frames
from lisa_voice.voice.vad import SpectralVAD, VADConfig, VADEventType, VADState, create_vad


class TestSpectralFeatures:
    """Tests for per-frame feature extraction."""

    def test_voice_band_tone_is_speech(self, make_tone):
        """Test that a loud voice-band tone is classified as speech."""
        vad = SpectralVAD()
        frame = AudioFrame.from_pcm16(make_tone(300, 32))

        analysis = vad.analyze_frame(frame)

        assert analysis.is_speech is True
        assert analysis.volume > 0.2
        assert 0.02 < analysis.pitch < 0.8
        assert 200 < analysis.spectral_centroid < 450
        assert analysis.confidence == pytest.approx(1.0)

    def test_quiet_tone_is_not_speech(self, make_tone):
        """Test that volume is necessary for speech."""
        vad = SpectralVAD()
        frame = AudioFrame.from_pcm16(make_tone(300, 32, amplitude=0.01))

        analysis = vad.analyze_frame(frame)

        assert analysis.is_speech is False
        assert analysis.volume < 0.02

    def test_high_frequency_hiss_is_rejected(self, make_tone):
        """Test that loud audio needs a corroborating pitch or centroid cue."""
        vad = SpectralVAD()
        frame = AudioFrame.from_pcm16(make_tone(7500, 32))

        analysis = vad.analyze_frame(frame)

        assert analysis.volume > 0.02
        assert analysis.pitch > 0.8
        assert analysis.spectral_centroid > 1600
        assert analysis.is_speech is False

    def test_silence_features(self, make_silence):
        """Test features of digital silence."""
        vad = SpectralVAD()
        frame = AudioFrame.from_pcm16(make_silence(32))

        analysis = vad.analyze_frame(frame)

        assert analysis.is_speech is False
        assert analysis.volume == 0.0
        assert analysis.pitch == 0.0
        assert analysis.spectral_centroid == 0.0

    def test_empty_frame(self):
        """Test that an empty frame is handled."""
        vad = SpectralVAD()

        analysis = vad.analyze_frame(AudioFrame(samples=np.zeros(0, dtype=np.float32)))

        assert analysis.is_speech is False


class TestSpeechSegmentation:
    """Tests for the speech/silence state machine."""

    @pytest.mark.asyncio
    async def test_speech_then_silence(self, speech_audio, silent_audio):
        """Test speech_start after sustained speech and speech_end after sustained silence."""
        vad = SpectralVAD()

        events = await vad.process_pcm(speech_audio + silent_audio)

        assert [e.event_type for e in events] == [VADEventType.SPEECH_START, VADEventType.SPEECH_END]
        start, end = events
        assert start.timestamp_ms == 0.0
        assert end.metadata["reason"] == "silence"
        assert end.duration_ms >= 1000
        assert end.audio
        assert vad.state == VADState.SILENCE

    @pytest.mark.asyncio
    async def test_short_blip_is_ignored(self, make_tone, silent_audio):
        """Test that speech shorter than min_speech_duration never starts a segment."""
        vad = SpectralVAD()

        events = await vad.process_pcm(make_tone(300, 200) + silent_audio)

        assert events == []
        assert vad.is_speaking is False

    @pytest.mark.asyncio
    async def test_speech_in_progress(self, speech_audio):
        """Test that speech without trailing silence stays open."""
        vad = SpectralVAD()

        events = await vad.process_pcm(speech_audio)

        assert [e.event_type for e in events] == [VADEventType.SPEECH_START]
        assert vad.is_speaking is True
        assert vad.state == VADState.SPEECH

    @pytest.mark.asyncio
    async def test_max_speech_duration(self, make_tone):
        """Test that overlong speech is cut into a segment."""
        vad = SpectralVAD(VADConfig(max_speech_duration_ms=1000))

        events = await vad.process_pcm(make_tone(300, 3000))

        ends = [e for e in events if e.event_type == VADEventType.SPEECH_END]
        assert ends
        assert ends[0].metadata["reason"] == "max_duration"

    @pytest.mark.asyncio
    async def test_stream_positions_continue_across_chunks(self, speech_audio, silent_audio):
        """Test that chunked audio yields the same events as one buffer."""
        vad = SpectralVAD()

        first = await vad.process_pcm(speech_audio, start_ms=0.0)
        second = await vad.process_pcm(silent_audio, start_ms=1000.0)

        assert [e.event_type for e in first] == [VADEventType.SPEECH_START]
        assert [e.event_type for e in second] == [VADEventType.SPEECH_END]
        assert second[0].timestamp_ms > 2000


class TestVADEvents:
    """Tests for event callbacks and status."""

    @pytest.mark.asyncio
    async def test_callbacks_receive_volume_and_state_events(self, speech_audio):
        """Test that sync and async callbacks both receive events."""
        vad = SpectralVAD()
        sync_events = []
        async_events = []

        async def on_event(event):
            async_events.append(event)

        vad.add_event_callback(sync_events.append)
        vad.add_event_callback(on_event)

        await vad.process_pcm(speech_audio)

        types = {e.event_type for e in sync_events}
        assert VADEventType.VOLUME_CHANGED in types
        assert VADEventType.SPEECH_START in types
        assert len(async_events) == len(sync_events)

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_processing(self, speech_audio):
        """Test that a raising callback is isolated."""
        vad = SpectralVAD()

        def broken(event):
            raise RuntimeError("boom")

        vad.add_event_callback(broken)
        events = await vad.process_pcm(speech_audio)

        assert events[0].event_type == VADEventType.SPEECH_START

    @pytest.mark.asyncio
    async def test_volume_history_is_bounded(self, speech_audio):
        """Test that only the last history_size volumes are kept."""
        vad = SpectralVAD(VADConfig(history_size=10))

        await vad.process_pcm(speech_audio)
        status = vad.get_status()

        assert len(status["history"]) == 10
        assert status["is_speaking"] is True
        assert status["current_volume"] > 0
        assert status["config"]["volume_threshold"] == vad.config.volume_threshold
        assert status["config"]["centroid_range_hz"] == [vad.config.centroid_min_hz, vad.config.centroid_max_hz]

    @pytest.mark.asyncio
    async def test_reset(self, speech_audio):
        """Test resetting the detector."""
        vad = SpectralVAD()
        await vad.process_pcm(speech_audio)

        vad.reset()

        assert vad.is_speaking is False
        assert vad.get_status()["history"] == []

    def test_create_from_settings(self, settings):
        """Test building the detector from settings."""
        vad = create_vad(settings)

        assert isinstance(vad, SpectralVAD)
        assert vad.config.volume_threshold == settings.vad_volume_threshold
        assert vad.config.min_speech_duration_ms == settings.vad_min_speech_ms

    def test_split_frames(self, speech_audio):
        """Test splitting PCM audio into fixed windows."""
        frames = split_frames(speech_audio, 16000, frame_ms=32.0)

        assert frames[0].num_samples == 512
        assert frames[1].timestamp_ms == pytest.approx(32.0)
