"""
Voice Activity Detection (VAD) module.

Classifies fixed-size audio frames as speech or non-speech from three
signal features:
- RMS energy (volume)
- Zero-crossing rate (pitch proxy)
- Spectral centroid (frequency-distribution proxy)

A frame is speech when the volume is above threshold AND at least one of
the pitch or centroid cues falls in its speech range. Sustained speech
and sustained silence drive speech-start / speech-end events.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np
import structlog

from lisa_voice.config import Settings
from lisa_voice.voice.audio import AudioFrame, float_to_pcm16, split_frames

logger = structlog.get_logger()


class VADState(str, Enum):
    """Voice Activity Detection states."""
    SILENCE = "silence"
    SPEECH = "speech"


class VADEventType(str, Enum):
    """Types of VAD events."""
    VOLUME_CHANGED = "volume_changed"
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


@dataclass
class FrameAnalysis:
    """Per-frame signal features."""
    is_speech: bool
    confidence: float
    volume: float
    pitch: float
    spectral_centroid: float


@dataclass
class VADEvent:
    """
    Voice Activity Detection event.

    Attributes:
        event_type: Type of VAD event
        timestamp_ms: Stream position when the event occurred
        duration_ms: Duration of the speech segment (speech_end only)
        confidence: Detection confidence (0.0 - 1.0)
        volume: Frame RMS volume
        audio: PCM16 audio of the finished segment (speech_end only)
        metadata: Additional event metadata
    """
    event_type: VADEventType
    timestamp_ms: float = 0.0
    duration_ms: float = 0.0
    confidence: float = 0.0
    volume: float = 0.0
    audio: Optional[bytes] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VADConfig:
    """
    Configuration for Voice Activity Detection.

    Attributes:
        sample_rate: Expected audio sample rate
        volume_threshold: Minimum RMS volume for a speech frame
        pitch_min / pitch_max: Speech range of the zero-crossing rate
        centroid_min_hz / centroid_max_hz: Speech range of the spectral centroid
        min_speech_duration_ms: Sustained speech needed to fire speech_start
        max_silence_duration_ms: Sustained silence needed to fire speech_end
        max_speech_duration_ms: Forced speech_end after this much speech
        history_size: Number of recent volumes kept for display
    """
    sample_rate: int = 16000
    volume_threshold: float = 0.02
    pitch_min: float = 0.02
    pitch_max: float = 0.8
    centroid_min_hz: float = 150.0
    centroid_max_hz: float = 1600.0
    min_speech_duration_ms: float = 500
    max_silence_duration_ms: float = 1500
    max_speech_duration_ms: float = 60000
    history_size: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "VADConfig":
        return cls(
            sample_rate=settings.audio_sample_rate,
            volume_threshold=settings.vad_volume_threshold,
            pitch_min=settings.vad_pitch_min,
            pitch_max=settings.vad_pitch_max,
            centroid_min_hz=settings.vad_centroid_min_hz,
            centroid_max_hz=settings.vad_centroid_max_hz,
            min_speech_duration_ms=settings.vad_min_speech_ms,
            max_silence_duration_ms=settings.vad_max_silence_ms,
            history_size=settings.vad_history_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "volume_threshold": self.volume_threshold,
            "pitch_range": [self.pitch_min, self.pitch_max],
            "centroid_range_hz": [self.centroid_min_hz, self.centroid_max_hz],
            "min_speech_duration_ms": self.min_speech_duration_ms,
            "max_silence_duration_ms": self.max_silence_duration_ms,
            "max_speech_duration_ms": self.max_speech_duration_ms,
        }


class VoiceActivityDetector(ABC):
    """Base class holding the speech/silence state machine and event plumbing."""

    def __init__(self, config: Optional[VADConfig] = None):
        self.config = config or VADConfig()
        self._state = VADState.SILENCE
        self._is_speaking = False

        self._speech_run_start: Optional[float] = None
        self._speech_run_ms: float = 0.0
        self._silence_run_ms: float = 0.0
        self._speech_started_at: float = 0.0

        # Frames of the candidate run before speech_start, then of the segment
        self._pending_frames: List[AudioFrame] = []
        self._segment_frames: List[AudioFrame] = []

        self._volume_history: Deque[float] = deque(maxlen=self.config.history_size)
        self._event_callbacks: List[Callable[[VADEvent], Any]] = []

        self._lock = threading.Lock()

    @property
    def state(self) -> VADState:
        """Current VAD state."""
        return self._state

    @property
    def is_speaking(self) -> bool:
        """Whether speech is currently detected."""
        return self._is_speaking

    @abstractmethod
    def analyze_frame(self, frame: AudioFrame) -> FrameAnalysis:
        """Compute features and the speech decision for one frame."""

    async def process(self, frame: AudioFrame) -> Optional[VADEvent]:
        """
        Process one audio frame.

        Emits a volume_changed event for every frame and a speech_start or
        speech_end event on state changes.

        Returns:
            The state-change event, if any
        """
        analysis = self.analyze_frame(frame)

        with self._lock:
            self._volume_history.append(analysis.volume)
            event = self._update_state(frame, analysis)

        await self._emit_event(VADEvent(
            event_type=VADEventType.VOLUME_CHANGED,
            timestamp_ms=frame.timestamp_ms,
            confidence=analysis.confidence,
            volume=analysis.volume,
        ))

        if event:
            logger.debug(
                "vad_state_change",
                event_type=event.event_type.value,
                timestamp_ms=event.timestamp_ms,
                duration_ms=event.duration_ms,
            )
            await self._emit_event(event)

        return event

    async def process_pcm(self, data: bytes, start_ms: float = 0.0, frame_ms: float = 32.0) -> List[VADEvent]:
        """Split PCM16 audio into frames and process each one."""
        events = []
        for frame in split_frames(data, self.config.sample_rate, frame_ms, start_ms):
            event = await self.process(frame)
            if event:
                events.append(event)
        return events

    def _update_state(self, frame: AudioFrame, analysis: FrameAnalysis) -> Optional[VADEvent]:
        """Advance the state machine and return an event if state changed."""
        event = None
        frame_end = frame.timestamp_ms + frame.duration_ms

        if analysis.is_speech:
            self._silence_run_ms = 0.0

            if not self._is_speaking:
                # Potential speech start
                if self._speech_run_start is None:
                    self._speech_run_start = frame.timestamp_ms
                self._speech_run_ms += frame.duration_ms
                self._pending_frames.append(frame)

                if self._speech_run_ms >= self.config.min_speech_duration_ms:
                    self._is_speaking = True
                    self._state = VADState.SPEECH
                    self._speech_started_at = self._speech_run_start
                    self._segment_frames = list(self._pending_frames)
                    self._pending_frames.clear()

                    event = VADEvent(
                        event_type=VADEventType.SPEECH_START,
                        timestamp_ms=self._speech_started_at,
                        confidence=analysis.confidence,
                        volume=analysis.volume,
                    )
            else:
                self._segment_frames.append(frame)
                if frame_end - self._speech_started_at >= self.config.max_speech_duration_ms:
                    event = self._end_segment(frame_end, analysis, reason="max_duration")

        else:
            if not self._is_speaking:
                # Speech run broken before it was confirmed
                self._speech_run_start = None
                self._speech_run_ms = 0.0
                self._pending_frames.clear()
            else:
                self._segment_frames.append(frame)
                self._silence_run_ms += frame.duration_ms

                if self._silence_run_ms >= self.config.max_silence_duration_ms:
                    event = self._end_segment(frame_end, analysis, reason="silence")

        return event

    def _end_segment(self, frame_end: float, analysis: FrameAnalysis, reason: str) -> VADEvent:
        samples = [f.samples for f in self._segment_frames]
        audio = float_to_pcm16(np.concatenate(samples)) if samples else b""

        event = VADEvent(
            event_type=VADEventType.SPEECH_END,
            timestamp_ms=frame_end,
            duration_ms=frame_end - self._speech_started_at,
            confidence=analysis.confidence,
            volume=analysis.volume,
            audio=audio,
            metadata={"reason": reason},
        )
        self._reset_state()
        return event

    def _reset_state(self) -> None:
        """Reset internal state after speech ends."""
        self._is_speaking = False
        self._state = VADState.SILENCE
        self._speech_run_start = None
        self._speech_run_ms = 0.0
        self._silence_run_ms = 0.0
        self._pending_frames.clear()
        self._segment_frames = []

    def add_event_callback(self, callback: Callable[[VADEvent], Any]) -> None:
        """Add a callback for VAD events."""
        self._event_callbacks.append(callback)

    async def _emit_event(self, event: VADEvent) -> None:
        """Emit event to all registered callbacks."""
        for callback in self._event_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception as e:
                logger.error("vad_callback_error", error=str(e))

    def get_status(self) -> Dict[str, Any]:
        """Current and average volume over the rolling history."""
        with self._lock:
            history = list(self._volume_history)
        current = history[-1] if history else 0.0
        average = float(np.mean(history)) if history else 0.0
        return {
            "state": self._state.value,
            "is_speaking": self._is_speaking,
            "current_volume": current,
            "average_volume": average,
            "history": history,
            "config": self.config.to_dict(),
        }

    def reset(self) -> None:
        """Reset VAD state."""
        with self._lock:
            self._reset_state()
            self._volume_history.clear()


class SpectralVAD(VoiceActivityDetector):
    """
    Multi-feature VAD.

    Volume is necessary but not sufficient: the zero-crossing rate or the
    spectral centroid must corroborate it, which rejects broadband noise.
    """

    def analyze_frame(self, frame: AudioFrame) -> FrameAnalysis:
        samples = np.asarray(frame.samples, dtype=np.float64)
        if samples.size == 0:
            return FrameAnalysis(False, 0.0, 0.0, 0.0, 0.0)

        volume = float(np.sqrt(np.mean(samples ** 2)))
        pitch = self._zero_crossing_rate(samples)
        centroid = self._spectral_centroid(samples, frame.sample_rate)

        cfg = self.config
        volume_ok = volume > cfg.volume_threshold
        pitch_ok = cfg.pitch_min < pitch < cfg.pitch_max
        centroid_ok = cfg.centroid_min_hz < centroid < cfg.centroid_max_hz

        volume_score = min(volume / cfg.volume_threshold, 1.0) if cfg.volume_threshold > 0 else 1.0
        confidence = (volume_score + float(pitch_ok) + float(centroid_ok)) / 3

        return FrameAnalysis(
            is_speech=volume_ok and (pitch_ok or centroid_ok),
            confidence=confidence,
            volume=volume,
            pitch=pitch,
            spectral_centroid=centroid,
        )

    @staticmethod
    def _zero_crossing_rate(samples: np.ndarray) -> float:
        positive = samples >= 0
        crossings = np.count_nonzero(positive[1:] != positive[:-1])
        return crossings / samples.size

    @staticmethod
    def _spectral_centroid(samples: np.ndarray, sample_rate: int) -> float:
        windowed = samples * np.hanning(samples.size) if samples.size > 1 else samples
        magnitudes = np.abs(np.fft.rfft(windowed))
        total = magnitudes.sum()
        if total <= 0:
            return 0.0
        freqs = np.fft.rfftfreq(samples.size, d=1.0 / sample_rate)
        return float((freqs * magnitudes).sum() / total)


def create_vad(settings: Settings) -> VoiceActivityDetector:
    """Create the configured VAD."""
    return SpectralVAD(VADConfig.from_settings(settings))
