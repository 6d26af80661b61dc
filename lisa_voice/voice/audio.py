"""
Audio utilities for the voice pipeline.

Provides:
- AudioFrame, a fixed-size window of mono samples
- PCM16 <-> float conversions
- Frame splitting for streamed audio
- WAV wrapping for batch transcription APIs
"""

import io
import wave
from dataclasses import dataclass
from typing import List

import numpy as np

PCM16_MAX = 32768.0


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Convert little-endian signed 16-bit PCM to float32 samples in [-1, 1]."""
    if len(data) % 2:
        data = data[:-1]
    samples = np.frombuffer(data, dtype="<i2")
    return samples.astype(np.float32) / PCM16_MAX


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian signed 16-bit PCM."""
    clipped = np.clip(samples, -1.0, 1.0 - 1.0 / PCM16_MAX)
    return (clipped * PCM16_MAX).astype("<i2").tobytes()


def pcm16_to_wav(data: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap raw PCM16 audio in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(data)
    return buffer.getvalue()


@dataclass
class AudioFrame:
    """
    A window of mono audio.

    Attributes:
        samples: Float32 samples in [-1, 1]
        sample_rate: Samples per second
        timestamp_ms: Stream position of the first sample
    """
    samples: np.ndarray
    sample_rate: int = 16000
    timestamp_ms: float = 0.0

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_ms(self) -> float:
        """Duration of this frame in milliseconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_samples * 1000.0 / self.sample_rate

    @classmethod
    def from_pcm16(
        cls,
        data: bytes,
        sample_rate: int = 16000,
        timestamp_ms: float = 0.0,
    ) -> "AudioFrame":
        return cls(
            samples=pcm16_to_float(data),
            sample_rate=sample_rate,
            timestamp_ms=timestamp_ms,
        )


def split_frames(
    data: bytes,
    sample_rate: int = 16000,
    frame_ms: float = 32.0,
    start_ms: float = 0.0,
) -> List[AudioFrame]:
    """Split PCM16 audio into consecutive frames of frame_ms each."""
    samples = pcm16_to_float(data)
    frame_size = max(1, int(sample_rate * frame_ms / 1000))
    frames = []
    for offset in range(0, samples.shape[0], frame_size):
        chunk = samples[offset:offset + frame_size]
        frames.append(AudioFrame(
            samples=chunk,
            sample_rate=sample_rate,
            timestamp_ms=start_ms + offset * 1000.0 / sample_rate,
        ))
    return frames
