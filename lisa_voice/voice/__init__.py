"""Audio and voice activity detection."""
from .audio import AudioFrame, pcm16_to_float, pcm16_to_wav, split_frames
from .vad import (
    SpectralVAD,
    VADConfig,
    VADEvent,
    VADEventType,
    VADState,
    VoiceActivityDetector,
    create_vad,
)

__all__ = [
    "AudioFrame",
    "pcm16_to_float",
    "pcm16_to_wav",
    "split_frames",
    "SpectralVAD",
    "VADConfig",
    "VADEvent",
    "VADEventType",
    "VADState",
    "VoiceActivityDetector",
    "create_vad",
]
