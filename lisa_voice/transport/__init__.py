"""WebSocket transport."""
from .gateway import VoiceConnection, VoiceGateway

__all__ = ["VoiceConnection", "VoiceGateway"]
