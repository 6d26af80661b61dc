"""
LISA Voice Engine
=================

Conversational voice engine for the glass order management assistant.

This package provides:
- Voice activity detection over raw PCM audio
- Transcription and language model provider adapters
- Intent classification with a rule-based fallback
- The per-session conversation state machine
- WebSocket and REST transport
"""

__version__ = "1.0.0"
