"""
Voice Gateway - Duplex WebSocket transport for the conversation engine.

Protocol (JSON, one connection per session):

Client -> Server:
- {"type": "utterance", "transcript": "...", "isFinal": bool, "isInterim": bool}
- {"type": "audio", "audio_base64": "..."}      PCM16 mono, run through the VAD
- {"type": "interrupt"}
- {"type": "status", "status": "speaking|listening|idle"}
- {"type": "startConversation"}
- {"type": "endConversation"}
- {"type": "ping"}
- {"type": "health-check"}

Server -> Client:
- {"type": "connected", "sessionId": "...", "agent": "...", "message": "..."}
- {"type": "response", "sessionId": "...", "response": {...}}
- {"type": "vad", "event": "...", "volume": float}
- {"type": "pong"}
- {"type": "health-response", "status": "healthy", "timestamp": ms, "sessionId": "..."}
- {"type": "connection_replaced", "reason": "..."}   sent before an older socket from the same IP is closed
- {"type": "connection_timeout", "reason": "..."}    sent before an idle socket is closed
- {"type": "error", "message": "..."}
"""
import asyncio
import base64
import binascii
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from lisa_voice.adapters.asr_adapter import TranscriptionAdapter, transcribe_with_fallback
from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import AllProvidersFailed
from lisa_voice.models.schemas import VoiceResponse
from lisa_voice.services.conversation_service import ConversationService
from lisa_voice.services.phrases import WELCOME_MESSAGE
from lisa_voice.voice.vad import VADEvent, VADEventType, VoiceActivityDetector, create_vad

logger = structlog.get_logger()

REPLACED_REASON = "Multiple connections detected, keeping the newest one"
IDLE_REASON = "Inactive for too long"


@dataclass
class VoiceConnection:
    """One connected client."""

    connection_id: str
    websocket: WebSocket
    session_id: str
    client_ip: str = "unknown"
    vad: Optional[VoiceActivityDetector] = None
    connected_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    stream_position_ms: float = 0.0
    message_count: int = 0
    tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    @property
    def duration_seconds(self) -> float:
        return time.time() - self.connected_at

    def update_activity(self) -> None:
        self.last_activity = time.time()
        self.message_count += 1


class VoiceGateway:
    """
    Tracks connections and feeds their events into the conversation engine.

    Final turns run as tasks so interim updates and interrupts keep flowing
    while a turn is in flight; the session turn lock keeps turns ordered.
    """

    def __init__(
        self,
        conversation: ConversationService,
        transcribers: Sequence[TranscriptionAdapter] = (),
        settings: Optional[Settings] = None,
        vad_factory: Optional[Callable[[], VoiceActivityDetector]] = None,
    ) -> None:
        self.conversation = conversation
        self.transcribers = list(transcribers)
        self.settings = settings or get_settings()
        self._vad_factory = vad_factory or (lambda: create_vad(self.settings))
        self._connections: dict[str, VoiceConnection] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task[None]] = None

        self._handlers = {
            "utterance": self._on_utterance,
            "audio": self._on_audio,
            "interrupt": self._on_interrupt,
            "status": self._on_status,
            "startConversation": self._on_start_conversation,
            "endConversation": self._on_end_conversation,
            "ping": self._on_ping,
            "health-check": self._on_health_check,
        }

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get(self, connection_id: str) -> Optional[VoiceConnection]:
        return self._connections.get(connection_id)

    async def start(self) -> None:
        """Start the idle connection sweep."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("voice_gateway_started")

    async def stop(self) -> None:
        """Stop the sweep and close every connection."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for connection_id in list(self._connections):
            await self.disconnect(connection_id, code=1001, reason="Server shutdown")
        logger.info("voice_gateway_stopped")

    async def connect(self, websocket: WebSocket, session_id: Optional[str] = None) -> VoiceConnection:
        """
        Accept a websocket and send the welcome event.

        Only the newest max_connections_per_ip sockets from one address are
        kept; older ones are told they were replaced and closed.
        """
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        connection = VoiceConnection(
            connection_id=connection_id,
            websocket=websocket,
            session_id=session_id or connection_id,
            client_ip=websocket.client.host if websocket.client else "unknown",
            vad=self._vad_factory() if self.settings.vad_enabled else None,
        )
        async with self._lock:
            self._connections[connection_id] = connection
            # Registry order is connection order, oldest first
            same_ip = [c for c in self._connections.values() if c.client_ip == connection.client_ip]
            limit = max(1, self.settings.max_connections_per_ip)
            replaced = same_ip[:max(0, len(same_ip) - limit)]

        for old in replaced:
            logger.info(
                "voice_client_replaced",
                connection_id=old.connection_id,
                client_ip=old.client_ip,
                new_connection_id=connection_id,
            )
            await self._send(old, {"type": "connection_replaced", "reason": REPLACED_REASON})
            await self.disconnect(old.connection_id, code=1000, reason=REPLACED_REASON)

        logger.info(
            "voice_client_connected",
            connection_id=connection_id,
            session_id=connection.session_id,
            client_ip=connection.client_ip,
            total=self.connection_count,
        )
        await self._send(connection, {
            "type": "connected",
            "sessionId": connection.session_id,
            "agent": self.settings.agent_name,
            "message": WELCOME_MESSAGE,
        })
        return connection

    async def disconnect(self, connection_id: str, code: Optional[int] = None, reason: str = "") -> None:
        """Drop a connection and its session state."""
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is None:
            return

        for task in list(connection.tasks):
            task.cancel()
        # A replacement socket may still be serving the same session
        if not any(c.session_id == connection.session_id for c in self._connections.values()):
            self.conversation.clear_session(connection.session_id)

        if code is not None:
            try:
                await connection.websocket.close(code=code, reason=reason)
            except RuntimeError:
                # Already closed by the peer
                pass

        logger.info(
            "voice_client_disconnected",
            connection_id=connection_id,
            session_id=connection.session_id,
            duration_seconds=round(connection.duration_seconds, 1),
            messages=connection.message_count,
        )

    async def serve(self, websocket: WebSocket, session_id: Optional[str] = None) -> None:
        """Run one connection until the client goes away."""
        connection = await self.connect(websocket, session_id)
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    await self._send_error(connection, "Invalid JSON")
                    continue
                await self.handle_message(connection, message)
        except WebSocketDisconnect:
            logger.info("websocket_disconnected", connection_id=connection.connection_id)
        except Exception as e:
            logger.error("websocket_error", connection_id=connection.connection_id, error=str(e))
        finally:
            await self.disconnect(connection.connection_id)

    async def handle_message(self, connection: VoiceConnection, message: Any) -> None:
        """Dispatch one client event."""
        connection.update_activity()

        if not isinstance(message, dict):
            await self._send_error(connection, "Message must be a JSON object")
            return

        msg_type = message.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            await self._send_error(connection, f"Unknown message type: {msg_type}")
            return

        await handler(connection, message)

    async def _on_utterance(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        transcript = str(message.get("transcript") or "")
        is_final = bool(message.get("isFinal", True))
        is_interim = bool(message.get("isInterim", False))

        if is_final:
            self._spawn(connection, self._run_turn(connection, transcript))
            return

        response = await self.conversation.process_speech(
            connection.session_id,
            transcript,
            is_final=False,
            interim_results=is_interim,
        )
        if response.should_speak:
            await self._send_response(connection, response)

    async def _on_audio(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        if connection.vad is None:
            await self._send_error(connection, "Server-side voice detection is disabled")
            return

        try:
            audio = base64.b64decode(message.get("audio_base64") or "", validate=True)
        except (binascii.Error, ValueError):
            await self._send_error(connection, "Invalid audio payload")
            return

        events = await connection.vad.process_pcm(audio, start_ms=connection.stream_position_ms)
        connection.stream_position_ms += len(audio) / 2 / connection.vad.config.sample_rate * 1000

        status = connection.vad.get_status()
        await self._send(connection, {
            "type": "vad",
            "event": VADEventType.VOLUME_CHANGED.value,
            "volume": status["current_volume"],
        })

        for event in events:
            await self._send(connection, {
                "type": "vad",
                "event": event.event_type.value,
                "volume": event.volume,
            })
            if event.event_type == VADEventType.SPEECH_START:
                await self._on_speech_start(connection)
            elif event.event_type == VADEventType.SPEECH_END and event.audio:
                self._spawn(connection, self._transcribe_and_run(connection, event))

    async def _on_speech_start(self, connection: VoiceConnection) -> None:
        session = self.conversation.sessions.get(connection.session_id)
        if session is not None and session.is_assistant_speaking:
            await self._send_response(connection, self.conversation.handle_interruption(connection.session_id))

    async def _on_interrupt(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        await self._send_response(connection, self.conversation.handle_interruption(connection.session_id))

    async def _on_status(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        status = message.get("status")
        if status not in ("speaking", "listening", "idle"):
            await self._send_error(connection, f"Unknown status: {status}")
            return
        self.conversation.set_assistant_speaking(connection.session_id, status == "speaking")

    async def _on_start_conversation(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        await self._send_response(connection, self.conversation.start_conversation(connection.session_id))

    async def _on_end_conversation(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        await self._send_response(connection, self.conversation.end_conversation(connection.session_id))

    async def _on_ping(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        await self._send(connection, {"type": "pong"})

    async def _on_health_check(self, connection: VoiceConnection, message: dict[str, Any]) -> None:
        await self._send(connection, {
            "type": "health-response",
            "status": "healthy",
            "timestamp": int(time.time() * 1000),
            "sessionId": connection.session_id,
        })

    async def _run_turn(self, connection: VoiceConnection, transcript: str) -> None:
        response = await self.conversation.process_speech(connection.session_id, transcript, is_final=True)
        await self._send_response(connection, response)

    async def _transcribe_and_run(self, connection: VoiceConnection, event: VADEvent) -> None:
        try:
            result = await transcribe_with_fallback(
                self.transcribers,
                event.audio or b"",
                sample_rate=connection.vad.config.sample_rate if connection.vad else self.settings.audio_sample_rate,
                timeout_seconds=self.settings.provider_timeout_seconds,
            )
        except AllProvidersFailed as e:
            logger.warning("transcription_failed", session_id=connection.session_id, errors=e.errors)
            await self._send_error(connection, "Transcription failed")
            return

        if not result.text:
            return

        logger.info(
            "segment_transcribed",
            session_id=connection.session_id,
            provider=result.provider,
            confidence=result.confidence,
            duration_ms=event.duration_ms,
        )
        await self._run_turn(connection, result.text)

    def _spawn(self, connection: VoiceConnection, coro: Any) -> None:
        task = asyncio.create_task(coro)
        connection.tasks.add(task)
        task.add_done_callback(connection.tasks.discard)

    async def _send_response(self, connection: VoiceConnection, response: VoiceResponse) -> None:
        await self._send(connection, {
            "type": "response",
            "sessionId": connection.session_id,
            "response": response.to_wire(),
        })

    async def _send_error(self, connection: VoiceConnection, message: str) -> None:
        await self._send(connection, {"type": "error", "message": message})

    async def _send(self, connection: VoiceConnection, payload: dict[str, Any]) -> bool:
        try:
            await connection.websocket.send_json(payload)
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("websocket_send_failed", connection_id=connection.connection_id, error=str(e))
            return False

    async def _cleanup_loop(self) -> None:
        """Periodically close connections with no recent activity."""
        while True:
            await asyncio.sleep(self.settings.session_sweep_interval_seconds)
            try:
                await self.close_idle_connections()
            except Exception as e:
                logger.error("connection_cleanup_error", error=str(e))

    async def close_idle_connections(self, max_idle_seconds: Optional[float] = None) -> list[str]:
        """Tell idle clients why they are being dropped, then close them."""
        max_idle = (
            max_idle_seconds if max_idle_seconds is not None else self.settings.connection_idle_timeout_seconds
        )
        now = time.time()
        stale = [
            connection
            for connection in list(self._connections.values())
            if now - connection.last_activity > max_idle
        ]
        for connection in stale:
            logger.info(
                "closing_idle_connection",
                connection_id=connection.connection_id,
                idle_seconds=round(now - connection.last_activity, 1),
            )
            await self._send(connection, {"type": "connection_timeout", "reason": IDLE_REASON})
            await self.disconnect(connection.connection_id, code=1000, reason=IDLE_REASON)
        return [c.connection_id for c in stale]

    def get_connection_stats(self) -> dict[str, Any]:
        connections = list(self._connections.values())
        now = time.time()
        durations = [c.duration_seconds for c in connections]

        by_ip: dict[str, int] = {}
        for c in connections:
            by_ip[c.client_ip] = by_ip.get(c.client_ip, 0) + 1

        return {
            "totalConnections": len(connections),
            "activeConnections": sum(
                1 for c in connections if now - c.last_activity < self.settings.connection_active_window_seconds
            ),
            "connectionsByIP": by_ip,
            "activeSessions": len(self.conversation.sessions),
            "averageDurationSeconds": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "connections": [
                {
                    "connectionId": c.connection_id,
                    "sessionId": c.session_id,
                    "clientIp": c.client_ip,
                    "durationSeconds": round(c.duration_seconds, 2),
                    "messageCount": c.message_count,
                }
                for c in connections
            ],
        }
