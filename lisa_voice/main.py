"""
LISA Voice Service - Main FastAPI Application.

Serves the conversational voice engine over WebSocket and REST.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from lisa_voice import __version__
from lisa_voice.adapters import create_order_store, create_transcription_adapters
from lisa_voice.config import get_settings
from lisa_voice.exceptions import SessionNotFound
from lisa_voice.logging_config import configure_logging
from lisa_voice.models import (
    ConversationStats,
    ErrorResponse,
    HealthResponse,
    VoiceCommandRequest,
    VoiceConfigResponse,
)
from lisa_voice.services import (
    ActionExecutor,
    ConversationConfig,
    ConversationService,
    ResponseComposer,
    SessionStore,
    create_intent_classifier,
)
from lisa_voice.transport import VoiceGateway

settings = get_settings()
configure_logging(settings.log_level, json_logs=settings.environment == "production")

logger = structlog.get_logger()

# Global service instances
session_store = SessionStore(settings)
classifier = create_intent_classifier(settings)
composer = ResponseComposer(classifier.chain, style=settings.ai_response_style)
executor = ActionExecutor(create_order_store(settings), session_store)
conversation_service = ConversationService(
    session_store=session_store,
    classifier=classifier,
    composer=composer,
    executor=executor,
    config=ConversationConfig.from_settings(settings),
)
gateway = VoiceGateway(
    conversation_service,
    transcribers=create_transcription_adapters(settings),
    settings=settings,
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info(
        "starting_lisa_voice",
        port=settings.port,
        env=settings.environment,
        providers=classifier.provider_names,
    )
    await session_store.start()
    await gateway.start()

    yield

    logger.info("shutting_down_lisa_voice")
    await gateway.stop()
    await session_store.stop()


app = FastAPI(
    title="LISA Voice Service",
    description="Conversational voice engine for the glass order management assistant",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
        },
    )


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(error=exc.message, code=exc.code).model_dump(),
    )


cors_origins = (
    ["*"]
    if settings.cors_origins == "*"
    else [o.strip() for o in settings.cors_origins.split(",")]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health(status: str = "healthy") -> HealthResponse:
    return HealthResponse(
        status=status,
        service=settings.service_name,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return _health()


@app.get("/ready", response_model=HealthResponse, tags=["Health"])
async def readiness_check() -> HealthResponse:
    """
    Readiness check endpoint.

    The rule-based fallback keeps the engine usable without any language
    model, so missing providers only degrade readiness.
    """
    return _health("healthy" if len(classifier.provider_names) > 1 else "degraded")


@app.get("/voice/config", response_model=VoiceConfigResponse, response_model_by_alias=True, tags=["Voice"])
async def voice_config() -> VoiceConfigResponse:
    """Public conversation configuration for clients."""
    return VoiceConfigResponse(
        agent=settings.agent_name,
        providers=classifier.provider_names,
        silence_timeout_ms=settings.silence_timeout_ms,
        max_conversation_length=settings.max_conversation_length,
        ai_response_style=settings.ai_response_style,
        enable_filler_words=settings.enable_filler_words,
        enable_thinking_sounds=settings.enable_thinking_sounds,
        voice_activity_threshold=settings.vad_volume_threshold,
    )


@app.post(
    "/voice/command",
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    tags=["Voice"],
    summary="Process one utterance",
)
@limiter.limit(f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds}seconds")
async def process_voice_command(request: Request, body: VoiceCommandRequest) -> dict[str, Any]:
    """
    Process a transcript and return the turn response.

    Non-final transcripts follow the interim or continuous-speech path
    depending on interimResults.
    """
    try:
        response = await conversation_service.process_speech(
            session_id=body.session_id,
            transcript=body.transcript,
            is_final=body.is_end_of_speech,
            interim_results=body.interim_results,
        )
    except Exception as e:
        logger.exception("voice_command_error", session_id=body.session_id, error=str(e))
        raise HTTPException(
            status_code=500,
            detail=ErrorResponse(
                error="Failed to process voice command",
                code="PROCESSING_ERROR",
                details={"message": str(e)} if settings.debug else None,
            ).model_dump(),
        )

    return {"sessionId": body.session_id, "response": response.to_wire()}


@app.post("/voice/interrupt/{session_id}", tags=["Voice"])
async def interrupt(session_id: str) -> dict[str, Any]:
    """User barged in while the assistant was speaking."""
    response = conversation_service.handle_interruption(session_id)
    return {"sessionId": session_id, "response": response.to_wire()}


@app.get(
    "/sessions/{session_id}/stats",
    response_model=ConversationStats,
    response_model_by_alias=True,
    tags=["Sessions"],
)
async def session_stats(session_id: str) -> ConversationStats:
    """Conversation statistics; unknown sessions report exists=false."""
    return conversation_service.get_conversation_stats(session_id)


@app.get(
    "/sessions/{session_id}",
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
    tags=["Sessions"],
)
async def get_session(session_id: str) -> dict[str, Any]:
    """Current conversation state: phase, topic, order draft and history."""
    return conversation_service.get_session_snapshot(session_id)


@app.delete("/sessions/{session_id}", tags=["Sessions"])
async def end_session(session_id: str) -> dict[str, Any]:
    """End a conversation. Repeated calls return the no-op response."""
    response = conversation_service.end_conversation(session_id)
    return {"sessionId": session_id, "response": response.to_wire()}


@app.get("/connections/stats", tags=["Sessions"])
async def connection_stats() -> dict[str, Any]:
    """Connected clients and active sessions."""
    return gateway.get_connection_stats()


@app.websocket("/ws/voice")
async def voice_websocket(websocket: WebSocket, session_id: Optional[str] = Query(None)) -> None:
    """Duplex voice channel; see lisa_voice.transport.gateway for the protocol."""
    await gateway.serve(websocket, session_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lisa_voice.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )
