"""
voicecall HTTP service
FastAPI application exposing one call session: view, user commands and
raw transport-event ingestion.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from voicecall import __version__
from voicecall.shared.config import VoiceCallConfig, configure_logging
from voicecall.voice.call_router import CallSession
from voicecall.voice.transport import RecordingTransport

logger = logging.getLogger("voicecall.main")

SERVICE = "voicecall"


# ============================================================================
# Request models
# ============================================================================

class StartCallRequest(BaseModel):
    assistant_id: Optional[str] = None


class MuteRequest(BaseModel):
    muted: bool


# ============================================================================
# Helpers
# ============================================================================

def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return f"req_{uuid.uuid4().hex[:12]}"


def _correlation_id(request: Request) -> str:
    return request.headers.get("X-Correlation-ID") or generate_correlation_id()


def _envelope(operation: str, correlation_id: str, data: Any = None, error: Optional[dict] = None) -> dict:
    return {
        "ok": error is None,
        "service": SERVICE,
        "operation": operation,
        "correlation_id": correlation_id,
        "data": data,
        "error": error,
    }


def _command_result(session: CallSession, result: Optional[bool]) -> Dict[str, Any]:
    return {
        "accepted": result,
        "queued": result is None,
        "view": session.view().model_dump(),
    }


def _default_session(config: VoiceCallConfig) -> CallSession:
    transport = RecordingTransport(auto_ack=True)
    session = CallSession(transport, config)
    transport.bind(session.ingest)
    return session


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    session: Optional[CallSession] = None,
    config: Optional[VoiceCallConfig] = None,
) -> FastAPI:
    """Build the FastAPI app around one CallSession.

    Without an injected session, a RecordingTransport with auto_ack stands
    in for the SDK bridge so the lifecycle can be driven end to end.
    """
    config = config or VoiceCallConfig.load()
    session = session or _default_session(config)

    @asynccontextmanager
    async def _lifespan(a: FastAPI):
        logger.info("voicecall %s started state=%s", __version__, session.state.value)
        yield  # ── app is running ──
        session.close()
        logger.info("voicecall shutdown complete")

    app = FastAPI(
        title="voicecall",
        description="Voice call event normalization and transcript reconciliation",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.session = session
    app.state.config = config

    # ========================================================================
    # Universal Endpoints
    # ========================================================================

    @app.get("/healthz")
    async def healthz():
        """Health check with call session stats."""
        return {
            "ok": True,
            "service": SERVICE,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "call": session.get_stats(),
        }

    # ========================================================================
    # Call Endpoints
    # ========================================================================

    @app.get("/v1/call")
    async def call_view(request: Request):
        """Current call view: state, status text, transcript, speaker."""
        return _envelope("call_view", _correlation_id(request), session.view().model_dump())

    @app.post("/v1/call/start")
    async def call_start(request: Request, body: Optional[StartCallRequest] = None):
        """
        Start a call.

        Request:
        ```json
        {"assistant_id": "optional, falls back to transport.assistant_id"}
        ```
        """
        correlation_id = _correlation_id(request)
        assistant_id = body.assistant_id if body is not None else None
        result = session.start_call(assistant_id)
        logger.info("call_start accepted=%s correlation_id=%s", result, correlation_id)
        return _envelope("call_start", correlation_id, _command_result(session, result))

    @app.post("/v1/call/end")
    async def call_end(request: Request):
        """End the current call. A no-op outside an in-progress call."""
        correlation_id = _correlation_id(request)
        result = session.end_call()
        logger.info("call_end accepted=%s correlation_id=%s", result, correlation_id)
        return _envelope("call_end", correlation_id, _command_result(session, result))

    @app.post("/v1/call/mute")
    async def call_mute(body: MuteRequest, request: Request):
        correlation_id = _correlation_id(request)
        result = session.set_muted(body.muted)
        return _envelope("call_mute", correlation_id, _command_result(session, result))

    @app.post("/v1/call/events")
    async def call_events(request: Request):
        """
        Ingest one raw transport event (any JSON value).

        Unrecognized payloads are accepted at the HTTP level and reported
        with processed=false; they are recorded in diagnostics, not raised.
        """
        correlation_id = _correlation_id(request)
        try:
            raw = await request.json()
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content=_envelope(
                    "call_events", correlation_id,
                    error={"code": "INVALID_JSON", "message": str(e), "details": {}},
                ),
            )
        result = session.ingest(raw)
        return _envelope(
            "call_events", correlation_id,
            {"processed": result, "view": session.view().model_dump()},
        )

    @app.get("/v1/call/diagnostics")
    async def call_diagnostics(request: Request, limit: int = 20):
        """Recent diagnostics (dropped events, rejected commands), redacted."""
        sink = session.diagnostics
        return _envelope(
            "call_diagnostics", _correlation_id(request),
            {
                "stats": sink.stats(),
                "recent": [r.to_dict() for r in sink.recent(limit)],
            },
        )

    return app


def run(host: str = "127.0.0.1", port: int = 7090) -> None:
    """Run the service with uvicorn using config from VOICECALL_CONFIG / env."""
    import uvicorn

    config = VoiceCallConfig.load()
    configure_logging(config)
    uvicorn.run(create_app(config=config), host=host, port=port)


if __name__ == "__main__":
    run()
