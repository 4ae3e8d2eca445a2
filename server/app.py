"""
FastAPI server for the Twilio <-> OpenAI Realtime bridge.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- GET|POST /incoming-call (/twiml): TwiML pointing Twilio at the media stream
- WS /media-stream: Twilio Media Streams WebSocket
"""

import asyncio
import hmac
import sys

# Use uvloop for faster asyncio (Linux only)
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available on Windows

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request, Response, status
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from src.bridge.config import Config, get_config, init_config, ConfigError
from src.bridge.diagnostics import get_diagnostic_sink


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_calls: int = 0
    active_calls: int = 0
    rejected_connections: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_calls": self.total_calls,
            "active_calls": self.active_calls,
            "rejected_connections": self.rejected_connections,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


def secret_matches(config: Config, provided: Optional[str]) -> bool:
    """Shared-secret gate; open when no secret is configured."""
    if not config.stream_secret:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), config.stream_secret.encode("utf-8"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Twilio Realtime bridge...")

    try:
        config = init_config()
        configure_logging(config.log_level)

        logger.info(
            "Server ready",
            port=config.port,
            public_host=config.public_host,
            ws_url=config.ws_url,
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


app = FastAPI(
    title="Twilio Realtime Bridge",
    description="Relays Twilio phone calls to an OpenAI Realtime voice agent",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_calls": metrics.active_calls,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    content = metrics.to_dict()
    content["diagnostics"] = get_diagnostic_sink().to_dict()
    return JSONResponse(content=content)


@app.post("/twiml")
@app.get("/twiml")
@app.post("/incoming-call")
@app.get("/incoming-call")
async def generate_twiml(request: Request) -> Response:
    """
    Generate TwiML for the Twilio voice webhook.

    Returns TwiML that connects the call to our media stream WebSocket.
    """
    config = get_config()

    if not secret_matches(config, request.headers.get(config.stream_secret_header)):
        logger.warning("Rejected TwiML request", path=request.url.path)
        metrics.rejected_connections += 1
        return Response(content="Forbidden", status_code=status.HTTP_403_FORBIDDEN)

    host = config.public_host or request.headers.get("host", "")
    ws_url = f"wss://{host}/media-stream"

    twiml = f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url="{ws_url}" />
    </Connect>
</Response>"""

    logger.info("Generated TwiML", ws_url=ws_url)

    return Response(
        content=twiml,
        media_type="application/xml",
    )


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket) -> None:
    """
    Twilio Media Streams WebSocket endpoint.

    One CallSession per connection; the session owns the OpenAI side.
    """
    config = get_config()

    if not secret_matches(config, websocket.headers.get(config.stream_secret_header)):
        logger.warning("Rejected media stream connection")
        metrics.rejected_connections += 1
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    metrics.total_calls += 1
    metrics.active_calls += 1

    logger.info("WebSocket connected", active_calls=metrics.active_calls)

    # Import here to avoid pulling websockets into the HTTP-only code path
    from src.bridge.session import CallSession

    async def send_message(message: str) -> None:
        await websocket.send_text(message)

    async def close_transport() -> None:
        await websocket.close()

    session = CallSession(send_message, close_transport, config=config)

    try:
        await session.start()

        while not session.is_closed:
            try:
                message = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info("WebSocket disconnected", call_sid=session.call_sid)
                break
            await session.handle_message(message)

    except Exception as e:
        # Receiving after the session closed the socket lands here too.
        if not session.is_closed:
            logger.error("WebSocket handler error", call_sid=session.call_sid, error=str(e))
            metrics.errors += 1

    finally:
        await session.handle_telephony_closed()

        metrics.active_calls -= 1

        logger.info(
            "Call ended",
            call_sid=session.call_sid,
            active_calls=metrics.active_calls,
        )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()

    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
