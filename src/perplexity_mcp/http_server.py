from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from . import APP_NAME, APP_VERSION
from .config import Settings
from .dispatch import Dispatcher
from .errors import InvalidMessage, ServerShuttingDown, SessionLimitReached, SessionNotFound
from .sessions import Session, SessionManager, sse_frame
from .upstream import PerplexityClient

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def event_stream(
    manager: SessionManager,
    session: Session,
    *,
    keepalive_seconds: float = 15.0,
    request: Optional[Request] = None,
) -> AsyncIterator[str]:
    """Drain a session's queue as SSE frames until it closes or the client leaves."""
    try:
        yield sse_frame("endpoint", session.endpoint)
        while True:
            try:
                frame = await asyncio.wait_for(session.next_event(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if request is not None and await request.is_disconnected():
                    logger.info("sse_client_gone sessionId=%s", session.id)
                    break
                yield ": ping\n\n"
                continue
            if frame is None:
                break
            yield frame
    finally:
        manager.close_session(session.id)


def create_app(settings: Settings, client: Optional[PerplexityClient] = None) -> FastAPI:
    client = client or PerplexityClient(
        settings.perplexity_api_key,
        settings.perplexity_api_url,
        timeout_seconds=settings.timeout_seconds,
    )
    dispatcher = Dispatcher(client)
    manager = SessionManager(dispatcher.handle, max_sessions=settings.max_sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down server...")
        closed = manager.close_all()
        await client.aclose()
        logger.info("Server shutdown complete (closed %d sessions)", closed)

    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )
    app.state.settings = settings
    app.state.sessions = manager
    app.state.dispatcher = dispatcher
    app.state.client = client

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": APP_NAME,
            "version": APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/sse")
    async def sse(request: Request):
        logger.info("Received GET request to /sse - establishing SSE connection")
        try:
            session = manager.open_session()
        except (ServerShuttingDown, SessionLimitReached) as exc:
            return JSONResponse(status_code=503, content={"error": str(exc)})

        headers = dict(SSE_HEADERS)
        headers["Mcp-Session-Id"] = session.id
        return StreamingResponse(
            event_stream(manager, session, keepalive_seconds=settings.keepalive_seconds, request=request),
            media_type="text/event-stream",
            headers=headers,
        )

    @app.post("/messages")
    async def messages(request: Request, sessionId: Optional[str] = None):
        if not sessionId:
            return JSONResponse(status_code=400, content={"error": "sessionId query parameter is required"})

        raw = await request.body()
        try:
            manager.dispatch(sessionId, raw)
        except SessionNotFound:
            return JSONResponse(status_code=400, content={"error": "No transport found for sessionId"})
        except InvalidMessage as exc:
            logger.warning("invalid_message sessionId=%s error=%s", sessionId, exc)
            return JSONResponse(status_code=400, content={"error": str(exc)})

        return PlainTextResponse("Accepted", status_code=202)

    return app
