from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import uvicorn

from .config import Settings, load_settings
from .errors import ConfigError
from .http_server import create_app
from .sessions import SessionManager
from .tools import tool_names

logger = logging.getLogger("perplexity_mcp")


class Server(uvicorn.Server):
    """uvicorn server that closes open SSE sessions as soon as a signal arrives.

    uvicorn waits for in-flight responses before running lifespan shutdown,
    and an SSE response never finishes on its own.
    """

    def __init__(self, config: uvicorn.Config, sessions: SessionManager) -> None:
        super().__init__(config)
        self._sessions = sessions
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig, frame) -> None:
        if self._loop is not None and not self.should_exit:
            self._loop.call_soon_threadsafe(self._sessions.close_all)
        super().handle_exit(sig, frame)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def run(settings: Settings) -> None:
    app = create_app(settings)
    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    server = Server(config, app.state.sessions)

    logger.info("Perplexity MCP Server running on port %d", settings.port)
    logger.info("SSE endpoint: http://localhost:%d/sse", settings.port)
    logger.info("Messages endpoint: http://localhost:%d/messages", settings.port)
    logger.info("Health check: http://localhost:%d/health", settings.port)
    logger.info("Available tools: %s", ", ".join(tool_names()))
    server.run()


def main() -> None:
    # LOG_LEVEL is only trusted once Settings has validated it
    _configure_logging("INFO")
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Error: %s", exc)
        sys.exit(1)

    logging.getLogger().setLevel(settings.log_level)
    try:
        run(settings)
    except Exception:
        logger.exception("Fatal error starting server")
        sys.exit(1)


if __name__ == "__main__":
    main()
