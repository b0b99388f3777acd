from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .errors import (
    InvalidMessage,
    ServerShuttingDown,
    SessionClosed,
    SessionLimitReached,
    SessionNotFound,
)
from .models import CallToolResult

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/messages"

Handler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


def sse_frame(event: str, data: str) -> str:
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


def decode_message(raw: bytes) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except (ValueError, UnicodeDecodeError, RecursionError) as exc:
        raise InvalidMessage(f"Could not parse message: {exc}") from exc
    if not isinstance(message, dict):
        raise InvalidMessage("Message must be a JSON-RPC object")
    return message


class Session:
    """One client's outbound event stream.

    The queue is the stream handle: the SSE response drains it and nothing
    outside this session puts to it. A None item marks end of stream.
    """

    def __init__(self, session_id: str, endpoint: str) -> None:
        self.id = session_id
        self.endpoint = endpoint
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        self.closed = False

    def send(self, event: str, data: str) -> None:
        if self.closed:
            raise SessionClosed(f"session {self.id} is closed", session_id=self.id)
        self._queue.put_nowait(sse_frame(event, data))

    def send_message(self, payload: Dict[str, Any]) -> None:
        self.send("message", json.dumps(payload, ensure_ascii=False))

    async def next_event(self) -> Optional[str]:
        return await self._queue.get()

    def spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self._queue.put_nowait(None)


class SessionManager:
    """Registry of live sessions keyed by id.

    The registry is the only record of whether a session is alive; handlers
    look sessions up per request and never hold on to them.
    """

    def __init__(self, handler: Handler, *, max_sessions: int = 0, messages_path: str = MESSAGES_PATH) -> None:
        self._handler = handler
        self._max_sessions = max_sessions
        self._messages_path = messages_path
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._accepting = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def open_session(self) -> Session:
        with self._lock:
            if not self._accepting:
                raise ServerShuttingDown("server is shutting down")
            if self._max_sessions and len(self._sessions) >= self._max_sessions:
                raise SessionLimitReached(f"session limit of {self._max_sessions} reached")
            session_id = str(uuid.uuid4())
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())
            session = Session(session_id, f"{self._messages_path}?sessionId={session_id}")
            self._sessions[session_id] = session
            total = len(self._sessions)
        logger.info("sse_session_opened sessionId=%s active=%d", session_id, total)
        return session

    def dispatch(self, session_id: str, raw: bytes) -> asyncio.Task:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(f"No transport found for sessionId {session_id}", session_id=session_id)
        message = decode_message(raw)
        return session.spawn(self._process(session, message))

    async def _process(self, session: Session, message: Dict[str, Any]) -> None:
        try:
            response = await self._handler(message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("dispatch_crashed sessionId=%s method=%s", session.id, message.get("method"))
            if message.get("id") is None:
                return
            if message.get("method") == "tools/call":
                result = CallToolResult.text(f"Error: {exc}", is_error=True)
                response = {"jsonrpc": "2.0", "id": message.get("id"), "result": result.model_dump()}
            else:
                response = {
                    "jsonrpc": "2.0",
                    "id": message.get("id"),
                    "error": {"code": -32603, "message": "Internal error"},
                }
        if response is None:
            return
        try:
            session.send_message(response)
        except SessionClosed:
            logger.warning(
                "response_dropped sessionId=%s id=%s reason=session_closed", session.id, response.get("id")
            )

    def close_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            total = len(self._sessions)
        if session is None:
            return False
        session.close()
        logger.info("sse_session_closed sessionId=%s active=%d", session_id, total)
        return True

    def close_all(self) -> int:
        """Stop accepting sessions and close every open one, best effort."""
        with self._lock:
            self._accepting = False
            session_ids = list(self._sessions.keys())
        closed = 0
        for session_id in session_ids:
            try:
                logger.info("closing_session sessionId=%s", session_id)
                if self.close_session(session_id):
                    closed += 1
            except Exception:  # noqa: BLE001
                logger.exception("close_session_failed sessionId=%s", session_id)
        return closed
