from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from . import APP_VERSION, SERVER_NAME
from .errors import InvalidArguments, UnknownTool
from .models import CallToolResult, JsonRpcError, JsonRpcResponse, UpstreamFailure
from .tools import list_tools, validate
from .upstream import Completion

logger = logging.getLogger(__name__)

LATEST_PROTOCOL_VERSION = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", LATEST_PROTOCOL_VERSION)

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class CompletionClient(Protocol):
    async def complete(self, messages: list, model: str) -> Completion: ...


def _result(id_value: Any, result: Any) -> Dict[str, Any]:
    return JsonRpcResponse(id=id_value, result=result).model_dump(exclude_none=True)


def _jsonrpc_error(id_value: Any, code: int, message: str, data: Optional[Any] = None) -> Dict[str, Any]:
    return JsonRpcResponse(
        id=id_value,
        error=JsonRpcError(code=code, message=message, data=data),
    ).model_dump(exclude_none=True)


class Dispatcher:
    """RPC-level behaviour for one decoded JSON-RPC message.

    Tool failures of every kind come back as a normal result with isError set;
    only protocol problems (unknown method, malformed params) become JSON-RPC
    errors.
    """

    def __init__(self, client: CompletionClient) -> None:
        self._client = client

    async def handle(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        method = message.get("method")
        id_value = message.get("id")
        if not isinstance(method, str):
            if "result" in message or "error" in message:
                # A response from the client to a server request; we never send any.
                return None
            if id_value is None:
                logger.debug("invalid_message_without_id dropped")
                return None
            return _jsonrpc_error(id_value, INVALID_REQUEST, "Invalid Request: 'method' must be a string")

        if id_value is None:
            logger.debug("notification_received method=%s", method)
            return None

        params = message.get("params") or {}
        if not isinstance(params, dict):
            return _jsonrpc_error(id_value, INVALID_PARAMS, "params must be an object")

        try:
            if method == "initialize":
                return _result(id_value, self.initialize(params))
            if method == "ping":
                return _result(id_value, {})
            if method == "tools/list":
                return _result(id_value, {"tools": list_tools()})
            if method == "tools/call":
                name = params.get("name")
                if not isinstance(name, str):
                    return _jsonrpc_error(id_value, INVALID_PARAMS, "tools/call requires a string 'name'")
                return await self._call_tool_response(id_value, name, params.get("arguments"))
        except Exception as exc:  # noqa: BLE001
            logger.exception("dispatch_failed method=%s", method)
            return _jsonrpc_error(id_value, INTERNAL_ERROR, str(exc))

        return _jsonrpc_error(id_value, METHOD_NOT_FOUND, f"Method not found: {method}")

    def initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": APP_VERSION},
        }

    async def _call_tool_response(self, id_value: Any, name: str, arguments: Any) -> Dict[str, Any]:
        try:
            result = (await self.call_tool(name, arguments)).model_dump()
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_result_failed tool=%s", name)
            result = {"content": [{"type": "text", "text": f"Error: {exc}"}], "isError": True}
        return _result(id_value, result)

    async def call_tool(self, name: str, arguments: Any) -> CallToolResult:
        try:
            tool, messages = validate(name, arguments)
            outcome = await self._client.complete(messages, tool.model)
            if isinstance(outcome, UpstreamFailure):
                logger.warning(
                    "upstream_call_failed tool=%s model=%s error=%s", tool.name, tool.model, outcome.message
                )
                return CallToolResult.text(f"Error: {outcome.message}", is_error=True)
            return CallToolResult.text(outcome.formatted())
        except UnknownTool as exc:
            return CallToolResult.text(str(exc), is_error=True)
        except InvalidArguments as exc:
            return CallToolResult.text(f"Error: {exc}", is_error=True)
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_call_crashed tool=%s", name)
            return CallToolResult.text(f"Error: {exc}", is_error=True)
