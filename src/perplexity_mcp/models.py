from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, StrictStr


class ChatMessage(BaseModel):
    # Extra keys (e.g. "name") are forwarded to the upstream API untouched.
    model_config = ConfigDict(extra="allow")

    role: StrictStr
    content: StrictStr


class JsonRpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[Any] = None
    method: str
    params: Optional[Dict[str, Any]] = None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None


class TextContent(BaseModel):
    type: str = "text"
    text: str


class CallToolResult(BaseModel):
    content: List[TextContent]
    isError: bool = False

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "CallToolResult":
        return cls(content=[TextContent(text=text)], isError=is_error)


@dataclass(frozen=True)
class CompletionResult:
    content: str
    citations: List[str] = field(default_factory=list)

    def formatted(self) -> str:
        text = self.content
        if self.citations:
            text += "\n\nCitations:\n"
            for index, citation in enumerate(self.citations, start=1):
                text += f"[{index}] {citation}\n"
        return text


@dataclass(frozen=True)
class UpstreamFailure:
    message: str
