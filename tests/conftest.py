"""Shared fixtures: settings, a recording upstream client, and app factories."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from perplexity_mcp.config import Settings
from perplexity_mcp.models import CompletionResult


class FakeCompletionClient:
    """Stands in for PerplexityClient; records every call."""

    def __init__(self, outcome: Any = None) -> None:
        self.outcome = outcome if outcome is not None else CompletionResult(content="Answer")
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def complete(self, messages: List[Dict[str, Any]], model: str):
        self.calls.append({"messages": messages, "model": model})
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        PERPLEXITY_API_KEY="test-key",
        PERPLEXITY_API_URL="https://api.test/chat/completions",
        SSE_KEEPALIVE_SECONDS=5,
    )


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def app(settings, fake_client):
    from perplexity_mcp.http_server import create_app

    return create_app(settings, client=fake_client)


def user_messages(text: str = "What is MCP?", system: Optional[str] = None) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if system is not None:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": text})
    return messages
