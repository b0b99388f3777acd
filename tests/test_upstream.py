"""Tests for the Perplexity HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from perplexity_mcp.models import CompletionResult, UpstreamFailure
from perplexity_mcp.upstream import PerplexityClient, parse_completion

API_URL = "https://api.test/chat/completions"


def make_client(handler) -> PerplexityClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PerplexityClient("test-key", API_URL, timeout_seconds=5, http_client=http)


def completion_body(text: str = "Answer", citations=None) -> dict:
    body = {"id": "cmpl-1", "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}
    if citations is not None:
        body["citations"] = citations
    return body


class TestCompletionResult:
    def test_citations_block(self):
        result = CompletionResult(content="Answer", citations=["http://a", "http://b"])
        assert result.formatted() == "Answer\n\nCitations:\n[1] http://a\n[2] http://b\n"

    def test_no_citations(self):
        assert CompletionResult(content="Answer").formatted() == "Answer"


class TestParseCompletion:
    def test_empty_citations_ignored(self):
        result = parse_completion(completion_body(citations=[]))
        assert result.formatted() == "Answer"

    def test_non_list_citations_ignored(self):
        result = parse_completion(completion_body(citations="http://a"))
        assert result.formatted() == "Answer"

    @pytest.mark.parametrize("data", [{}, {"choices": []}, {"choices": [{}]}, [], None])
    def test_bad_structure(self, data):
        result = parse_completion(data)
        assert isinstance(result, UpstreamFailure)
        assert "Unexpected response structure" in result.message

    def test_non_string_content(self):
        result = parse_completion({"choices": [{"message": {"content": None}}]})
        assert isinstance(result, UpstreamFailure)


class TestPerplexityClient:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["method"] = request.method
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)
        messages = [{"role": "system", "content": "s"}, {"role": "user", "content": "q"}]
        result = await client.complete(messages, "sonar-pro")

        assert result == CompletionResult(content="Answer", citations=[])
        assert seen["url"] == API_URL
        assert seen["method"] == "POST"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {"model": "sonar-pro", "messages": messages}

    @pytest.mark.asyncio
    async def test_citations_appended(self):
        client = make_client(
            lambda request: httpx.Response(200, json=completion_body(citations=["http://a", "http://b"]))
        )
        result = await client.complete([{"role": "user", "content": "q"}], "sonar-pro")
        assert isinstance(result, CompletionResult)
        assert result.formatted() == "Answer\n\nCitations:\n[1] http://a\n[2] http://b\n"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = make_client(lambda request: httpx.Response(429, text="rate limited"))
        result = await client.complete([{"role": "user", "content": "q"}], "sonar-pro")
        assert isinstance(result, UpstreamFailure)
        assert "429" in result.message
        assert "Too Many Requests" in result.message
        assert "rate limited" in result.message

    @pytest.mark.asyncio
    async def test_error_body_truncated(self):
        client = make_client(lambda request: httpx.Response(500, text="x" * 10000))
        result = await client.complete([], "sonar-pro")
        assert isinstance(result, UpstreamFailure)
        assert "500" in result.message
        assert "truncated" in result.message
        assert len(result.message) < 3000

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_client(handler).complete([], "sonar-pro")
        assert isinstance(result, UpstreamFailure)
        assert result.message.startswith("Network error while calling Perplexity API")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        result = await make_client(handler).complete([], "sonar-deep-research")
        assert isinstance(result, UpstreamFailure)
        assert "Timed out" in result.message

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        result = await client.complete([], "sonar-pro")
        assert isinstance(result, UpstreamFailure)
        assert "Failed to parse JSON response" in result.message

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = PerplexityClient("k", API_URL, http_client=http)
        await client.aclose()
        assert not http.is_closed
        await http.aclose()
