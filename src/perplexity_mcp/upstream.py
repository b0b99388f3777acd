from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from .models import CompletionResult, UpstreamFailure

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 2000

Completion = Union[CompletionResult, UpstreamFailure]


def _truncate(text: str, limit: int = ERROR_BODY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [truncated {len(text) - limit} chars]"


def parse_completion(data: Any) -> Completion:
    """Pull the first choice's text and the citation list out of a response body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        return UpstreamFailure(
            f"Unexpected response structure from Perplexity API: missing choices[0].message.content ({exc!r})"
        )
    if not isinstance(content, str):
        return UpstreamFailure(
            "Unexpected response structure from Perplexity API: message content is not a string"
        )

    citations_raw = data.get("citations") if isinstance(data, dict) else None
    citations: List[str] = []
    if isinstance(citations_raw, list):
        citations = [str(item) for item in citations_raw]
    return CompletionResult(content=content, citations=citations)


class PerplexityClient:
    """One request/response round trip to the Perplexity chat completions API.

    Expected failure modes come back as UpstreamFailure values rather than
    exceptions, so callers can map them onto a tool result directly.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        *,
        timeout_seconds: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._timeout_seconds = timeout_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    async def complete(self, messages: List[Dict[str, Any]], model: str) -> Completion:
        payload = {
            "model": model,
            "messages": messages,
        }

        try:
            response = await self._client.post(
                self._api_url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.warning("upstream_timeout model=%s timeout=%s", model, self._timeout_seconds)
            return UpstreamFailure(
                f"Timed out after {self._timeout_seconds:g}s waiting for Perplexity API: {exc!r}"
            )
        except httpx.HTTPError as exc:
            logger.warning("upstream_network_error model=%s error=%s", model, exc)
            return UpstreamFailure(f"Network error while calling Perplexity API: {exc!r}")

        if not response.is_success:
            try:
                error_text = response.text
            except Exception:  # noqa: BLE001
                error_text = "Unable to parse error response"
            logger.warning("upstream_http_error model=%s status=%s", model, response.status_code)
            return UpstreamFailure(
                f"Perplexity API error: {response.status_code} {response.reason_phrase}\n{_truncate(error_text)}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            return UpstreamFailure(f"Failed to parse JSON response from Perplexity API: {exc}")

        return parse_completion(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
