"""OpenAI-compatible chat completions implementation of LLMProvider."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from agentchat.llm.base import LLMProvider
from agentchat.models import LLMResponse, LLMToolCall, LLMUsage

_LOGGER = logging.getLogger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """LLM provider for any endpoint speaking the OpenAI ``/chat/completions`` protocol.

    Requests are not retried; a failed call raises ``httpx.HTTPError`` and the
    caller decides whether to repeat the whole request.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_seconds: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = httpx.Timeout(timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _payload(self, messages: list[dict[str, Any]], stream: bool) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": stream,
        }

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> LLMResponse:
        payload = self._payload(messages, stream=False)
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"

        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            response = await client.post("/chat/completions", headers=self._headers(), json=payload)
            response.raise_for_status()
            data = response.json()

        choice = data["choices"][0]["message"]
        finish_reason = data["choices"][0].get("finish_reason")
        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%r",
            finish_reason,
            content[:200],
            choice.get("tool_calls"),
        )

        tool_calls = [
            LLMToolCall(
                name=(tool_call.get("function") or {}).get("name", ""),
                arguments=(tool_call.get("function") or {}).get("arguments"),
                call_id=tool_call.get("id"),
            )
            for tool_call in choice.get("tool_calls") or []
        ]

        usage = None
        if raw_usage := data.get("usage"):
            usage = LLMUsage(
                prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
                completion_tokens=int(raw_usage.get("completion_tokens") or 0),
                total_tokens=int(raw_usage.get("total_tokens") or 0),
            )

        return LLMResponse(content=content, tool_calls=tool_calls, usage=usage, raw=data)

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        payload = self._payload(messages, stream=True)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            async with client.stream(
                "POST", "/chat/completions", headers=self._headers(), json=payload
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    delta = _parse_sse_delta(line)
                    if delta is None:
                        continue
                    if delta is _DONE:
                        break
                    yield delta


_DONE = object()


def _parse_sse_delta(line: str) -> Any:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return _DONE
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        _LOGGER.warning("Skipping malformed stream chunk: %r", data[:200])
        return None
    choices = chunk.get("choices") or []
    if not choices:
        return None
    content = (choices[0].get("delta") or {}).get("content")
    return content or None
