"""Ollama native ``/api/chat`` implementation of LLMProvider."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from agentchat.llm.base import LLMProvider
from agentchat.models import LLMResponse, LLMToolCall, LLMUsage

_LOGGER = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """LLM provider for a local Ollama server.

    Ollama returns tool-call arguments as decoded objects rather than JSON
    strings and streams newline-delimited JSON instead of SSE.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_seconds: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = httpx.Timeout(timeout_seconds)

    def _payload(self, messages: list[dict[str, Any]], stream: bool) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [_to_ollama_message(m) for m in messages],
            "stream": stream,
            "options": {"temperature": self._temperature, "num_predict": self._max_tokens},
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

        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            response = await client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()

        message = data.get("message") or {}
        content = message.get("content") or ""
        _LOGGER.info("Ollama response: content=%r tool_calls=%r", content[:200], message.get("tool_calls"))

        tool_calls = [
            LLMToolCall(
                name=(tool_call.get("function") or {}).get("name", ""),
                arguments=(tool_call.get("function") or {}).get("arguments"),
                call_id=tool_call.get("id"),
            )
            for tool_call in message.get("tool_calls") or []
        ]
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        usage = LLMUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        return LLMResponse(content=content, tool_calls=tool_calls, usage=usage, raw=data)

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        payload = self._payload(messages, stream=True)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            async with client.stream("POST", "/api/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        _LOGGER.warning("Skipping malformed Ollama chunk: %r", line[:200])
                        continue
                    if content := (chunk.get("message") or {}).get("content"):
                        yield content
                    if chunk.get("done"):
                        break


def _to_ollama_message(message: dict[str, Any]) -> dict[str, Any]:
    converted = dict(message)
    content = message.get("content")
    if isinstance(content, list):
        # Ollama takes plain text; image URLs are not fetched server-side.
        converted["content"] = "\n".join(
            part.get("text", "") for part in content if part.get("type") == "text"
        )
    if message.get("tool_calls"):
        converted["tool_calls"] = [
            {
                "function": {
                    "name": tc["function"]["name"],
                    "arguments": _as_object(tc["function"].get("arguments")),
                }
            }
            for tc in message["tool_calls"]
        ]
    return converted


def _as_object(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments or "{}")
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}
