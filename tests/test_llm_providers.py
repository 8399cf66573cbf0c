"""Tests for the OpenAI-compatible and Ollama providers."""

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from agentchat.llm.ollama import OllamaProvider, _to_ollama_message
from agentchat.llm.openai_compat import OpenAICompatibleProvider

_RealAsyncClient = httpx.AsyncClient


def _client_factory(handler, seen: list[httpx.Request]):  # noqa: ANN001, ANN202
    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    def factory(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        return _RealAsyncClient(*args, transport=httpx.MockTransport(record), **kwargs)

    return factory


@pytest.mark.asyncio
async def test_openai_generate_parses_tool_calls_and_usage():
    body = {
        "choices": [
            {
                "finish_reason": "tool_calls",
                "message": {
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "search_web", "arguments": '{"query": "lisbon"}'},
                        }
                    ],
                },
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }
    seen: list[httpx.Request] = []
    factory = _client_factory(lambda request: httpx.Response(200, json=body), seen)

    with patch("agentchat.llm.openai_compat.httpx.AsyncClient", side_effect=factory):
        provider = OpenAICompatibleProvider("https://llm.example/v1/", "sk-test", "gpt-test")
        tools = [{"type": "function", "function": {"name": "search_web"}}]
        response = await provider.generate([{"role": "user", "content": "hi"}], tools=tools)

    assert response.content == ""
    assert response.tool_calls[0].name == "search_web"
    assert response.tool_calls[0].arguments == '{"query": "lisbon"}'
    assert response.tool_calls[0].call_id == "call_1"
    assert response.usage.total_tokens == 15

    request = seen[0]
    assert str(request.url) == "https://llm.example/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    sent = json.loads(request.content)
    assert sent["tool_choice"] == "auto"
    assert sent["stream"] is False


@pytest.mark.asyncio
async def test_openai_generate_without_tools_sends_no_tool_choice():
    body = {"choices": [{"message": {"content": "hello"}}]}
    seen: list[httpx.Request] = []
    factory = _client_factory(lambda request: httpx.Response(200, json=body), seen)

    with patch("agentchat.llm.openai_compat.httpx.AsyncClient", side_effect=factory):
        response = await OpenAICompatibleProvider("https://llm.example", "", "m").generate([])

    assert response.content == "hello"
    assert response.usage is None
    sent = json.loads(seen[0].content)
    assert "tools" not in sent
    assert "tool_choice" not in sent
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_openai_generate_raises_on_http_error():
    factory = _client_factory(lambda request: httpx.Response(429, json={"error": "slow down"}), [])

    with patch("agentchat.llm.openai_compat.httpx.AsyncClient", side_effect=factory):
        with pytest.raises(httpx.HTTPStatusError):
            await OpenAICompatibleProvider("https://llm.example", "k", "m").generate([])


@pytest.mark.asyncio
async def test_openai_stream_yields_content_deltas():
    lines = [
        'data: {"choices":[{"delta":{"role":"assistant"}}]}',
        ": comment",
        'data: {"choices":[{"delta":{"content":"Hel"}}]}',
        "data: not-json",
        'data: {"choices":[{"delta":{"content":"lo"}}]}',
        "data: [DONE]",
        'data: {"choices":[{"delta":{"content":"ignored"}}]}',
    ]
    payload = "\n\n".join(lines).encode()
    factory = _client_factory(lambda request: httpx.Response(200, content=payload), [])

    with patch("agentchat.llm.openai_compat.httpx.AsyncClient", side_effect=factory):
        provider = OpenAICompatibleProvider("https://llm.example", "k", "m")
        tokens = [token async for token in provider.stream([{"role": "user", "content": "hi"}])]

    assert tokens == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_ollama_generate_keeps_object_arguments():
    body = {
        "message": {
            "content": "",
            "tool_calls": [{"function": {"name": "search_web", "arguments": {"query": "lisbon"}}}],
        },
        "prompt_eval_count": 20,
        "eval_count": 5,
    }
    seen: list[httpx.Request] = []
    factory = _client_factory(lambda request: httpx.Response(200, json=body), seen)

    with patch("agentchat.llm.ollama.httpx.AsyncClient", side_effect=factory):
        response = await OllamaProvider("http://ollama.local:11434", "llama3").generate(
            [{"role": "user", "content": "hi"}], tools=[{"type": "function"}]
        )

    assert response.tool_calls[0].arguments == {"query": "lisbon"}
    assert response.tool_calls[0].call_id is None
    assert response.usage.total_tokens == 25
    assert str(seen[0].url) == "http://ollama.local:11434/api/chat"


@pytest.mark.asyncio
async def test_ollama_stream_reads_ndjson():
    chunks = [
        {"message": {"content": "Bom"}, "done": False},
        {"message": {"content": " dia"}, "done": False},
        {"message": {"content": ""}, "done": True},
    ]
    payload = "\n".join(json.dumps(c) for c in chunks).encode()
    factory = _client_factory(lambda request: httpx.Response(200, content=payload), [])

    with patch("agentchat.llm.ollama.httpx.AsyncClient", side_effect=factory):
        tokens = [t async for t in OllamaProvider("http://ollama.local:11434", "llama3").stream([])]

    assert tokens == ["Bom", " dia"]


def test_to_ollama_message_flattens_parts_and_decodes_arguments():
    message = {
        "role": "assistant",
        "content": [{"type": "text", "text": "look"}, {"type": "image_url", "image_url": {"url": "u"}}],
        "tool_calls": [{"id": "c1", "function": {"name": "search_web", "arguments": '{"query": "x"}'}}],
    }

    converted = _to_ollama_message(message)

    assert converted["content"] == "look"
    assert converted["tool_calls"] == [{"function": {"name": "search_web", "arguments": {"query": "x"}}}]
