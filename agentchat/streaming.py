"""Event protocol and Server-Sent Events framing for streamed chat replies.

Each event is one JSON object on a ``data:`` line::

    data: {"type":"token","content":"..."}
    data: {"type":"tool_call","name":"...","args":{...}}
    data: {"type":"tool_result","name":"...","success":true}
    data: {"type":"done","conversationId":"..."}
    data: {"type":"error","message":"..."}

Exactly one ``done`` or ``error`` ends a stream. A ``: keepalive`` comment is
sent before any backend work so proxies see the response start immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable

from agentchat.errors import UnauthorizedError
from agentchat.models import ChatConfig

LOGGER = logging.getLogger(__name__)

KEEPALIVE = ": keepalive\n\n"
TERMINAL_EVENT_TYPES = frozenset({"done", "error"})

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_BACKGROUND_TASKS: set[asyncio.Task[None]] = set()


def token_event(content: str) -> dict[str, Any]:
    return {"type": "token", "content": content}


def tool_call_event(name: str, args: dict[str, Any]) -> dict[str, Any]:
    return {"type": "tool_call", "name": name, "args": args}


def tool_result_event(name: str, success: bool) -> dict[str, Any]:
    return {"type": "tool_result", "name": name, "success": success}


def done_event(conversation_id: str) -> dict[str, Any]:
    return {"type": "done", "conversationId": conversation_id}


def error_event(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}


def encode_event(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False, separators=(',', ':'))}\n\n"


async def relay_events(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[dict[str, Any]]:
    """Yield ``events`` up to the terminal one while a separate task produces them.

    The producer runs to completion even if the consumer stops early, so a
    client disconnect abandons only the transport and the pipeline still
    persists its results.
    """
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    async def pump() -> None:
        try:
            async for event in events:
                queue.put_nowait(event)
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(pump(), name="chat-pipeline")
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_on_pipeline_done)

    while True:
        event = await queue.get()
        if event is None:
            yield error_event("Internal server error")
            return
        yield event
        if event["type"] in TERMINAL_EVENT_TYPES:
            return


def _on_pipeline_done(task: asyncio.Task[None]) -> None:
    _BACKGROUND_TASKS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        LOGGER.error("Chat pipeline task crashed", exc_info=task.exception())


async def stream_chat(
    handle: Callable[[str, str | None, ChatConfig], AsyncIterator[dict[str, Any]]],
    message: str,
    conversation_id: str | None,
    authenticate: Callable[[], str | None],
    build_config: Callable[[str], ChatConfig],
    has_images: bool = False,
) -> AsyncIterator[str]:
    """Produce the encoded SSE body for one chat request."""

    yield KEEPALIVE

    try:
        user_id = authenticate()
    except Exception:  # noqa: BLE001
        LOGGER.exception("Session validation failed")
        user_id = None
    if not user_id:
        yield encode_event(error_event(UnauthorizedError.user_message))
        return

    if not message.strip() and not has_images:
        yield encode_event(error_event("Message is required"))
        return

    try:
        config = build_config(user_id)
    except Exception:  # noqa: BLE001
        LOGGER.exception("Failed to load settings for user %s", user_id)
        yield encode_event(error_event("Failed to load user settings"))
        return

    async for event in relay_events(handle(message, conversation_id, config)):
        yield encode_event(event)
