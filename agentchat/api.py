"""HTTP surface: the streaming chat endpoint and a health check."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from agentchat.agent_runtime import AgentRuntime
from agentchat.config import Settings, base_url_for
from agentchat.db import Database
from agentchat.models import ChatConfig
from agentchat.streaming import SSE_HEADERS, stream_chat

LOGGER = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


class ImageAttachment(BaseModel):
    url: str


class ChatRequest(BaseModel):
    message: str = ""
    conversation_id: str | None = None
    model: str | None = None
    provider: Literal["openai", "ollama"] | None = None
    image_attachments: list[ImageAttachment] = Field(default_factory=list)
    pre_selected_skill_id: str | None = None


def session_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""

    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(SESSION_COOKIE)


def create_app(settings: Settings, db: Database, runtime: AgentRuntime) -> FastAPI:
    app = FastAPI(title="agentchat", description="Streaming tool-using chat assistant.")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.post("/api/chat")
    async def chat(body: ChatRequest, request: Request) -> StreamingResponse:
        token = session_token(request)

        def authenticate() -> str | None:
            if not token:
                return None
            return db.get_session_user(token)

        def build_config(user_id: str) -> ChatConfig:
            user_settings = db.get_user_settings(user_id)
            provider = body.provider or settings.llm_provider
            return ChatConfig(
                user_id=user_id,
                model=body.model or settings.llm_model,
                provider=provider,
                base_url=base_url_for(settings, provider),
                api_key=settings.llm_api_key,
                tavily_api_key=user_settings.get("tavily_api_key") or settings.tavily_api_key or None,
                system_message=user_settings.get("system_message") or settings.default_system_message,
                pre_selected_skill_id=body.pre_selected_skill_id,
                image_urls=[image.url for image in body.image_attachments],
            )

        LOGGER.info("Chat request for conversation %s", body.conversation_id or "<new>")
        return StreamingResponse(
            stream_chat(
                runtime.handle,
                body.message,
                body.conversation_id,
                authenticate,
                build_config,
                has_images=bool(body.image_attachments),
            ),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return app
