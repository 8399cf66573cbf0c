"""Build an LLMProvider for one chat request."""

from __future__ import annotations

from agentchat.config import Settings
from agentchat.llm.base import LLMProvider
from agentchat.llm.ollama import OllamaProvider
from agentchat.llm.openai_compat import OpenAICompatibleProvider
from agentchat.models import ChatConfig


def build_provider(settings: Settings, config: ChatConfig) -> LLMProvider:
    if config.provider == "ollama":
        return OllamaProvider(
            base_url=config.base_url or settings.ollama_base_url,
            model=config.model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.request_timeout_seconds,
        )
    return OpenAICompatibleProvider(
        base_url=config.base_url or settings.llm_base_url,
        api_key=config.api_key,
        model=config.model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.request_timeout_seconds,
    )
