"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from agentchat.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the agent runtime."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> LLMResponse:
        """Generate a complete model response, possibly requesting tools."""

    @abstractmethod
    def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """Yield text increments of a tool-free completion as they arrive."""
