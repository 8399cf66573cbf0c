"""Long-term memory built from summaries of past conversations."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from agentchat.db import Database
from agentchat.llm.base import LLMProvider

LOGGER = logging.getLogger(__name__)

_SUMMARY_PROMPT = (
    "Summarize this conversation briefly for long-term memory. "
    "Keep facts about the user, their preferences and any open tasks."
)


class MemoryService(ABC):
    """Source of recent conversation summaries for a user."""

    @abstractmethod
    async def get_recent_summaries(self, user_id: str, limit: int) -> list[str]:
        """Return up to ``limit`` summaries, newest first."""

    def format_memory_context(self, summaries: list[str]) -> str:
        if not summaries:
            return ""
        lines = "\n".join(f"- {s}" for s in summaries)
        return f"PREVIOUS CONVERSATION MEMORIES:\n{lines}"


class SummaryMemoryService(MemoryService):
    """Memory backed by the ``conversation_summaries`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_recent_summaries(self, user_id: str, limit: int) -> list[str]:
        return [row["summary"] for row in self._db.get_recent_summaries(user_id, limit)]

    async def search_summaries(self, user_id: str, term: str, limit: int = 10) -> list[str]:
        return [row["summary"] for row in self._db.get_recent_summaries(user_id, limit, term=term)]

    async def maybe_summarize(
        self, conversation_id: str, user_id: str, llm: LLMProvider, trigger_messages: int
    ) -> bool:
        """Summarize the conversation once it has grown by ``trigger_messages``.

        Returns True when a new summary was stored.
        """
        messages = self._db.load_messages(conversation_id)
        summarized_at = self._db.get_summary_message_count(conversation_id) or 0
        if len(messages) - summarized_at < trigger_messages:
            return False

        transcript = [
            {"role": m.role, "content": m.content}
            for m in messages
            if m.role in ("user", "assistant") and m.content
        ]
        prompt = [{"role": "system", "content": _SUMMARY_PROMPT}, *transcript]
        response = await llm.generate(prompt)
        if not response.content.strip():
            return False
        self._db.save_summary(user_id, conversation_id, response.content.strip(), len(messages))
        LOGGER.info("Stored summary for conversation %s (%d messages)", conversation_id, len(messages))
        return True
