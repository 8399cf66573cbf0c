"""Document retrieval for prompt enrichment."""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentchat.cache import normalize_query
from agentchat.db import Database

NO_RESULTS_SENTINEL = "No relevant documents found in the knowledge base."


class RetrievalService(ABC):
    """Turns free text into a formatted block of relevant document excerpts."""

    @abstractmethod
    async def get_relevant_context(self, query: str, user_id: str, limit: int = 3) -> str:
        """Return the context block, or ``NO_RESULTS_SENTINEL`` when nothing matches."""


def is_no_results(context: str) -> bool:
    return not context.strip() or NO_RESULTS_SENTINEL in context


class KeywordRetrievalService(RetrievalService):
    """Ranks a user's stored document chunks by query-term overlap."""

    def __init__(self, db: Database, min_score: float = 0.3) -> None:
        self._db = db
        self._min_score = min_score

    async def get_relevant_context(self, query: str, user_id: str, limit: int = 3) -> str:
        terms = set(normalize_query(query).split())
        if not terms:
            return NO_RESULTS_SENTINEL

        scored: list[tuple[float, dict]] = []
        for chunk in self._db.list_document_chunks(user_id):
            chunk_terms = set(normalize_query(chunk["content"]).split())
            score = len(terms & chunk_terms) / len(terms)
            if score >= self._min_score:
                scored.append((score, chunk))

        if not scored:
            return NO_RESULTS_SENTINEL

        scored.sort(key=lambda item: (-item[0], item[1]["id"]))
        parts = [
            f"[Document {i + 1}: {chunk['filename']} (Relevance: {score * 100:.1f}%)]\n{chunk['content']}"
            for i, (score, chunk) in enumerate(scored[:limit])
        ]
        body = "\n\n---\n\n".join(parts)
        return (
            "RELEVANT KNOWLEDGE BASE CONTEXT:\n\n"
            f"{body}\n\n"
            "Please use the above context to answer the user's question. If the context doesn't "
            "contain relevant information, acknowledge that and use your general knowledge."
        )
