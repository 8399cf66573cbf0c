"""Web search tool backed by Tavily or DuckDuckGo, fronted by the query cache."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from ddgs import DDGS

from agentchat.cache import QueryCache
from agentchat.tools.base import Tool

LOGGER = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"
MAX_RESULTS = 5


class SearchBackend(ABC):
    """A paid or rate-limited search API."""

    @abstractmethod
    async def search(self, query: str) -> dict[str, Any]:
        """Return ``{"query", "answer", "results": [{"title", "url", "content", "score"}]}``."""


class TavilySearchBackend(SearchBackend):
    def __init__(self, api_key: str, timeout_seconds: float = 15.0) -> None:
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    async def search(self, query: str) -> dict[str, Any]:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                TAVILY_URL,
                json={
                    "api_key": self._api_key,
                    "query": query,
                    "search_depth": "basic",
                    "include_answer": True,
                    "max_results": MAX_RESULTS,
                },
                timeout=self._timeout_seconds,
            )
            if resp.status_code != 200:
                raise RuntimeError(f"Tavily API error (HTTP {resp.status_code}): check the Tavily API key.")
            data = resp.json()

        return {
            "query": query,
            "answer": data.get("answer") or "",
            "results": [
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "content": item.get("content", ""),
                    "score": item.get("score"),
                }
                for item in data.get("results") or []
            ],
        }


class DdgSearchBackend(SearchBackend):
    """DuckDuckGo search, no API key required."""

    async def search(self, query: str) -> dict[str, Any]:
        results = await asyncio.to_thread(
            lambda: DDGS().text(query, max_results=MAX_RESULTS, backend="duckduckgo")
        )
        return {
            "query": query,
            "answer": "",
            "results": [
                {"title": r.get("title", ""), "url": r.get("href", ""), "content": r.get("body", ""), "score": None}
                for r in results or []
            ],
        }


class SearchWebTool(Tool):
    """Search the web, answering repeated queries from the cache."""

    name = "search_web"
    description = (
        "Search the web for current information, news, facts, or any information "
        "not in your knowledge base. Use this when you need real-time or up-to-date information."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query to look up on the web"},
        },
        "required": ["query"],
        "additionalProperties": False,
    }

    def __init__(self, backend: SearchBackend, cache: QueryCache | None = None, timeout_seconds: float = 20.0) -> None:
        self._backend = backend
        self._cache = cache
        self.timeout_seconds = timeout_seconds

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        query = str(kwargs["query"]).strip()
        if not query:
            raise ValueError("query must not be empty")

        if self._cache is not None:
            entry = self._cache.get(query)
            if entry is not None:
                return {**entry.result, "from_cache": True, "cached_at": entry.created_at.isoformat()}

        result = await self._backend.search(query)
        LOGGER.info("Search for %r returned %d results", query, len(result.get("results", [])))

        if self._cache is not None:
            self._cache.put(query, result)
        return result
