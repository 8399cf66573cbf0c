"""Application entrypoint."""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import partial

import uvicorn
from fastapi import FastAPI

from agentchat.agent_runtime import AgentRuntime
from agentchat.api import create_app
from agentchat.cache import QueryCache
from agentchat.config import Settings, load_settings
from agentchat.context import ContextAssembler
from agentchat.db import Database
from agentchat.llm.factory import build_provider
from agentchat.memory import SummaryMemoryService
from agentchat.retrieval import KeywordRetrievalService
from agentchat.skills import SkillRegistry
from agentchat.tools.factory import build_tool_registry

LOGGER = logging.getLogger(__name__)


def build_app(settings: Settings) -> FastAPI:
    """Initialize app layers and wire them behind the HTTP surface."""

    db = Database(settings.database_path)
    db.initialize()

    cache = QueryCache(db, ttl=timedelta(days=settings.search_cache_ttl_days))
    memory = SummaryMemoryService(db)
    retrieval = KeywordRetrievalService(db)
    skills = SkillRegistry(db, memory=memory, retrieval=retrieval)
    assembler = ContextAssembler(
        skills,
        memory=memory,
        retrieval=retrieval,
        memory_limit=settings.memory_summary_limit,
        retrieval_limit=settings.rag_result_limit,
    )

    runtime = AgentRuntime(
        db=db,
        assembler=assembler,
        llm_factory=partial(build_provider, settings),
        tool_factory=partial(build_tool_registry, db, cache, settings),
        skills=skills,
        memory=memory,
        max_tool_rounds=settings.max_tool_rounds,
        summary_trigger_messages=settings.memory_summary_trigger_messages,
    )
    return create_app(settings, db, runtime)


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = build_app(settings)
    LOGGER.info("Serving on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
