"""Assemble the tool set enabled for one chat request."""

from __future__ import annotations

from agentchat.cache import QueryCache
from agentchat.config import Settings
from agentchat.db import Database
from agentchat.models import ChatConfig
from agentchat.tools.registry import ToolRegistry
from agentchat.tools.search_web_tool import DdgSearchBackend, SearchBackend, SearchWebTool, TavilySearchBackend
from agentchat.tools.shell_tool import ExecutorServiceShell, LocalShell, ShellBackend, ShellTool


def build_tool_registry(db: Database, cache: QueryCache, settings: Settings, config: ChatConfig) -> ToolRegistry:
    """Register each tool whose credentials or backend are available.

    A tool left out here is answered with "tool not available" if the model
    asks for it anyway.
    """
    registry = ToolRegistry(db)

    search_backend = _search_backend(settings, config)
    if search_backend is not None:
        registry.register(
            SearchWebTool(search_backend, cache=cache, timeout_seconds=settings.search_timeout_seconds + 5.0)
        )

    shell_backend = _shell_backend(settings)
    if shell_backend is not None:
        registry.register(
            ShellTool(
                shell_backend,
                default_timeout=settings.shell_timeout_seconds,
                max_timeout=settings.shell_max_timeout_seconds,
            )
        )
    return registry


def _search_backend(settings: Settings, config: ChatConfig) -> SearchBackend | None:
    if settings.search_provider == "ddg":
        return DdgSearchBackend()
    if config.tavily_api_key:
        return TavilySearchBackend(config.tavily_api_key, timeout_seconds=settings.search_timeout_seconds)
    return None


def _shell_backend(settings: Settings) -> ShellBackend | None:
    if settings.shell_backend == "executor":
        return ExecutorServiceShell(settings.executor_url, settings.executor_secret)
    if settings.shell_backend == "local":
        return LocalShell()
    return None
