"""Application configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    llm_provider: Literal["openai", "ollama"] = Field(default="openai", alias="LLM_PROVIDER")
    llm_base_url: str = Field(default="https://models.inference.ai.azure.com", alias="LLM_BASE_URL")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    llm_temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=2000, alias="LLM_MAX_TOKENS")
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")

    database_path: Path = Field(default=Path("agentchat.db"), alias="DATABASE_PATH")

    search_provider: Literal["tavily", "ddg"] = Field(default="tavily", alias="SEARCH_PROVIDER")
    tavily_api_key: str = Field(default="", alias="TAVILY_API_KEY")
    search_timeout_seconds: float = Field(default=15.0, alias="SEARCH_TIMEOUT_SECONDS")
    search_cache_ttl_days: int = Field(default=7, alias="SEARCH_CACHE_TTL_DAYS")

    shell_backend: Literal["disabled", "executor", "local"] = Field(default="disabled", alias="SHELL_BACKEND")
    executor_url: str = Field(default="", alias="EXECUTOR_URL")
    executor_secret: str = Field(default="", alias="EXECUTOR_SECRET")
    shell_timeout_seconds: float = Field(default=30.0, alias="SHELL_TIMEOUT_SECONDS")
    # Upper bound for a model-requested timeout on a single shell command.
    shell_max_timeout_seconds: float = Field(default=120.0, alias="SHELL_MAX_TIMEOUT_SECONDS")

    max_tool_rounds: int = Field(default=8, alias="MAX_TOOL_ROUNDS")
    memory_summary_limit: int = Field(default=3, alias="MEMORY_SUMMARY_LIMIT")
    memory_summary_trigger_messages: int = Field(default=20, alias="MEMORY_SUMMARY_TRIGGER_MESSAGES")
    rag_result_limit: int = Field(default=3, alias="RAG_RESULT_LIMIT")
    default_system_message: str = Field(
        default="You are a helpful AI assistant.",
        alias="DEFAULT_SYSTEM_MESSAGE",
    )

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def base_url_for(settings: Settings, provider: str) -> str:
    """Return the server-side base URL for a model provider.

    Requests never choose an arbitrary URL; the provider name selects one of
    the configured endpoints.
    """
    if provider == "ollama":
        return settings.ollama_base_url
    return settings.llm_base_url
