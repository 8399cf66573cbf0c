"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "system", "tool"]
TriggerType = Literal["manual", "auto", "command"]


@dataclass(slots=True)
class Conversation:
    """A chat session owned by one user."""

    id: str
    user_id: str
    title: str
    created_at: datetime
    active_skill_id: str | None = None
    message_count: int = 0


@dataclass(slots=True)
class Message:
    """Persisted conversation message.

    ``parts`` is set instead of plain ``content`` for multimodal user input;
    each part is ``{"type": "text", "text": ...}`` or ``{"type": "image", "url": ...}``.
    """

    role: Role
    content: str = ""
    parts: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider.

    ``arguments`` is kept as the backend sent it: a JSON string, a mapping, or None.
    """

    name: str
    arguments: Any = None
    call_id: str | None = None


@dataclass(slots=True)
class ToolCall:
    """Tool invocation after id and argument normalization."""

    call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool execution; ``payload`` is always JSON-serializable."""

    name: str
    success: bool
    payload: Any


@dataclass(slots=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    usage: LLMUsage | None = None
    raw: dict[str, Any] | None = None


@dataclass(slots=True)
class AutoSwitchRules:
    """Conditions under which a skill activates itself."""

    keywords: list[str] = field(default_factory=list)
    file_types: list[str] = field(default_factory=list)
    time_hour: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AutoSwitchRules | None:
        if not data:
            return None
        time_pattern = data.get("time_pattern") or {}
        hour = time_pattern.get("hour")
        return cls(
            keywords=[str(k) for k in data.get("keywords") or []],
            file_types=[str(f) for f in data.get("file_types") or []],
            time_hour=int(hour) if hour is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.keywords:
            data["keywords"] = list(self.keywords)
        if self.file_types:
            data["file_types"] = list(self.file_types)
        if self.time_hour is not None:
            data["time_pattern"] = {"hour": self.time_hour}
        return data


@dataclass(slots=True)
class Skill:
    """A persona/instruction set that can be layered into the system prompt."""

    id: str
    name: str
    display_name: str
    content: str
    description: str = ""
    category: str = "workflow"
    user_id: str | None = None
    learning_enabled: bool = False
    rag_integration: bool = False
    auto_switch_rules: AutoSwitchRules | None = None


@dataclass(slots=True)
class ActiveSkill:
    """The skill currently attached to a conversation."""

    skill: Skill
    trigger_type: TriggerType
    previous_skill_id: str | None = None
    activated_at: datetime | None = None


@dataclass(slots=True)
class CacheEntry:
    """Stored tool result keyed by the hash of a normalized query."""

    query_hash: str
    normalized_query: str
    result: Any
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0
    last_accessed_at: datetime | None = None


@dataclass(slots=True)
class ChatConfig:
    """Per-request settings resolved by the transport before the pipeline runs."""

    user_id: str
    model: str
    provider: str = "openai"
    base_url: str = ""
    api_key: str = ""
    tavily_api_key: str | None = None
    system_message: str = "You are a helpful AI assistant."
    pre_selected_skill_id: str | None = None
    image_urls: list[str] = field(default_factory=list)
