"""Registry mapping tool names to handlers; the single execution boundary for tools."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError, create_model

from agentchat.db import Database
from agentchat.models import ToolResult
from agentchat.tools.base import Tool

LOGGER = logging.getLogger(__name__)

TOOL_NOT_AVAILABLE = "tool not available"


class ToolRegistry:
    """Explicit, closed registry of the tools enabled for one request."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(self, conversation_id: str, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run one tool call. Never raises: every failure becomes ``success=False``."""

        tool = self._tools.get(tool_name)
        if tool is None:
            LOGGER.warning("Model requested unavailable tool %r", tool_name)
            return ToolResult(name=tool_name, success=False, payload={"error": TOOL_NOT_AVAILABLE})

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except ValueError as exc:
            result = ToolResult(name=tool_name, success=False, payload={"error": str(exc)})
            self._record(conversation_id, tool_name, arguments, result)
            return result

        try:
            output = await asyncio.wait_for(tool.run(**validated), timeout=tool.timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s timed out after %.1fs", tool_name, tool.timeout_seconds)
            result = ToolResult(
                name=tool_name,
                success=False,
                payload={"error": f"{tool_name} timed out after {tool.timeout_seconds:g}s"},
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s failed: %s", tool_name, exc)
            result = ToolResult(name=tool_name, success=False, payload={"error": str(exc) or type(exc).__name__})
        else:
            if isinstance(output, ToolResult):
                result = ToolResult(name=tool_name, success=output.success, payload=output.payload)
            else:
                result = ToolResult(name=tool_name, success=True, payload=output)

        self._record(conversation_id, tool_name, validated, result)
        return result

    def _record(self, conversation_id: str, tool_name: str, arguments: dict[str, Any], result: ToolResult) -> None:
        if self._db is None:
            return
        try:
            self._db.log_tool_execution(conversation_id, tool_name, arguments, result.payload, result.success)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to record execution of %s", tool_name)


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
