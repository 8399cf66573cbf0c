"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for all tools the model may call.

    ``run`` returns a JSON-serializable payload on success. A tool that decides
    its own success flag (a shell command exiting non-zero) returns a
    ``ToolResult`` instead.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    timeout_seconds: float = 30.0

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        """Execute tool with validated arguments."""
