"""Shell command tool and the backends that actually run commands."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx

from agentchat.models import ToolResult
from agentchat.tools.base import Tool

LOGGER = logging.getLogger(__name__)

_MAX_OUTPUT_CHARS = 30_000


def _shell_result(
    command: str, stdout: str, stderr: str, exit_code: int, started: float
) -> dict[str, Any]:
    return {
        "command": command,
        "stdout": stdout[:_MAX_OUTPUT_CHARS],
        "stderr": stderr[:_MAX_OUTPUT_CHARS],
        "exit_code": exit_code,
        "success": exit_code == 0,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }


class ShellBackend(ABC):
    """Capability that runs one command. Implementations never retry."""

    @abstractmethod
    async def execute(self, command: str, cwd: str | None, timeout_seconds: float) -> dict[str, Any]:
        """Run ``command`` and return a shell result mapping."""


class ExecutorServiceShell(ShellBackend):
    """Runs commands on a separate executor service over HTTP."""

    def __init__(self, executor_url: str, secret: str = "") -> None:
        self._executor_url = executor_url.rstrip("/")
        self._secret = secret

    async def execute(self, command: str, cwd: str | None, timeout_seconds: float) -> dict[str, Any]:
        started = time.monotonic()
        if not self._executor_url:
            return _shell_result(
                command, "", "Executor service not configured. Set EXECUTOR_URL.", 1, started
            )

        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers["x-executor-secret"] = self._secret

        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{self._executor_url}/execute",
                json={"command": command, "cwd": cwd, "timeout": int(timeout_seconds * 1000)},
                headers=headers,
                # Leave the executor room to report its own timeout.
                timeout=timeout_seconds + 5.0,
            )
            if resp.status_code != 200:
                return _shell_result(command, "", f"Executor HTTP {resp.status_code}: {resp.text}", 1, started)
            data = resp.json()

        exit_code = int(data.get("exitCode", data.get("exit_code", 1)))
        return _shell_result(command, data.get("stdout", ""), data.get("stderr", ""), exit_code, started)


class LocalShell(ShellBackend):
    """Runs commands as local subprocesses confined to an allowed root."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = (root or Path.cwd()).resolve()

    def _resolve_cwd(self, cwd: str | None) -> Path:
        target = (self._root / cwd).resolve() if cwd else self._root
        if target != self._root and self._root not in target.parents:
            raise ValueError(f"Working directory not under {self._root}: {cwd}")
        return target

    async def execute(self, command: str, cwd: str | None, timeout_seconds: float) -> dict[str, Any]:
        started = time.monotonic()
        try:
            workdir = self._resolve_cwd(cwd)
        except ValueError as exc:
            return _shell_result(command, "", str(exc), 1, started)

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workdir),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return _shell_result(command, "", f"Command timed out after {timeout_seconds:g}s", 124, started)

        return _shell_result(
            command,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            proc.returncode if proc.returncode is not None else 1,
            started,
        )


class ShellTool(Tool):
    """Execute a shell command through the configured backend."""

    name = "execute_shell"
    description = (
        "Execute a shell command on the server and return stdout, stderr and the exit code. "
        "Use for inspecting files, running scripts or checking system state."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to run."},
            "cwd": {"type": "string", "description": "Working directory for the command."},
            "timeout": {"type": "number", "description": "Timeout in seconds."},
        },
        "required": ["command"],
        "additionalProperties": False,
    }

    def __init__(self, backend: ShellBackend, default_timeout: float = 30.0, max_timeout: float = 120.0) -> None:
        self._backend = backend
        self._default_timeout = default_timeout
        self._max_timeout = max_timeout
        self.timeout_seconds = max_timeout + 10.0

    async def run(self, **kwargs: Any) -> ToolResult:
        command = str(kwargs["command"]).strip()
        if not command:
            raise ValueError("command must not be empty")
        cwd: str | None = kwargs.get("cwd")
        timeout = min(float(kwargs.get("timeout") or self._default_timeout), self._max_timeout)

        LOGGER.info("Executing shell command %r (cwd=%r, timeout=%gs)", command, cwd, timeout)
        result = await self._backend.execute(command, cwd, timeout)
        return ToolResult(name=self.name, success=bool(result["success"]), payload=result)
