"""Command tool for running shell commands in the workspace."""

import asyncio
import os
from pathlib import Path
from typing import Any

from opengravity.logging import get_logger
from opengravity.tools.registry import Tool, ToolResult

log = get_logger(__name__)

MAX_OUTPUT_CHARS = 10000


class RunCommandTool(Tool):
    """Execute shell commands."""

    name = "run_command"
    description = "Run a shell command (e.g. compile with gcc, list a directory) in the workspace and return its output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The complete command line to execute",
            },
        },
        "required": ["command"],
        "additionalProperties": False,
    }

    def __init__(self, timeout: int = 60):
        self.command_timeout = max(1, int(timeout))
        # registry timeout must outlive the command timeout so the process gets killed here
        self.timeout_seconds = float(self.command_timeout + 5)

    async def execute(self, command: str, **kwargs: Any) -> ToolResult:
        if not command.strip():
            return ToolResult(success=False, error="Command is empty")

        workspace = Path(kwargs.get("_workspace") or Path.cwd())
        log.info("Executing shell command", command=command, timeout=self.command_timeout)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workspace),
                env=os.environ.copy(),
            )
        except OSError as e:
            log.error("Shell command failed", command=command, error=str(e))
            return ToolResult(success=False, error=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(success=False, error=f"Command timed out after {self.command_timeout}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()

        output = stdout_text
        if stderr_text:
            output += f"\n[stderr] {stderr_text}"
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(output)} total chars]"
        if process.returncode:
            output += f"\n[exit code {process.returncode}]"

        return ToolResult(
            success=process.returncode == 0,
            content=output.strip() or "[no output]",
        )
