"""Read tool for workspace files."""

from pathlib import Path
from typing import Any

from opengravity.exceptions import ToolError
from opengravity.logging import get_logger
from opengravity.tools.registry import Tool, ToolResult, resolve_workspace_path

log = get_logger(__name__)


class ReadFileTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = (
        "Read the full contents of a file in the workspace. "
        "Call this before analysing code or notes."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path relative to the workspace root, e.g. 'src/main.cpp'",
            },
        },
        "required": ["path"],
        "additionalProperties": False,
    }
    max_size = 200_000

    async def execute(self, path: str, **kwargs: Any) -> ToolResult:
        workspace = Path(kwargs.get("_workspace") or Path.cwd())
        try:
            file_path = resolve_workspace_path(workspace, path)

            if not file_path.exists():
                return ToolResult(success=False, error=f"File not found: {path}")
            if not file_path.is_file():
                return ToolResult(success=False, error=f"Not a file: {path}")

            file_size = file_path.stat().st_size
            if file_size > self.max_size:
                return ToolResult(
                    success=False,
                    error=f"File too large: {file_size} bytes (max {self.max_size})",
                )

            return ToolResult(success=True, content=file_path.read_text(encoding="utf-8"))
        except (ToolError, OSError, UnicodeDecodeError) as e:
            log.error("Read failed", path=path, error=str(e))
            return ToolResult(success=False, error=str(e))
