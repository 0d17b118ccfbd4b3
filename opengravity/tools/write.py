"""Write tool for workspace files."""

from pathlib import Path
from typing import Any

from opengravity.exceptions import ToolError
from opengravity.logging import get_logger
from opengravity.tools.registry import Tool, ToolResult, resolve_workspace_path

log = get_logger(__name__)


class WriteFileTool(Tool):
    """Create or overwrite workspace files."""

    name = "write_file"
    description = (
        "Create a new file or overwrite an existing one at the given path. "
        "The complete file content must be provided."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Target path relative to the workspace root",
            },
            "content": {
                "type": "string",
                "description": "Complete content to write to the file",
            },
        },
        "required": ["path", "content"],
        "additionalProperties": False,
    }

    async def execute(self, path: str, content: str, **kwargs: Any) -> ToolResult:
        workspace = Path(kwargs.get("_workspace") or Path.cwd())
        try:
            file_path = resolve_workspace_path(workspace, path)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
            return ToolResult(
                success=True,
                content=f"Success: wrote {len(content)} chars to {file_path.relative_to(workspace.resolve())}",
            )
        except (ToolError, OSError) as e:
            log.error("Write failed", path=path, error=str(e))
            return ToolResult(success=False, error=str(e))
