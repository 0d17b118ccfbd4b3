"""Tools package for Opengravity."""

from pathlib import Path

from opengravity.tools.registry import Tool, ToolRegistry, ToolResult
from opengravity.tools.read import ReadFileTool
from opengravity.tools.write import WriteFileTool
from opengravity.tools.shell import RunCommandTool
from opengravity.tools.server import LocalToolServer, ToolDescriptor, ToolServer
from opengravity.tools.gateway import DENIED_BY_USER, ToolGateway


def build_builtin_registry(
    workspace: Path | str,
    enabled: list[str] | None = None,
    command_timeout: int = 60,
) -> ToolRegistry:
    """Create a registry holding the enabled built-in workspace tools."""
    available: dict[str, Tool] = {
        "read_file": ReadFileTool(),
        "write_file": WriteFileTool(),
        "run_command": RunCommandTool(timeout=command_timeout),
    }
    registry = ToolRegistry(workspace=workspace)
    names = list(available) if enabled is None else enabled
    for name in names:
        tool = available.get(name)
        if tool is not None:
            registry.register(tool)
    return registry


__all__ = [
    "DENIED_BY_USER",
    "LocalToolServer",
    "ReadFileTool",
    "RunCommandTool",
    "Tool",
    "ToolDescriptor",
    "ToolGateway",
    "ToolRegistry",
    "ToolResult",
    "ToolServer",
    "WriteFileTool",
    "build_builtin_registry",
]
