"""Tool registry and base tool class for built-in workspace tools."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from opengravity.exceptions import ToolArgumentError, ToolError, ToolNotFoundError
from opengravity.logging import get_logger

log = get_logger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
    "null": (type(None),),
}


def validate_arguments(tool_name: str, schema: dict[str, Any] | None, arguments: Any) -> None:
    """Check arguments against the top level of a JSON schema.

    Covers the object shape, required keys and primitive property types.

    Raises:
        ToolArgumentError if invalid
    """
    schema = schema or {}
    if schema.get("type", "object") == "object" and not isinstance(arguments, dict):
        raise ToolArgumentError(tool_name, "arguments must be a JSON object")
    if not isinstance(arguments, dict):
        return

    for field in schema.get("required", []) or []:
        if field not in arguments:
            raise ToolArgumentError(tool_name, f"missing required argument: {field}")

    properties = schema.get("properties") or {}
    for key, value in arguments.items():
        prop = properties.get(key)
        if not isinstance(prop, dict):
            if schema.get("additionalProperties") is False:
                raise ToolArgumentError(tool_name, f"unexpected argument: {key}")
            continue
        declared = prop.get("type")
        type_names = declared if isinstance(declared, list) else [declared] if declared else []
        expected = tuple(t for name in type_names for t in _JSON_TYPES.get(name, ()))
        if not expected:
            continue
        # bool is an int subclass; only accept it where boolean is declared
        if isinstance(value, bool) and "boolean" not in type_names:
            raise ToolArgumentError(tool_name, f"argument '{key}' must be {'/'.join(type_names)}")
        if not isinstance(value, expected):
            raise ToolArgumentError(tool_name, f"argument '{key}' must be {'/'.join(type_names)}")


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def as_text(self) -> str:
        return self.content if self.success else f"Error: {self.error}"


class Tool(ABC):
    """Base class for all built-in tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments plus ``_workspace`` (Path)

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        validate_arguments(self.name, self.parameters, arguments)


def resolve_workspace_path(workspace: Path, raw: str) -> Path:
    """Resolve ``raw`` under ``workspace``; paths escaping the root are rejected."""
    root = workspace.resolve()
    candidate = (root / Path(raw).expanduser()).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        raise ToolError(f"Path is outside the workspace: {raw}") from None
    return candidate


class ToolRegistry:
    """Registry for managing built-in tools."""

    def __init__(self, workspace: Path | str | None = None):
        self._tools: dict[str, Tool] = {}
        self.workspace = Path(workspace or Path.cwd()).expanduser().resolve()

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must have a name")
        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        return [tool.get_definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name with a timeout.

        Raises:
            ToolNotFoundError if tool not found
            ToolArgumentError if arguments are invalid
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        timeout_seconds = max(1.0, float(tool.timeout_seconds or 30.0))
        log.info("Executing tool", tool=name)
        try:
            result = await asyncio.wait_for(
                tool.execute(**arguments, _workspace=self.workspace),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            return ToolResult(success=False, error=f"Execution timed out after {timeout_label}s")
        except ToolError as e:
            return ToolResult(success=False, error=str(e))
        log.info("Tool executed", tool=name, success=result.success)
        return result
