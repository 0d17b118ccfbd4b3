"""Tool server interface and the descriptors it publishes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from opengravity.tools.registry import ToolRegistry

NAMESPACE_SEPARATOR = "__"


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool discovered from a connected server."""

    server_id: str
    name: str
    description: str = ""
    json_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{self.server_id}{NAMESPACE_SEPARATOR}{self.name}"

    def to_tool_schema(self) -> dict[str, Any]:
        """OpenAI function-style definition exposed to the model."""
        parameters = self.json_schema or {"type": "object", "properties": {}}
        return {
            "type": "function",
            "function": {
                "name": self.qualified_name,
                "description": self.description,
                "parameters": parameters,
            },
        }


def split_qualified_name(qualified_name: str) -> tuple[str, str] | None:
    """Split ``server__tool`` on the first separator; None when malformed."""
    server_id, sep, tool_name = (qualified_name or "").partition(NAMESPACE_SEPARATOR)
    if not sep or not server_id or not tool_name:
        return None
    return server_id, tool_name


class ToolServer(ABC):
    """A source of callable tools addressed by server name."""

    name: str = ""

    @abstractmethod
    async def list_tools(self) -> list[ToolDescriptor]:
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool and return its result as text."""

    async def close(self) -> None:
        return None


class LocalToolServer(ToolServer):
    """Exposes the built-in tool registry through the server interface."""

    def __init__(self, registry: ToolRegistry, name: str = "workspace"):
        self.name = name
        self.registry = registry

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                server_id=self.name,
                name=definition["name"],
                description=definition["description"],
                json_schema=definition["parameters"],
            )
            for definition in self.registry.get_definitions()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        result = await self.registry.execute(name, arguments)
        return result.as_text()
