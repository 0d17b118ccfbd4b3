"""Subprocess-backed MCP tool servers.

Each configured server is launched over stdio and held open for the lifetime
of the host. Connections must be opened and closed from the same task, since
the underlying transport uses task-bound cancel scopes.
"""

import json
import os
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from opengravity import __version__
from opengravity.logging import get_logger
from opengravity.tools.server import ToolDescriptor, ToolServer

log = get_logger(__name__)

_CLIENT_INFO = Implementation(name="opengravity-host", version=__version__)


class McpServerConfig(BaseModel):
    """Launch settings for one tool server."""

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None


class McpConfig(BaseModel):
    """``{"mcpServers": {name: {command, args, env?}}}``"""

    model_config = ConfigDict(populate_by_name=True)

    servers: dict[str, McpServerConfig] = Field(default_factory=dict, alias="mcpServers")


def load_mcp_config(path: Path | str) -> McpConfig:
    """Read the server discovery file; missing or invalid files yield no servers."""
    config_path = Path(path).expanduser()
    if not config_path.exists():
        return McpConfig()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return McpConfig.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        log.error("Invalid MCP config", path=str(config_path), error=str(e))
        return McpConfig()


def build_server_env(overrides: dict[str, Any] | None = None) -> dict[str, str]:
    """Parent environment without unset values, overlaid by user overrides."""
    env = {key: value for key, value in os.environ.items() if value is not None}
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        env[str(key)] = str(value)
    return env


def serialize_call_result(result: Any) -> str:
    """Render a CallToolResult's content blocks as JSON text."""
    blocks = []
    for block in getattr(result, "content", None) or []:
        if hasattr(block, "model_dump"):
            blocks.append(block.model_dump(mode="json", exclude_none=True))
        else:
            blocks.append(block)
    text = json.dumps(blocks, ensure_ascii=False)
    if getattr(result, "isError", False):
        return f"Error: {text}"
    return text


class McpServerConnection(ToolServer):
    """Holds an active stdio session with one MCP server."""

    def __init__(self, name: str, config: McpServerConfig, cwd: Path | str | None = None):
        self.name = name
        self.config = config
        self.cwd = str(cwd) if cwd is not None else None
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    def to_stdio_params(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=build_server_env(self.config.env),
            cwd=self.cwd,
        )

    async def connect(self) -> None:
        if self._session is not None:
            return
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self.to_stdio_params()))
            session = await stack.enter_async_context(
                ClientSession(read, write, client_info=_CLIENT_INFO)
            )
            await session.initialize()
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self._session = session
        log.info("MCP server connected", server=self.name, command=self.config.command)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Server {self.name} is not connected")
        return self._session

    async def list_tools(self) -> list[ToolDescriptor]:
        result = await self._require_session().list_tools()
        return [
            ToolDescriptor(
                server_id=self.name,
                name=tool.name,
                description=tool.description or "",
                json_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        result = await self._require_session().call_tool(name, arguments)
        return serialize_call_result(result)

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()
            log.info("MCP server disconnected", server=self.name)
