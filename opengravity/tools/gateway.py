"""Permission-gated dispatch of tool calls to connected tool servers."""

import fnmatch
import inspect
import json
from pathlib import Path
from typing import Any, Awaitable, Callable

from opengravity.exceptions import ToolArgumentError
from opengravity.logging import get_logger
from opengravity.mcp_host import McpConfig, McpServerConfig, McpServerConnection
from opengravity.tools.registry import validate_arguments
from opengravity.tools.server import (
    NAMESPACE_SEPARATOR,
    ToolDescriptor,
    ToolServer,
    split_qualified_name,
)

log = get_logger(__name__)

ALLOW_OPTION = "Allow"
DENY_OPTION = "Deny"
DENIED_BY_USER = "Error: Tool execution denied by user."

ConfirmCallback = Callable[[str, list[str]], "str | None | Awaitable[str | None]"]
ConnectionFactory = Callable[[str, McpServerConfig], ToolServer]


def _preview_arguments(arguments: Any, max_chars: int = 400) -> str:
    try:
        text = json.dumps(arguments, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(arguments)
    if len(text) > max_chars:
        text = text[:max_chars] + "..."
    return text


class ToolGateway:
    """Owns tool server connections and executes qualified tool names.

    ``execute`` always resolves to a string so the result can be stored
    directly as a tool message.
    """

    def __init__(
        self,
        confirm: ConfirmCallback | None = None,
        auto_approve: list[str] | None = None,
        connection_factory: ConnectionFactory | None = None,
        server_cwd: Path | str | None = None,
    ):
        self._servers: dict[str, ToolServer] = {}
        self._catalog: dict[str, ToolDescriptor] = {}
        self._confirm = confirm
        self._auto_approve = [p.strip() for p in (auto_approve or []) if p and p.strip()]
        self._server_cwd = server_cwd
        self._connection_factory = connection_factory or self._default_connection

    def _default_connection(self, name: str, config: McpServerConfig) -> ToolServer:
        return McpServerConnection(name, config, cwd=self._server_cwd)

    @property
    def servers(self) -> list[str]:
        """Names of connected servers."""
        return list(self._servers)

    def set_confirm_callback(self, confirm: ConfirmCallback | None) -> None:
        self._confirm = confirm

    def add_server(self, server: ToolServer) -> bool:
        """Register an already-connected server; names must be unique."""
        name = server.name
        if not name or NAMESPACE_SEPARATOR in name:
            log.error("Invalid tool server name", server=name)
            return False
        if name in self._servers:
            log.error("Duplicate tool server name", server=name)
            return False
        self._servers[name] = server
        return True

    async def startup(self, config: McpConfig) -> list[str]:
        """Connect every configured server; failures are logged and skipped.

        Returns the names of servers that connected.
        """
        connected: list[str] = []
        for name, server_config in config.servers.items():
            if name in self._servers or not name or NAMESPACE_SEPARATOR in name:
                log.error("Skipping tool server with unusable name", server=name)
                continue
            connection = self._connection_factory(name, server_config)
            try:
                connect = getattr(connection, "connect", None)
                if connect is not None:
                    await connect()
            except Exception as e:
                log.error("Tool server connection failed", server=name, error=str(e))
                continue
            self._servers[name] = connection
            connected.append(name)
        return connected

    async def list_tools(self) -> list[ToolDescriptor]:
        """Query every connected server and flatten into one namespace."""
        descriptors: list[ToolDescriptor] = []
        catalog: dict[str, ToolDescriptor] = {}
        for name, server in list(self._servers.items()):
            try:
                server_tools = await server.list_tools()
            except Exception as e:
                log.warning("Tool listing failed", server=name, error=str(e))
                continue
            for descriptor in server_tools:
                descriptors.append(descriptor)
                catalog[descriptor.qualified_name] = descriptor
        self._catalog = catalog
        return descriptors

    async def tool_schemas(self) -> list[dict[str, Any]]:
        return [descriptor.to_tool_schema() for descriptor in await self.list_tools()]

    async def _find_descriptor(self, server: ToolServer, qualified_name: str, tool_name: str) -> ToolDescriptor | None:
        descriptor = self._catalog.get(qualified_name)
        if descriptor is not None:
            return descriptor
        for candidate in await server.list_tools():
            self._catalog[candidate.qualified_name] = candidate
            if candidate.name == tool_name:
                descriptor = candidate
        return descriptor

    def _is_auto_approved(self, qualified_name: str) -> bool:
        return any(fnmatch.fnmatchcase(qualified_name, pattern) for pattern in self._auto_approve)

    async def _request_approval(self, server_id: str, tool_name: str, arguments: Any) -> bool:
        if self._is_auto_approved(f"{server_id}{NAMESPACE_SEPARATOR}{tool_name}"):
            return True
        if self._confirm is None:
            log.warning("No approval prompt configured; denying tool", server=server_id, tool=tool_name)
            return False
        question = (
            f"Opengravity wants to run tool [{server_id}] {tool_name}\n"
            f"Arguments: {_preview_arguments(arguments)}"
        )
        try:
            choice = self._confirm(question, [ALLOW_OPTION, DENY_OPTION])
            if inspect.isawaitable(choice):
                choice = await choice
        except Exception as e:
            log.error("Approval prompt failed; treating as denial", error=str(e))
            return False
        return choice == ALLOW_OPTION

    async def execute(self, qualified_name: str, arguments: Any) -> str:
        """Run a tool by qualified name.

        Args:
            qualified_name: ``{server}__{tool}``
            arguments: Decoded arguments or raw JSON text from the model

        Returns:
            Tool output, or a descriptive error / denial string
        """
        parts = split_qualified_name(qualified_name)
        if parts is None:
            return (
                f"Error: Invalid tool name '{qualified_name}'. "
                f"Expected '<server>{NAMESPACE_SEPARATOR}<tool>'."
            )
        server_id, tool_name = parts
        server = self._servers.get(server_id)
        if server is None:
            return f"Error: Server {server_id} inactive."

        if isinstance(arguments, str):
            text = arguments.strip()
            try:
                arguments = json.loads(text) if text else {}
            except json.JSONDecodeError as e:
                return f"Error: Invalid JSON arguments for {qualified_name}: {e}"
        if arguments is None:
            arguments = {}

        try:
            descriptor = await self._find_descriptor(server, qualified_name, tool_name)
        except Exception as e:
            return f"Error: Could not query tools of server {server_id}: {e}"
        if descriptor is None:
            return f"Error: Tool {tool_name} not found on server {server_id}."
        try:
            validate_arguments(qualified_name, descriptor.json_schema, arguments)
        except ToolArgumentError as e:
            return f"Error: {e}"

        if not await self._request_approval(server_id, tool_name, arguments):
            log.info("Tool denied by user", server=server_id, tool=tool_name)
            return DENIED_BY_USER

        log.info("Executing tool", server=server_id, tool=tool_name)
        try:
            return await server.call_tool(tool_name, arguments)
        except Exception as e:
            log.error("Tool execution failed", server=server_id, tool=tool_name, error=str(e))
            return f"Error: {e}"

    async def shutdown(self) -> None:
        """Close every connection, most recent first."""
        for name in reversed(list(self._servers)):
            server = self._servers.pop(name)
            try:
                await server.close()
            except Exception as e:
                log.warning("Tool server shutdown failed", server=name, error=str(e))
        self._catalog.clear()
