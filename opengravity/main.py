"""Main entry point for Opengravity."""

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

import typer

from opengravity import __version__
from opengravity.agent import Agent
from opengravity.cli import TerminalUI, build_link_prompt
from opengravity.config import Config, set_config
from opengravity.exceptions import AgentBusyError, ConfigurationError, PersistenceError
from opengravity.instructions import load_system_prompt
from opengravity.llm import CompletionClient, create_provider
from opengravity.logging import configure_logging, get_logger
from opengravity.mcp_host import load_mcp_config
from opengravity.session import SessionStore
from opengravity.tools import LocalToolServer, ToolGateway, build_builtin_registry

log = get_logger(__name__)

app = typer.Typer(help="Opengravity - a terminal coding assistant with tool calling")


@dataclass
class Runtime:
    """Collaborators for one workspace conversation."""

    config: Config
    workspace: Path
    store: SessionStore
    gateway: ToolGateway
    client: CompletionClient
    agent: Agent

    async def aclose(self) -> None:
        await self.gateway.shutdown()
        await self.client.aclose()


def load_config(config_path: str = "", model: str = "", provider: str = "", verbose: bool = False) -> Config:
    """Load configuration and apply command-line overrides."""
    if config_path:
        try:
            cfg = Config.from_yaml(Path(config_path))
        except Exception as e:
            log.error("Failed to load config", path=config_path, error=str(e))
            cfg = Config.load()
    else:
        cfg = Config.load()

    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    return cfg


def build_store(cfg: Config, workspace: Path) -> SessionStore:
    return SessionStore(
        cfg.resolve_in_workspace(cfg.session.path, workspace),
        archive_dir=cfg.resolve_in_workspace(cfg.session.archive_dir, workspace),
    )


async def build_runtime(cfg: Config, workspace: Path, ui: TerminalUI) -> Runtime:
    """Assemble the agent for ``workspace`` and connect tool servers."""
    store = build_store(cfg, workspace)
    session = store.load()

    provider = create_provider(
        provider=cfg.model.provider,
        model=cfg.model.model,
        api_key=cfg.model.api_key or None,
        base_url=cfg.model.base_url or None,
        temperature=cfg.model.temperature,
        timeout=cfg.model.timeout,
    )
    client = CompletionClient(provider, max_tokens=cfg.model.max_tokens)

    gateway = ToolGateway(
        confirm=ui.confirm,
        auto_approve=cfg.tools.auto_approve,
        server_cwd=workspace,
    )
    registry = build_builtin_registry(
        workspace,
        enabled=cfg.tools.builtin_enabled,
        command_timeout=cfg.tools.command_timeout,
    )
    if registry.list_tools():
        gateway.add_server(LocalToolServer(registry))
    mcp_config = load_mcp_config(cfg.resolve_in_workspace(cfg.mcp.config_path, workspace))
    connected = await gateway.startup(mcp_config)
    for name in connected:
        ui.print_success(f"[MCP] {name} connected")
    for name in mcp_config.servers:
        if name not in connected:
            ui.print_warning(f"[MCP] {name} failed to connect")

    agent = Agent(
        session=session,
        client=client,
        gateway=gateway,
        store=store,
        auto_save=cfg.session.auto_save,
        observer=ui,
        system_prompt=lambda: load_system_prompt(workspace),
        max_tool_rounds=cfg.agent.max_tool_rounds,
    )
    return Runtime(
        config=cfg,
        workspace=workspace,
        store=store,
        gateway=gateway,
        client=client,
        agent=agent,
    )


async def _archive(agent: Agent, ui: TerminalUI) -> None:
    try:
        path = await agent.archive_and_clear()
    except PersistenceError as e:
        ui.print_error(f"Export failed: {e}")
        return
    if path is None:
        ui.print_warning("Nothing to archive.")
        return
    ui.print_success(f"Session archived to {path}. Conversation cleared.")


async def run_interactive(cfg: Config, workspace: Path, ui: TerminalUI) -> None:
    """Read-eval loop for one workspace conversation."""
    try:
        runtime = await build_runtime(cfg, workspace, ui)
    except ConfigurationError as e:
        ui.print_error(str(e))
        return

    agent = runtime.agent
    ui.print_welcome(workspace)
    if not agent.session.is_empty:
        ui.print_success(f"Restored {len(agent.session.messages)} messages from the previous session.")

    try:
        while True:
            try:
                user_input = await ui.read_input("> ")
            except (KeyboardInterrupt, EOFError):
                log.info("Input closed")
                break

            if not user_input.strip():
                continue
            command = ui.handle_special_command(user_input)
            if command is None:
                continue
            token, argument = command

            if token == "EXIT":
                break
            if token == "HISTORY":
                ui.print_history(agent.session.messages)
                continue
            if token == "TOOLS":
                ui.print_tools([d.qualified_name for d in await runtime.gateway.list_tools()])
                continue
            if token == "SAVE":
                await _archive(agent, ui)
                continue
            if token == "LINK":
                try:
                    argument = build_link_prompt(argument, workspace)
                except (OSError, UnicodeDecodeError) as e:
                    ui.print_error(f"Cannot link file: {e}")
                    continue

            try:
                await agent.submit(argument)
            except (ConfigurationError, AgentBusyError) as e:
                ui.print_error(str(e))
            except KeyboardInterrupt:
                ui.print_warning("Interrupted")
    finally:
        await runtime.aclose()


def _resolve_workspace(cfg: Config, workspace: str) -> Path:
    path = Path(workspace).expanduser().resolve() if workspace else cfg.resolved_workspace_path(Path.cwd())
    path.mkdir(parents=True, exist_ok=True)
    return path


@app.command()
def chat(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    workspace: str = typer.Option("", "-w", "--workspace", help="Workspace directory"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive conversation in the workspace."""
    cfg = load_config(config, model, provider, verbose)
    configure_logging()
    ws = _resolve_workspace(cfg, workspace)
    ui = TerminalUI()
    try:
        asyncio.run(run_interactive(cfg, ws, ui))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


@app.command()
def archive(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    workspace: str = typer.Option("", "-w", "--workspace", help="Workspace directory"),
) -> None:
    """Archive the persisted conversation of a workspace and clear it."""
    cfg = load_config(config)
    configure_logging()
    ws = _resolve_workspace(cfg, workspace)
    ui = TerminalUI()
    store = build_store(cfg, ws)
    session = store.load()
    try:
        path = store.archive_and_clear(session)
    except PersistenceError as e:
        ui.print_error(f"Export failed: {e}")
        raise typer.Exit(code=1)
    if path is None:
        ui.print_warning("Nothing to archive.")
        return
    ui.print_success(f"Session archived to {path}")


@app.command()
def version() -> None:
    """Show version information."""
    print(f"Opengravity v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
