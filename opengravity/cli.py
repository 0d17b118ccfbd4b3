"""Terminal UI for Opengravity."""

import asyncio
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from opengravity.agent import AgentObserver, AgentState
from opengravity.llm.streaming import ContentDelta, ReasoningDelta, StreamEvent
from opengravity.logging import get_logger
from opengravity.messages import Message, ToolCall

log = get_logger(__name__)

HELP_TEXT = """
Commands:
  /help           - Show this help message
  /save           - Archive the conversation to the reviews folder and clear it
  /link <file>    - Send a workspace file to the assistant for analysis
  /history        - Show conversation history
  /tools          - List available tools
  /exit, /quit    - Exit the application

  Just type your message to chat with Opengravity!
"""

MAX_LINK_CHARS = 100_000


def build_link_prompt(path: Path | str, workspace: Path | str | None = None) -> str:
    """Build a context-link prompt embedding a file's content."""
    base = Path(workspace).expanduser() if workspace is not None else Path.cwd()
    file_path = Path(path).expanduser()
    if not file_path.is_absolute():
        file_path = base / file_path
    content = file_path.read_text(encoding="utf-8")
    if len(content) > MAX_LINK_CHARS:
        content = content[:MAX_LINK_CHARS] + "\n... [truncated]"
    return (
        f"[CONTEXT_LINK: `{file_path.name}`]\n"
        "File content:\n"
        f"```\n{content}\n```\n"
        "Please analyse this file."
    )


class TerminalUI(AgentObserver):
    """Rich console front-end and live observer of the agent loop."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(highlight=False)
        self._stream_kind: str | None = None

    def _end_stream_line(self) -> None:
        if self._stream_kind is not None:
            self.console.print()
            self._stream_kind = None

    def print_welcome(self, workspace: Path) -> None:
        self.console.print("[bold green]=== Opengravity ===[/bold green]")
        self.console.print(f"Workspace: {escape(str(workspace))}")
        self.console.print("Type '/help' for commands.\n")

    def print_help(self) -> None:
        self.console.print(HELP_TEXT)

    def print_error(self, error: str) -> None:
        self._end_stream_line()
        self.console.print(f"[red]Error:[/red] {escape(error)}")

    def print_warning(self, warning: str) -> None:
        self._end_stream_line()
        self.console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    def print_success(self, message: str) -> None:
        self._end_stream_line()
        self.console.print(f"[green]OK:[/green] {escape(message)}")

    def print_history(self, messages: list[Message]) -> None:
        self.console.print("\n=== Conversation History ===")
        for i, msg in enumerate(messages):
            content = msg.content or ""
            if msg.tool_calls:
                content = content or ", ".join(call.name for call in msg.tool_calls)
            preview = content[:100] + ("..." if len(content) > 100 else "")
            self.console.print(f"[{i + 1}] {msg.role}: {preview}", markup=False)
        self.console.print()

    def print_tools(self, names: list[str]) -> None:
        if not names:
            self.console.print("No tools available.")
            return
        self.console.print("Available tools:")
        for name in names:
            self.console.print(f"  {escape(name)}")

    # AgentObserver hooks

    def on_state_change(self, state: AgentState) -> None:
        if state is AgentState.IDLE:
            self._end_stream_line()

    def on_stream_event(self, event: StreamEvent) -> None:
        if isinstance(event, ReasoningDelta):
            if self._stream_kind != "reasoning":
                self._end_stream_line()
                self.console.print("[dim italic]\\[thinking][/dim italic] ", end="")
                self._stream_kind = "reasoning"
            self.console.print(escape(event.text), style="dim italic", end="")
        elif isinstance(event, ContentDelta):
            if self._stream_kind != "content":
                self._end_stream_line()
                self.console.print("[bold green]\\[ASSISTANT][/bold green] ", end="")
                self._stream_kind = "content"
            self.console.print(escape(event.text), end="")

    def on_message(self, message: Message) -> None:
        if message.role != "tool":
            return
        self._end_stream_line()
        result = message.content or ""
        result_text = result[:200] + "..." if len(result) > 200 else result
        self.console.print(f"[TOOL RESULT] {result_text}", style="cyan", markup=False)

    def on_tool_call(self, call: ToolCall) -> None:
        self._end_stream_line()
        self.console.print(f"[TOOL] {call.name}: {call.arguments or '{}'}", style="cyan", markup=False)

    def on_notice(self, text: str) -> None:
        self.print_warning(text)

    # collaborators

    def _ask(self, message: str, options: list[str]) -> str:
        self._end_stream_line()
        self.console.print(f"[bold yellow]{escape(message)}[/bold yellow]")
        return Prompt.ask("Choose", choices=options, default=options[-1], console=self.console)

    async def confirm(self, message: str, options: list[str]) -> str | None:
        """Approval prompt; runs off the event loop so the host stays responsive."""
        try:
            return await asyncio.to_thread(self._ask, message, options)
        except (EOFError, KeyboardInterrupt):
            return None

    async def read_input(self, prompt_text: str = "> ") -> str:
        return await asyncio.to_thread(self.console.input, prompt_text)

    def handle_special_command(self, cmd: str) -> tuple[str, str] | None:
        """Map input to a command token and its argument.

        Returns ("MESSAGE", text) for plain chat input, None when handled here.
        """
        cmd = cmd.strip()

        if not cmd.startswith("/"):
            return "MESSAGE", cmd

        parts = cmd.split(None, 1)
        command = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/help", "/h", "/?"):
            self.print_help()
            return None
        elif command in ("/save", "/clear"):
            return "SAVE", ""
        elif command == "/link":
            if not args:
                self.print_error("Usage: /link <file>")
                return None
            return "LINK", args
        elif command == "/history":
            return "HISTORY", ""
        elif command == "/tools":
            return "TOOLS", ""
        elif command in ("/exit", "/quit", "/q"):
            return "EXIT", ""
        else:
            self.print_error(f"Unknown command: {command}")
            return None
