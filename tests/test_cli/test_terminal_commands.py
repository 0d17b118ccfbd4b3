import io
from pathlib import Path

import pytest
from rich.console import Console

from opengravity.cli import TerminalUI, build_link_prompt
from opengravity.llm.streaming import ContentDelta, ReasoningDelta
from opengravity.messages import Message, ToolCall, tool_message


def _ui() -> tuple[TerminalUI, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=False, width=120, highlight=False)
    return TerminalUI(console=console), buffer


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("hello there", ("MESSAGE", "hello there")),
        ("/save", ("SAVE", "")),
        ("/clear", ("SAVE", "")),
        ("/link src/main.py", ("LINK", "src/main.py")),
        ("/history", ("HISTORY", "")),
        ("/tools", ("TOOLS", "")),
        ("/quit", ("EXIT", "")),
        ("/EXIT", ("EXIT", "")),
    ],
)
def test_handle_special_command(raw: str, expected: tuple[str, str]):
    ui, _ = _ui()
    assert ui.handle_special_command(raw) == expected


def test_help_and_unknown_commands_are_handled_locally():
    ui, buffer = _ui()

    assert ui.handle_special_command("/help") is None
    assert ui.handle_special_command("/bogus") is None
    assert ui.handle_special_command("/link") is None

    output = buffer.getvalue()
    assert "/save" in output
    assert "Unknown command: /bogus" in output
    assert "Usage: /link <file>" in output


def test_build_link_prompt_embeds_file(tmp_path: Path):
    (tmp_path / "main.cpp").write_text("int main() { return 0; }", encoding="utf-8")

    prompt = build_link_prompt("main.cpp", tmp_path)

    assert prompt.startswith("[CONTEXT_LINK: `main.cpp`]")
    assert "int main() { return 0; }" in prompt
    assert prompt.endswith("Please analyse this file.")


def test_build_link_prompt_missing_file_raises(tmp_path: Path):
    with pytest.raises(OSError):
        build_link_prompt("missing.txt", tmp_path)


def test_stream_events_render_with_role_prefixes():
    ui, buffer = _ui()

    ui.on_stream_event(ReasoningDelta("pondering"))
    ui.on_stream_event(ContentDelta("Answer [1]"))
    ui.on_tool_call(ToolCall(id="c1", name="fs__list", arguments='{"path": "."}'))
    ui.on_message(tool_message("c1", "a.txt"))

    output = buffer.getvalue()
    assert "[thinking] pondering" in output
    assert "[ASSISTANT] Answer [1]" in output
    assert '[TOOL] fs__list: {"path": "."}' in output
    assert "[TOOL RESULT] a.txt" in output


def test_print_history_previews_messages():
    ui, buffer = _ui()

    ui.print_history(
        [
            Message(role="user", content="list [files]"),
            Message(role="assistant", tool_calls=[ToolCall(id="c1", name="fs__list")]),
        ]
    )

    output = buffer.getvalue()
    assert "[1] user: list [files]" in output
    assert "[2] assistant: fs__list" in output


@pytest.mark.asyncio
async def test_confirm_returns_none_when_input_closes(monkeypatch: pytest.MonkeyPatch):
    ui, _ = _ui()

    def closed(message: str, options: list[str]) -> str:
        raise EOFError

    monkeypatch.setattr(ui, "_ask", closed)

    assert await ui.confirm("Run tool?", ["Allow", "Deny"]) is None
