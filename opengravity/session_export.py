"""Session transcript rendering and archive export."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from opengravity.messages import Message


def truncate_history_text(text: str, max_chars: int = 8000) -> str:
    cleaned = str(text or "")
    if len(cleaned) <= max_chars:
        return cleaned
    return cleaned[:max_chars].rstrip() + "... [truncated]"


def render_transcript_markdown(messages: list[Message]) -> str:
    """Render the conversation as role-labelled Markdown sections."""
    lines = [
        "# Opengravity Chat Archive",
        f"- Exported at (UTC): {datetime.now(UTC).isoformat()}",
        f"- Messages: {len(messages)}",
        "",
    ]
    if not messages:
        lines.append("(no messages)")
        lines.append("")
        return "\n".join(lines)

    for msg in messages:
        lines.append(f"### [{msg.role.upper()}]")
        if msg.role == "tool" and msg.tool_call_id:
            lines.append(f"call_id={msg.tool_call_id}")
        if msg.reasoning:
            lines.append("> " + msg.reasoning.strip().replace("\n", "\n> "))
            lines.append("")
        lines.append(msg.content if msg.content else "(empty)")
        for call in msg.tool_calls:
            lines.append(f"- tool_call `{call.name}` id={call.id} args={call.arguments or '{}'}")
        lines.append("")
        lines.append("---")
        lines.append("")
    return "\n".join(lines)


def export_transcript(messages: list[Message], archive_dir: Path) -> Path:
    """Write a timestamped transcript into ``archive_dir`` and return its path."""
    archive_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    path = archive_dir / f"chat_archive_{stamp}.md"
    suffix = 1
    while path.exists():
        path = archive_dir / f"chat_archive_{stamp}-{suffix}.md"
        suffix += 1
    path.write_text(render_transcript_markdown(messages) + "\n", encoding="utf-8")
    return path
