"""Conversation session and its JSON file storage."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from opengravity.exceptions import PersistenceError
from opengravity.logging import get_logger
from opengravity.messages import Message, ToolCall, system_message
from opengravity.session_export import export_transcript

log = get_logger(__name__)


@dataclass
class Session:
    """An ordered, append-only conversation log."""

    messages: list[Message] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def ensure_system_message(self, prompt: str) -> bool:
        """Seed the system message at index 0 when it is missing.

        Returns True when a message was inserted.
        """
        if self.messages and self.messages[0].role == "system":
            return False
        self.messages.insert(0, system_message(prompt))
        return True

    def append(self, message: Message) -> None:
        if message.role == "system" and self.messages:
            raise ValueError("System message may only be the first message")
        self.messages.append(message)

    def unanswered_tool_calls(self) -> list[ToolCall]:
        """Calls of the trailing tool-calling assistant message that have no result yet."""
        for position in range(len(self.messages) - 1, -1, -1):
            msg = self.messages[position]
            if msg.role == "tool":
                continue
            if msg.role != "assistant" or not msg.tool_calls:
                return []
            answered = {m.tool_call_id for m in self.messages[position + 1 :]}
            return [call for call in msg.tool_calls if call.id not in answered]
        return []

    def clear(self) -> None:
        self.messages.clear()

    def to_list(self) -> list[dict]:
        return [msg.to_dict() for msg in self.messages]

    @classmethod
    def from_list(cls, data: list[dict]) -> "Session":
        messages = [Message.from_dict(item) for item in data]
        if any(msg.role == "system" for msg in messages[1:]):
            raise ValueError("system message may only be the first message")
        return cls(messages=messages)


class SessionStore:
    """Snapshot/restore a session to a single JSON file per workspace."""

    def __init__(self, path: Path | str, archive_dir: Path | str | None = None):
        self.path = Path(path).expanduser()
        self.archive_dir = Path(archive_dir).expanduser() if archive_dir else self.path.parent / "reviews"
        self.in_memory_only = False

    def load(self) -> Session:
        """Load the persisted session; a missing or corrupt file yields an empty one."""
        if not self.path.exists():
            return Session()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, list):
                raise ValueError("session file must contain a JSON array")
            session = Session.from_list(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Discarding unreadable session file", path=str(self.path), error=str(e))
            return Session()
        log.debug("Loaded session", path=str(self.path), messages=len(session.messages))
        return session

    def _write(self, session: Session) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(session.to_list(), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(str(self.path), str(e)) from e

    def save(self, session: Session) -> bool:
        """Overwrite the session file.

        Returns False (and switches to in-memory operation) when the write fails.
        """
        if self.in_memory_only:
            return False
        try:
            self._write(session)
        except PersistenceError as e:
            log.error("Session save failed, continuing in memory", error=str(e))
            self.in_memory_only = True
            return False
        return True

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not remove session file", path=str(self.path), error=str(e))

    def archive_and_clear(self, session: Session) -> Path | None:
        """Export a transcript, then reset the session and remove its file.

        Returns the transcript path, or None when there was nothing to archive.
        """
        if session.is_empty:
            return None
        try:
            archive_path = export_transcript(session.messages, self.archive_dir)
        except OSError as e:
            raise PersistenceError(str(self.archive_dir), str(e)) from e
        session.clear()
        self.delete()
        log.info("Archived session", path=str(archive_path))
        return archive_path
