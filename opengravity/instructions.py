"""System prompt resolution.

Resolution order:
  1. ``<workspace>/.opengravity/SYSTEM.md``
  2. ``~/.opengravity/SYSTEM.md``
  3. the built-in default prompt
"""

from __future__ import annotations

from pathlib import Path

from opengravity.logging import get_logger

log = get_logger(__name__)

PROMPT_FILENAME = "SYSTEM.md"
_PERSONAL_DIR = Path("~/.opengravity").expanduser()

DEFAULT_SYSTEM_PROMPT = (
    "You are Opengravity, an AI assistant for developers. "
    "You are helpful, concise, and focused on providing practical solutions. "
    "Use the available tools to inspect and change the workspace instead of guessing."
)


def load_system_prompt(
    workspace: Path | str | None = None,
    personal_dir: Path | str | None = None,
) -> str:
    """Return the first non-empty prompt found along the resolution order."""
    candidates: list[tuple[str, Path]] = []
    if workspace is not None:
        candidates.append(("workspace", Path(workspace).expanduser() / ".opengravity" / PROMPT_FILENAME))
    base = Path(personal_dir).expanduser() if personal_dir is not None else _PERSONAL_DIR
    candidates.append(("global", base / PROMPT_FILENAME))

    for source, path in candidates:
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            log.warning("Could not read system prompt", path=str(path), error=str(e))
            continue
        if content:
            log.debug("Using system prompt", source=source, path=str(path))
            return content
    return DEFAULT_SYSTEM_PROMPT
