import json
from pathlib import Path

import pytest

from opengravity.exceptions import PersistenceError
from opengravity.messages import Message, ToolCall, system_message, tool_message, user_message
from opengravity.session import Session, SessionStore
from opengravity.session_export import render_transcript_markdown


def _sample_session() -> Session:
    return Session(
        messages=[
            system_message("You are helpful."),
            user_message("list files"),
            Message(
                role="assistant",
                reasoning="I should list.",
                tool_calls=[ToolCall(id="c1", name="fs__list", arguments='{"path": "."}')],
            ),
            tool_message("c1", '["a.txt"]'),
            Message(role="assistant", content="There is a.txt"),
        ]
    )


def test_store_round_trips_messages(tmp_path: Path):
    store = SessionStore(tmp_path / ".opengravity" / "session.json")
    session = _sample_session()

    assert store.save(session) is True
    restored = store.load()

    assert restored.messages == session.messages
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert isinstance(raw, list)
    assert raw[2]["reasoning"] == "I should list."
    assert raw[3]["tool_call_id"] == "c1"


def test_load_missing_file_returns_empty_session(tmp_path: Path):
    store = SessionStore(tmp_path / "missing.json")
    assert store.load().is_empty


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        '{"role": "user"}',
        '[{"content": "no role"}]',
        '[1, 2]',
        '[{"role": "user", "content": "hi", "tool_calls": [1]}]',
        '[{"role": "assistant", "content": null, "tool_calls": [{"id": "c1", "function": "x"}]}]',
        '[{"role": "assistant", "content": null, "tool_calls": {"id": "c1"}}]',
        '[{"role": "user", "content": "hi"}, {"role": "system", "content": "late"}]',
    ],
)
def test_load_corrupt_file_returns_empty_session(tmp_path: Path, payload: str):
    path = tmp_path / "session.json"
    path.write_text(payload, encoding="utf-8")

    assert SessionStore(path).load().is_empty


def test_save_failure_switches_to_memory_only(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = SessionStore(blocker / "session.json")

    assert store.save(_sample_session()) is False
    assert store.in_memory_only is True
    assert store.save(_sample_session()) is False


def test_archive_and_clear_writes_transcript_and_resets(tmp_path: Path):
    store = SessionStore(tmp_path / "session.json", archive_dir=tmp_path / "reviews")
    session = _sample_session()
    store.save(session)

    archive_path = store.archive_and_clear(session)

    assert archive_path is not None
    assert archive_path.parent == tmp_path / "reviews"
    assert archive_path.name.startswith("chat_archive_")
    text = archive_path.read_text(encoding="utf-8")
    assert "### [USER]" in text
    assert "list files" in text
    assert "### [TOOL]" in text
    assert session.is_empty
    assert not store.path.exists()


def test_archive_of_empty_session_is_a_no_op(tmp_path: Path):
    store = SessionStore(tmp_path / "session.json", archive_dir=tmp_path / "reviews")
    assert store.archive_and_clear(Session()) is None
    assert not (tmp_path / "reviews").exists()


def test_archive_failure_raises_and_keeps_history(tmp_path: Path):
    blocker = tmp_path / "reviews"
    blocker.write_text("not a directory", encoding="utf-8")
    store = SessionStore(tmp_path / "session.json", archive_dir=blocker)
    session = _sample_session()

    with pytest.raises(PersistenceError):
        store.archive_and_clear(session)
    assert len(session.messages) == 5


def test_session_rejects_second_system_message():
    session = Session()
    assert session.ensure_system_message("first") is True
    assert session.ensure_system_message("second") is False

    with pytest.raises(ValueError):
        session.append(system_message("again"))
    assert [m.role for m in session.messages] == ["system"]


def test_transcript_quotes_reasoning_and_lists_tool_calls():
    text = render_transcript_markdown(_sample_session().messages)

    assert text.startswith("# Opengravity Chat Archive")
    assert "> I should list." in text
    assert "- tool_call `fs__list` id=c1" in text
    assert "call_id=c1" in text


def test_unanswered_tool_calls_of_trailing_assistant():
    session = _sample_session()
    assert session.unanswered_tool_calls() == []

    session.messages = session.messages[:3]
    assert [call.id for call in session.unanswered_tool_calls()] == ["c1"]

    session.messages[2].tool_calls.append(ToolCall(id="c2", name="fs__read"))
    session.messages.append(tool_message("c1", "done"))
    assert [call.id for call in session.unanswered_tool_calls()] == ["c2"]


def test_ensure_system_message_prepends_when_history_lacks_one():
    session = Session(messages=[user_message("hi")])

    assert session.ensure_system_message("prompt") is True
    assert [m.role for m in session.messages] == ["system", "user"]
