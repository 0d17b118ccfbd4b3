import pytest

from opengravity.exceptions import ProtocolViolation
from opengravity.llm.streaming import ContentDelta, DeltaAssembler, ReasoningDelta, ToolCallDelta


def test_assembler_concatenates_content_and_reasoning_in_order():
    seen = []
    assembler = DeltaAssembler(sink=seen.append)

    for event in [
        ReasoningDelta("Let me "),
        ReasoningDelta("think."),
        ContentDelta("Hello"),
        ContentDelta(", world"),
    ]:
        assembler.feed(event)

    message = assembler.build_message()
    assert message.role == "assistant"
    assert message.content == "Hello, world"
    assert message.reasoning == "Let me think."
    assert message.tool_calls == []
    assert [e.kind for e in seen] == ["reasoning", "reasoning", "content", "content"]


def test_assembler_merges_tool_call_fragments_by_index():
    assembler = DeltaAssembler()
    assembler.feed(ToolCallDelta(index=0, call_id="call_a", name="workspace__read_file", arguments='{"pa'))
    assembler.feed(ToolCallDelta(index=1, call_id="call_b", name="workspace__run_command"))
    assembler.feed(ToolCallDelta(index=0, arguments='th": "a.txt"}'))
    assembler.feed(ToolCallDelta(index=1, arguments='{"command": "ls"}'))

    message = assembler.build_message()

    assert message.content is None
    assert [call.id for call in message.tool_calls] == ["call_a", "call_b"]
    assert message.tool_calls[0].parsed_arguments() == {"path": "a.txt"}
    assert message.tool_calls[1].parsed_arguments() == {"command": "ls"}


def test_assembler_keeps_opening_name_and_id():
    assembler = DeltaAssembler()
    assembler.feed(ToolCallDelta(index=0, call_id="call_1", name="fs__list"))
    assembler.feed(ToolCallDelta(index=0, call_id="other", name="other", arguments="{}"))

    call = assembler.finalize()[0]
    assert call.id == "call_1"
    assert call.name == "fs__list"
    assert call.arguments == "{}"


def test_assembler_synthesizes_missing_call_id():
    assembler = DeltaAssembler()
    assembler.feed(ToolCallDelta(index=0, name="fs__list"))

    call = assembler.finalize()[0]
    assert call.id.startswith("call_")
    assert len(call.id) > len("call_")


def test_assembler_rejects_fragment_for_unopened_index():
    assembler = DeltaAssembler()
    with pytest.raises(ProtocolViolation):
        assembler.feed(ToolCallDelta(index=0, arguments='{"x": 1}'))


def test_assembler_rejects_index_gaps():
    assembler = DeltaAssembler()
    assembler.feed(ToolCallDelta(index=0, name="a__b"))
    assembler.feed(ToolCallDelta(index=2, name="a__c"))

    with pytest.raises(ProtocolViolation):
        assembler.build_message()


def test_empty_stream_yields_empty_content():
    message = DeltaAssembler().build_message()
    assert message.content == ""
    assert message.reasoning is None
    assert message.has_tool_calls is False
