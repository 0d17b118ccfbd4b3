"""Stream events and reassembly of streamed assistant turns.

Providers yield :data:`StreamEvent` values in arrival order.  The
:class:`DeltaAssembler` forwards each event to a live sink and accumulates
reasoning text, content text and indexed tool-call fragments into a single
assistant :class:`~opengravity.messages.Message`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Literal

from opengravity.exceptions import ProtocolViolation
from opengravity.messages import Message, ToolCall


@dataclass(frozen=True)
class ReasoningDelta:
    text: str
    kind: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True)
class ContentDelta:
    text: str
    kind: Literal["content"] = "content"


@dataclass(frozen=True)
class ToolCallDelta:
    """A partial tool call addressed by its stream position."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None
    kind: Literal["tool_call"] = "tool_call"


StreamEvent = ReasoningDelta | ContentDelta | ToolCallDelta
EventSink = Callable[[StreamEvent], None]


@dataclass
class _PendingCall:
    call_id: str
    name: str
    arguments: str = ""


class DeltaAssembler:
    """Accumulate stream events into one assistant turn."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self._sink = sink
        self._reasoning: list[str] = []
        self._content: list[str] = []
        self._pending: dict[int, _PendingCall] = {}

    @property
    def reasoning_text(self) -> str:
        return "".join(self._reasoning)

    @property
    def content_text(self) -> str:
        return "".join(self._content)

    def feed(self, event: StreamEvent) -> None:
        if self._sink is not None:
            self._sink(event)

        if isinstance(event, ReasoningDelta):
            self._reasoning.append(event.text)
        elif isinstance(event, ContentDelta):
            self._content.append(event.text)
        elif isinstance(event, ToolCallDelta):
            self._feed_tool_call(event)
        else:
            raise ProtocolViolation(f"Unknown stream event: {event!r}")

    def _feed_tool_call(self, fragment: ToolCallDelta) -> None:
        pending = self._pending.get(fragment.index)
        if pending is None:
            if not fragment.name:
                raise ProtocolViolation(
                    f"Tool-call fragment for index {fragment.index} arrived before the call was opened with a name"
                )
            pending = _PendingCall(
                call_id=fragment.call_id or f"call_{uuid.uuid4().hex[:24]}",
                name=fragment.name,
            )
            self._pending[fragment.index] = pending
        # name and id are fixed by the opening fragment
        if fragment.arguments:
            pending.arguments += fragment.arguments

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        indices = sorted(self._pending)
        if indices != list(range(len(indices))):
            raise ProtocolViolation(f"Tool-call indices are not contiguous: {indices}")
        return [
            ToolCall(
                id=self._pending[i].call_id,
                name=self._pending[i].name,
                arguments=self._pending[i].arguments,
            )
            for i in indices
        ]

    def build_message(self) -> Message:
        tool_calls = self.finalize()
        content = self.content_text
        return Message(
            role="assistant",
            # a tool-call-only turn carries no content
            content=content or (None if tool_calls else ""),
            reasoning=self.reasoning_text or None,
            tool_calls=tool_calls,
        )
