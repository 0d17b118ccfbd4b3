"""Conversation message model shared by the agent, provider and storage."""

import json
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system", "tool"]
ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})


@dataclass
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` holds the raw JSON text exactly as the model produced it.
    """

    id: str
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> Any:
        """Decode the argument payload; an empty payload means no arguments."""
        text = (self.arguments or "").strip()
        if not text:
            return {}
        return json.loads(text)

    def to_dict(self) -> dict[str, Any]:
        """OpenAI-style function call entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        if not isinstance(data, dict):
            raise ValueError(f"tool call must be an object, got {type(data).__name__}")
        function = data.get("function") or {}
        if not isinstance(function, dict):
            raise ValueError("tool call function must be an object")
        return cls(
            id=str(data.get("id", "")),
            name=str(function.get("name", "")),
            arguments=str(function.get("arguments") or ""),
        )


@dataclass
class Message:
    """A single conversation turn."""

    role: Role
    content: str | None = None
    reasoning: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_provider_dict(self) -> dict[str, Any]:
        """Project to the provider-safe shape; reasoning is never resubmitted."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload

    def to_dict(self) -> dict[str, Any]:
        """Serialize for session persistence."""
        payload = self.to_provider_dict()
        if self.reasoning:
            payload["reasoning"] = self.reasoning
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Create from a persisted dictionary.

        Raises:
            ValueError if the payload does not have the message shape
        """
        if not isinstance(data, dict):
            raise ValueError(f"message must be an object, got {type(data).__name__}")
        raw_calls = data.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ValueError("tool_calls must be an array")
        return cls(
            role=data["role"],
            content=data.get("content"),
            reasoning=data.get("reasoning") or None,
            tool_calls=[ToolCall.from_dict(item) for item in raw_calls],
            tool_call_id=data.get("tool_call_id"),
        )


def system_message(content: str) -> Message:
    return Message(role="system", content=content)


def user_message(content: str) -> Message:
    return Message(role="user", content=content)


def tool_message(tool_call_id: str, content: str) -> Message:
    return Message(role="tool", content=content, tool_call_id=tool_call_id)
