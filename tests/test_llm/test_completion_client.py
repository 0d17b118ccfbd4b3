import json

import httpx
import pytest

from opengravity.exceptions import ConfigurationError, TransportError
from opengravity.llm import (
    API_ERROR_MARKER,
    CompletionClient,
    LLMProvider,
    OpenAICompatibleProvider,
    create_provider,
)
from opengravity.llm.streaming import ContentDelta, ReasoningDelta, ToolCallDelta
from opengravity.messages import Message, ToolCall, system_message, tool_message, user_message


def _sse(*chunks: dict) -> bytes:
    lines = [f"data: {json.dumps(chunk)}\n\n" for chunk in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def _delta(**delta) -> dict:
    return {"choices": [{"index": 0, "delta": delta}]}


class ScriptedProvider(LLMProvider):
    def __init__(self, events=None, error: Exception | None = None):
        self.events = events or []
        self.error = error
        self.requests: list[dict] = []

    async def stream_chat(self, messages, tools=None, max_tokens=None):
        self.requests.append({"messages": messages, "tools": tools, "max_tokens": max_tokens})
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error


def _provider_with(handler) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        provider="deepseek",
        model="deepseek-reasoner",
        base_url="https://api.example.test/",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_provider_streams_reasoning_content_and_tool_calls():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        body = _sse(
            _delta(reasoning_content="thinking"),
            _delta(content="Hi"),
            _delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "fs__list", "arguments": "{}"}}]),
        )
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    provider = _provider_with(handler)
    events = [event async for event in provider.stream_chat([{"role": "user", "content": "hi"}], max_tokens=8000)]
    await provider.aclose()

    assert captured["url"] == "https://api.example.test/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["stream"] is True
    assert captured["body"]["max_tokens"] == 8000
    assert "tools" not in captured["body"]
    assert "tool_choice" not in captured["body"]
    assert events == [
        ReasoningDelta("thinking"),
        ContentDelta("Hi"),
        ToolCallDelta(index=0, call_id="call_1", name="fs__list", arguments="{}"),
    ]


@pytest.mark.asyncio
async def test_provider_sends_tools_with_auto_choice():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=_sse(_delta(content="ok")))

    provider = _provider_with(handler)
    tools = [{"type": "function", "function": {"name": "fs__list", "parameters": {"type": "object"}}}]
    _ = [event async for event in provider.stream_chat([], tools=tools)]
    await provider.aclose()

    assert captured["body"]["tools"] == tools
    assert captured["body"]["tool_choice"] == "auto"


@pytest.mark.asyncio
async def test_provider_raises_transport_error_on_http_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, content=b'{"error": "bad key"}')

    provider = _provider_with(handler)
    with pytest.raises(TransportError) as exc_info:
        _ = [event async for event in provider.stream_chat([])]
    await provider.aclose()

    assert exc_info.value.status_code == 401
    assert "bad key" in str(exc_info.value)


@pytest.mark.asyncio
async def test_provider_skips_undecodable_chunks():
    def handler(request: httpx.Request) -> httpx.Response:
        body = b"data: {not json\n\n: keep-alive\n\n" + _sse(_delta(content="fine"))
        return httpx.Response(200, content=body)

    provider = _provider_with(handler)
    events = [event async for event in provider.stream_chat([])]
    await provider.aclose()

    assert events == [ContentDelta("fine")]


@pytest.mark.asyncio
async def test_complete_strips_reasoning_from_request_history():
    provider = ScriptedProvider(events=[ContentDelta("done")])
    client = CompletionClient(provider, max_tokens=8000)
    history = [
        system_message("sys"),
        user_message("hi"),
        Message(role="assistant", content="prev", reasoning="secret chain of thought"),
    ]

    message = await client.complete(history)

    assert message.content == "done"
    sent = provider.requests[0]["messages"]
    assert all("reasoning" not in item for item in sent)
    assert "secret chain of thought" not in json.dumps(sent)
    assert provider.requests[0]["tools"] is None
    assert provider.requests[0]["max_tokens"] == 8000


@pytest.mark.asyncio
async def test_complete_projects_tool_calls_and_tool_results():
    provider = ScriptedProvider(events=[ContentDelta("ok")])
    client = CompletionClient(provider)
    history = [
        user_message("list"),
        Message(role="assistant", tool_calls=[ToolCall(id="c1", name="fs__list", arguments="{}")]),
        tool_message("c1", "a.txt"),
    ]

    await client.complete(history, tools=[])

    sent = provider.requests[0]["messages"]
    assert sent[1]["content"] is None
    assert sent[1]["tool_calls"][0]["function"]["name"] == "fs__list"
    assert sent[2] == {"role": "tool", "content": "a.txt", "tool_call_id": "c1"}
    assert provider.requests[0]["tools"] is None


@pytest.mark.asyncio
async def test_complete_turns_transport_failure_into_api_error_message():
    seen = []
    provider = ScriptedProvider(events=[ContentDelta("partial ")], error=TransportError("boom", status_code=500))
    client = CompletionClient(provider)

    message = await client.complete([user_message("hi")], on_event=seen.append)

    assert message.role == "assistant"
    assert message.content == f"{API_ERROR_MARKER}: boom"
    assert message.tool_calls == []
    assert seen[-1] == ContentDelta(f"{API_ERROR_MARKER}: boom")


@pytest.mark.asyncio
async def test_complete_turns_protocol_violation_into_api_error_message():
    provider = ScriptedProvider(events=[ToolCallDelta(index=0, arguments="{}")])
    client = CompletionClient(provider)

    message = await client.complete([user_message("hi")])

    assert message.content.startswith(API_ERROR_MARKER)
    assert message.tool_calls == []


def test_create_provider_uses_presets_and_env_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "env-key")
    provider = create_provider(provider="deepseek")

    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.model == "deepseek-reasoner"
    assert provider.base_url == "https://api.deepseek.com"
    assert provider.api_key == "env-key"


def test_create_provider_supports_chatgpt_alias():
    provider = create_provider(provider="chatgpt", model="gpt-4o-mini", api_key="k")
    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.provider == "openai"


def test_create_provider_rejects_unsupported_provider():
    with pytest.raises(ConfigurationError):
        create_provider(provider="cohere")


def test_missing_api_key_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    client = CompletionClient(create_provider(provider="deepseek"))

    with pytest.raises(ConfigurationError):
        client.ensure_configured()


def test_ollama_does_not_require_api_key():
    client = CompletionClient(create_provider(provider="ollama"))
    client.ensure_configured()
