"""Streaming chat-completion providers and the completion client."""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable

import httpx

from opengravity.exceptions import ConfigurationError, ProtocolViolation, TransportError
from opengravity.llm.streaming import (
    ContentDelta,
    DeltaAssembler,
    EventSink,
    ReasoningDelta,
    StreamEvent,
    ToolCallDelta,
)
from opengravity.logging import get_logger
from opengravity.messages import Message

log = get_logger(__name__)

API_ERROR_MARKER = "[API Error]"

# provider -> (base_url, default model, api key env var)
PROVIDER_PRESETS: dict[str, tuple[str, str, str | None]] = {
    "deepseek": ("https://api.deepseek.com", "deepseek-reasoner", "DEEPSEEK_API_KEY"),
    "openai": ("https://api.openai.com/v1", "gpt-4o-mini", "OPENAI_API_KEY"),
    "ollama": ("http://127.0.0.1:11434/v1", "llama3.2", None),
}
_PROVIDER_ALIASES = {
    "chatgpt": "openai",
}


class LLMProvider(ABC):
    """Abstract base class for streaming chat providers."""

    @abstractmethod
    def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield stream events; raise TransportError on provider failure."""

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when the provider cannot be called."""

    async def aclose(self) -> None:
        return None


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider speaking the OpenAI SSE streaming format."""

    def __init__(
        self,
        provider: str,
        model: str,
        base_url: str,
        api_key: str | None = None,
        temperature: float | None = None,
        require_api_key: bool = True,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize provider.

        Args:
            provider: Provider label used in logs
            model: Model name sent with every request
            base_url: API base URL (``/chat/completions`` is appended)
            api_key: Bearer token
            temperature: Optional sampling temperature
            require_api_key: Whether a missing key is a configuration error
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        self.provider = provider
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.require_api_key = require_api_key
        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def ensure_configured(self) -> None:
        if self.require_api_key and not self.api_key:
            raise ConfigurationError(
                f"API key is not configured for provider '{self.provider}'. "
                "Set model.api_key in config.yaml or the provider's API key environment variable."
            )
        if not self.model:
            raise ConfigurationError("No model configured.")

    def _build_body(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        if max_tokens:
            body["max_tokens"] = max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        # some providers reject an empty tool list, so omit the field instead
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        return body

    @staticmethod
    def _events_from_chunk(chunk: dict[str, Any]) -> Iterable[StreamEvent]:
        choices = chunk.get("choices") or []
        if not choices:
            return
        delta = choices[0].get("delta") or {}

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if reasoning:
            yield ReasoningDelta(reasoning)
        if delta.get("content"):
            yield ContentDelta(delta["content"])
        for tc in delta.get("tool_calls") or []:
            if tc.get("index") is None:
                continue
            function = tc.get("function") or {}
            yield ToolCallDelta(
                index=int(tc["index"]),
                call_id=tc.get("id") or None,
                name=function.get("name") or None,
                arguments=function.get("arguments") or None,
            )

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion."""
        url = f"{self.base_url}/chat/completions"
        body = self._build_body(messages, tools, max_tokens)

        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        log.debug(
            "Calling provider",
            provider=self.provider,
            model=self.model,
            msg_count=len(messages),
            tool_count=len(tools or []),
        )
        try:
            async with self.client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"{self.provider} API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        log.warning("Skipping undecodable stream chunk", chunk=data[:200])
                        continue
                    if isinstance(chunk, dict) and chunk.get("error"):
                        raise TransportError(f"{self.provider} stream error: {chunk['error']}")
                    for event in self._events_from_chunk(chunk):
                        yield event
        except httpx.HTTPError as e:
            raise TransportError(f"{self.provider} streaming error: {e}") from e

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "deepseek",
    model: str = "",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float | None = None,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (deepseek, openai, ollama)
        model: Model name; empty selects the provider default
        api_key: Optional API key; falls back to the provider env var
        base_url: Optional base URL override
        temperature: Default temperature
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    key = (provider or "").strip().lower()
    key = _PROVIDER_ALIASES.get(key, key)
    if key not in PROVIDER_PRESETS:
        raise ConfigurationError(
            f"Provider '{provider}' not supported. Use one of: {', '.join(sorted(PROVIDER_PRESETS))}."
        )
    default_base, default_model, key_env = PROVIDER_PRESETS[key]
    resolved_key = api_key or (os.getenv(key_env, "") if key_env else "")
    return OpenAICompatibleProvider(
        provider=key,
        model=model or default_model,
        base_url=base_url or default_base,
        api_key=resolved_key or None,
        temperature=temperature,
        require_api_key=key_env is not None,
        timeout=timeout,
    )


class CompletionClient:
    """Send history to a provider and reassemble the streamed assistant turn."""

    def __init__(self, provider: LLMProvider, max_tokens: int = 8000):
        self.provider = provider
        self.max_tokens = max_tokens

    def ensure_configured(self) -> None:
        self.provider.ensure_configured()

    @staticmethod
    def project_history(history: list[Message]) -> list[dict[str, Any]]:
        """Provider-safe projection of the stored history."""
        return [msg.to_provider_dict() for msg in history]

    async def complete(
        self,
        history: list[Message],
        tools: list[dict[str, Any]] | None = None,
        on_event: EventSink | None = None,
    ) -> Message:
        """Stream one assistant turn.

        Never raises for provider or protocol failures: the error is emitted as
        a single content event and returned as the assistant message content.
        """
        assembler = DeltaAssembler(sink=on_event)
        try:
            async for event in self.provider.stream_chat(
                self.project_history(history),
                tools=tools or None,
                max_tokens=self.max_tokens,
            ):
                assembler.feed(event)
            return assembler.build_message()
        except (TransportError, ProtocolViolation) as e:
            log.error("Completion failed", error=str(e))
            return self._error_message(str(e), on_event)
        except Exception as e:
            log.exception("Unexpected completion failure")
            return self._error_message(f"{type(e).__name__}: {e}", on_event)

    @staticmethod
    def _error_message(text: str, on_event: EventSink | None) -> Message:
        error_text = f"{API_ERROR_MARKER}: {text}"
        if on_event is not None:
            try:
                on_event(ContentDelta(error_text))
            except Exception:
                log.warning("Event sink failed while reporting error")
        return Message(role="assistant", content=error_text)

    async def aclose(self) -> None:
        await self.provider.aclose()


__all__ = [
    "API_ERROR_MARKER",
    "CompletionClient",
    "ContentDelta",
    "DeltaAssembler",
    "LLMProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_PRESETS",
    "ReasoningDelta",
    "StreamEvent",
    "ToolCallDelta",
    "create_provider",
]
