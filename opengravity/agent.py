"""Agent orchestration for Opengravity.

One :class:`Agent` drives one conversation. A user turn runs as an explicit
state machine::

    IDLE -> AWAITING_MODEL -> (AWAITING_TOOL_RESULTS -> AWAITING_MODEL)* -> IDLE

Every failure inside a turn resolves to a message in the history; only
pre-turn checks (busy, configuration) raise to the caller.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from opengravity.exceptions import AgentBusyError, PersistenceError
from opengravity.instructions import DEFAULT_SYSTEM_PROMPT
from opengravity.llm import CompletionClient
from opengravity.llm.streaming import StreamEvent
from opengravity.logging import get_logger
from opengravity.messages import Message, ToolCall, tool_message, user_message
from opengravity.session import Session, SessionStore
from opengravity.tools.gateway import ToolGateway

log = get_logger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 25
CANCELLED_TOOL_RESULT = "Error: Tool execution cancelled before it ran."


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"


class AgentObserver:
    """Receives live notifications from the agent loop.

    Hooks are called synchronously and must not block; exceptions raised by
    an observer are logged and ignored.
    """

    def on_state_change(self, state: AgentState) -> None:
        pass

    def on_stream_event(self, event: StreamEvent) -> None:
        pass

    def on_message(self, message: Message) -> None:
        pass

    def on_tool_call(self, call: ToolCall) -> None:
        pass

    def on_notice(self, text: str) -> None:
        pass


@dataclass
class TurnResult:
    """Outcome of one submitted user turn."""

    message: Message
    model_calls: int
    tool_rounds: int
    stopped_by_limit: bool = False


class Agent:
    """Main agent orchestrator for a single conversation."""

    def __init__(
        self,
        session: Session,
        client: CompletionClient,
        gateway: ToolGateway,
        store: SessionStore | None = None,
        auto_save: bool = True,
        observer: AgentObserver | None = None,
        system_prompt: str | Callable[[], str] = DEFAULT_SYSTEM_PROMPT,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ):
        """Initialize the agent.

        Args:
            session: Conversation history owned by this agent
            client: Streaming completion client
            gateway: Tool gateway used for catalog and execution
            store: Optional session persistence and archive location
            auto_save: Whether to snapshot the session after each step
            observer: Optional live-update observer
            system_prompt: Prompt text, or a callable evaluated when seeding
            max_tool_rounds: Consecutive tool rounds allowed per user turn
        """
        self.session = session
        self.client = client
        self.gateway = gateway
        self.store = store
        self.auto_save = auto_save
        self.observer = observer or AgentObserver()
        self.system_prompt = system_prompt
        self.max_tool_rounds = max(1, int(max_tool_rounds))
        self._state = AgentState.IDLE
        self._lock = asyncio.Lock()
        self._persist_warned = False

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _notify(self, hook: str, *args: object) -> None:
        try:
            getattr(self.observer, hook)(*args)
        except Exception as e:
            log.warning("Observer hook failed", hook=hook, error=str(e))

    def _set_state(self, state: AgentState) -> None:
        if state is self._state:
            return
        self._state = state
        log.debug("Agent state", state=state.value)
        self._notify("on_state_change", state)

    def _emit_stream_event(self, event: StreamEvent) -> None:
        self._notify("on_stream_event", event)

    def _append(self, message: Message) -> None:
        self.session.append(message)
        self._notify("on_message", message)

    def _persist(self) -> None:
        if self.store is None or not self.auto_save:
            return
        if self.store.save(self.session):
            return
        if not self._persist_warned:
            self._persist_warned = True
            self._notify("on_notice", "Session could not be saved to disk; continuing in memory only.")

    def _resolve_system_prompt(self) -> str:
        if callable(self.system_prompt):
            return self.system_prompt()
        return self.system_prompt

    async def submit(self, user_input: str) -> TurnResult:
        """Run one user turn to completion.

        Raises:
            AgentBusyError: a turn is already in flight
            ConfigurationError: the provider cannot be called
            ValueError: the input is empty
        """
        if self._lock.locked():
            raise AgentBusyError("A response is still in progress; wait for it to finish.")
        if not (user_input or "").strip():
            raise ValueError("Empty input")

        async with self._lock:
            self.client.ensure_configured()

            self._restore_history()
            self._append(user_message(user_input))
            self._persist()

            try:
                return await self._run_rounds()
            finally:
                self._set_state(AgentState.IDLE)

    def _restore_history(self) -> None:
        """Make a loaded or fresh history valid before the next user message."""
        if self.session.ensure_system_message(self._resolve_system_prompt()):
            self._notify("on_message", self.session.messages[0])
        # a turn interrupted mid-round leaves calls without results
        dangling = self.session.unanswered_tool_calls()
        for call in dangling:
            self._append(tool_message(call.id, CANCELLED_TOOL_RESULT))
        if dangling:
            log.warning("Closed unanswered tool calls", count=len(dangling))

    async def _run_rounds(self) -> TurnResult:
        model_calls = 0
        tool_rounds = 0
        while True:
            self._set_state(AgentState.AWAITING_MODEL)
            # servers may connect or disconnect between rounds
            tools = await self.gateway.tool_schemas()
            assistant = await self.client.complete(
                self.session.messages,
                tools=tools,
                on_event=self._emit_stream_event,
            )
            model_calls += 1
            self._append(assistant)
            self._persist()

            if not assistant.has_tool_calls:
                return TurnResult(message=assistant, model_calls=model_calls, tool_rounds=tool_rounds)

            self._set_state(AgentState.AWAITING_TOOL_RESULTS)
            await self._execute_tool_calls(assistant.tool_calls)
            self._persist()
            tool_rounds += 1

            if tool_rounds >= self.max_tool_rounds:
                log.warning("Tool round limit reached", rounds=tool_rounds)
                notice = Message(
                    role="assistant",
                    content=(
                        f"Stopped after {tool_rounds} consecutive tool rounds without a final answer. "
                        "Send a new message to let me continue."
                    ),
                )
                self._append(notice)
                self._persist()
                self._notify("on_notice", f"Tool round limit ({self.max_tool_rounds}) reached.")
                return TurnResult(
                    message=notice,
                    model_calls=model_calls,
                    tool_rounds=tool_rounds,
                    stopped_by_limit=True,
                )

    async def _execute_tool_calls(self, calls: list[ToolCall]) -> None:
        """Execute calls one at a time, in the order the model issued them."""
        for position, call in enumerate(calls):
            self._notify("on_tool_call", call)
            try:
                result = await self.gateway.execute(call.name, call.arguments)
            except asyncio.CancelledError:
                # keep every issued call answered so the history stays valid
                for pending in calls[position:]:
                    self._append(tool_message(pending.id, CANCELLED_TOOL_RESULT))
                self._persist()
                raise
            self._append(tool_message(call.id, result))

    async def archive_and_clear(self) -> Path | None:
        """Write a transcript of the session, then reset it.

        Raises:
            AgentBusyError: a turn is in flight
            PersistenceError: no store is configured or the export failed
        """
        if self._lock.locked():
            raise AgentBusyError("Cannot archive while a response is in progress.")
        async with self._lock:
            if self.store is None:
                raise PersistenceError("<memory>", "no archive location configured")
            return self.store.archive_and_clear(self.session)
