# ============================================================
# DBSage - Database AI Assistant
# core/orchestrator.py - Tool-Calling Conversation Loop
# ============================================================
#
# One turn:
#   user text -> stream completion -> assistant message appended
#     no tool call            -> turn ends
#     tool call, safe         -> dispatch, append tool result, stream again
#     tool call, needs ok     -> park in the ConfirmationMediator and return;
#                                the UI later calls resume_with_confirmed_tool()
#
# Only the first tool call of an assistant message is processed; the
# model re-issues the rest after seeing that result. The database handle
# is resolved through `handle_provider` at dispatch time, so /switch
# takes effect on the next tool call.
#
# All methods block on network I/O; the UI runs them on worker threads.
# ════════════════════════════════════════════════════════════

import threading
import uuid
from enum import Enum
from typing import Optional, List, Dict, Any, Callable, Union

from loguru import logger

from core.confirmation import ConfirmationMediator, PendingConfirmation
from core.errors import (
    TurnInProgressError,
    NoPendingConfirmationError,
    UnknownToolError,
    MalformedToolArgsError,
    ConfirmationBusyError,
)
from core.llm_client import LLMClient
from core.models import ChatMessage, Role, ToolCall
from core.streaming import StreamAssembler, TextCallback
from core.tools import ToolCatalog, parse_arguments, error_body
from database.base import DatabaseInterface

DECLINED_TOOL_BODY = error_body("Tool call was not executed: the user declined it.")


class TurnState(Enum):
    IDLE = "idle"
    AWAITING = "awaiting"
    STREAMING = "streaming"
    WAITING_CONFIRM = "waiting_confirm"
    DISPATCHING = "dispatching"


class TurnOutcome(Enum):
    COMPLETED = "completed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DECLINED = "declined"
    CANCELLED = "cancelled"


HandleProvider = Callable[[], Optional[DatabaseInterface]]
ToolListener = Callable[[ToolCall, str], None]


class Orchestrator:

    def __init__(
        self,
        llm: LLMClient,
        catalog: ToolCatalog,
        handle_provider: HandleProvider,
        mediator: ConfirmationMediator,
        system_prompt: Union[str, Callable[[], str]] = "",
        tool_listener: Optional[ToolListener] = None,
    ):
        self._llm = llm
        self._catalog = catalog
        self._handle_provider = handle_provider
        self._mediator = mediator
        self._system_prompt = system_prompt
        self._tool_listener = tool_listener
        self._transcript: List[ChatMessage] = []
        self._state = TurnState.IDLE
        self._generation = 0
        self._lock = threading.RLock()

    # ── Introspection ─────────────────────────────────────────

    @property
    def state(self) -> TurnState:
        with self._lock:
            return self._state

    @property
    def is_busy(self) -> bool:
        return self.state != TurnState.IDLE

    @property
    def transcript(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._transcript)

    @property
    def pending_confirmation(self) -> Optional[PendingConfirmation]:
        return self._mediator.pending

    def set_tool_listener(self, listener: Optional[ToolListener]):
        self._tool_listener = listener

    # ── Turn Entry Points ─────────────────────────────────────

    def start_turn(self, text: str, on_text: Optional[TextCallback] = None) -> TurnOutcome:
        """
        Append the user message and run the model/tool loop until the
        turn completes or parks on a confirmation. Raises TransportError
        if the LLM stream fails (transcript is rolled back first).
        """
        with self._lock:
            if self._state != TurnState.IDLE or self._mediator.has_pending:
                raise TurnInProgressError()
            self._generation += 1
            generation = self._generation
            checkpoint = len(self._transcript)
            self._transcript.append(ChatMessage.user(text))
            self._state = TurnState.AWAITING
        logger.info(f"Turn {generation} started")
        return self._run(generation, on_text, checkpoint)

    def resume_with_confirmed_tool(self, approved: bool, on_text: Optional[TextCallback] = None) -> TurnOutcome:
        """Answer the pending confirmation and, when approved, finish the turn."""
        pending = self._mediator.take()
        if pending is None:
            raise NoPendingConfirmationError()

        call = pending.tool_call
        if not approved:
            with self._lock:
                self._state = TurnState.IDLE
            logger.info(f"User declined {call.function.name} (call {call.id})")
            return TurnOutcome.DECLINED

        with self._lock:
            generation = self._generation
            self._transcript = list(pending.transcript) + [pending.assistant_message]
            self._state = TurnState.DISPATCHING
        logger.info(f"User approved {call.function.name} (call {call.id})")

        callback = on_text if on_text is not None else pending.on_text
        self._dispatch(generation, call)
        with self._lock:
            checkpoint = len(self._transcript)
        return self._run(generation, callback, checkpoint)

    def cancel(self):
        """Abandon the running turn or pending confirmation; the transcript is left as is."""
        with self._lock:
            self._generation += 1
            previous = self._state
            self._state = TurnState.IDLE
        self._mediator.discard()
        if previous != TurnState.IDLE:
            logger.info(f"Turn cancelled while {previous.value}")

    def clear(self):
        """Drop the conversation history."""
        self.cancel()
        with self._lock:
            self._transcript = []
        logger.info("Conversation cleared")

    # ── Loop ──────────────────────────────────────────────────

    def _run(self, generation: int, on_text: Optional[TextCallback], checkpoint: int) -> TurnOutcome:
        while True:
            with self._lock:
                if generation != self._generation:
                    return TurnOutcome.CANCELLED
                self._state = TurnState.STREAMING
                messages = self._compose()

            assembler = StreamAssembler(self._guard(generation, on_text))
            try:
                message = assembler.consume(self._llm.stream_chat(messages, self._catalog.describe_all()))
            except Exception:
                self._abort(generation, checkpoint)
                raise

            with self._lock:
                if generation != self._generation:
                    logger.debug(f"Discarding stream result of cancelled turn {generation}")
                    return TurnOutcome.CANCELLED
                if len(message.tool_calls) > 1:
                    deferred = ", ".join(c.function.name for c in message.tool_calls[1:])
                    logger.info(f"Deferring {len(message.tool_calls) - 1} extra tool call(s): {deferred}")
                    message.tool_calls = message.tool_calls[:1]
                for call in message.tool_calls:
                    if not call.id:
                        call.id = f"call_{uuid.uuid4().hex[:24]}"
                self._transcript.append(message)
                if not message.tool_calls:
                    self._state = TurnState.IDLE
                    logger.info(f"Turn {generation} completed")
                    return TurnOutcome.COMPLETED
                call = message.tool_calls[0]

            try:
                arguments = parse_arguments(call)
                needs_confirmation = self._catalog.requires_confirmation(call.function.name)
            except (MalformedToolArgsError, UnknownToolError) as e:
                logger.warning(f"Rejected tool call {call.id}: {e}")
                checkpoint = self._append_tool_result(generation, call, error_body(str(e)))
                continue

            if needs_confirmation:
                with self._lock:
                    self._state = TurnState.WAITING_CONFIRM
                    snapshot = self._transcript[:-1]
                try:
                    self._mediator.request(snapshot, message, call, arguments, on_text)
                except ConfirmationBusyError:
                    with self._lock:
                        self._state = TurnState.IDLE
                    raise
                return TurnOutcome.AWAITING_CONFIRMATION

            checkpoint = self._dispatch(generation, call)

    def _dispatch(self, generation: int, call: ToolCall) -> int:
        with self._lock:
            self._state = TurnState.DISPATCHING
        handle = self._handle_provider()
        try:
            body = self._catalog.dispatch(handle, call)
        except (UnknownToolError, MalformedToolArgsError) as e:
            body = error_body(str(e))
        except Exception as e:
            logger.exception(f"Tool {call.function.name} raised unexpectedly")
            body = error_body(f"{call.function.name} failed: {e}")
        return self._append_tool_result(generation, call, body)

    def _append_tool_result(self, generation: int, call: ToolCall, body: str) -> int:
        with self._lock:
            if generation == self._generation:
                self._transcript.append(ChatMessage.tool(call.id, body))
            checkpoint = len(self._transcript)
        if self._tool_listener is not None:
            self._tool_listener(call, body)
        return checkpoint

    def _abort(self, generation: int, checkpoint: int):
        with self._lock:
            if generation != self._generation:
                return
            del self._transcript[checkpoint:]
            self._state = TurnState.IDLE
        logger.error(f"Turn {generation} aborted; transcript rolled back to {checkpoint} message(s)")

    def _guard(self, generation: int, on_text: Optional[TextCallback]) -> Optional[TextCallback]:
        if on_text is None:
            return None

        def forward(chunk: str):
            if generation == self._generation:
                on_text(chunk)
        return forward

    # ── Request Composition ───────────────────────────────────

    def _system_text(self) -> str:
        prompt = self._system_prompt
        return prompt() if callable(prompt) else prompt

    def _compose(self) -> List[Dict[str, Any]]:
        """
        Wire messages for the next request. Tool calls left without an
        answer (declined or cancelled) get a synthetic tool message so
        the transcript stays acceptable to strict providers.
        """
        wire: List[Dict[str, Any]] = []
        system = self._system_text()
        if system:
            wire.append(ChatMessage.system(system).to_wire())

        open_ids: List[str] = []
        for msg in self._transcript:
            if msg.role != Role.TOOL and open_ids:
                wire.extend(ChatMessage.tool(i, DECLINED_TOOL_BODY).to_wire() for i in open_ids)
                open_ids = []
            wire.append(msg.to_wire())
            if msg.role == Role.ASSISTANT and msg.tool_calls:
                open_ids = [c.id for c in msg.tool_calls]
            elif msg.role == Role.TOOL and msg.tool_call_id in open_ids:
                open_ids.remove(msg.tool_call_id)
        if open_ids:
            wire.extend(ChatMessage.tool(i, DECLINED_TOOL_BODY).to_wire() for i in open_ids)
        return wire
