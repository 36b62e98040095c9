# ============================================================
# DBSage - Database AI Assistant
# core/confirmation.py - Tool Confirmation Mediator
# ============================================================

import threading
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable

from loguru import logger

from core.errors import ConfirmationBusyError
from core.models import ChatMessage, RiskLevel, ToolCall
from core.streaming import TextCallback
from core.tools import ToolCatalog


@dataclass
class ConfirmationOption:
    title: str
    description: str
    approve: bool


DEFAULT_OPTIONS = [
    ConfirmationOption("Execute", "Execute the operation", True),
    ConfirmationOption("Cancel", "Cancel the operation", False),
]


@dataclass
class ConfirmationRequest:
    """What the UI shows when asking for approval."""
    tool_name: str
    tool_call_id: str
    arguments: Dict[str, Any]
    description: str
    risk: RiskLevel
    options: List[ConfirmationOption] = field(default_factory=lambda: list(DEFAULT_OPTIONS))


@dataclass
class PendingConfirmation:
    """Everything needed to resume a turn suspended on a tool approval."""
    transcript: List[ChatMessage]
    assistant_message: ChatMessage
    tool_call: ToolCall
    on_text: Optional[TextCallback]
    request: ConfirmationRequest


class ConfirmationMediator:
    """
    Holds at most one PendingConfirmation. The orchestrator parks a
    turn here; the UI is told through `notify` and later answers via
    the orchestrator's resume entrypoint.
    """

    def __init__(self, catalog: ToolCatalog, notify: Optional[Callable[[ConfirmationRequest], None]] = None):
        self._catalog = catalog
        self._notify = notify
        self._pending: Optional[PendingConfirmation] = None
        self._lock = threading.Lock()

    def set_notifier(self, notify: Optional[Callable[[ConfirmationRequest], None]]):
        self._notify = notify

    @property
    def pending(self) -> Optional[PendingConfirmation]:
        with self._lock:
            return self._pending

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def request(
        self,
        transcript: List[ChatMessage],
        assistant_message: ChatMessage,
        tool_call: ToolCall,
        arguments: Dict[str, Any],
        on_text: Optional[TextCallback] = None,
    ) -> ConfirmationRequest:
        name = tool_call.function.name
        request = ConfirmationRequest(
            tool_name=name,
            tool_call_id=tool_call.id,
            arguments=arguments,
            description=self._catalog.describe(name, arguments),
            risk=self._catalog.risk(name),
        )
        with self._lock:
            if self._pending is not None:
                raise ConfirmationBusyError()
            self._pending = PendingConfirmation(
                transcript=list(transcript),
                assistant_message=assistant_message,
                tool_call=tool_call,
                on_text=on_text,
                request=request,
            )
        logger.info(f"Awaiting confirmation for {name} (call {tool_call.id}, risk {request.risk.value})")
        if self._notify is not None:
            self._notify(request)
        return request

    def take(self) -> Optional[PendingConfirmation]:
        """Remove and return the pending record."""
        with self._lock:
            pending, self._pending = self._pending, None
        return pending

    def discard(self):
        pending = self.take()
        if pending is not None:
            logger.info(f"Discarded pending confirmation for {pending.tool_call.function.name}")
