# ============================================================
# DBSage - Database AI Assistant
# ui/tui.py - Main Textual TUI Application (Split-Panel Shell)
# ============================================================
#
# Threading model:
#   - Textual's event loop owns every widget.
#   - Conversation turns and connection commands run in
#     @work(thread=True) workers; they reach the UI only through
#     call_from_thread, so chunks arrive in stream order.
#   - A tool that needs approval parks the turn in the orchestrator;
#     ToolConfirmModal collects the answer and a new worker resumes it.
# ============================================================

from datetime import datetime
from typing import Optional

from rich.markup import escape
from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical, ScrollableContainer
from textual.screen import ModalScreen
from textual.suggester import Suggester
from textual.widgets import Input, Label, Static, Button, RichLog
from loguru import logger

from config import app_config, openai_config
from core.commands import CommandAction, CommandProcessor, CommandResult
from core.confirmation import ConfirmationRequest
from core.errors import DBSageError, TransportError
from core.models import RiskLevel, ToolCall
from core.orchestrator import TurnOutcome
from core.session import Session
from utils.helpers import truncate_string

RISK_COLORS = {
    RiskLevel.LOW: "#3fb950",
    RiskLevel.MEDIUM: "#d29922",
    RiskLevel.HIGH: "#f85149",
}

ROLE_LABELS = {
    "human": ("You ▶", "bold #58a6ff"),
    "assistant": ("DBSage ◆", "bold #3fb950"),
    "system": ("System ℹ", "bold #f0883e"),
    "error": ("Error ✗", "bold #f85149"),
}


# ── Confirmation Modal ────────────────────────────────────────
class ToolConfirmModal(ModalScreen):
    """
    Approval prompt for a tool call.
    Y = execute. N or Escape = cancel.
    """

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("y", "execute", "Execute"),
        ("n", "cancel", "Cancel"),
    ]

    def __init__(self, request: ConfirmationRequest, callback):
        self._request = request
        self._callback = callback
        super().__init__()

    def compose(self) -> ComposeResult:
        color = RISK_COLORS.get(self._request.risk, "#d29922")
        with Container(id="confirm-modal-container"):
            yield Label(f"CONFIRM TOOL: {self._request.tool_name}", id="modal-title")
            yield Label(Text(f"Risk: {self._request.risk.value.upper()}", style=f"bold {color}"), id="modal-risk")
            yield Static(Text(truncate_string(self._request.description, 600), style="bold #f0883e"), id="modal-query")
            yield Label("Press Y to execute  |  N or Escape to cancel", id="modal-hint")
            with Horizontal(id="modal-buttons"):
                for option in self._request.options:
                    yield Button(option.title, id="btn-execute" if option.approve else "btn-cancel")

    def on_mount(self) -> None:
        self.query_one("#btn-cancel", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self._answer(event.button.id == "btn-execute")

    def action_execute(self) -> None:
        self._answer(True)

    def action_cancel(self) -> None:
        self._answer(False)

    def _answer(self, approved: bool) -> None:
        self.dismiss()
        self._callback(approved)


# ── Chat Bubbles ──────────────────────────────────────────────
def _bubble_text(role: str, content: str) -> Text:
    label, style = ROLE_LABELS.get(role, ROLE_LABELS["assistant"])
    text = Text(label, style=style)
    text.append("\n")
    text.append(content)
    return text


class ChatBubble(Static):
    """A single finished chat message."""

    def __init__(self, role: str, content: str, **kwargs):
        super().__init__(_bubble_text(role, content), **kwargs)
        self.add_class(f"chat-bubble-{role}")


class StreamingBubble(Static):
    """Assistant bubble that grows as stream chunks arrive."""

    def __init__(self, **kwargs):
        self._content = ""
        super().__init__(_bubble_text("assistant", "…"), **kwargs)
        self.add_class("chat-bubble-assistant")

    @property
    def content(self) -> str:
        return self._content

    def append(self, chunk: str) -> None:
        self._content += chunk
        self.update(_bubble_text("assistant", self._content))


# ── Input Completion ──────────────────────────────────────────
class CommandSuggester(Suggester):
    """Inline completion for /commands and @connections (accept with →)."""

    def __init__(self, commands: CommandProcessor):
        super().__init__(use_cache=False, case_sensitive=True)
        self._commands = commands

    async def get_suggestion(self, value: str) -> Optional[str]:
        if not value or " " in value or value[0] not in "/@":
            return None
        for candidate, _ in self._commands.suggest(value):
            if candidate != value:
                return candidate
        return None


# ── Main DBSage TUI Application ───────────────────────────────
class DBSageApp(App):
    """
    Split-panel shell: Tool Activity (left) + Chat (right).
    """

    TITLE = "DBSage - Database AI Assistant"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    #header { height: 1; background: #161b22; }
    #header-title { color: #58a6ff; text-style: bold; padding: 0 1; }
    #header-db-badge { color: #3fb950; padding: 0 1; }
    #main-container { height: 1fr; }
    #activity-panel { width: 2fr; border: round #30363d; }
    #chat-panel { width: 3fr; border: round #30363d; }
    #activity-panel-header, #chat-panel-header { color: #8b949e; text-style: bold; }
    #chat-messages { height: 1fr; }
    #chat-input-area { height: 4; }
    ChatBubble, StreamingBubble { margin: 0 0 1 0; padding: 0 1; }
    .chat-bubble-human { background: #0d2137; }
    .chat-bubble-assistant { background: #0f1f14; }
    .chat-bubble-system { background: #21170c; }
    .chat-bubble-error { background: #2d1214; }
    #status-bar { height: 1; background: #161b22; }
    #status-left { width: 1fr; padding: 0 1; }
    #status-right { padding: 0 1; }
    ToolConfirmModal { align: center middle; }
    #confirm-modal-container {
        width: 80; height: auto; padding: 1 2;
        border: thick #f85149; background: #0d1117;
    }
    #modal-title { text-style: bold; color: #f85149; }
    #modal-query { margin: 1 0; }
    #modal-hint { color: #8b949e; }
    #modal-buttons { height: 3; align: center middle; }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+l", "clear_activity", "Clear Activity"),
        ("escape", "cancel_turn", "Cancel"),
    ]

    def __init__(self, session: Optional[Session] = None):
        super().__init__()
        self.session = session or Session.build(openai_config, app_config)
        self.session.orchestrator.set_tool_listener(self._on_tool_result)
        self.session.mediator.set_notifier(self._on_confirmation_requested)
        self._stream_bubble: Optional[StreamingBubble] = None
        self._busy = False

    # ── App Lifecycle ─────────────────────────────────────────

    def on_mount(self) -> None:
        guidance = self.session.guidance()
        if guidance is not None:
            lines = [guidance.title, "", guidance.message]
            if guidance.instructions:
                lines += [""] + [f"  {line}" for line in guidance.instructions]
            self._add_chat_bubble("system", "\n".join(lines))
        self._update_status_bar()
        self.query_one("#chat-input", Input).focus()

    def compose(self) -> ComposeResult:
        yield Container(
            # ── Header ──────────────────────────────────────
            Horizontal(
                Label(f"◆ DBSage v{app_config.version}", id="header-title"),
                Label("", id="header-db-badge"),
                id="header",
            ),

            # ── Main Split ───────────────────────────────────
            Horizontal(
                Vertical(
                    Label(" 🔧 Tool Activity", id="activity-panel-header"),
                    RichLog(highlight=True, markup=True, wrap=True, auto_scroll=True, id="activity-log"),
                    id="activity-panel",
                ),
                Vertical(
                    Label(" 💬 DBSage Chat", id="chat-panel-header"),
                    ScrollableContainer(id="chat-messages"),
                    Vertical(
                        Label(" ⌨ Ask DBSage ▶", id="chat-input-label"),
                        Input(
                            placeholder="Ask about your database, or /help for commands",
                            suggester=CommandSuggester(self.session.commands),
                            id="chat-input",
                        ),
                        id="chat-input-area",
                    ),
                    id="chat-panel",
                ),
                id="main-container",
            ),

            # ── Status Bar ───────────────────────────────────
            Horizontal(
                Label("", id="status-left"),
                Label("", id="status-right"),
                id="status-bar",
            ),
        )

    # ── Input Handling ────────────────────────────────────────

    def on_input_submitted(self, event: Input.Submitted) -> None:
        value = event.value.strip()
        event.input.value = ""
        if not value:
            return

        if value.lower() in ("exit", "quit") or value.startswith("/") or value.startswith("@"):
            self._run_command(value)
            return
        self._submit_chat(value)

    def _submit_chat(self, text: str) -> None:
        if self._busy or self.session.orchestrator.is_busy:
            self._add_chat_bubble("error", "A request is already in progress. Press Escape to cancel it.")
            return
        if not self.session.openai.has_api_key:
            self._add_chat_bubble("error", "OPENAI_API_KEY is not set.")
            return
        self._add_chat_bubble("human", text)
        self._begin_stream()
        self._run_turn(text)

    @work(thread=True, exclusive=False)
    def _run_command(self, text: str):
        """Commands may open database connections; keep them off the UI thread."""
        result = self.session.commands.process(text)
        self.call_from_thread(self._apply_command_result, text, result)

    def _apply_command_result(self, text: str, result: CommandResult) -> None:
        if not result.handled:
            # @text that is not a connection name goes to the model
            self._submit_chat(text)
            return
        if result.action == CommandAction.EXIT:
            self.action_quit()
            return
        if result.action == CommandAction.CLEAR:
            self.session.orchestrator.clear()
            self._stream_bubble = None
            self._busy = False
            self._update_loading_state(False)
            self.query_one("#chat-messages", ScrollableContainer).remove_children()
            self.query_one("#activity-log", RichLog).clear()
            self._add_chat_bubble("system", "Conversation cleared.")
            return
        self._add_chat_bubble("error" if result.is_error else "system", result.message)
        self._update_status_bar()

    # ── Conversation Workers ──────────────────────────────────

    @work(thread=True, exclusive=False)
    def _run_turn(self, text: str):
        try:
            outcome = self.session.orchestrator.start_turn(text, self._on_chunk)
        except TransportError as e:
            self.call_from_thread(self._finish_turn, None, str(e))
            return
        except DBSageError as e:
            logger.warning(f"Turn refused: {e}")
            self.call_from_thread(self._finish_turn, None, str(e))
            return
        self.call_from_thread(self._finish_turn, outcome, None)

    @work(thread=True, exclusive=False)
    def _resume_turn(self, approved: bool):
        try:
            outcome = self.session.orchestrator.resume_with_confirmed_tool(approved, self._on_chunk)
        except TransportError as e:
            self.call_from_thread(self._finish_turn, None, str(e))
            return
        except DBSageError as e:
            logger.warning(f"Resume failed: {e}")
            self.call_from_thread(self._finish_turn, None, str(e))
            return
        self.call_from_thread(self._finish_turn, outcome, None)

    def _on_chunk(self, chunk: str) -> None:
        """Runs on the worker thread."""
        self.call_from_thread(self._append_chunk, chunk)

    def _on_tool_result(self, call: ToolCall, body: str) -> None:
        """Runs on the worker thread after each dispatched tool."""
        self.call_from_thread(self._log_tool_result, call, body)

    def _on_confirmation_requested(self, request: ConfirmationRequest) -> None:
        """Runs on the worker thread; the modal is pushed on the UI thread."""
        self.call_from_thread(self.push_screen, ToolConfirmModal(request, self._on_confirmation_answer))

    def _on_confirmation_answer(self, approved: bool) -> None:
        if not approved:
            self._log_activity("[yellow]✗ Tool call cancelled by user[/yellow]")
        self._begin_stream()
        self._resume_turn(approved)

    # ── Turn Display ──────────────────────────────────────────

    def _begin_stream(self) -> None:
        self._busy = True
        self._update_loading_state(True)
        self._stream_bubble = None

    def _append_chunk(self, chunk: str) -> None:
        container = self.query_one("#chat-messages", ScrollableContainer)
        if self._stream_bubble is None:
            self._stream_bubble = StreamingBubble()
            container.mount(self._stream_bubble)
        self._stream_bubble.append(chunk)
        container.scroll_end(animate=False)

    def _finish_turn(self, outcome: Optional[TurnOutcome], error: Optional[str]) -> None:
        if outcome == TurnOutcome.CANCELLED:
            # action_cancel_turn or /clear already reset the display
            return
        self._stream_bubble = None
        if outcome == TurnOutcome.AWAITING_CONFIRMATION:
            # Stay busy; the modal is up
            return
        self._busy = False
        self._update_loading_state(False)
        if error:
            self._add_chat_bubble("error", error)
        elif outcome == TurnOutcome.DECLINED:
            self._add_chat_bubble("system", "Tool call cancelled. You can continue the conversation.")
        self._update_status_bar()

    def _log_tool_result(self, call: ToolCall, body: str) -> None:
        status = "[red]✗[/red]" if body.startswith('{"error"') else "[green]✓[/green]"
        self._log_activity(f"{status} [bold]{escape(call.function.name)}[/bold] [dim]{escape(truncate_string(call.function.arguments, 120))}[/dim]")
        self.query_one("#activity-log", RichLog).write(Text(truncate_string(body, 2000), style="dim"))

    # ── UI Helpers ────────────────────────────────────────────

    def _log_activity(self, markup: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        self.query_one("#activity-log", RichLog).write(f"[dim]{ts}[/dim] {markup}")

    def _add_chat_bubble(self, role: str, content: str) -> None:
        container = self.query_one("#chat-messages", ScrollableContainer)
        container.mount(ChatBubble(role=role, content=content))
        container.scroll_end(animate=False)

    def _update_status_bar(self) -> None:
        current = self.session.registry.current_name()
        if current:
            conn = f"[green]● {escape(current)}[/green]"
            badge = Text(f" ◆ {current} ")
        else:
            conn = "[red]● No connection[/red]"
            badge = ""
        self.query_one("#header-db-badge", Label).update(badge)
        self.query_one("#status-left", Label).update(f"{conn}  │  /help for commands")
        self.query_one("#status-right", Label).update(f"{escape(openai_config.model)}  │  {datetime.now():%H:%M:%S}")

    def _update_loading_state(self, is_loading: bool) -> None:
        self.query_one("#chat-input-label", Label).update(
            " ⏳ DBSage is thinking... (Esc to cancel)" if is_loading else " ⌨ Ask DBSage ▶"
        )

    # ── Action Handlers (keyboard shortcuts) ─────────────────

    def action_cancel_turn(self) -> None:
        """Escape"""
        if not self._busy:
            return
        self.session.orchestrator.cancel()
        self._stream_bubble = None
        self._busy = False
        self._update_loading_state(False)
        self._add_chat_bubble("system", "Request cancelled.")

    def action_clear_activity(self) -> None:
        """Ctrl+L"""
        self.query_one("#activity-log", RichLog).clear()

    def action_quit(self) -> None:
        """Ctrl+C"""
        self.session.shutdown()
        self.exit()
