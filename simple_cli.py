# ============================================================
# DBSage - Database AI Assistant
# simple_cli.py - Simple Line-mode CLI (no Textual TUI)
# ============================================================
#
# A prompt_toolkit shell for terminals where the TUI does not work
# or for debugging. Same orchestrator, same commands; the model's
# answer is streamed straight to the console and tool approvals are
# asked inline.
# ============================================================

import os
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text
from loguru import logger

from config import app_config, openai_config
from core.commands import CommandAction
from core.errors import DBSageError, TransportError
from core.models import RiskLevel
from core.orchestrator import TurnOutcome
from core.session import Session

RISK_COLORS = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
}


class CommandCompleter(Completer):
    """Tab completion for /commands and @connections."""

    def __init__(self, session: Session):
        self._session = session

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor
        if not text or " " in text or text[0] not in "/@":
            return
        for candidate, description in self._session.commands.suggest(text):
            yield Completion(candidate, start_position=-len(text), display_meta=description)


class SimpleCLI:
    """Single-window shell: commands run locally, everything else goes to the model."""

    def __init__(self, session: Optional[Session] = None, console: Optional[Console] = None):
        self.console = console or Console()
        self.session = session or Session.build(openai_config, app_config)
        self._running = True
        self.prompt: Optional[PromptSession] = None

    def _build_prompt(self) -> PromptSession:
        history_file = app_config.home_dir.expanduser() / "history"
        history_file.parent.mkdir(parents=True, exist_ok=True)
        return PromptSession(
            history=FileHistory(str(history_file)),
            auto_suggest=AutoSuggestFromHistory(),
            completer=CommandCompleter(self.session),
        )

    def run(self):
        if self.prompt is None:
            self.prompt = self._build_prompt()
        self._print_banner()
        self._print_guidance()

        while self._running:
            try:
                user_input = self._get_input()
                if user_input is None:
                    break
                user_input = user_input.strip()
                if not user_input:
                    continue
                self._handle_input(user_input)
            except KeyboardInterrupt:
                self.session.orchestrator.cancel()
                self.console.print("\n[dim]Cancelled. Use /exit to quit[/dim]")
            except EOFError:
                break

        self._shutdown()

    def _get_input(self) -> Optional[str]:
        current = self.session.registry.current_name()
        db_part = f"[{current}]" if current else ""
        try:
            return self.prompt.prompt(
                HTML(f"<ansigreen><b>dbsage{db_part}</b></ansigreen><ansicyan> ▶ </ansicyan>")
            )
        except KeyboardInterrupt:
            return ""
        except EOFError:
            return None

    def _handle_input(self, text: str):
        result = self.session.commands.process(text)
        if result.handled:
            if result.action == CommandAction.EXIT:
                self._running = False
                return
            if result.action == CommandAction.CLEAR:
                self.session.orchestrator.clear()
                self.console.clear()
                return
            style = "red" if result.is_error else "cyan"
            self.console.print(Text(result.message, style=style))
            return
        self._handle_chat(text)

    # ── Conversation ──────────────────────────────────────────

    def _write_chunk(self, chunk: str):
        self.console.print(chunk, end="", markup=False, highlight=False)

    def _handle_chat(self, text: str):
        self.console.print()
        try:
            outcome = self.session.orchestrator.start_turn(text, self._write_chunk)
            while outcome == TurnOutcome.AWAITING_CONFIRMATION:
                outcome = self.session.orchestrator.resume_with_confirmed_tool(self._ask_confirmation())
        except TransportError as e:
            self.console.print(Text(f"\n✗ {e}", style="red"))
            return
        except DBSageError as e:
            logger.warning(f"Turn failed: {e}")
            self.console.print(Text(f"\n✗ {e}", style="red"))
            return

        if outcome == TurnOutcome.DECLINED:
            self.console.print("[dim]Tool call cancelled.[/dim]")
        self.console.print("\n")

    def _ask_confirmation(self) -> bool:
        pending = self.session.orchestrator.pending_confirmation
        if pending is None:
            return False
        request = pending.request
        color = RISK_COLORS.get(request.risk, "yellow")
        self.console.print()
        self.console.print(Panel(
            Text(request.description),
            title=f"[bold {color}]Confirm {request.tool_name}[/bold {color}]",
            border_style=color,
        ))
        try:
            answer = self.prompt.prompt(HTML("<ansiyellow>Execute this tool? (y/n): </ansiyellow>"))
        except (KeyboardInterrupt, EOFError):
            answer = "n"
        return answer.strip().lower() in ("y", "yes")

    # ── Banner & Shutdown ─────────────────────────────────────

    def _print_guidance(self):
        guidance = self.session.guidance()
        if guidance is None:
            return
        body = guidance.message
        if guidance.instructions:
            body += "\n\n" + "\n".join(f"  {line}" for line in guidance.instructions)
        self.console.print(Panel(body, title=f"[bold]{guidance.title}[/bold]", border_style="blue"))

    def _print_banner(self):
        current = self.session.registry.current_name() or "none"
        self.console.print(
            f"\n[bold #58a6ff]DBSage[/bold #58a6ff] [bold]v{app_config.version}[/bold] "
            f"[dim]- model {escape(openai_config.model)} - connection {escape(current)}[/dim]"
        )
        self.console.print("[dim]Type [bold]/help[/bold] for commands, or ask about your database.[/dim]\n")

    def _shutdown(self):
        self.console.print("\n[dim]Shutting down DBSage...[/dim]")
        self.session.shutdown()
        self.console.print("[green]Goodbye![/green]")
