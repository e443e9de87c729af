import threading

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical, ScrollableContainer
from textual.widgets import Header, Footer, RichLog, Input, Static
from rich.table import Table
from rich.panel import Panel
from rich.console import Group
from rich.text import Text
from typing import List, Optional, Tuple

import agent.logger
from agent.llm import get_model_info
from agent.session import SessionManager, TurnPhase

_STATUS_STYLE = {"APPLIED": "green", "SKIPPED": "yellow", "FAILED": "red", "INCOMPLETE": "magenta"}


class TurnView(Vertical):
    """Right pane: live per-file outcomes of the current turn."""
    def __init__(self, request: str, **kwargs):
        super().__init__(**kwargs)
        self.request = request
        self.intent_line = ""
        self.context_line = ""
        self.rows: List[Tuple[str, str, str, str]] = []
        self.footer_line = ""

    def compose(self) -> ComposeResult:
        yield Static(f"✂️ TURN: {self.request}", classes="turn-title")
        with ScrollableContainer(id="turn-scroll"):
            yield Static(id="turn-area")

    def on_mount(self) -> None:
        self.refresh_view()

    def refresh_view(self) -> None:
        table = Table(expand=True, show_edge=False)
        table.add_column("status", width=11)
        table.add_column("action", width=8)
        table.add_column("path")
        for status, action, path, message in self.rows:
            style = _STATUS_STYLE.get(status, "white")
            label = path if not message else f"{path}\n[dim]{message}[/dim]"
            table.add_row(f"[{style}]{status}[/{style}]", action, label)

        parts = []
        if self.intent_line:
            parts.append(Text.from_markup(self.intent_line))
        if self.context_line:
            parts.append(Text.from_markup(self.context_line))
        parts.append(Panel(table, title="[bold]Files[/bold]", border_style="blue"))
        if self.footer_line:
            parts.append(Text.from_markup(self.footer_line))
        self.query_one("#turn-area", Static).update(Group(*parts))


class SpliceUI(App):
    """Terminal UI: chat on the left, the running turn on the right."""

    CSS = """
    Screen { background: $surface; }
    #chat-pane { width: 45%; border-right: solid $primary; padding: 1; height: 100%; }
    #workspace-pane { width: 55%; padding: 1; height: 100%; }
    RichLog { background: $surface; border: none; height: 1fr; }
    Input { dock: bottom; margin-top: 1; }
    .turn-title { text-style: bold; color: magenta; margin-bottom: 1; }
    #turn-scroll { height: 1fr; overflow-y: auto; }
    """

    BINDINGS = [("ctrl+c", "quit", "Quit"), ("escape", "cancel_turn", "Cancel turn")]

    def __init__(self, manager: SessionManager, session_id: str = "default",
                 model_id: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.manager = manager
        self.session_id = session_id
        self.model_id = model_id
        self.turn_view: Optional[TurnView] = None
        self._ui_thread: Optional[int] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Horizontal():
            with Vertical(id="chat-pane"):
                yield RichLog(id="chat-log", highlight=True, markup=True)
                yield Input(placeholder="Describe a change... (or /history, /cancel, /clear, /quit)",
                            id="prompt-input")
            with Vertical(id="workspace-pane"):
                yield Static("The running turn will appear here.", id="workspace-view")
        yield Footer()

    def on_mount(self) -> None:
        self.title = "Splice"
        info = get_model_info(self.model_id, self.manager.cfg)
        self.sub_title = f"session {self.session_id} · {info['provider']}/{info['model']}"
        self._ui_thread = threading.get_ident()
        log = self.query_one("#chat-log", RichLog)
        log.write("[bold blue] ✂️ **Splice** TUI Initialized.[/bold blue]")
        log.write("Describe a change below. A new request cancels the one in flight.")

        # Hook up the bridge
        agent.logger.UI_CALLBACK = self.safe_update_log

    def on_unmount(self) -> None:
        agent.logger.UI_CALLBACK = None

    def action_cancel_turn(self) -> None:
        if self.manager.cancel(self.session_id):
            self.query_one("#chat-log", RichLog).write("[yellow]Cancelling current turn...[/yellow]")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        user_prompt = event.value.strip()
        if not user_prompt: return
        event.input.value = ""

        chat = self.query_one("#chat-log", RichLog)
        if user_prompt == "/quit":
            self.exit()
            return
        elif user_prompt == "/clear":
            chat.clear()
            return
        elif user_prompt == "/cancel":
            self.action_cancel_turn()
            return
        elif user_prompt == "/history":
            summary = self.manager.get(self.session_id).state.summarize().text
            chat.write(Text(summary or "No turns yet."))
            return

        chat.write(f"\n[bold green]User:[/bold green] {user_prompt}")
        view = self._show_turn(user_prompt)
        # cancels the in-flight turn right away; the new one runs on a worker thread
        events = self.manager.run_turn(user_prompt, model_id=self.model_id, session_id=self.session_id)
        self.run_worker(lambda: self.execute_turn(events, view), exclusive=True, thread=True)

    def execute_turn(self, events, view: TurnView) -> None:
        for event in events:
            self.call_from_thread(self._apply_event, event, view)

    def _show_turn(self, request: str) -> TurnView:
        workspace = self.query_one("#workspace-pane", Vertical)
        for child in list(workspace.children):
            child.remove()
        self.turn_view = TurnView(request)
        workspace.mount(self.turn_view)
        return self.turn_view

    def _apply_event(self, event, view: TurnView) -> None:
        d = event.data
        if event.phase is TurnPhase.INTENT_DETERMINED:
            view.intent_line = f"[magenta]{d['type']}[/magenta] @ {d['confidence']:.2f} — {', '.join(d['queries'])}"
        elif event.phase is TurnPhase.CONTEXT_BUILT:
            view.context_line = f"[cyan]context[/cyan] {len(d['files'])} file(s), {d['total_cost']}/{d['budget']} tokens"
        elif event.phase is TurnPhase.FILE_APPLIED:
            view.rows.append((d["status"], d["action"], d["path"], d["message"]))
        elif event.phase is TurnPhase.PACKAGES_INSTALLED:
            ok = "installed" if d["success"] else "[red]install failed[/red]"
            view.footer_line = f"📦 {' '.join(d['packages'])} {ok}"
        elif event.phase is TurnPhase.DONE:
            view.footer_line = (view.footer_line + "\n" if view.footer_line else "") + "[bold green]🏁 Done[/bold green]"
        elif event.phase is TurnPhase.FAILED:
            view.footer_line = (view.footer_line + "\n" if view.footer_line else "") + f"[bold red]Failed:[/bold red] {d['error']}"
        if view.is_mounted:
            view.refresh_view()

    def safe_update_log(self, message: str) -> None:
        if threading.get_ident() == self._ui_thread:
            self._write_to_log(message)
        else:
            self.call_from_thread(self._write_to_log, message)

    def _write_to_log(self, message: str) -> None:
        self.query_one("#chat-log", RichLog).write(message)
