#!/usr/bin/env python3
"""
Update screen: step list on the left, live command output on the right.

The update runs as a background task that only talks to this app through
a `MessageChannel`. A consumer worker drains the channel, applies each
message to `AppState` via the dispatcher and repaints from the state.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from rich.markup import escape
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer, RichLog, Static

from ..app.dispatcher import handle_command_message
from ..app.state import AppState, Workflow, WorkflowComplete
from ..commands.executor import CancellationToken
from ..commands.messages import MessageChannel, is_terminal
from ..commands.update.git import LocalChangesAction, check_local_changes, resolve_local_changes
from ..commands.update.orchestrator import start_update
from ..commands.update.tools import request_reboot
from ..config.constants import OUTPUT_BUFFER_SIZE, UPDATE_STEPS
from ..exceptions import GitError
from .modals import LocalChangesScreen, RebootConfirmScreen
from .step_progress import StepProgress

logger = logging.getLogger(__name__)

WorkflowStarter = Callable[[MessageChannel, CancellationToken], "asyncio.Task[None]"]
ChangesCheck = Callable[[], Awaitable[List[str]]]
ChangesResolver = Callable[[LocalChangesAction], Awaitable[bool]]


class UpdateApp(App):
    """Run one system update and show its progress."""

    CSS = """
    Screen { layout: vertical; }

    #body {
        height: 1fr;
    }

    #output {
        width: 1fr;
        padding: 0 1;
    }

    #status {
        height: 1;
        padding: 0 1;
        background: $boost;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel", "Cancel", priority=True),
        Binding("enter", "finish", "Done"),
        Binding("q", "quit_if_idle", "Quit"),
    ]

    def __init__(
        self,
        flake_dir: Optional[Path] = None,
        starter: Optional[WorkflowStarter] = None,
        check_changes: Optional[ChangesCheck] = None,
        resolve_changes: Optional[ChangesResolver] = None,
    ):
        super().__init__()
        self.state = AppState(config_dir=flake_dir)
        self.channel = MessageChannel()
        self._starter = starter or functools.partial(start_update, flake_dir=flake_dir)
        self._check_changes = check_changes or functools.partial(check_local_changes, flake_dir)
        self._resolve_changes = resolve_changes or functools.partial(
            resolve_local_changes, path=flake_dir
        )
        self._task: Optional["asyncio.Task[None]"] = None
        self._seen_lines = 0

    def compose(self) -> ComposeResult:
        with Horizontal(id="body"):
            yield StepProgress(id="steps")
            yield RichLog(id="output", max_lines=OUTPUT_BUFFER_SIZE, wrap=True, markup=False)
        yield Static("Checking for local changes...", id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self._prepare())

    async def on_unmount(self) -> None:
        if self._task is not None and not self._task.done():
            self.state.cancel()
            self._task.cancel()

    async def _prepare(self) -> None:
        files = await self._check_changes()
        if files:
            logger.info("Found %d locally changed file(s)", len(files))
            self.push_screen(LocalChangesScreen(files), callback=self._on_local_changes)
        else:
            self.start_workflow(stashed=False)

    def _on_local_changes(self, action: Optional[LocalChangesAction]) -> None:
        self.run_worker(self._apply_local_changes(action or LocalChangesAction.CANCEL))

    async def _apply_local_changes(self, action: LocalChangesAction) -> None:
        try:
            stashed = await self._resolve_changes(action)
        except GitError as e:
            logger.info("Update not started: %s", e)
            self.notify(e.message, severity="warning")
            self.exit(False)
            return
        self.start_workflow(stashed=stashed)

    def start_workflow(self, stashed: bool) -> None:
        token = self.state.begin_workflow(Workflow.UPDATE, UPDATE_STEPS, stashed=stashed)
        self._seen_lines = 0
        self.refresh_view()
        self._task = self._starter(self.channel, token)
        self.run_worker(self._consume(), group="consumer")

    async def _consume(self) -> None:
        while True:
            msg = await self.channel.receive()
            await handle_command_message(self.state, msg)
            self.refresh_view()
            if is_terminal(msg):
                break

        if self.state.show_reboot_confirm:
            self.push_screen(
                RebootConfirmScreen(self.state.reboot_reasons), callback=self._on_reboot_choice
            )

    def _on_reboot_choice(self, reboot: Optional[bool]) -> None:
        self.state.show_reboot_confirm = False
        if reboot:
            self.run_worker(request_reboot())

    def refresh_view(self) -> None:
        steps = self.state.steps
        if steps is not None:
            self.query_one("#steps", StepProgress).set_steps(steps.steps)

        output = self.state.output
        if output is not None:
            log = self.query_one("#output", RichLog)
            for line in output.since(self._seen_lines):
                log.write(Text(line))
            self._seen_lines = output.total

        self.query_one("#status", Static).update(self.status_text())

    def status_text(self) -> str:
        mode = self.state.mode
        if isinstance(mode, WorkflowComplete):
            if mode.success:
                return "[green]✓ Update complete[/green]  [dim]enter: done[/dim]"
            error = f": {escape(self.state.error)}" if self.state.error else ""
            return f"[red]✗ Update failed{error}[/red]  [dim]enter: done[/dim]"
        if self.state.is_running:
            return "[yellow]Updating...[/yellow]  [dim]ctrl+c: cancel[/dim]"
        return "Checking for local changes..."

    def action_cancel(self) -> None:
        if self.state.is_running and self.state.cancel():
            logger.info("Cancellation requested")
            self.query_one("#status", Static).update("[yellow]Cancelling...[/yellow]")
        else:
            self.exit(self._result())

    def action_finish(self) -> None:
        if isinstance(self.state.mode, WorkflowComplete):
            self.exit(self._result())

    def action_quit_if_idle(self) -> None:
        if not self.state.is_running:
            self.exit(self._result())

    def _result(self) -> bool:
        mode = self.state.mode
        return isinstance(mode, WorkflowComplete) and mode.success

