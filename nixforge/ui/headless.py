"""Plain terminal rendering of a workflow, for use without the TUI."""

import asyncio
import logging
import signal
from typing import Awaitable, Callable, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..app.dispatcher import handle_command_message
from ..app.state import AppState
from ..commands.executor import CancellationToken
from ..commands.messages import (
    Cancelled,
    CommandMessage,
    Done,
    MessageChannel,
    Stderr,
    StepFailed,
    Stdout,
    is_terminal,
)
from ..models.steps import StepTracker
from ..utils.output import console as default_console
from .step_progress import STEP_STYLES

logger = logging.getLogger(__name__)

WorkflowRunner = Callable[[MessageChannel, CancellationToken], Awaitable[None]]


def render_message(console: Console, msg: CommandMessage) -> None:
    if isinstance(msg, Stdout):
        console.print(Text(msg.line))
    elif isinstance(msg, Stderr):
        console.print(Text(msg.line, style="dim"))
    elif isinstance(msg, StepFailed):
        console.print(Text("\n".join(msg.error.format_lines()), style="red"))


def steps_table(steps: StepTracker) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    for step in steps.steps:
        icon, style = STEP_STYLES[step.status]
        table.add_row(Text(icon, style=style), Text(step.name, style=style))
    return table


async def run_headless(
    state: AppState,
    token: CancellationToken,
    workflow: WorkflowRunner,
    console: Optional[Console] = None,
) -> AppState:
    """Run `workflow` to its terminal message, printing as it goes.

    Ctrl+C signals `token` instead of killing the process, so the workflow
    can stop its child and report `Cancelled`. Output the dispatcher adds
    when the run ends is printed too.
    """
    console = console or default_console
    channel = MessageChannel()
    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGINT, state.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    task = asyncio.ensure_future(workflow(channel, token))
    try:
        while True:
            msg = await channel.receive()
            render_message(console, msg)
            seen = state.output.total if state.output is not None else 0
            await handle_command_message(state, msg)
            if isinstance(msg, (Done, Cancelled)) and state.output is not None:
                # Lines the dispatcher adds on completion, such as the stash restore
                for line in state.output.since(seen):
                    console.print(Text(line))
            if is_terminal(msg):
                break
        await task
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        if not task.done():
            token.cancel()
            task.cancel()

    return state
