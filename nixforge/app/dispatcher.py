"""Apply status messages from background workflows to `AppState`.

`handle_command_message` is the only place screen state changes in
response to a workflow. Message types it does not know are ignored.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from ..commands.errors import ParsedError
from ..commands.messages import (
    Cancelled,
    CloneComplete,
    CommandMessage,
    Done,
    RebootRecommended,
    Stderr,
    StepComplete,
    StepFailed,
    StepSkipped,
    Stdout,
    UpdatesAvailable,
)
from ..commands.output_filter import strip_escape_codes
from ..commands.update.git import pop_stash
from ..config.settings import discover_hosts
from ..models.output_buffer import OutputBuffer
from ..models.steps import StepTracker
from ..models.summary import CommitInfo
from .state import (
    AppState,
    CloneRepository,
    MainMenu,
    SelectHost,
    Workflow,
    WorkflowComplete,
    WorkflowRunning,
)

logger = logging.getLogger(__name__)

StashPopper = Callable[[Optional[Path]], Awaitable[List[str]]]

CANCELLED_LINE = "Operation cancelled by user."

CLONE_TROUBLESHOOTING = [
    "Failed to clone configuration repository.",
    "",
    "Please check:",
    "  1. Internet connection (run 'nmtui' to configure WiFi)",
    "  2. GitHub is accessible",
]


async def handle_command_message(
    state: AppState,
    msg: CommandMessage,
    pop_stash: StashPopper = pop_stash,
) -> None:
    if isinstance(msg, (Stdout, Stderr)):
        append_output(state, msg.line)
    elif isinstance(msg, StepComplete):
        state.log_to_screen(f"[✓] Step complete: {msg.step}")
        if isinstance(state.mode, WorkflowRunning):
            state.mode.steps.mark_complete(msg.step)
    elif isinstance(msg, StepFailed):
        mark_step_failed(state, msg.step, msg.error)
    elif isinstance(msg, StepSkipped):
        state.log_to_screen(f"[-] Step skipped: {msg.step}")
        if isinstance(state.mode, WorkflowRunning):
            state.mode.steps.mark_skipped(msg.step)
    elif isinstance(msg, Done):
        await handle_done(state, msg.success, pop_stash)
    elif isinstance(msg, Cancelled):
        handle_cancelled(state)
    elif isinstance(msg, UpdatesAvailable):
        handle_updates_available(state, msg)
    elif isinstance(msg, RebootRecommended):
        state.show_reboot_confirm = True
        state.reboot_reasons = list(msg.reasons)
    elif isinstance(msg, CloneComplete):
        handle_clone_complete(state, msg.success)
    else:
        logger.debug("Ignoring unhandled message %r", msg)


def append_output(state: AppState, line: str) -> None:
    clean_line = strip_escape_codes(line)
    state.log_to_screen(clean_line)
    output = state.output
    if output is not None:
        output.append(clean_line)


def mark_step_failed(state: AppState, step_name: str, error: ParsedError) -> None:
    state.log_to_screen(f"[✗] Step failed: {step_name}")
    state.log_to_screen("")
    for line in error.format_lines():
        state.log_to_screen(line)

    if isinstance(state.mode, WorkflowRunning):
        state.mode.steps.mark_failed(step_name, error)
        state.error = state.mode.steps.error


async def handle_done(state: AppState, success: bool, pop_stash: StashPopper) -> None:
    state.log_to_screen("")
    state.log_to_screen(f"=== Operation {'COMPLETED' if success else 'FAILED'} ===")
    state.log_to_screen("")

    mode = state.mode
    if isinstance(mode, WorkflowRunning):
        final_output = mode.output.snapshot()
        if mode.workflow is Workflow.UPDATE and mode.stashed and success:
            final_output.extend(await pop_stash(state.config_dir))
        state.mode = WorkflowComplete(
            workflow=mode.workflow,
            success=success,
            steps=mode.steps.snapshot(),
            output=final_output,
            stashed=mode.stashed,
        )
    elif isinstance(mode, CloneRepository):
        # A clone reports CloneComplete; a bare Done just ends the screen
        state.mode = WorkflowComplete(
            workflow=Workflow.INSTALL,
            success=success,
            steps=StepTracker([], start=False),
            output=mode.output.snapshot(),
        )


def handle_cancelled(state: AppState) -> None:
    state.log_to_screen("")
    state.log_to_screen("=== Operation CANCELLED ===")
    state.log_to_screen("")
    state.cancel_token = None

    mode = state.mode
    if isinstance(mode, WorkflowRunning):
        mode.output.append(CANCELLED_LINE)
        state.mode = WorkflowComplete(
            workflow=mode.workflow,
            success=False,
            steps=mode.steps.snapshot(),
            output=mode.output.snapshot(),
            stashed=mode.stashed,
        )
    elif isinstance(mode, CloneRepository):
        mode.output.append(CANCELLED_LINE)
        state.mode = WorkflowComplete(
            workflow=Workflow.INSTALL,
            success=False,
            steps=StepTracker([], start=False),
            output=mode.output.snapshot(),
        )


def handle_updates_available(state: AppState, msg: UpdatesAvailable) -> None:
    state.startup_check_running = False
    if not (msg.nixos_config or msg.app_profiles):
        return
    if not isinstance(state.mode, MainMenu):
        logger.debug("Update check finished off the main menu; not showing it")
        return

    pending = state.pending_updates
    pending.clear()
    pending.nixos_config = msg.nixos_config
    pending.app_profiles = msg.app_profiles
    pending.commits = [CommitInfo(hash=h, message=m) for h, m in msg.commits]


def handle_clone_complete(state: AppState, success: bool) -> None:
    state.cancel_token = None
    if success:
        state.hosts = discover_hosts(state.config_dir)
        logger.info("Clone complete, found %d host(s)", len(state.hosts))
        state.mode = SelectHost()
        return

    # Keep git's own output above the troubleshooting hints
    final = state.mode.output.snapshot() if isinstance(state.mode, CloneRepository) else OutputBuffer()
    final.extend(CLONE_TROUBLESHOOTING)
    final.extend(["", "Press Enter to return to main menu."])
    state.mode = WorkflowComplete(
        workflow=Workflow.INSTALL,
        success=False,
        steps=StepTracker([], start=False),
        output=final,
    )

