"""System update pipeline.

Stages run strictly in order on one background task:

    pull -> flake update -> rebuild (if flake.lock changed) -> package diff
    -> reboot reasons -> Claude Code -> Codex CLI -> browser profiles
    -> summary

Each stage reports its step as complete, failed or skipped. Only a failed
rebuild makes the run unsuccessful; a cancellation ends it immediately
with `Cancelled` instead of `Done`.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ...config.constants import (
    APP_RESTORE_COMMAND,
    BOOTED_KERNEL_LINK,
    BOOTLOADER_KEYWORDS,
    CODEX_NPM_PACKAGE,
    CURRENT_KERNEL_LINK,
    FIRMWARE_EXACT_NAMES,
    FIRMWARE_KEYWORDS,
    PROFILE_STATUS_NOT_CONFIGURED,
    PROFILE_STATUS_UNKNOWN,
)
from ...config.settings import (
    app_backup_config_path,
    claude_cli_path,
    codex_cli_path,
    get_env_var,
    nixos_config_dir,
)
from ...exceptions import ForgeError
from ...models.summary import PackageChange, UpdateSummary
from ..errors import ErrorContext, ParsedError
from ..executor import (
    CancellationToken,
    CommandResult,
    command_exists,
    get_output,
    run_capture,
    run_command_cancellable,
    run_command_cancellable_transformed,
)
from ..messages import (
    Cancelled,
    Done,
    MessageChannel,
    RebootRecommended,
    StepComplete,
    StepFailed,
    StepSkipped,
    out,
)
from ..output_filter import filter_tool_noise
from .flake import get_flake_lock_hash, parse_flake_changes, save_flake_lock_backup
from .git import PULL_STEP, pull_config_updates
from .packages import PackageCompareResult, parse_package_changes_from_history
from .shell import restart_shell_if_needed
from .summary import RULE, render_summary
from .tools import check_browser_status, clean_version, get_npm_package_version

logger = logging.getLogger(__name__)

FLAKE_STEP = "flake"
REBUILD_STEP = "Rebuild"
PACKAGES_STEP = "Packages"
CLAUDE_STEP = "Claude"
CODEX_STEP = "Codex"
BROWSER_STEP = "browser"
UPDATE_STEP = "Update"


@dataclass
class UpdateProgress:
    """The step the pipeline is working on; None between steps."""
    step: Optional[str] = PULL_STEP


def start_update(
    tx: MessageChannel, cancel: CancellationToken, flake_dir: Optional[Path] = None
) -> "asyncio.Task[None]":
    """Run the update on a background task.

    Any unexpected fault inside the pipeline fails the step that was
    running and ends with `Done(success=False)`, so the consumer always
    sees a terminal message.
    """
    progress = UpdateProgress()

    async def runner() -> None:
        try:
            await run_update(tx, cancel, flake_dir, progress)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Update failed during %s: %s", progress.step or "the pipeline", e, exc_info=True
            )
            error = ParsedError.from_stderr(str(e), ErrorContext(operation=UPDATE_STEP))
            if progress.step is not None:
                await tx.send(StepFailed(progress.step, error))
            else:
                await out(tx, f"  ✗ Update failed: {e}")
            await tx.send(Done(success=False))

    return asyncio.ensure_future(runner())


def get_hostname() -> str:
    override = get_env_var("NIXFORGE_HOSTNAME")
    if override:
        return override
    hostname = socket.gethostname().split(".")[0]
    if not hostname:
        logger.warning("Could not get hostname, using 'localhost'")
        return "localhost"
    return hostname


async def _header(tx: MessageChannel, title: str) -> None:
    await out(tx, "")
    await out(tx, RULE)
    await out(tx, f"  {title}")
    await out(tx, RULE)
    await out(tx, "")


async def _cancelled(tx: MessageChannel, what: str) -> None:
    await out(tx, f"  ⊘ {what} cancelled")
    await tx.send(Cancelled())


async def run_update(
    tx: MessageChannel,
    cancel: CancellationToken,
    flake_dir: Optional[Path] = None,
    progress: Optional[UpdateProgress] = None,
) -> None:
    summary = UpdateSummary()
    progress = progress or UpdateProgress()
    flake_dir = flake_dir or nixos_config_dir()
    flake_path = str(flake_dir)
    hostname = get_hostname()

    await out(tx, "")
    await out(tx, "==============================================")
    await out(tx, "  NixOS System Update")
    await out(tx, "==============================================")
    await out(tx, "")

    if cancel.is_cancelled():
        await tx.send(Cancelled())
        return

    # Stage 1: pull. Never fatal.
    progress.step = PULL_STEP
    try:
        await pull_config_updates(tx, flake_dir, cancel=cancel)
    except ForgeError as e:
        logger.warning("Failed to check for config updates: %s", e)

    if cancel.is_cancelled():
        await _cancelled(tx, "Configuration pull")
        return

    # Stage 2: flake update
    progress.step = FLAKE_STEP
    lock_before = get_flake_lock_hash(flake_dir)
    save_flake_lock_backup(flake_dir)

    await _header(tx, "Updating Flake Inputs")
    result = await run_command_cancellable_transformed(
        tx, "nix", ["flake", "update", "--flake", flake_path], cancel, filter_tool_noise
    )
    await out(tx, "")

    if result is CommandResult.CANCELLED:
        await _cancelled(tx, "Flake update")
        return
    if result is CommandResult.FAILURE:
        await out(tx, "  ✗ Flake update failed")
        error = ParsedError.from_stderr(
            "Flake update failed - see output above for details",
            ErrorContext(operation="Flake update"),
        )
        await tx.send(StepFailed(FLAKE_STEP, error))
        await tx.send(Done(success=False))
        return

    await out(tx, "  ✓ Flake inputs updated")
    await tx.send(StepComplete(FLAKE_STEP))
    progress.step = None

    lock_after = get_flake_lock_hash(flake_dir)
    needs_rebuild = lock_before != lock_after
    if needs_rebuild:
        try:
            summary.flake_changes = await parse_flake_changes(flake_dir)
        except ForgeError as e:
            logger.warning("Could not list flake changes: %s", e)

    if cancel.is_cancelled():
        await tx.send(Cancelled())
        return

    # Stage 3: rebuild
    progress.step = REBUILD_STEP
    if needs_rebuild:
        await _header(tx, "Rebuilding System")
        result = await run_command_cancellable(
            tx,
            "sudo",
            ["nixos-rebuild", "switch", "--flake", f"{flake_path}#{hostname}"],
            cancel,
        )
        await out(tx, "")

        if result is CommandResult.CANCELLED:
            await _cancelled(tx, "System rebuild")
            return
        if result is CommandResult.SUCCESS:
            await out(tx, "  ✓ System rebuilt successfully")
            await tx.send(StepComplete(REBUILD_STEP))
            progress.step = None

            try:
                shell_name = await restart_shell_if_needed(tx)
            except ForgeError as e:
                logger.warning("Shell restart check failed: %s", e)
                shell_name = None
            if shell_name:
                summary.restarted_shell = shell_name
                await out(tx, f"  ✓ Restarted {shell_name} shell")
        else:
            await out(tx, "  ✗ System rebuild failed")
            summary.rebuild_failed = True
            error = ParsedError.from_stderr(
                "System rebuild failed - see output above for details",
                ErrorContext(operation="System rebuild"),
            )
            await tx.send(StepFailed(REBUILD_STEP, error))
    else:
        await out(tx, "")
        await out(tx, "  - Skipping rebuild (no changes)")
        summary.rebuild_skipped = True
        await tx.send(StepSkipped(REBUILD_STEP))

    if cancel.is_cancelled():
        await tx.send(Cancelled())
        return

    # Stage 4: package diff, runs even after a failed rebuild
    progress.step = PACKAGES_STEP
    await out(tx, "")
    await out(tx, "  Comparing packages...")
    try:
        pkg_result = await parse_package_changes_from_history(cancel=cancel)
    except ForgeError as e:
        logger.warning("Package comparison failed: %s", e)
        pkg_result = PackageCompareResult()
    if cancel.is_cancelled():
        await _cancelled(tx, "Package comparison")
        return
    summary.package_changes = pkg_result.changes
    summary.closure_summary = pkg_result.closure_summary

    if summary.package_changes:
        await out(tx, f"  ✓ {len(summary.package_changes)} packages updated")
    else:
        await out(tx, "  - No package version changes")
    await tx.send(StepComplete(PACKAGES_STEP))

    # Stage 5: reboot reasons, which has no step of its own
    progress.step = None
    if not summary.rebuild_failed and not summary.rebuild_skipped:
        summary.reboot_reasons = await detect_reboot_reasons(summary.package_changes)

    # Stages 6-7: auxiliary tools and profiles
    stages = (
        (CLAUDE_STEP, update_claude_code),
        (CODEX_STEP, update_codex_cli),
        (BROWSER_STEP, check_app_profiles),
    )
    for step, stage in stages:
        if cancel.is_cancelled():
            await tx.send(Cancelled())
            return
        progress.step = step
        await stage(tx, summary, cancel)
    if cancel.is_cancelled():
        await tx.send(Cancelled())
        return

    # Stage 8: summary
    progress.step = None
    for line in render_summary(summary):
        await out(tx, line)

    if summary.reboot_reasons:
        await tx.send(RebootRecommended(tuple(summary.reboot_reasons)))

    await tx.send(Done(success=summary.success))


async def _version_of(command: str, cancel: Optional[CancellationToken] = None) -> Optional[str]:
    try:
        return clean_version(await get_output(command, ["--version"], cancel=cancel))
    except ForgeError as e:
        logger.warning("Version check failed for %s: %s", command, e)
        return None


def _stopped(cancel: Optional[CancellationToken]) -> bool:
    return cancel is not None and cancel.is_cancelled()


async def update_claude_code(
    tx: MessageChannel, summary: UpdateSummary, cancel: Optional[CancellationToken] = None
) -> None:
    """Update Claude Code in place; a cancelled update reports no step."""
    claude_path = claude_cli_path()
    if not claude_path.exists():
        await out(tx, "  - Claude Code not installed")
        await tx.send(StepSkipped(CLAUDE_STEP))
        return

    claude_cmd = str(claude_path)
    summary.claude_old = await _version_of(claude_cmd, cancel)
    if _stopped(cancel):
        return

    success, _, stderr = await run_capture(claude_cmd, ["update"], cancel=cancel)
    if _stopped(cancel):
        await out(tx, "  ⊘ Claude Code update cancelled")
        return
    if success:
        await out(tx, "  ✓ Updating Claude Code")
    else:
        logger.warning("claude update failed: %s", stderr.strip())
        await out(tx, "  ✗ Updating Claude Code")

    summary.claude_new = await _version_of(claude_cmd, cancel)
    if _stopped(cancel):
        return
    # The version comparison, not the exit code, says whether anything changed
    await tx.send(StepComplete(CLAUDE_STEP))


async def update_codex_cli(
    tx: MessageChannel, summary: UpdateSummary, cancel: Optional[CancellationToken] = None
) -> None:
    if not codex_cli_path().exists():
        await out(tx, "  - Codex CLI not installed")
        await tx.send(StepSkipped(CODEX_STEP))
        return

    summary.codex_old = await get_npm_package_version(CODEX_NPM_PACKAGE, cancel=cancel)
    if _stopped(cancel):
        return

    success, _, stderr = await run_capture(
        "npm", ["update", "-g", CODEX_NPM_PACKAGE], cancel=cancel
    )
    if _stopped(cancel):
        await out(tx, "  ⊘ Codex CLI update cancelled")
        return
    if success:
        await out(tx, "  ✓ Updating Codex CLI")
    else:
        logger.warning("npm update failed: %s", stderr.strip())
        await out(tx, "  ✗ Updating Codex CLI")

    summary.codex_new = await get_npm_package_version(CODEX_NPM_PACKAGE, cancel=cancel)
    if _stopped(cancel):
        return
    await tx.send(StepComplete(CODEX_STEP))


async def check_app_profiles(
    tx: MessageChannel, summary: UpdateSummary, cancel: Optional[CancellationToken] = None
) -> None:
    if not command_exists(APP_RESTORE_COMMAND):
        summary.browser_status = PROFILE_STATUS_NOT_CONFIGURED
        await out(tx, "  - App backup not configured")
        await tx.send(StepSkipped(BROWSER_STEP))
        return

    if app_backup_config_path().exists():
        try:
            summary.browser_status = await check_browser_status(cancel=cancel)
        except ForgeError as e:
            if _stopped(cancel):
                return
            logger.warning("Browser profile status failed: %s", e)
            summary.browser_status = PROFILE_STATUS_UNKNOWN
        await out(tx, "  ✓ Browser profiles up to date")
    else:
        summary.browser_status = PROFILE_STATUS_NOT_CONFIGURED
        await out(tx, "  - Browser profiles not configured")

    await tx.send(StepComplete(BROWSER_STEP))


def package_reboot_reasons(package_changes: List[PackageChange]) -> List[str]:
    """Reboot reasons implied by bootloader or firmware package changes."""
    bootloader_changed = False
    firmware_changed = False

    for name, _, _ in package_changes:
        lowered = name.lower()
        if any(keyword in lowered for keyword in BOOTLOADER_KEYWORDS):
            bootloader_changed = True
        if any(keyword in lowered for keyword in FIRMWARE_KEYWORDS) or lowered in FIRMWARE_EXACT_NAMES:
            firmware_changed = True

    reasons = []
    if bootloader_changed:
        reasons.append("Bootloader updated")
    if firmware_changed:
        reasons.append("Firmware updated")
    return reasons


async def detect_reboot_reasons(package_changes: List[PackageChange]) -> List[str]:
    reasons = []
    try:
        booted = await get_output("readlink", [BOOTED_KERNEL_LINK])
        current = await get_output("readlink", [CURRENT_KERNEL_LINK])
    except ForgeError as e:
        logger.warning("Could not compare booted and current kernel: %s", e)
    else:
        if booted.strip() != current.strip():
            reasons.append("Kernel updated")

    reasons.extend(package_reboot_reasons(package_changes))
    return reasons
