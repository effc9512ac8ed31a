"""Companion desktop-shell reconciliation after a rebuild.

After `nixos-rebuild switch`, a running Quickshell-based shell may still
execute code from the previous store path while the shell's config points
at the new one. `ShellReconciler` finds every running instance, kills the
ones on a stale path and starts a fresh instance only when no instance on
the expected path survives.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

import psutil

from ...config.constants import (
    DESKTOP_DISPATCHER,
    QUICKSHELL_PROCESS_NAME,
    SHELL_SETTLE_SECONDS,
    SHELL_START_WAIT_SECONDS,
)
from ...exceptions import ShellReconcileError
from ..executor import kill_process, launch_detached, list_processes, run_capture
from ..messages import MessageChannel, out

logger = logging.getLogger(__name__)


class ShellKind(Enum):
    NOCTALIA = "noctalia"
    ILLOGICAL = "illogical"

    @property
    def display_name(self) -> str:
        return {
            ShellKind.NOCTALIA: "Noctalia",
            ShellKind.ILLOGICAL: "Illogical Impulse",
        }[self]

    @property
    def restart_command(self) -> Tuple[str, List[str]]:
        if self is ShellKind.NOCTALIA:
            return "noctalia-shell", []
        return "quickshell", ["-c", "~/.config/quickshell/ii"]

    @property
    def config_symlink_path(self) -> Path:
        name = "noctalia-shell" if self is ShellKind.NOCTALIA else "ii"
        return Path.home() / ".config" / "quickshell" / name

    def path_matches(self, running_path: str, expected_path: str) -> bool:
        """Whether an instance launched from `running_path` is current.

        Noctalia is launched with its store path, so the match is exact.
        Illogical Impulse is launched through a config dir, so its binary
        path only loosely tracks the expected one; containment either way
        counts.
        """
        if self is ShellKind.NOCTALIA:
            return running_path == expected_path
        return expected_path in running_path or running_path in expected_path


@dataclass(frozen=True)
class RunningProcessInfo:
    kind: ShellKind
    running_path: str
    pid: int


def extract_path_arg(cmd: str, flag: str) -> Optional[str]:
    """Value following `flag` in a command line, e.g. `-p /nix/store/...`."""
    parts = cmd.split()
    for i, part in enumerate(parts[:-1]):
        if part == flag:
            return parts[i + 1]
    return None


def extract_binary_path(cmd: str) -> Optional[str]:
    parts = cmd.split()
    if parts and "/nix/store/" in parts[0]:
        return parts[0]
    return None


def parse_quickshell_command(pid: int, cmd: str) -> Optional[RunningProcessInfo]:
    """Classify one `pid cmdline` entry, or None if it is not a known shell."""
    # quickshell -p /nix/store/...-noctalia-shell/share/noctalia-shell
    if "/noctalia-shell" in cmd:
        path = extract_path_arg(cmd, "-p")
        if path:
            return RunningProcessInfo(ShellKind.NOCTALIA, path, pid)

    # /nix/store/...-quickshell/bin/quickshell -c ~/.config/quickshell/ii
    if "quickshell/ii" in cmd or ("-c" in cmd and "/ii" in cmd):
        path = extract_binary_path(cmd)
        if path:
            return RunningProcessInfo(ShellKind.ILLOGICAL, path, pid)

    return None


async def expected_shell_path(kind: ShellKind) -> Optional[str]:
    """Path a freshly started shell of `kind` would run from."""
    try:
        return os.readlink(kind.config_symlink_path)
    except OSError:
        # The ii config dir is often a plain directory; use the binary
        if kind is ShellKind.ILLOGICAL:
            binary = shutil.which(QUICKSHELL_PROCESS_NAME)
            return os.path.realpath(binary) if binary else None
        return None


class ReconcileOutcome(Enum):
    NOTHING_RUNNING = "nothing_running"
    EXPECTED_PATH_UNKNOWN = "expected_path_unknown"
    ALREADY_CORRECT = "already_correct"
    RESTARTED = "restarted"
    CLEANED_UP = "cleaned_up"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    kind: Optional[ShellKind] = None
    killed: List[int] = field(default_factory=list)
    launched: bool = False

    @property
    def display(self) -> Optional[str]:
        """Shell name for the "Restarted ... shell" line, if anything happened."""
        if self.kind is None:
            return None
        if self.outcome is ReconcileOutcome.RESTARTED:
            return self.kind.display_name
        if self.outcome is ReconcileOutcome.CLEANED_UP:
            return f"{self.kind.display_name} (cleanup)"
        return None


ProcessLister = Callable[[str], List[Tuple[int, str]]]
ProcessKiller = Callable[[int], bool]
ShellLauncher = Callable[[ShellKind], Awaitable[bool]]
PathResolver = Callable[[ShellKind], Awaitable[Optional[str]]]
Sleeper = Callable[[float], Awaitable[None]]


class ShellReconciler:
    """Bring running shell instances in line with the current build.

    Collaborators are injectable so the decision logic can be exercised
    without a desktop session.
    """

    def __init__(
        self,
        list_processes: ProcessLister = list_processes,
        kill: ProcessKiller = kill_process,
        launch: Optional[ShellLauncher] = None,
        resolve_expected: PathResolver = expected_shell_path,
        sleep: Sleeper = asyncio.sleep,
        settle_seconds: float = SHELL_SETTLE_SECONDS,
        start_wait_seconds: float = SHELL_START_WAIT_SECONDS,
    ):
        self._list_processes = list_processes
        self._kill = kill
        self._launch = launch or launch_shell
        self._resolve_expected = resolve_expected
        self._sleep = sleep
        self.settle_seconds = settle_seconds
        self.start_wait_seconds = start_wait_seconds

    def running_instances(self) -> List[RunningProcessInfo]:
        """Fresh snapshot of every recognised shell process."""
        try:
            processes = self._list_processes(QUICKSHELL_PROCESS_NAME)
        except psutil.Error as e:
            raise ShellReconcileError(f"Could not list shell processes: {e}") from e

        instances = []
        for pid, cmd in processes:
            info = parse_quickshell_command(pid, cmd)
            if info is not None:
                instances.append(info)
        return instances

    async def reconcile(self, tx: Optional[MessageChannel] = None) -> ReconcileResult:
        running = self.running_instances()
        if not running:
            logger.debug("No Quickshell process running, skipping restart check")
            return ReconcileResult(ReconcileOutcome.NOTHING_RUNNING)

        logger.info("Found %d running Quickshell process(es)", len(running))
        for info in running:
            logger.info("  PID %d: %s at %s", info.pid, info.kind.display_name, info.running_path)

        # All instances are the same kind in normal operation
        kind = running[0].kind
        expected = await self._resolve_expected(kind)
        if expected is None:
            logger.warning("Could not determine expected path for %s shell", kind.display_name)
            return ReconcileResult(ReconcileOutcome.EXPECTED_PATH_UNKNOWN, kind)
        logger.info("Expected shell path: %s", expected)

        correct = [i.pid for i in running if i.kind.path_matches(i.running_path, expected)]
        stale = [i.pid for i in running if i.pid not in correct]
        logger.info(
            "Correct path: %d process(es), wrong path: %d process(es)", len(correct), len(stale)
        )

        if not stale:
            return ReconcileResult(ReconcileOutcome.ALREADY_CORRECT, kind)

        if tx is not None:
            await out(tx, "")
            if correct:
                await out(
                    tx,
                    f"  Cleaning up {len(stale)} stale {kind.display_name} shell process(es)...",
                )
            else:
                await out(tx, f"  Restarting {kind.display_name} shell (store path changed)...")

        for pid in stale:
            logger.info("Killing stale quickshell PID %d", pid)
            self._kill(pid)

        await self._sleep(self.settle_seconds)

        if correct:
            logger.info("Kept existing correct shell, cleaned up %d stale process(es)", len(stale))
            return ReconcileResult(ReconcileOutcome.CLEANED_UP, kind, killed=stale)

        launched = await self._launch(kind)
        await self._sleep(self.start_wait_seconds)
        if self.running_instances():
            logger.info("Shell restarted successfully")
        else:
            logger.warning("Shell may not have restarted properly")

        return ReconcileResult(ReconcileOutcome.RESTARTED, kind, killed=stale, launched=launched)


async def launch_shell(kind: ShellKind) -> bool:
    """Start one shell instance, through hyprctl when available."""
    command, args = kind.restart_command

    if shutil.which(DESKTOP_DISPATCHER):
        exec_cmd = " ".join([command, *args])
        ok, _, stderr = await run_capture(DESKTOP_DISPATCHER, ["dispatch", "exec", exec_cmd])
        if not ok:
            logger.warning("hyprctl dispatch failed: %s", stderr.strip())
        return ok

    return launch_detached(command, [os.path.expanduser(arg) for arg in args])


async def restart_shell_if_needed(tx: MessageChannel) -> Optional[str]:
    """Reconcile with the real process table; return the display string."""
    result = await ShellReconciler().reconcile(tx)
    return result.display
