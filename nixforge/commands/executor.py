"""Process runner for external commands.

Two ways to run a command:

- `run_capture` / `get_output` collect stdout and stderr and return them
  when the process exits.
- `run_command_cancellable` / `run_command_cancellable_transformed`
  stream every line to a `MessageChannel` as it is produced and honor a
  `CancellationToken`.

A command that cannot be spawned counts as an unsuccessful completion,
never as an exception. Retries are the caller's business.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Type

import psutil

from ..config.constants import STREAM_READ_LIMIT_BYTES
from ..exceptions import CommandFailedError, CommandSpawnError
from .messages import MessageChannel, Stderr, Stdout
from .output_filter import strip_escape_codes

logger = logging.getLogger(__name__)

LineTransform = Callable[[str], Optional[str]]

# How long to wait for a killed child to be reaped before giving up on it
KILL_REAP_TIMEOUT_SECONDS = 5.0


class CancellationToken:
    """Set-once cancellation signal shared by every stage of one workflow run.

    A fresh token is created for each run; cancelling a finished run's token
    has no effect on anything.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class CommandResult(Enum):
    """Outcome of one streamed command: completed (ok or not) or cancelled."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    @classmethod
    def completed(cls, success: bool) -> "CommandResult":
        return cls.SUCCESS if success else cls.FAILURE

    @property
    def succeeded(self) -> bool:
        return self is CommandResult.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self is CommandResult.CANCELLED


def _describe(command: str, args: Sequence[str]) -> str:
    return " ".join([command, *args])


async def run_capture(
    command: str,
    args: Sequence[str],
    cancel: Optional[CancellationToken] = None,
    cwd: Optional[str] = None,
) -> Tuple[bool, str, str]:
    """Run a command to completion and capture its output.

    Returns:
        (success, stdout, stderr). Spawn failures return False with the
        OS error text as stderr. A cancelled run kills the child and
        returns False.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as e:
        logger.warning("Could not start %s: %s", command, e)
        return False, "", str(e)

    communicate = asyncio.ensure_future(process.communicate())
    if cancel is None:
        stdout, stderr = await communicate
    else:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait(
                {communicate, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()

        if cancel.is_cancelled():
            await _kill_and_reap(process, [communicate])
            return False, "", "cancelled"
        stdout, stderr = communicate.result()

    stdout_str = stdout.decode("utf-8", errors="replace")
    stderr_str = stderr.decode("utf-8", errors="replace")

    if process.returncode != 0:
        logger.debug(
            "%s exited %s: %s", _describe(command, args), process.returncode, stderr_str.strip()
        )
    return process.returncode == 0, stdout_str, stderr_str


async def get_output(
    command: str,
    args: Sequence[str],
    cwd: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
) -> str:
    """Run a command and return its trimmed stdout.

    Raises:
        CommandSpawnError: The command could not be started.
        CommandFailedError: The command exited non-zero.
    """
    if shutil.which(command) is None and not os.path.isabs(command):
        raise CommandSpawnError(f"{command} not found", command=command)

    success, stdout, stderr = await run_capture(command, args, cancel=cancel, cwd=cwd)
    if not success:
        raise CommandFailedError(
            f"{command} failed", command=_describe(command, args), stderr=stderr
        )
    return stdout.strip()


def command_exists(command: str) -> bool:
    """Check whether a command is on PATH."""
    return shutil.which(command) is not None


async def run_command_cancellable(
    tx: MessageChannel,
    command: str,
    args: Sequence[str],
    cancel: CancellationToken,
    cwd: Optional[str] = None,
) -> CommandResult:
    """Stream a command's output to `tx` line by line."""
    return await run_command_cancellable_transformed(tx, command, args, cancel, None, cwd=cwd)


async def run_command_cancellable_transformed(
    tx: MessageChannel,
    command: str,
    args: Sequence[str],
    cancel: CancellationToken,
    transform: Optional[LineTransform],
    cwd: Optional[str] = None,
) -> CommandResult:
    """Stream a command's output through `transform` to `tx`.

    Each stdout/stderr line has escape codes stripped, then goes through
    `transform`; a None result drops the line. Cancellation kills the child
    and yields CANCELLED, even if the child already exited successfully.
    """
    if cancel.is_cancelled():
        return CommandResult.CANCELLED

    logger.info("Running: %s", _describe(command, args))
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            limit=STREAM_READ_LIMIT_BYTES,
        )
    except OSError as e:
        logger.error("Failed to start %s: %s", command, e)
        await tx.send(Stderr(f"Failed to start {command}: {e}"))
        return CommandResult.FAILURE

    readers = [
        asyncio.ensure_future(_forward_lines(process.stdout, tx, Stdout, transform)),
        asyncio.ensure_future(_forward_lines(process.stderr, tx, Stderr, transform)),
    ]
    exit_waiter = asyncio.ensure_future(_wait_for_exit(process, readers))
    cancel_waiter = asyncio.ensure_future(cancel.wait())

    try:
        await asyncio.wait({exit_waiter, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _kill_and_reap(process, [*readers, exit_waiter])
        raise
    finally:
        cancel_waiter.cancel()

    if cancel.is_cancelled():
        logger.info("Cancelled: %s", _describe(command, args))
        await _kill_and_reap(process, [*readers, exit_waiter])
        return CommandResult.CANCELLED

    returncode = exit_waiter.result()
    logger.info("%s exited with %s", command, returncode)
    return CommandResult.completed(returncode == 0)


async def _forward_lines(
    stream: Optional[asyncio.StreamReader],
    tx: MessageChannel,
    message_type: Type,
    transform: Optional[LineTransform],
) -> None:
    if stream is None:
        return
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            # Line longer than the reader limit; the buffer was discarded
            logger.warning("Dropped an over-long output line")
            continue
        if not raw:
            return

        line = strip_escape_codes(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        if transform is not None:
            line = transform(line)
            if line is None:
                continue
        await tx.send(message_type(line))


async def _wait_for_exit(
    process: asyncio.subprocess.Process, readers: List["asyncio.Future[None]"]
) -> int:
    # Drain both pipes before reaping so every line is sent before the result
    await asyncio.gather(*readers)
    return await process.wait()


async def _kill_and_reap(
    process: asyncio.subprocess.Process, pending: List["asyncio.Future"]
) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        except PermissionError as e:
            # e.g. a sudo child now running as root
            logger.warning("Could not kill pid %s: %s", process.pid, e)

    for future in pending:
        future.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_REAP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("pid %s did not exit after kill", process.pid)


# =============================================================================
# Process table helpers
# =============================================================================


def list_processes(name_filter: str) -> List[Tuple[int, str]]:
    """List running processes whose name contains `name_filter`.

    Returns:
        (pid, full command line) pairs, like `pgrep -a`.
    """
    own_pid = os.getpid()
    results = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            info = proc.info
            if info["pid"] == own_pid:
                continue
            cmdline = info.get("cmdline") or []
            exe_name = os.path.basename(cmdline[0]) if cmdline else ""
            name = info.get("name") or ""
            if name_filter not in name and name_filter not in exe_name:
                continue
            results.append((info["pid"], " ".join(cmdline) or name))
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return results


def kill_process(pid: int) -> bool:
    """Send SIGTERM to a process. Returns False if it could not be signalled."""
    try:
        psutil.Process(pid).terminate()
        return True
    except psutil.NoSuchProcess:
        logger.debug("Process %s already gone", pid)
        return False
    except psutil.AccessDenied:
        logger.warning("Access denied killing process %s", pid)
        return False


def launch_detached(command: str, args: Sequence[str]) -> bool:
    """Start a command in its own session, detached from our terminal."""
    try:
        subprocess.Popen(
            [command, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        return True
    except OSError as e:
        logger.error("Failed to launch %s: %s", command, e)
        return False
