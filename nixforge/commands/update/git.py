"""Git operations on the NixOS configuration checkout.

Everything goes through the `git` binary via the process runner; the
checkout is whatever `nixos_config_dir()` points at.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from ...config.settings import nixos_config_dir
from ...exceptions import GitError
from ..errors import ErrorContext, ParsedError
from ..executor import CancellationToken, run_capture
from ..messages import MessageChannel, StepComplete, StepFailed, StepSkipped, UpdatesAvailable, out
from .tools import profiles_need_update

logger = logging.getLogger(__name__)

PULL_STEP = "pull"


class LocalChangesAction(Enum):
    """How to deal with uncommitted changes before an update."""

    OVERWRITE = "overwrite"
    STASH = "stash"
    CANCEL = "cancel"

    @property
    def label(self) -> str:
        return {
            LocalChangesAction.OVERWRITE: "Overwrite - Discard all local changes",
            LocalChangesAction.STASH: "Stash - Save changes, restore after update",
            LocalChangesAction.CANCEL: "Cancel - Keep changes, abort update",
        }[self]


def is_git_checkout(path: Optional[Path] = None) -> bool:
    return ((path or nixos_config_dir()) / ".git").exists()


def _git(path: Path, *args: str) -> Tuple[str, List[str]]:
    return "git", ["-C", str(path), *args]


def _cancelled(cancel: Optional[CancellationToken]) -> bool:
    return cancel is not None and cancel.is_cancelled()


async def check_local_changes(path: Optional[Path] = None) -> List[str]:
    """List files with uncommitted changes (empty if not a git checkout)."""
    path = path or nixos_config_dir()
    if not is_git_checkout(path):
        return []

    ok, stdout, _ = await run_capture(*_git(path, "status", "--porcelain"))
    if not ok:
        return []

    files = []
    for line in stdout.splitlines():
        if not line:
            continue
        # "XY filename": two status columns and a space
        files.append(line[3:] if len(line) > 3 else line)
    return files


async def get_default_branch(path: Optional[Path] = None) -> str:
    """Remote default branch: origin/HEAD, else main if it exists, else master."""
    path = path or nixos_config_dir()

    ok, stdout, _ = await run_capture(*_git(path, "symbolic-ref", "refs/remotes/origin/HEAD"))
    prefix = "refs/remotes/origin/"
    if ok and stdout.strip().startswith(prefix):
        return stdout.strip()[len(prefix):]

    ok, _, _ = await run_capture(*_git(path, "rev-parse", "--verify", "origin/main"))
    if ok:
        return "main"

    return "master"


async def count_unpulled_commits(path: Path, cancel: Optional[CancellationToken] = None) -> int:
    """Commits on origin/main (falling back to origin/master) not in HEAD."""
    for branch in ("main", "master"):
        ok, stdout, _ = await run_capture(
            *_git(path, "rev-list", f"HEAD..origin/{branch}", "--count"), cancel=cancel
        )
        if ok:
            try:
                return int(stdout.strip())
            except ValueError:
                return 0
        if _cancelled(cancel):
            return 0
    return 0


async def resolve_local_changes(action: LocalChangesAction, path: Optional[Path] = None) -> bool:
    """Apply the operator's choice. Returns True when changes were stashed.

    Raises:
        GitError: The stash or reset failed, or the action was CANCEL.
    """
    path = path or nixos_config_dir()

    if action is LocalChangesAction.CANCEL:
        raise GitError("Update cancelled: local changes kept")

    if action is LocalChangesAction.STASH:
        ok, _, stderr = await run_capture(
            *_git(path, "stash", "push", "--include-untracked", "-m", "nixforge update")
        )
        if not ok:
            raise GitError("git stash failed", stderr=stderr.strip())
        logger.info("Stashed local changes in %s", path)
        return True

    ok, _, stderr = await run_capture(*_git(path, "reset", "--hard", "HEAD"))
    if not ok:
        raise GitError("git reset failed", stderr=stderr.strip())
    logger.info("Discarded local changes in %s", path)
    return False


async def pop_stash(path: Optional[Path] = None) -> List[str]:
    """Restore stashed changes and describe the outcome as display lines."""
    path = path or nixos_config_dir()
    lines = ["", "Restoring stashed changes..."]

    ok, stdout, stderr = await run_capture(*_git(path, "stash", "pop"))
    if ok:
        lines.append("  ✓ Stashed changes restored successfully")
    else:
        logger.warning("git stash pop failed: %s", stderr.strip())
        lines.append("  ✗ Failed to restore stashed changes")
        if stderr.strip():
            lines.append(f"    {stderr.strip()}")
        lines.append("    Run 'git stash pop' manually to restore")

    lines.extend(f"    {line}" for line in stdout.splitlines() if line)
    return lines


async def pull_config_updates(
    tx: MessageChannel,
    path: Optional[Path] = None,
    cancel: Optional[CancellationToken] = None,
) -> None:
    """Fast-forward the checkout if the remote has new commits.

    Non-fatal: every way this can go wrong ends in a skipped or failed
    "pull" step and the update carries on with the local checkout. A
    cancelled git command ends the stage without a step message.
    """
    path = path or nixos_config_dir()

    if not is_git_checkout(path):
        await out(tx, "  - Not a git repository, skipping pull")
        await tx.send(StepSkipped(PULL_STEP))
        return

    fetch_ok, _, fetch_err = await run_capture(*_git(path, "fetch", "origin"), cancel=cancel)
    if _cancelled(cancel):
        return
    if not fetch_ok:
        logger.warning("git fetch failed: %s", fetch_err.strip())
        await out(tx, "  - Unable to fetch from remote")
        await tx.send(StepSkipped(PULL_STEP))
        return

    count = await count_unpulled_commits(path, cancel)
    if _cancelled(cancel):
        return
    if count == 0:
        await out(tx, "  - No configuration updates to pull")
        await tx.send(StepSkipped(PULL_STEP))
        return

    pull_ok, _, stderr = await run_capture(*_git(path, "pull", "--ff-only"), cancel=cancel)
    if _cancelled(cancel):
        return
    if pull_ok:
        await out(tx, f"  ✓ Pulled {count} commit(s)")
        await tx.send(StepComplete(PULL_STEP))
    else:
        await out(tx, "  ✗ Failed to pull configuration updates")
        error = ParsedError.from_stderr(stderr, ErrorContext(operation="Git pull"))
        await tx.send(StepFailed(PULL_STEP, error))


async def list_unpulled_commits(path: Path, branch: str) -> List[Tuple[str, str]]:
    ok, stdout, _ = await run_capture(
        *_git(path, "log", f"HEAD..origin/{branch}", "--format=%h %s")
    )
    if not ok:
        return []
    commits = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        commit_hash, _, subject = line.partition(" ")
        commits.append((commit_hash, subject))
    return commits


async def check_for_updates(tx: MessageChannel, path: Optional[Path] = None) -> None:
    """Startup check: report whether the remote has configuration updates."""
    path = path or nixos_config_dir()
    commits: List[Tuple[str, str]] = []

    if is_git_checkout(path):
        fetch_ok, _, _ = await run_capture(*_git(path, "fetch", "origin"))
        if fetch_ok:
            branch = await get_default_branch(path)
            commits = await list_unpulled_commits(path, branch)
        else:
            logger.warning("Startup fetch failed; assuming no configuration updates")

    app_profiles = await profiles_need_update()
    await tx.send(
        UpdatesAvailable(
            nixos_config=bool(commits),
            app_profiles=app_profiles,
            commits=tuple(commits),
        )
    )
