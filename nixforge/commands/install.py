"""Fetching the NixOS configuration repository for a fresh install."""

import logging
from pathlib import Path
from typing import Optional

from ..config.settings import nixos_config_dir
from .executor import CancellationToken, CommandResult, run_command_cancellable
from .messages import Cancelled, CloneComplete, MessageChannel, out

logger = logging.getLogger(__name__)


async def clone_config_repository(
    tx: MessageChannel,
    cancel: CancellationToken,
    url: str,
    dest: Optional[Path] = None,
) -> None:
    """Clone `url` into the config dir and report `CloneComplete`.

    An existing non-empty destination is reported as a failed clone
    rather than overwritten.
    """
    dest = dest or nixos_config_dir()

    if dest.exists() and any(dest.iterdir()):
        logger.warning("Clone destination %s is not empty", dest)
        await out(tx, f"  ✗ {dest} already exists and is not empty")
        await tx.send(CloneComplete(success=False))
        return

    await out(tx, f"Cloning {url} into {dest}...")
    dest.parent.mkdir(parents=True, exist_ok=True)

    result = await run_command_cancellable(
        tx, "git", ["clone", "--progress", url, str(dest)], cancel
    )
    if result is CommandResult.CANCELLED:
        await tx.send(Cancelled())
        return

    if result.succeeded:
        await out(tx, "  ✓ Configuration repository cloned")
    else:
        await out(tx, "  ✗ git clone failed")
    await tx.send(CloneComplete(success=result.succeeded))
