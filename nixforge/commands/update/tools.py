"""Helpers for the auxiliary CLI tools and app profile checks."""

import json
import logging
import re
from typing import Optional

from ...config.constants import (
    APP_RESTORE_COMMAND,
    PROFILE_STATUS_UNKNOWN,
    PROFILE_STATUS_UP_TO_DATE,
)
from ...exceptions import CommandFailedError
from ..executor import CancellationToken, command_exists, run_capture

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r"\d+\.\d+(?:\.\d+)?(?:[-+][0-9A-Za-z.-]+)?")

OUTDATED_MARKERS = ("outdated", "behind", "update available", "updates available")


def clean_version(raw: str) -> str:
    """Reduce `--version` output to the version number.

    "1.0.44 (Claude Code)" -> "1.0.44"; text without a version is returned
    trimmed.
    """
    match = VERSION_RE.search(raw)
    return match.group(0) if match else raw.strip()


async def get_npm_package_version(
    package: str, cancel: Optional[CancellationToken] = None
) -> Optional[str]:
    """Globally installed version of an npm package, or None."""
    ok, stdout, stderr = await run_capture(
        "npm", ["list", "-g", "--depth=0", "--json", package], cancel=cancel
    )
    if not ok and not stdout:
        logger.warning("npm list failed for %s: %s", package, stderr.strip())
        return None
    try:
        data = json.loads(stdout)
    except ValueError:
        logger.warning("Unparseable npm list output for %s", package)
        return None
    return data.get("dependencies", {}).get(package, {}).get("version")


async def check_browser_status(cancel: Optional[CancellationToken] = None) -> str:
    """First line of `app-restore status`.

    Raises:
        CommandFailedError: app-restore exited non-zero.
    """
    ok, stdout, stderr = await run_capture(APP_RESTORE_COMMAND, ["status"], cancel=cancel)
    if not ok:
        raise CommandFailedError(
            "app-restore status failed", command=f"{APP_RESTORE_COMMAND} status", stderr=stderr
        )
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    return lines[0] if lines else PROFILE_STATUS_UP_TO_DATE


async def profiles_need_update() -> bool:
    """Whether app-restore reports outdated browser/app profiles."""
    if not command_exists(APP_RESTORE_COMMAND):
        return False
    try:
        status = await check_browser_status()
    except CommandFailedError as e:
        logger.warning("Profile status check failed: %s", e)
        return False
    if status == PROFILE_STATUS_UNKNOWN:
        return False
    return any(marker in status.lower() for marker in OUTDATED_MARKERS)


async def request_reboot() -> bool:
    """Ask systemd to reboot now."""
    ok, _, stderr = await run_capture("systemctl", ["reboot"])
    if not ok:
        logger.error("systemctl reboot failed: %s", stderr.strip())
    return ok
