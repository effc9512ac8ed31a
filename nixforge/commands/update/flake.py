"""flake.lock fingerprinting and change reporting.

Before `nix flake update` the lock file is hashed and copied aside; after
it, the two versions are compared input by input. GitHub inputs get their
commit history from the compare API.
"""

import asyncio
import hashlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

from ...config.constants import (
    COMMIT_MESSAGE_MAX_CHARS,
    GITHUB_API_TIMEOUT_SECONDS,
    GITHUB_API_URL,
    MAX_DISPLAY_COMMITS,
)
from ...config.settings import flake_lock_backup_path
from ...exceptions import FlakeLockError
from ...models.summary import CommitInfo, FlakeChange

logger = logging.getLogger(__name__)

LOCK_FILE = "flake.lock"


def get_flake_lock_hash(flake_dir: Path) -> Optional[str]:
    """sha256 of flake.lock, or None if it cannot be read."""
    try:
        return hashlib.sha256((flake_dir / LOCK_FILE).read_bytes()).hexdigest()
    except OSError as e:
        logger.warning("Could not hash %s: %s", flake_dir / LOCK_FILE, e)
        return None


def save_flake_lock_backup(flake_dir: Path, backup: Optional[Path] = None) -> bool:
    """Copy flake.lock aside so changes can be diffed after the update."""
    backup = backup or flake_lock_backup_path()
    try:
        shutil.copyfile(flake_dir / LOCK_FILE, backup)
        return True
    except OSError as e:
        logger.warning("Could not back up flake.lock: %s", e)
        return False


def load_lock(path: Path) -> Dict[str, Any]:
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise FlakeLockError(str(e), path=str(path)) from e


def root_inputs(lock: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Map each direct input name to its lock node."""
    nodes = lock.get("nodes", {})
    root = nodes.get(lock.get("root", "root"), {})
    result = {}
    for name, ref in root.get("inputs", {}).items():
        # Follows are lists of path segments, not node names
        if isinstance(ref, str) and ref in nodes:
            result[name] = nodes[ref]
    return result


def diff_locks(
    old_lock: Dict[str, Any], new_lock: Dict[str, Any]
) -> List[Tuple[str, Dict[str, Any], Dict[str, Any]]]:
    """Inputs present in both locks whose locked revision changed."""
    old_inputs = root_inputs(old_lock)
    changed = []
    for name, new_node in sorted(root_inputs(new_lock).items()):
        old_node = old_inputs.get(name)
        if old_node is None:
            continue
        old_rev = old_node.get("locked", {}).get("rev")
        new_rev = new_node.get("locked", {}).get("rev")
        if old_rev and new_rev and old_rev != new_rev:
            changed.append((name, old_node, new_node))
    return changed


def compare_url(node: Dict[str, Any], old_rev: str, new_rev: str) -> Optional[str]:
    locked = node.get("locked", {})
    if locked.get("type") != "github":
        return None
    return f"https://github.com/{locked['owner']}/{locked['repo']}/compare/{old_rev}...{new_rev}"


def fetch_github_commits(
    owner: str, repo: str, old_rev: str, new_rev: str
) -> Tuple[List[CommitInfo], int]:
    """Commits between two revisions via the GitHub compare API.

    Returns the newest MAX_DISPLAY_COMMITS commits (oldest first) and the
    total count. Any HTTP or network failure yields ([], 0).
    """
    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/compare/{old_rev}...{new_rev}"
    headers = {"Accept": "application/vnd.github+json"}
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.get(url, headers=headers, timeout=GITHUB_API_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Could not fetch commits for %s/%s: %s", owner, repo, e)
        return [], 0

    commits = []
    for item in data.get("commits", [])[-MAX_DISPLAY_COMMITS:]:
        message = item.get("commit", {}).get("message", "").splitlines()
        subject = message[0] if message else ""
        if len(subject) > COMMIT_MESSAGE_MAX_CHARS:
            subject = subject[: COMMIT_MESSAGE_MAX_CHARS - 3] + "..."
        commits.append(CommitInfo(hash=item.get("sha", "")[:7], message=subject))

    return commits, int(data.get("total_commits", len(commits)))


def build_flake_changes(old_lock: Dict[str, Any], new_lock: Dict[str, Any]) -> List[FlakeChange]:
    changes = []
    for name, old_node, new_node in diff_locks(old_lock, new_lock):
        old_rev = old_node["locked"]["rev"]
        new_rev = new_node["locked"]["rev"]
        change = FlakeChange(
            name=name,
            old_rev=old_rev,
            new_rev=new_rev,
            compare_url=compare_url(new_node, old_rev, new_rev),
        )
        locked = new_node.get("locked", {})
        if locked.get("type") == "github":
            change.commits, change.total_commits = fetch_github_commits(
                locked["owner"], locked["repo"], old_rev, new_rev
            )
        changes.append(change)
    return changes


async def parse_flake_changes(flake_dir: Path, backup: Optional[Path] = None) -> List[FlakeChange]:
    """Compare the pre-update backup with the current flake.lock.

    Raises:
        FlakeLockError: Either lock file is missing or not valid JSON.
    """
    backup = backup or flake_lock_backup_path()
    old_lock = load_lock(backup)
    new_lock = load_lock(flake_dir / LOCK_FILE)
    # requests is blocking; keep it off the event loop
    return await asyncio.to_thread(build_flake_changes, old_lock, new_lock)
