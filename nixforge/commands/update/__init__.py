"""System update workflow."""

from .git import (
    LocalChangesAction,
    check_for_updates,
    check_local_changes,
    pop_stash,
    resolve_local_changes,
)
from .orchestrator import run_update, start_update
from .shell import ShellReconciler, restart_shell_if_needed

__all__ = [
    "LocalChangesAction",
    "ShellReconciler",
    "check_for_updates",
    "check_local_changes",
    "pop_stash",
    "resolve_local_changes",
    "restart_shell_if_needed",
    "run_update",
    "start_update",
]
