"""
Screen state for the nixforge console.

`AppState.mode` holds exactly one screen state. Workflow screens go
Running -> Complete; the Running state owns the live step tracker and
output buffer, and the Complete state receives snapshots of them.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from ..commands.executor import CancellationToken
from ..models.output_buffer import OutputBuffer
from ..models.steps import StepTracker
from ..models.summary import CommitInfo

# Plain-text log of what the user saw, kept for the session
SCREEN_LOG_SIZE = 5000


class Workflow(Enum):
    UPDATE = "update"
    INSTALL = "install"


@dataclass
class MainMenu:
    """Idle screen; the startup update check reports here."""


@dataclass
class WorkflowRunning:
    """A workflow whose background task is still sending messages."""
    workflow: Workflow
    steps: StepTracker
    output: OutputBuffer = field(default_factory=OutputBuffer)
    stashed: bool = False


@dataclass
class WorkflowComplete:
    """Final screen of a workflow."""
    workflow: Workflow
    success: bool
    steps: StepTracker
    output: OutputBuffer
    stashed: bool = False


@dataclass
class CloneRepository:
    output: OutputBuffer = field(default_factory=OutputBuffer)


@dataclass
class SelectHost:
    """Host choice after a successful clone; the hosts live on `AppState.hosts`."""


Mode = Union[MainMenu, WorkflowRunning, WorkflowComplete, CloneRepository, SelectHost]


@dataclass
class PendingUpdates:
    """Updates found by the startup check, shown on the main menu."""
    nixos_config: bool = False
    app_profiles: bool = False
    commits: List[CommitInfo] = field(default_factory=list)

    def has_any(self) -> bool:
        return self.nixos_config or self.app_profiles

    def clear(self):
        self.nixos_config = False
        self.app_profiles = False
        self.commits = []


@dataclass
class AppState:
    mode: Mode = field(default_factory=MainMenu)
    error: Optional[str] = None
    cancel_token: Optional[CancellationToken] = None
    reboot_reasons: List[str] = field(default_factory=list)
    show_reboot_confirm: bool = False
    pending_updates: PendingUpdates = field(default_factory=PendingUpdates)
    startup_check_running: bool = False
    hosts: List[str] = field(default_factory=list)
    config_dir: Optional[Path] = None
    screen_log: OutputBuffer = field(default_factory=lambda: OutputBuffer(capacity=SCREEN_LOG_SIZE))

    def begin_workflow(
        self, workflow: Workflow, step_names: List[str], stashed: bool = False
    ) -> CancellationToken:
        """Enter the Running state for a new run and return its fresh token."""
        self.mode = WorkflowRunning(workflow, StepTracker(step_names), stashed=stashed)
        self.error = None
        self.reboot_reasons = []
        self.show_reboot_confirm = False
        self.cancel_token = CancellationToken()
        return self.cancel_token

    def begin_clone(self) -> CancellationToken:
        self.mode = CloneRepository()
        self.error = None
        self.cancel_token = CancellationToken()
        return self.cancel_token

    def cancel(self) -> bool:
        """Signal the active run, if any. Returns whether there was one."""
        if self.cancel_token is None:
            return False
        self.cancel_token.cancel()
        return True

    @property
    def is_running(self) -> bool:
        return isinstance(self.mode, (WorkflowRunning, CloneRepository))

    @property
    def output(self) -> Optional[OutputBuffer]:
        """Output buffer of the current screen, if it has one."""
        if isinstance(self.mode, (WorkflowRunning, WorkflowComplete, CloneRepository)):
            return self.mode.output
        return None

    @property
    def steps(self) -> Optional[StepTracker]:
        if isinstance(self.mode, (WorkflowRunning, WorkflowComplete)):
            return self.mode.steps
        return None

    def log_to_screen(self, line: str):
        self.screen_log.append(line)
