"""Step list and cursor for a running workflow.

Background tasks report steps by loose free-text names ("Rebuild",
"flake") that do not exactly mirror the labels on screen ("Rebuilding
System", "Flake Update"). `step_matches` bridges the two; the first
matching step wins.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from ..commands.errors import ParsedError

logger = logging.getLogger(__name__)


class StepState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepState.COMPLETE, StepState.FAILED, StepState.SKIPPED)


@dataclass
class StepStatus:
    name: str
    status: StepState = StepState.PENDING


def step_matches(step: StepStatus, step_name: str) -> bool:
    """Check if a tracked step matches a reported step name.

    True when, case-insensitively, the step label contains the reported
    name, the label's first word equals it, or the reported name contains
    that first word.
    """
    step_lower = step.name.lower()
    name_lower = step_name.lower()

    if name_lower in step_lower:
        return True

    words = step_lower.split()
    if words:
        first_word = words[0]
        if first_word == name_lower or first_word in name_lower:
            return True

    return False


class StepTracker:
    """Ordered steps, the cursor of the running step, and the current error.

    One tracker per workflow run; it is dropped with the screen that owns
    it. The cursor only moves forward, and a Failed step stays Failed.
    """

    def __init__(self, names: Iterable[str], start: bool = True):
        self.steps: List[StepStatus] = [StepStatus(name) for name in names]
        self.cursor = 0
        self.error: Optional[str] = None
        if start and self.steps:
            self.steps[0].status = StepState.RUNNING

    def __len__(self) -> int:
        return len(self.steps)

    def find(self, step_name: str) -> Optional[StepStatus]:
        """Return the first step matching `step_name`, or None."""
        return next((s for s in self.steps if step_matches(s, step_name)), None)

    @property
    def current(self) -> Optional[StepStatus]:
        if self.cursor < len(self.steps):
            return self.steps[self.cursor]
        return None

    @property
    def statuses(self) -> List[StepState]:
        return [s.status for s in self.steps]

    def mark_complete(self, step_name: str) -> None:
        self._finish(step_name, StepState.COMPLETE)

    def mark_skipped(self, step_name: str) -> None:
        self._finish(step_name, StepState.SKIPPED)

    def mark_failed(self, step_name: str, error: ParsedError) -> None:
        """Mark the matching step Failed and halt forward progress.

        The cursor does not move and no other step is marked Running.
        """
        step = self.find(step_name)
        if step is not None:
            step.status = StepState.FAILED
        else:
            logger.debug("No step matches failed step %r", step_name)
        self.error = error.summary

    def _finish(self, step_name: str, state: StepState) -> None:
        step = self.find(step_name)
        if step is None:
            logger.debug("No step matches %r", step_name)
        elif step.status is not StepState.FAILED:
            step.status = state

        self.cursor = min(self.cursor + 1, len(self.steps))
        current = self.current
        if current is not None and current.status is StepState.PENDING:
            current.status = StepState.RUNNING

    def snapshot(self) -> "StepTracker":
        """Independent copy for a Complete screen."""
        copy = StepTracker([], start=False)
        copy.steps = [StepStatus(s.name, s.status) for s in self.steps]
        copy.cursor = self.cursor
        copy.error = self.error
        return copy
