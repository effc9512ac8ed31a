"""
Step list widget for workflow screens.
"""

from typing import List, Optional

from rich.markup import escape
from textual.widgets import Static

from ..models.steps import StepState, StepStatus

STEP_STYLES = {
    StepState.PENDING: ("○", "dim"),
    StepState.RUNNING: ("→", "bold yellow"),
    StepState.COMPLETE: ("✓", "green"),
    StepState.FAILED: ("✗", "bold red"),
    StepState.SKIPPED: ("-", "dim"),
}


def format_step(step: StepStatus) -> str:
    icon, style = STEP_STYLES[step.status]
    return f"[{style}]{icon} {escape(step.name)}[/{style}]"


class StepProgress(Static):
    """
    Vertical list of steps, one line each.

    Every state has its own icon and color so Pending, Running, Complete,
    Failed and Skipped can be told apart at a glance.
    """

    DEFAULT_CSS = """
    StepProgress {
        width: 28;
        padding: 1 2;
        border-right: solid $primary-darken-2;
    }
    """

    def __init__(self, steps: Optional[List[StepStatus]] = None, id: Optional[str] = None):
        super().__init__(id=id)
        self._steps: List[StepStatus] = list(steps or [])

    def render(self) -> str:
        return self.build_text()

    def build_text(self) -> str:
        if not self._steps:
            return "[dim]No steps[/dim]"
        return "\n".join(format_step(step) for step in self._steps)

    def set_steps(self, steps: List[StepStatus]) -> None:
        self._steps = [StepStatus(s.name, s.status) for s in steps]
        self.refresh()
