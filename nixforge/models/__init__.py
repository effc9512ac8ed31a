"""Data models for nixforge workflows."""

from .output_buffer import OutputBuffer
from .steps import StepState, StepStatus, StepTracker, step_matches
from .summary import CommitInfo, FlakeChange, PackageChange, UpdateSummary

__all__ = [
    "CommitInfo",
    "FlakeChange",
    "OutputBuffer",
    "PackageChange",
    "StepState",
    "StepStatus",
    "StepTracker",
    "UpdateSummary",
    "step_matches",
]
