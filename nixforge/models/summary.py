"""Accumulated results of one update run."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

PackageChange = Tuple[str, str, str]  # (name, old version, new version)


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    message: str


@dataclass
class FlakeChange:
    """One flake input whose locked revision moved."""

    name: str
    old_rev: str
    new_rev: str
    commits: List[CommitInfo] = field(default_factory=list)
    total_commits: int = 0
    compare_url: Optional[str] = None

    @property
    def hidden_commits(self) -> int:
        return max(self.total_commits - len(self.commits), 0)


@dataclass
class UpdateSummary:
    """Built stage by stage by the orchestrator; read-only once rendered.

    Each field is written only by the stage that owns it.
    """

    flake_changes: List[FlakeChange] = field(default_factory=list)
    package_changes: List[PackageChange] = field(default_factory=list)
    closure_summary: Optional[str] = None
    rebuild_failed: bool = False
    rebuild_skipped: bool = False
    reboot_reasons: List[str] = field(default_factory=list)
    claude_old: Optional[str] = None
    claude_new: Optional[str] = None
    codex_old: Optional[str] = None
    codex_new: Optional[str] = None
    browser_status: str = ""
    restarted_shell: Optional[str] = None

    @property
    def claude_updated(self) -> bool:
        return _changed(self.claude_old, self.claude_new)

    @property
    def codex_updated(self) -> bool:
        return _changed(self.codex_old, self.codex_new)

    @property
    def success(self) -> bool:
        return not self.rebuild_failed


def _changed(old: Optional[str], new: Optional[str]) -> bool:
    return old is not None and new is not None and old != new
