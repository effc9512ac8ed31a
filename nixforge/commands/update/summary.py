"""Rendering of the end-of-update summary block."""

from typing import List

from ...config.constants import SHORT_REV_LENGTH
from ...models.summary import FlakeChange, UpdateSummary

RULE = "══════════════════════════════════════════════"
THIN_RULE = "─────────────────────────────────────────"


def render_summary(summary: UpdateSummary) -> List[str]:
    """Format an UpdateSummary as narration lines. Does not modify it."""
    lines = [
        "",
        "╔══════════════════════════════════════════════╗",
        "║            Update Summary                    ║",
        "╚══════════════════════════════════════════════╝",
    ]

    if summary.flake_changes:
        lines += ["", "  Flake inputs updated:"]
        for change in summary.flake_changes:
            lines.append("")
            lines.extend(_render_flake_change(change))

    if summary.claude_updated or summary.codex_updated:
        lines += ["", "  CLI tools updated:"]
        if summary.claude_updated:
            lines.append(f"    Claude Code: {summary.claude_old} → {summary.claude_new}")
        if summary.codex_updated:
            lines.append(f"    Codex CLI: {summary.codex_old} → {summary.codex_new}")

    if summary.package_changes:
        lines += ["", "  Packages changed:"]
        lines.extend(f"    {name}: {old} → {new}" for name, old, new in summary.package_changes)

    if summary.closure_summary:
        lines += ["", f"  Closure: {summary.closure_summary}"]

    lines += ["", f"  {THIN_RULE}", ""]

    if summary.rebuild_failed:
        lines.append("  System:      Rebuild failed")
    elif summary.rebuild_skipped:
        lines.append("  System:      Already up to date")
    else:
        lines.append("  System:      Rebuilt")

    if summary.restarted_shell:
        lines.append(f"  Shell:       Restarted {summary.restarted_shell}")

    if summary.claude_old is not None and not summary.claude_updated:
        lines.append(f"  Claude Code: {summary.claude_new or ''}")
    if summary.codex_old is not None and not summary.codex_updated:
        lines.append(f"  Codex CLI:   {summary.codex_new or ''}")

    if summary.browser_status:
        lines.append(f"  Browser:     {summary.browser_status}")

    if summary.reboot_reasons:
        lines.append(f"  Reboot:      Recommended ({', '.join(summary.reboot_reasons)})")

    lines += ["", RULE]
    return lines


def _render_flake_change(change: FlakeChange) -> List[str]:
    if change.total_commits == 0:
        # No commit history (API failure or non-GitHub input)
        lines = [
            f"  {change.name}: {change.old_rev[:SHORT_REV_LENGTH]} → "
            f"{change.new_rev[:SHORT_REV_LENGTH]}"
        ]
        if change.compare_url:
            lines.append(f"    → {change.compare_url}")
        return lines

    plural = "" if change.total_commits == 1 else "s"
    lines = [f"  {change.name} ({change.total_commits} commit{plural}):"]
    lines.extend(f"    {commit.hash} {commit.message}" for commit in change.commits)
    if change.hidden_commits and change.compare_url:
        lines.append(f"    ... and {change.hidden_commits} more → {change.compare_url}")
    return lines
