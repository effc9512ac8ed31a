"""Tests for diff-closures parsing."""

from unittest.mock import AsyncMock, patch

import pytest

from nixforge.commands.executor import CancellationToken
from nixforge.commands.update.packages import (
    format_size,
    last_transition,
    parse_diff_closures,
    parse_package_changes_from_history,
)

DIFF_CLOSURES = """\
Version 41 -> 42:
  firefox: 123.0 → 124.0, +1024.0 KiB
Version 42 -> 43:
  firefox: 124.0 → 125.0, +2048.0 KiB
  git: 2.44.0 → 2.45.1
  \x1b[1mlinux\x1b[0m: 6.8.1 → 6.8.2, -512.0 KiB
  nerd-fonts: +3.0 MiB
"""


class TestLastTransition:
    def test_keeps_final_block(self):
        lines = last_transition(DIFF_CLOSURES)
        assert lines[0] == "  firefox: 124.0 → 125.0, +2048.0 KiB"
        assert len(lines) == 4

    def test_no_header(self):
        assert last_transition("") == []


class TestParseDiffClosures:
    """Tests for parse_diff_closures."""

    def test_version_changes(self):
        result = parse_diff_closures(DIFF_CLOSURES)
        assert result.changes == [
            ("firefox", "124.0", "125.0"),
            ("git", "2.44.0", "2.45.1"),
            ("linux", "6.8.1", "6.8.2"),
        ]

    def test_closure_summary(self):
        result = parse_diff_closures(DIFF_CLOSURES)
        # 2048 - 512 + 3072 KiB
        assert result.closure_summary == "+4.5 MiB (3 paths changed size)"

    def test_size_only_entries_are_not_version_changes(self):
        result = parse_diff_closures("Version 1 -> 2:\n  nerd-fonts: +3.0 MiB\n")
        assert result.changes == []
        assert result.closure_summary == "+3.0 MiB (1 path changed size)"

    def test_empty_output(self):
        result = parse_diff_closures("")
        assert result.changes == []
        assert result.closure_summary is None


@pytest.mark.parametrize(
    "kib,expected",
    [
        (512, "+512.0 KiB"),
        (-2048, "-2.0 MiB"),
        (3 * 1024 * 1024, "+3.0 GiB"),
    ],
)
def test_format_size(kib, expected):
    assert format_size(kib) == expected


class TestFromHistory:
    @pytest.mark.asyncio
    async def test_runs_diff_closures(self):
        with patch(
            "nixforge.commands.update.packages.run_capture",
            AsyncMock(return_value=(True, DIFF_CLOSURES, "")),
        ) as mock_run:
            result = await parse_package_changes_from_history()

        assert mock_run.await_args.args == (
            "nix",
            ["profile", "diff-closures", "--profile", "/nix/var/nix/profiles/system"],
        )
        assert len(result.changes) == 3

    @pytest.mark.asyncio
    async def test_passes_cancellation_token(self):
        token = CancellationToken()
        with patch(
            "nixforge.commands.update.packages.run_capture",
            AsyncMock(return_value=(False, "", "cancelled")),
        ) as mock_run:
            result = await parse_package_changes_from_history(cancel=token)

        assert mock_run.await_args.kwargs["cancel"] is token
        assert result.changes == []

    @pytest.mark.asyncio
    async def test_failure_is_empty(self):
        with patch(
            "nixforge.commands.update.packages.run_capture",
            AsyncMock(return_value=(False, "", "error: no such profile")),
        ):
            result = await parse_package_changes_from_history()

        assert result.changes == []
