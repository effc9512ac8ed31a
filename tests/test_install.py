"""Tests for cloning the configuration repository."""

from unittest.mock import AsyncMock, patch

import pytest

from nixforge.commands.executor import CancellationToken, CommandResult
from nixforge.commands.install import clone_config_repository
from nixforge.commands.messages import Cancelled, CloneComplete

from helpers import collect, stdout_lines

RUNNER = "nixforge.commands.install.run_command_cancellable"
URL = "https://github.com/example/nixos-config.git"


class TestClone:
    """Tests for clone_config_repository."""

    @pytest.mark.asyncio
    async def test_success(self, channel, tmp_path):
        dest = tmp_path / "fresh" / "config"
        runner = AsyncMock(return_value=CommandResult.SUCCESS)
        with patch(RUNNER, runner):
            await clone_config_repository(channel, CancellationToken(), URL, dest)

        messages = collect(channel)
        assert messages[-1] == CloneComplete(success=True)
        assert "  ✓ Configuration repository cloned" in stdout_lines(messages)
        assert runner.await_args.args[1:3] == ("git", ["clone", "--progress", URL, str(dest)])
        assert dest.parent.is_dir()

    @pytest.mark.asyncio
    async def test_failure(self, channel, tmp_path):
        with patch(RUNNER, AsyncMock(return_value=CommandResult.FAILURE)):
            await clone_config_repository(channel, CancellationToken(), URL, tmp_path / "c")

        messages = collect(channel)
        assert messages[-1] == CloneComplete(success=False)
        assert "  ✗ git clone failed" in stdout_lines(messages)

    @pytest.mark.asyncio
    async def test_cancelled(self, channel, tmp_path):
        with patch(RUNNER, AsyncMock(return_value=CommandResult.CANCELLED)):
            await clone_config_repository(channel, CancellationToken(), URL, tmp_path / "c")

        assert collect(channel)[-1] == Cancelled()

    @pytest.mark.asyncio
    async def test_non_empty_destination(self, channel, config_dir):
        (config_dir / "flake.nix").write_text("{}")
        runner = AsyncMock()
        with patch(RUNNER, runner):
            await clone_config_repository(channel, CancellationToken(), URL)

        assert collect(channel)[-1] == CloneComplete(success=False)
        assert runner.await_count == 0
