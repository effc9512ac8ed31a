"""Tests for the update pipeline with every external command faked."""

import asyncio
import os
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from nixforge.commands.executor import CancellationToken, CommandResult
from nixforge.commands.messages import (
    Cancelled,
    Done,
    RebootRecommended,
    StepFailed,
    StepSkipped,
)
from nixforge.commands.update import orchestrator
from nixforge.commands.update.git import PULL_STEP
from nixforge.commands.update.packages import PackageCompareResult
from nixforge.exceptions import CommandFailedError, ShellReconcileError
from nixforge.models.summary import FlakeChange

from helpers import collect, messages_of, step_events, stdout_lines

MODULE = "nixforge.commands.update.orchestrator"


@pytest.fixture
def pipeline(monkeypatch):
    """Patch every collaborator of run_update with a well-behaved fake.

    By default flake.lock changes and everything succeeds.
    """

    async def pull(tx, flake_dir, cancel=None):
        await tx.send(StepSkipped(PULL_STEP))

    fakes = SimpleNamespace(
        pull_config_updates=AsyncMock(side_effect=pull),
        get_flake_lock_hash=Mock(side_effect=["before", "after"]),
        save_flake_lock_backup=Mock(return_value=True),
        run_command_cancellable_transformed=AsyncMock(return_value=CommandResult.SUCCESS),
        run_command_cancellable=AsyncMock(return_value=CommandResult.SUCCESS),
        parse_flake_changes=AsyncMock(return_value=[]),
        parse_package_changes_from_history=AsyncMock(return_value=PackageCompareResult()),
        restart_shell_if_needed=AsyncMock(return_value=None),
        detect_reboot_reasons=AsyncMock(return_value=[]),
        command_exists=Mock(return_value=False),
    )
    for name, fake in vars(fakes).items():
        monkeypatch.setattr(f"{MODULE}.{name}", fake)
    return fakes


async def run(channel, token=None):
    await orchestrator.run_update(channel, token or CancellationToken())
    return collect(channel)


class TestSuccessfulRuns:
    """Tests for runs that end in Done(True)."""

    @pytest.mark.asyncio
    async def test_unchanged_lock_skips_rebuild(self, pipeline, channel):
        pipeline.get_flake_lock_hash.side_effect = ["same", "same"]

        messages = await run(channel)

        assert ("StepSkipped", "Rebuild") in step_events(messages)
        assert pipeline.run_command_cancellable.await_count == 0
        assert pipeline.parse_flake_changes.await_count == 0
        assert pipeline.detect_reboot_reasons.await_count == 0
        assert "  System:      Already up to date" in stdout_lines(messages)
        assert messages[-1] == Done(success=True)

    @pytest.mark.asyncio
    async def test_step_order(self, pipeline, channel):
        messages = await run(channel)

        assert step_events(messages) == [
            ("StepSkipped", PULL_STEP),
            ("StepComplete", "flake"),
            ("StepComplete", "Rebuild"),
            ("StepComplete", "Packages"),
            ("StepSkipped", "Claude"),
            ("StepSkipped", "Codex"),
            ("StepSkipped", "browser"),
        ]
        assert messages[-1] == Done(success=True)

    @pytest.mark.asyncio
    async def test_rebuild_command(self, pipeline, channel, config_dir):
        await run(channel)

        args = pipeline.run_command_cancellable.await_args.args
        assert args[1] == "sudo"
        assert args[2] == ["nixos-rebuild", "switch", "--flake", f"{config_dir}#testhost"]

        flake_args = pipeline.run_command_cancellable_transformed.await_args.args
        assert flake_args[1:3] == ("nix", ["flake", "update", "--flake", str(config_dir)])

    @pytest.mark.asyncio
    async def test_shell_restart_and_reboot(self, pipeline, channel):
        pipeline.restart_shell_if_needed.return_value = "Noctalia"
        pipeline.detect_reboot_reasons.return_value = ["Kernel updated"]

        messages = await run(channel)
        lines = stdout_lines(messages)

        assert "  ✓ Restarted Noctalia shell" in lines
        assert "  Shell:       Restarted Noctalia" in lines
        assert "  Reboot:      Recommended (Kernel updated)" in lines
        assert messages[-2] == RebootRecommended(("Kernel updated",))
        assert messages[-1] == Done(success=True)

    @pytest.mark.asyncio
    async def test_flake_changes_in_summary(self, pipeline, channel):
        pipeline.parse_flake_changes.return_value = [
            FlakeChange(name="nixpkgs", old_rev="a" * 40, new_rev="b" * 40)
        ]

        lines = stdout_lines(await run(channel))

        assert "  Flake inputs updated:" in lines
        assert "  nixpkgs: aaaaaaa → bbbbbbb" in lines

    @pytest.mark.asyncio
    async def test_shell_error_stays_local(self, pipeline, channel):
        pipeline.restart_shell_if_needed.side_effect = ShellReconcileError("no process table")

        messages = await run(channel)

        assert ("StepComplete", "Rebuild") in step_events(messages)
        assert messages[-1] == Done(success=True)

    @pytest.mark.asyncio
    async def test_pull_error_is_not_fatal(self, pipeline, channel):
        pipeline.pull_config_updates.side_effect = CommandFailedError("git failed")

        messages = await run(channel)

        assert messages[-1] == Done(success=True)


class TestFailures:
    """Tests for failed stages."""

    @pytest.mark.asyncio
    async def test_rebuild_failure_continues_reporting(self, pipeline, channel):
        pipeline.run_command_cancellable.return_value = CommandResult.FAILURE

        messages = await run(channel)
        events = step_events(messages)

        assert ("StepFailed", "Rebuild") in events
        for later in ("Packages", "Claude", "Codex", "browser"):
            assert any(step == later for _, step in events)
        assert pipeline.restart_shell_if_needed.await_count == 0
        assert pipeline.detect_reboot_reasons.await_count == 0
        assert "  System:      Rebuild failed" in stdout_lines(messages)
        assert messages[-1] == Done(success=False)

    @pytest.mark.asyncio
    async def test_rebuild_failure_error_text(self, pipeline, channel):
        pipeline.run_command_cancellable.return_value = CommandResult.FAILURE

        failed = messages_of(await run(channel), StepFailed)

        assert failed[0].error.summary == "System rebuild failed"

    @pytest.mark.asyncio
    async def test_flake_failure_ends_run(self, pipeline, channel):
        pipeline.run_command_cancellable_transformed.return_value = CommandResult.FAILURE

        messages = await run(channel)

        assert ("StepFailed", "flake") in step_events(messages)
        assert pipeline.run_command_cancellable.await_count == 0
        assert messages[-1] == Done(success=False)
        assert len(messages_of(messages, Done)) == 1


class TestCancellation:
    """Tests for cancellation between and within stages."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, pipeline, channel):
        token = CancellationToken()
        token.cancel()

        messages = await run(channel, token)

        assert messages[-1] == Cancelled()
        assert messages_of(messages, Done) == []
        assert pipeline.pull_config_updates.await_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_flake_update(self, pipeline, channel):
        pipeline.run_command_cancellable_transformed.return_value = CommandResult.CANCELLED

        messages = await run(channel)

        assert "  ⊘ Flake update cancelled" in stdout_lines(messages)
        assert messages[-1] == Cancelled()
        assert messages_of(messages, Done) == []

    @pytest.mark.asyncio
    async def test_cancelled_rebuild(self, pipeline, channel):
        pipeline.run_command_cancellable.return_value = CommandResult.CANCELLED

        messages = await run(channel)

        assert messages[-1] == Cancelled()
        assert pipeline.parse_package_changes_from_history.await_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_between_stages(self, pipeline, channel):
        token = CancellationToken()

        async def cancel_during_packages(cancel=None):
            token.cancel()
            return PackageCompareResult()

        pipeline.parse_package_changes_from_history.side_effect = cancel_during_packages

        messages = await run(channel, token)

        assert messages[-1] == Cancelled()
        assert "  ⊘ Package comparison cancelled" in stdout_lines(messages)
        assert ("StepComplete", "Packages") not in step_events(messages)
        assert not any(step == "Claude" for _, step in step_events(messages))

    @pytest.mark.asyncio
    async def test_token_reaches_captured_stages(self, pipeline, channel):
        token = CancellationToken()

        await run(channel, token)

        assert pipeline.pull_config_updates.await_args.kwargs["cancel"] is token
        assert pipeline.parse_package_changes_from_history.await_args.kwargs["cancel"] is token

    @pytest.mark.asyncio
    async def test_cancelled_during_tool_update(self, pipeline, monkeypatch, channel):
        token = CancellationToken()

        async def cancel_claude(tx, summary, cancel):
            assert cancel is token
            token.cancel()

        monkeypatch.setattr(f"{MODULE}.update_claude_code", cancel_claude)

        messages = await run(channel, token)

        assert messages[-1] == Cancelled()
        assert messages_of(messages, Done) == []
        assert not any(step in ("Codex", "browser") for _, step in step_events(messages))

    @pytest.mark.asyncio
    async def test_cancelled_during_last_stage(self, pipeline, monkeypatch, channel):
        token = CancellationToken()

        async def cancel_profiles(tx, summary, cancel):
            token.cancel()

        monkeypatch.setattr(f"{MODULE}.check_app_profiles", cancel_profiles)

        messages = await run(channel, token)

        assert messages[-1] == Cancelled()
        assert "  System:      Rebuilt" not in stdout_lines(messages)
        assert messages_of(messages, Done) == []


class TestStartUpdate:
    @pytest.mark.asyncio
    async def test_internal_fault_fails_running_step(self, pipeline, channel):
        pipeline.get_flake_lock_hash.side_effect = RuntimeError("boom")

        await orchestrator.start_update(channel, CancellationToken())
        messages = collect(channel)

        assert messages[-2].step == "flake"
        assert isinstance(messages[-2], StepFailed)
        assert messages[-1] == Done(success=False)

    @pytest.mark.asyncio
    async def test_fault_in_package_diff_keeps_flake_complete(self, pipeline, channel):
        pipeline.parse_package_changes_from_history.side_effect = RuntimeError("bad diff")

        await orchestrator.start_update(channel, CancellationToken())
        messages = collect(channel)

        assert ("StepComplete", "flake") in step_events(messages)
        assert [m.step for m in messages_of(messages, StepFailed)] == ["Packages"]
        assert messages[-1] == Done(success=False)

    @pytest.mark.asyncio
    async def test_fault_after_all_steps_reports_no_step(self, pipeline, monkeypatch, channel):
        monkeypatch.setattr(f"{MODULE}.render_summary", Mock(side_effect=RuntimeError("render")))

        await orchestrator.start_update(channel, CancellationToken())
        messages = collect(channel)

        assert messages_of(messages, StepFailed) == []
        assert "  ✗ Update failed: render" in stdout_lines(messages)
        assert messages[-1] == Done(success=False)

    @pytest.mark.asyncio
    async def test_returns_task(self, pipeline, channel):
        task = orchestrator.start_update(channel, CancellationToken())
        assert isinstance(task, asyncio.Future)
        await task
        assert collect(channel)[-1] == Done(success=True)


class TestTools:
    """Tests for the Claude Code, Codex and profile stages."""

    @pytest.mark.asyncio
    async def test_claude_update_records_versions(self, monkeypatch, channel, isolated_env):
        claude = isolated_env["home"] / ".local" / "bin" / "claude"
        claude.parent.mkdir(parents=True)
        claude.touch()
        versions = iter(["1.0.1 (Claude Code)", "1.0.2 (Claude Code)"])
        monkeypatch.setattr(
            f"{MODULE}.get_output", AsyncMock(side_effect=lambda *a, **kw: next(versions))
        )
        monkeypatch.setattr(f"{MODULE}.run_capture", AsyncMock(return_value=(True, "", "")))
        summary = orchestrator.UpdateSummary()

        await orchestrator.update_claude_code(channel, summary)

        assert (summary.claude_old, summary.claude_new) == ("1.0.1", "1.0.2")
        assert summary.claude_updated
        assert step_events(collect(channel)) == [("StepComplete", "Claude")]

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    @pytest.mark.asyncio
    async def test_claude_update_stops_on_cancel(self, channel, isolated_env):
        claude = isolated_env["home"] / ".local" / "bin" / "claude"
        claude.parent.mkdir(parents=True)
        started_marker = isolated_env["home"] / "update-started"
        claude.write_text(
            "#!/bin/sh\n"
            f'if [ "$1" = update ]; then touch "{started_marker}"; exec sleep 10; fi\n'
            'echo "1.0.1 (Claude Code)"\n'
        )
        claude.chmod(0o755)
        token = CancellationToken()

        async def cancel_once_update_runs():
            while not started_marker.exists():
                await asyncio.sleep(0.02)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_once_update_runs())
        summary = orchestrator.UpdateSummary()

        started = time.monotonic()
        await orchestrator.update_claude_code(channel, summary, token)
        await canceller

        assert time.monotonic() - started < 5
        assert summary.claude_old == "1.0.1"
        assert summary.claude_new is None
        messages = collect(channel)
        assert step_events(messages) == []
        assert "  ⊘ Claude Code update cancelled" in stdout_lines(messages)

    @pytest.mark.asyncio
    async def test_codex_not_installed(self, channel):
        summary = orchestrator.UpdateSummary()
        await orchestrator.update_codex_cli(channel, summary)
        assert step_events(collect(channel)) == [("StepSkipped", "Codex")]
        assert summary.codex_old is None

    @pytest.mark.asyncio
    async def test_codex_update(self, monkeypatch, channel, isolated_env):
        codex = isolated_env["home"] / ".npm-global" / "bin" / "codex"
        codex.parent.mkdir(parents=True)
        codex.touch()
        monkeypatch.setattr(
            f"{MODULE}.get_npm_package_version", AsyncMock(side_effect=["0.1.0", "0.2.0"])
        )
        run_capture = AsyncMock(return_value=(True, "", ""))
        monkeypatch.setattr(f"{MODULE}.run_capture", run_capture)
        summary = orchestrator.UpdateSummary()

        await orchestrator.update_codex_cli(channel, summary)

        assert run_capture.await_args.args == ("npm", ["update", "-g", "@openai/codex"])
        assert summary.codex_updated

    @pytest.mark.asyncio
    async def test_profiles_not_configured(self, monkeypatch, channel):
        monkeypatch.setattr(f"{MODULE}.command_exists", Mock(return_value=True))
        summary = orchestrator.UpdateSummary()

        await orchestrator.check_app_profiles(channel, summary)

        assert summary.browser_status == "not configured"
        assert step_events(collect(channel)) == [("StepComplete", "browser")]

    @pytest.mark.asyncio
    async def test_profiles_status_failure_is_unknown(self, monkeypatch, channel, isolated_env):
        config = isolated_env["home"] / ".config" / "app-backup" / "config.toml"
        config.parent.mkdir(parents=True)
        config.touch()
        monkeypatch.setattr(f"{MODULE}.command_exists", Mock(return_value=True))
        monkeypatch.setattr(
            f"{MODULE}.check_browser_status",
            AsyncMock(side_effect=CommandFailedError("app-restore status failed")),
        )
        summary = orchestrator.UpdateSummary()

        await orchestrator.check_app_profiles(channel, summary)

        assert summary.browser_status == "unknown"


class TestRebootReasons:
    def test_bootloader_and_firmware(self):
        reasons = orchestrator.package_reboot_reasons(
            [("limine", "8.0", "8.1"), ("linux-firmware", "2024", "2025")]
        )
        assert reasons == ["Bootloader updated", "Firmware updated"]

    def test_exact_firmware_name(self):
        assert orchestrator.package_reboot_reasons([("fwupd", "1", "2")]) == ["Firmware updated"]

    def test_unrelated_packages(self):
        assert orchestrator.package_reboot_reasons([("firefox", "1", "2")]) == []

    @pytest.mark.asyncio
    async def test_kernel_change(self, monkeypatch):
        links = {
            "/run/booted-system/kernel": "/nix/store/old-linux/bzImage",
            "/run/current-system/kernel": "/nix/store/new-linux/bzImage",
        }
        monkeypatch.setattr(
            f"{MODULE}.get_output", AsyncMock(side_effect=lambda cmd, args: links[args[0]])
        )

        reasons = await orchestrator.detect_reboot_reasons([("grub", "1", "2")])

        assert reasons == ["Kernel updated", "Bootloader updated"]

    @pytest.mark.asyncio
    async def test_unreadable_kernel_links(self, monkeypatch):
        monkeypatch.setattr(
            f"{MODULE}.get_output", AsyncMock(side_effect=CommandFailedError("readlink failed"))
        )
        assert await orchestrator.detect_reboot_reasons([]) == []
