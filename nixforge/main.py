#!/usr/bin/env python3
"""
Main CLI entry point for nixforge
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from nixforge import __version__
from nixforge.app.dispatcher import CLONE_TROUBLESHOOTING
from nixforge.app.state import AppState, SelectHost, Workflow, WorkflowComplete
from nixforge.commands.executor import CancellationToken
from nixforge.commands.install import clone_config_repository
from nixforge.commands.messages import Done, MessageChannel
from nixforge.commands.update.git import (
    LocalChangesAction,
    check_for_updates,
    check_local_changes,
    resolve_local_changes,
)
from nixforge.commands.update.orchestrator import start_update
from nixforge.commands.update.shell import ShellReconciler
from nixforge.config.constants import UPDATE_STEPS
from nixforge.config.settings import get_env_info, log_file_path, validate_all_env_vars
from nixforge.exceptions import GitError
from nixforge.utils.error_handling import handle_cli_error
from nixforge.utils.logging_utils import setup_logging
from nixforge.utils.output import console, is_non_interactive

app = typer.Typer(help="NixOS maintenance console", no_args_is_help=False)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    nixforge - NixOS maintenance console

    Runs the full system update (pull, flake update, rebuild, package diff,
    tool updates) and reports progress live.

    [bold]Examples:[/bold]

    Open the update screen:
        [cyan]nixforge[/cyan]

    Update without the TUI:
        [cyan]nixforge update --local-changes stash[/cyan]
    """
    setup_logging(verbose=verbose)
    for problem in validate_all_env_vars():
        console.print(f"[yellow]Warning: {problem}[/yellow]")

    if ctx.invoked_subcommand is None:
        tui(flake_dir=None)


def _resolve_local_changes_interactively(
    flake_dir: Optional[Path], choice: Optional[LocalChangesAction]
) -> Optional[bool]:
    """Handle uncommitted changes before an update.

    Returns whether changes were stashed, or None if the update should not
    start.
    """
    files = asyncio.run(check_local_changes(flake_dir))
    if not files:
        return False

    console.print("[yellow]The configuration has local changes:[/yellow]")
    for name in files:
        console.print(f"  {name}")

    if choice is None:
        if is_non_interactive():
            console.print("[red]Pass --local-changes to choose what to do with them[/red]")
            return None
        for action in LocalChangesAction:
            console.print(f"  [{action.value[0]}] {action.label}")
        answer = typer.prompt("Choice", default="c").strip().lower()
        choice = next(
            (a for a in LocalChangesAction if a.value.startswith(answer)), LocalChangesAction.CANCEL
        )

    try:
        return asyncio.run(resolve_local_changes(choice, flake_dir))
    except GitError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        return None


@app.command()
@handle_cli_error("running update")
def update(
    flake_dir: Optional[Path] = typer.Option(
        None, "--flake-dir", "-f", help="NixOS flake checkout (default: NIXFORGE_CONFIG_DIR)"
    ),
    local_changes: Optional[LocalChangesAction] = typer.Option(
        None, "--local-changes", help="What to do with uncommitted changes"
    ),
):
    """Update the system without the TUI."""
    from nixforge.ui.headless import run_headless, steps_table

    stashed = _resolve_local_changes_interactively(flake_dir, local_changes)
    if stashed is None:
        raise typer.Exit(1)

    state = AppState(config_dir=flake_dir)
    token = state.begin_workflow(Workflow.UPDATE, UPDATE_STEPS, stashed=stashed)

    async def workflow(tx: MessageChannel, cancel: CancellationToken) -> None:
        await start_update(tx, cancel, flake_dir)

    asyncio.run(run_headless(state, token, workflow))

    steps = state.steps
    if steps is not None:
        console.print()
        console.print(steps_table(steps))

    mode = state.mode
    if isinstance(mode, WorkflowComplete) and mode.success:
        if state.reboot_reasons:
            console.print(f"[yellow]Reboot recommended: {', '.join(state.reboot_reasons)}[/yellow]")
        return
    raise typer.Exit(1)


@app.command()
def tui(
    flake_dir: Optional[Path] = typer.Option(
        None, "--flake-dir", "-f", help="NixOS flake checkout (default: NIXFORGE_CONFIG_DIR)"
    ),
):
    """Run the update in the full-screen TUI."""
    from nixforge.ui.update_app import UpdateApp

    try:
        success = UpdateApp(flake_dir=flake_dir).run()
    except KeyboardInterrupt:
        return
    except Exception as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1) from e
    if success is False:
        raise typer.Exit(1)


@app.command()
@handle_cli_error("checking for updates")
def check(
    flake_dir: Optional[Path] = typer.Option(None, "--flake-dir", "-f"),
):
    """Check whether configuration or profile updates are waiting."""
    from nixforge.ui.headless import run_headless

    state = AppState(config_dir=flake_dir)
    state.startup_check_running = True
    token = state.cancel_token = CancellationToken()

    async def workflow(tx: MessageChannel, cancel: CancellationToken) -> None:
        await check_for_updates(tx, flake_dir)
        await tx.send(Done(success=True))

    asyncio.run(run_headless(state, token, workflow))

    pending = state.pending_updates
    if not pending.has_any():
        console.print("[green]✓ Everything is up to date[/green]")
        return

    if pending.nixos_config:
        console.print(f"[yellow]{len(pending.commits)} configuration commit(s) to pull:[/yellow]")
        for commit in pending.commits:
            console.print(f"  [cyan]{commit.hash}[/cyan] {commit.message}")
    if pending.app_profiles:
        console.print("[yellow]App profiles have updates[/yellow]")


@app.command("reconcile-shell")
@handle_cli_error("reconciling the desktop shell")
def reconcile_shell():
    """Restart the desktop shell if it runs from an outdated store path."""
    result = asyncio.run(ShellReconciler().reconcile())
    display = result.display
    if display:
        console.print(f"[green]✓ Restarted {display} shell[/green]")
    else:
        console.print(f"[dim]No action: {result.outcome.value.replace('_', ' ')}[/dim]")


@app.command()
@handle_cli_error("cloning the configuration")
def clone(
    url: str = typer.Argument(..., help="Git URL of the NixOS configuration repository"),
    dest: Optional[Path] = typer.Option(None, "--dest", help="Checkout location"),
):
    """Clone the NixOS configuration repository and list its hosts."""
    from nixforge.ui.headless import run_headless

    state = AppState(config_dir=dest)
    token = state.begin_clone()

    async def workflow(tx: MessageChannel, cancel: CancellationToken) -> None:
        await clone_config_repository(tx, cancel, url, dest)

    asyncio.run(run_headless(state, token, workflow))

    if isinstance(state.mode, SelectHost):
        console.print("[green]Hosts in this configuration:[/green]")
        for host in state.hosts:
            console.print(f"  {host}")
        return

    for line in CLONE_TROUBLESHOOTING:
        console.print(line)
    raise typer.Exit(1)


def version():
    """Show nixforge version"""
    typer.echo(f"nixforge version {__version__}")


@app.command()
def env():
    """Show environment variables nixforge reads."""
    table = Table(title="Environment")
    table.add_column("Variable", style="cyan")
    table.add_column("Value")
    table.add_column("Description", style="dim")
    for name, info in get_env_info().items():
        table.add_row(name, info["value"] or "[dim]unset[/dim]", info["description"])
    console.print(table)
    console.print(f"[dim]Log file: {log_file_path()}[/dim]")


app.command()(version)


def run():
    """Entry point for the CLI"""
    app()


if __name__ == "__main__":
    run()
