"""Configuration for nixforge."""

from .settings import (
    app_backup_config_path,
    claude_cli_path,
    codex_cli_path,
    discover_hosts,
    flake_lock_backup_path,
    log_file_path,
    nixos_config_dir,
    state_dir,
)

__all__ = [
    "app_backup_config_path",
    "claude_cli_path",
    "codex_cli_path",
    "discover_hosts",
    "flake_lock_backup_path",
    "log_file_path",
    "nixos_config_dir",
    "state_dir",
]
