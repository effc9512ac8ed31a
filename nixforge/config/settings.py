"""Configuration utilities for nixforge."""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError
from .constants import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_STATE_DIR,
    ENV_VAR_DEFINITIONS,
    FLAKE_LOCK_BACKUP_NAME,
    HOSTS_DIR_NAME,
    LOG_FILE_NAME,
)


def nixos_config_dir() -> Path:
    """Get the NixOS flake checkout, respecting NIXFORGE_CONFIG_DIR."""
    override = os.environ.get("NIXFORGE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_DIR


def state_dir() -> Path:
    """Get (and create) the directory for logs and backups.

    Tests point NIXFORGE_STATE_DIR at a temp directory so they never touch
    the real one.
    """
    override = os.environ.get("NIXFORGE_STATE_DIR")
    path = Path(override).expanduser() if override else DEFAULT_STATE_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def log_file_path() -> Path:
    return state_dir() / LOG_FILE_NAME


def flake_lock_backup_path() -> Path:
    return state_dir() / FLAKE_LOCK_BACKUP_NAME


def claude_cli_path() -> Path:
    return Path.home() / ".local" / "bin" / "claude"


def codex_cli_path() -> Path:
    return Path.home() / ".npm-global" / "bin" / "codex"


def app_backup_config_path() -> Path:
    return Path.home() / ".config" / "app-backup" / "config.toml"


def discover_hosts(config_dir: Optional[Path] = None) -> List[str]:
    """Host names defined in the flake checkout, one directory per host."""
    hosts_dir = (config_dir or nixos_config_dir()) / HOSTS_DIR_NAME
    if not hosts_dir.is_dir():
        return []
    return sorted(p.name for p in hosts_dir.iterdir() if p.is_dir() and not p.name.startswith("."))


def validate_env_var(name: str, value: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate a single environment variable value.

    Args:
        name: The environment variable name.
        value: The current value (or None if not set).

    Returns:
        Tuple of (is_valid, error_message).
    """
    if name not in ENV_VAR_DEFINITIONS or value is None:
        return True, None

    valid_values = ENV_VAR_DEFINITIONS[name].get("valid_values")
    if valid_values is None:
        return True, None

    if value.upper() not in [v.upper() for v in valid_values]:
        return False, f"Invalid value '{value}' for {name}. Valid values: {valid_values}"

    return True, None


def validate_all_env_vars() -> List[str]:
    """Validate all nixforge environment variables.

    Returns:
        List of error messages (empty if all valid).
    """
    errors = []
    for name in ENV_VAR_DEFINITIONS:
        is_valid, error = validate_env_var(name, os.environ.get(name))
        if not is_valid:
            errors.append(error)
    return errors


def get_env_var(name: str, validate: bool = True) -> Optional[str]:
    """Get an environment variable with optional validation.

    Raises:
        ConfigurationError: If validate=True and the value is invalid.
    """
    value = os.environ.get(name)

    if validate and value is not None:
        is_valid, error = validate_env_var(name, value)
        if not is_valid:
            raise ConfigurationError(error, variable=name)

    if value is None and name in ENV_VAR_DEFINITIONS:
        return ENV_VAR_DEFINITIONS[name].get("default")

    return value


def get_env_info() -> Dict[str, Dict]:
    """Describe every nixforge environment variable, masking sensitive values."""
    info = {}
    for name, definition in ENV_VAR_DEFINITIONS.items():
        value = os.environ.get(name)
        is_valid, _ = validate_env_var(name, value)

        display_value = value
        if value and definition.get("sensitive"):
            display_value = value[:4] + "..." if len(value) > 4 else "***"

        info[name] = {
            "description": definition.get("description", ""),
            "value": display_value,
            "valid": is_valid,
            "default": definition.get("default"),
        }
    return info
