"""Tests for settings, environment validation and logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from nixforge.config.settings import (
    discover_hosts,
    flake_lock_backup_path,
    get_env_var,
    nixos_config_dir,
    state_dir,
    validate_all_env_vars,
)
from nixforge.exceptions import ConfigurationError
from nixforge.utils.logging_utils import setup_logging


class TestPaths:
    def test_config_dir_override(self, config_dir):
        assert nixos_config_dir() == config_dir

    def test_state_dir_created(self, isolated_env):
        assert not isolated_env["state_dir"].exists()
        assert state_dir() == isolated_env["state_dir"]
        assert isolated_env["state_dir"].is_dir()

    def test_backup_in_state_dir(self, isolated_env):
        assert flake_lock_backup_path().parent == isolated_env["state_dir"]


class TestDiscoverHosts:
    def test_sorted_directories_only(self, config_dir):
        hosts = config_dir / "hosts"
        for name in ("workstation", "laptop", ".git"):
            (hosts / name).mkdir(parents=True)
        (hosts / "README.md").write_text("hosts")

        assert discover_hosts() == ["laptop", "workstation"]

    def test_no_hosts_dir(self, tmp_path):
        assert discover_hosts(tmp_path) == []


class TestEnvVars:
    """Tests for environment variable validation."""

    def test_valid_by_default(self):
        assert validate_all_env_vars() == []

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("NIXFORGE_LOG_LEVEL", "LOUD")
        errors = validate_all_env_vars()
        assert len(errors) == 1
        assert "NIXFORGE_LOG_LEVEL" in errors[0]

    def test_get_env_var_raises_on_invalid(self, monkeypatch):
        monkeypatch.setenv("NIXFORGE_LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigurationError) as exc_info:
            get_env_var("NIXFORGE_LOG_LEVEL")
        assert exc_info.value.context == {"variable": "NIXFORGE_LOG_LEVEL"}

    def test_default_value(self, monkeypatch):
        monkeypatch.delenv("NIXFORGE_LOG_LEVEL", raising=False)
        assert get_env_var("NIXFORGE_LOG_LEVEL") == "INFO"


class TestLogging:
    def test_setup_logging(self, tmp_path):
        log_file = tmp_path / "logs" / "nixforge.log"

        path = setup_logging(verbose=True, log_file=log_file)

        assert path == log_file
        assert log_file.parent.is_dir()
        assert logging.getLogger("nixforge").level == logging.DEBUG
        handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1

    def test_setup_is_idempotent(self, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        setup_logging(log_file=tmp_path / "b.log")

        handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1
