"""Shared pytest fixtures for nixforge tests."""

from pathlib import Path

import pytest

from nixforge.commands.messages import MessageChannel


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every path nixforge touches at a temporary directory.

    HOME is redirected too, so tool paths such as ~/.local/bin/claude do
    not exist unless a test creates them.
    """
    home = tmp_path / "home"
    home.mkdir()
    config_dir = tmp_path / "nixos-config"
    config_dir.mkdir()
    state = tmp_path / "state"

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("NIXFORGE_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("NIXFORGE_STATE_DIR", str(state))
    monkeypatch.setenv("NIXFORGE_HOSTNAME", "testhost")
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return {"home": home, "config_dir": config_dir, "state_dir": state}


@pytest.fixture
def config_dir(isolated_env) -> Path:
    return isolated_env["config_dir"]


@pytest.fixture
def channel() -> MessageChannel:
    return MessageChannel()

