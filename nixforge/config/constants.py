"""
Centralized constants for nixforge.

Tuning numbers for the process runner, output pipeline, update orchestrator
and shell reconciler live here so tests can pin exact behavior.
"""

from pathlib import Path

# =============================================================================
# OUTPUT PIPELINE
# =============================================================================

OUTPUT_BUFFER_SIZE = 1000  # Max lines kept per running/complete screen

NOISE_BASE64_MIN_LENGTH = 100  # Tokens longer than this with no space/colon are dropped
NOISE_MESSAGE_MAX_CHARS = 80  # JSON "message" payloads are truncated past this
NOISE_MESSAGE_ELLIPSIS = "..."
NOISE_MESSAGE_PREFIX = "       → "

# asyncio StreamReader line limit; nix can emit very long single lines
STREAM_READ_LIMIT_BYTES = 1024 * 1024

# =============================================================================
# UPDATE ORCHESTRATOR
# =============================================================================

MAX_DISPLAY_COMMITS = 10  # Commits listed per flake input in the summary
COMMIT_MESSAGE_MAX_CHARS = 72
SHORT_REV_LENGTH = 7

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_TIMEOUT_SECONDS = 10

SYSTEM_PROFILE = "/nix/var/nix/profiles/system"
BOOTED_KERNEL_LINK = "/run/booted-system/kernel"
CURRENT_KERNEL_LINK = "/run/current-system/kernel"

BOOTLOADER_KEYWORDS = ("limine", "grub", "refind")
FIRMWARE_KEYWORDS = ("linux-firmware", "firmware")
FIRMWARE_EXACT_NAMES = ("fwupd",)

CODEX_NPM_PACKAGE = "@openai/codex"
APP_RESTORE_COMMAND = "app-restore"

# Profile status strings reported by the browser/profile check
PROFILE_STATUS_NOT_CONFIGURED = "not configured"
PROFILE_STATUS_UNKNOWN = "unknown"
PROFILE_STATUS_UP_TO_DATE = "up to date"

# Step labels shown on the update screen, in pipeline order
UPDATE_STEPS = [
    "Pull Config",
    "Flake Update",
    "Rebuilding System",
    "Compare Packages",
    "Claude Code",
    "Codex CLI",
    "Browser Profiles",
]

# =============================================================================
# SHELL RECONCILER
# =============================================================================

QUICKSHELL_PROCESS_NAME = "quickshell"
SHELL_SETTLE_SECONDS = 0.5  # Wait after killing stale instances
SHELL_START_WAIT_SECONDS = 2.0  # Wait after launching a replacement
DESKTOP_DISPATCHER = "hyprctl"

# =============================================================================
# PATHS
# =============================================================================

DEFAULT_CONFIG_DIR = Path.home() / ".nixos-config"
DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "nixforge"
LOG_FILE_NAME = "nixforge.log"
FLAKE_LOCK_BACKUP_NAME = "flake.lock.bak"

# =============================================================================
# INSTALL
# =============================================================================

HOSTS_DIR_NAME = "hosts"

# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

ENV_VAR_DEFINITIONS = {
    "NIXFORGE_CONFIG_DIR": {
        "description": "Path to the NixOS flake checkout",
        "default": None,
        "valid_values": None,
    },
    "NIXFORGE_STATE_DIR": {
        "description": "Directory for logs and the flake.lock backup",
        "default": None,
        "valid_values": None,
    },
    "NIXFORGE_HOSTNAME": {
        "description": "Flake host configuration to rebuild (defaults to hostname)",
        "default": None,
        "valid_values": None,
    },
    "NIXFORGE_LOG_LEVEL": {
        "description": "Log level for nixforge loggers",
        "default": "INFO",
        "valid_values": ["DEBUG", "INFO", "WARNING", "ERROR"],
    },
    "GITHUB_TOKEN": {
        "description": "Token used for GitHub compare API requests",
        "default": None,
        "valid_values": None,
        "sensitive": True,
    },
}
