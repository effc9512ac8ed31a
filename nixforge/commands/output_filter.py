"""Line cleanup applied to command output before it reaches a screen.

`strip_escape_codes` runs on every line. `filter_tool_noise` is the
transform handed to the process runner for `nix flake update`, whose
output can contain entire GitHub error pages when the API misbehaves.
Both are pure functions.
"""

import re
from typing import Optional

from ..config.constants import (
    NOISE_BASE64_MIN_LENGTH,
    NOISE_MESSAGE_ELLIPSIS,
    NOISE_MESSAGE_MAX_CHARS,
    NOISE_MESSAGE_PREFIX,
)

ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

JSON_MESSAGE_RE = re.compile(r'"message"\s*:\s*"([^"]+)"')

HTML_PREFIXES = (
    "<!DOCTYPE",
    "<html",
    "<head",
    "<body",
    "<style",
    "<div",
    "<title",
    "<meta",
    "<link",
    "<p>",
    "<ul",
    "<li",
    "<a ",
    "<img",
    "</",
    "<!--",
    "-->",
)

LONE_PUNCTUATION = {"{", "}", "(", ")"}

CSS_MARKERS = (
    "background-color:",
    "font-family:",
    "text-align:",
    "margin:",
    "padding:",
)


def strip_escape_codes(line: str) -> str:
    """Remove ANSI CSI sequences (ESC [ params letter) from a line."""
    return ANSI_RE.sub("", line)


def filter_tool_noise(line: str) -> Optional[str]:
    """Drop or rewrite noisy nix output.

    Returns None to drop the line, otherwise the line to display.
    """
    trimmed = line.strip()

    # Intentional blank lines are kept
    if not trimmed:
        return line

    if "is dirty" in line:
        return None

    if trimmed.startswith(HTML_PREFIXES) or trimmed in LONE_PUNCTUATION:
        return None

    if _looks_like_css(trimmed):
        return None

    # Image data and other base64 blobs
    if len(trimmed) > NOISE_BASE64_MIN_LENGTH and " " not in trimmed and ":" not in trimmed:
        return None

    if trimmed.startswith("*/") or trimmed.endswith("*/"):
        return None

    if trimmed.startswith('{"') and '"message"' in trimmed:
        match = JSON_MESSAGE_RE.search(trimmed)
        if match:
            return NOISE_MESSAGE_PREFIX + _truncate_message(match.group(1))
        return None

    return line


def _looks_like_css(trimmed: str) -> bool:
    if any(marker in trimmed for marker in CSS_MARKERS):
        return True
    if trimmed.startswith(".") and "{" in trimmed:
        return True
    return trimmed.startswith("@media") and "{" in trimmed


def _truncate_message(message: str) -> str:
    if len(message) <= NOISE_MESSAGE_MAX_CHARS:
        return message
    keep = NOISE_MESSAGE_MAX_CHARS - len(NOISE_MESSAGE_ELLIPSIS)
    return message[:keep] + NOISE_MESSAGE_ELLIPSIS
