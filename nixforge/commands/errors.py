"""User-facing classification of command failures.

`ParsedError.from_stderr` turns raw stderr plus an operation label into a
short summary, optional detail and one suggestion. It is a pure function:
no I/O, no logging, same input gives the same output.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

MAX_DETAIL_LINES = 10
FALLBACK_TAIL_LINES = 5


@dataclass(frozen=True)
class ErrorContext:
    """What was being attempted when the failure happened."""

    operation: str


@dataclass(frozen=True)
class ParsedError:
    summary: str
    suggestion: str
    detail: Optional[str] = None

    @classmethod
    def from_stderr(cls, stderr: str, context: ErrorContext) -> "ParsedError":
        """Classify a failure from its stderr text.

        The first matching rule wins. Unrecognized output falls back to a
        generic "<operation> failed" summary.
        """
        detail = _extract_detail(stderr)

        for pattern, reason, suggestion in _RULES:
            if pattern.search(stderr):
                return cls(
                    summary=f"{context.operation} failed: {reason}",
                    detail=detail,
                    suggestion=suggestion,
                )

        return cls(
            summary=f"{context.operation} failed",
            detail=detail,
            suggestion="Check the output log above for details.",
        )

    def format_lines(self) -> List[str]:
        """Render as the indented block shown on failure screens."""
        lines = [f"  Error: {self.summary}"]
        if self.detail:
            lines.extend(f"  {line}" for line in self.detail.splitlines())
        lines.append("")
        lines.append(f"  Suggestion: {self.suggestion}")
        return lines


def _rule(pattern: str, reason: str, suggestion: str) -> Tuple[Pattern[str], str, str]:
    return re.compile(pattern, re.IGNORECASE), reason, suggestion


# Ordered: more specific causes come before generic ones
_RULES = [
    _rule(
        r"rate limit|API rate limit exceeded|HTTP error 403",
        "GitHub API rate limit reached",
        "Wait a while or set GITHUB_TOKEN / access-tokens in nix.conf.",
    ),
    _rule(
        r"could not resolve host|unable to download|connection timed out|"
        r"network is unreachable|temporary failure in name resolution|"
        r"Couldn't resolve host|connection refused",
        "network unavailable",
        "Check your internet connection (run 'nmtui' to configure WiFi).",
    ),
    _rule(
        r"a password is required|sudo:.*incorrect password|authentication failure",
        "administrator authentication failed",
        "Run the update from a terminal where sudo can prompt for a password.",
    ),
    _rule(
        r"permission denied|operation not permitted",
        "permission denied",
        "Check file ownership in the configuration directory.",
    ),
    _rule(
        r"no space left on device",
        "disk is full",
        "Free space with 'nix-collect-garbage -d' and try again.",
    ),
    _rule(
        r"hash mismatch",
        "hash mismatch in a fixed-output derivation",
        "Update the expected hash in your configuration to the reported value.",
    ),
    _rule(
        r"flake '.*' does not provide attribute|does not provide attribute",
        "host configuration not found in flake",
        "Check that the hostname matches a nixosConfigurations entry.",
    ),
    _rule(
        r"infinite recursion|undefined variable|syntax error|error: attribute .* missing|"
        r"evaluation aborted|error: The option",
        "configuration evaluation error",
        "Fix the Nix expression reported above, then run the update again.",
    ),
    _rule(
        r"not possible to fast-forward|diverging branches|would be overwritten|"
        r"merge conflict|CONFLICT",
        "local history diverged from remote",
        "Resolve the divergence with git manually, then retry.",
    ),
    _rule(
        r"not a git repository",
        "configuration is not a git repository",
        "Clone the configuration repository or skip the pull step.",
    ),
]


def _extract_detail(stderr: str) -> Optional[str]:
    lines = [line.rstrip() for line in stderr.splitlines() if line.strip()]
    if not lines:
        return None

    error_lines = [line for line in lines if "error:" in line.lower()]
    chosen = error_lines or lines[-FALLBACK_TAIL_LINES:]
    chosen = chosen[-MAX_DETAIL_LINES:]

    detail = "\n".join(line.strip() for line in chosen)
    return detail or None
