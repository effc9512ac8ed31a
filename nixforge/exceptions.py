"""Custom exception hierarchy for nixforge.

Exception Hierarchy:
    ForgeError (base)
    ├── CommandError - external process issues
    │   ├── CommandSpawnError
    │   └── CommandFailedError
    ├── GitError - version control operations
    ├── FlakeLockError - flake.lock read/parse
    ├── ShellReconcileError - companion shell handling
    └── ConfigurationError - settings/configuration issues

Subprocess failures inside the update pipeline are reported as status
messages, not raised. These exceptions cover the lookups around them
(version lookups, hostname, lock parsing) so callers can degrade on
`ForgeError` without catching everything.
"""

from typing import Any, Optional


class ForgeError(Exception):
    """Base exception for all nixforge errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about the error (e.g., command, path)
        retryable: Whether this error might succeed on retry
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        **context: Any,
    ) -> None:
        self.message = message
        self.context = context
        self.retryable = retryable
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# =============================================================================
# Command Errors
# =============================================================================


class CommandError(ForgeError):
    """Base exception for external command errors."""

    pass


class CommandSpawnError(CommandError):
    """The command could not be launched (missing binary, permissions)."""

    def __init__(
        self,
        message: str = "Command could not be started",
        *,
        command: Optional[str] = None,
        **context: Any,
    ) -> None:
        if command:
            context["command"] = command
        super().__init__(message, **context)


class CommandFailedError(CommandError):
    """The command ran but exited non-zero."""

    def __init__(
        self,
        message: str = "Command failed",
        *,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
        **context: Any,
    ) -> None:
        if command:
            context["command"] = command[:100] + "..." if len(command) > 100 else command
        if exit_code is not None:
            context["exit_code"] = exit_code
        self.stderr = stderr
        super().__init__(message, **context)


# =============================================================================
# Domain Errors
# =============================================================================


class GitError(ForgeError):
    """A git operation failed."""

    pass


class FlakeLockError(ForgeError):
    """flake.lock could not be read or parsed."""

    def __init__(
        self,
        message: str = "Could not read flake.lock",
        *,
        path: Optional[str] = None,
        **context: Any,
    ) -> None:
        if path:
            context["path"] = path
        super().__init__(message, **context)


class ShellReconcileError(ForgeError):
    """The companion shell could not be inspected or restarted."""

    pass


class ConfigurationError(ForgeError):
    """Invalid or missing configuration."""

    pass
