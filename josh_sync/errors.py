"""
Exception types for josh_sync.

Every error carries a human-readable message, an optional suggested fix and
optional technical details, so the CLI can print something useful.
"""

from typing import Optional, Sequence


class JoshSyncError(Exception):
    """Base exception for all josh-sync errors."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.remediation:
            parts.append(f"To fix: {self.remediation}")
        return "\n".join(parts)


class ConfigError(JoshSyncError):
    """The configuration file is missing or invalid."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = "Run the `init` command to initialize it.",
        details: Optional[str] = None,
    ):
        super().__init__(message, remediation, details)


class CommandError(JoshSyncError):
    """An external command exited with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        status: Optional[int],
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command)
        self.status = status
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command `{' '.join(self.command)}` failed with exit code {status}",
            details=f"STDOUT:\n{stdout}\nSTDERR:\n{stderr}",
        )


class NothingToPullError(JoshSyncError):
    """No upstream changes are available to be pulled."""

    def __init__(self, message: str = "Nothing to pull"):
        super().__init__(message)


class PullFailedError(JoshSyncError):
    """A pull has failed, usually because a git operation went wrong."""
