"""Errors raised by the command executor."""

from __future__ import annotations

__all__ = [
    "TerminalError",
    "CommandSpawnError",
    "CommandTimeoutError",
]


class TerminalError(Exception):
    """Base class for command execution failures."""


class CommandSpawnError(TerminalError):
    """The shell process could not be started."""

    def __init__(self, shell: str, cause: BaseException) -> None:
        super().__init__(f"Failed to start shell '{shell}': {cause}")
        self.shell = shell
        self.cause = cause


class CommandTimeoutError(TerminalError):
    """The command did not exit before its timeout elapsed.

    The session is left active, so ``pid`` can still be polled or
    force-terminated.
    """

    def __init__(self, pid: int, timeout_ms: int) -> None:
        super().__init__(f"Command timed out after {timeout_ms}ms")
        self.pid = pid
        self.timeout_ms = timeout_ms
