"""Runtime module for shell sessions.

This module provides session-oriented command execution with concurrent
output draining, escalating termination and a bounded history of completed
runs.
"""

from __future__ import annotations

from .errors import CommandSpawnError, CommandTimeoutError, TerminalError
from .process_runner import ProcessSpec, ProcessTerminator, spawn_process
from .sessions import (
    ActiveSession,
    ActiveSessionInfo,
    CompletedSession,
    CompletedSessionArchive,
    SessionRegistry,
)
from .shutdown_hooks import ShutdownHooks
from .terminal_manager import CommandResult, TerminalManager

__all__ = [
    "ActiveSession",
    "ActiveSessionInfo",
    "CommandResult",
    "CommandSpawnError",
    "CommandTimeoutError",
    "CompletedSession",
    "CompletedSessionArchive",
    "ProcessSpec",
    "ProcessTerminator",
    "SessionRegistry",
    "ShutdownHooks",
    "TerminalError",
    "TerminalManager",
    "spawn_process",
]
