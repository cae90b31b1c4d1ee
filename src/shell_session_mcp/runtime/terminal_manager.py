"""Session-oriented command executor.

TerminalManager spawns a shell for each command, drains its stdout/stderr
concurrently into the session mailbox (for polling) and a per-call
transcript (for the final result), and races the process exit against the
caller's timeout:

- exit first: the run is archived as a CompletedSession and returned
- timeout first: the process is terminated (SIGTERM, then SIGKILL after a
  grace period) and CommandTimeoutError is raised. The session stays
  active and is never archived, so its remaining output can still be polled
  and it can still be force-terminated.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from .errors import CommandSpawnError, CommandTimeoutError
from .process_runner import ProcessSpec, ProcessTerminator, spawn_process
from .sessions import (
    DEFAULT_ARCHIVE_CAPACITY,
    ActiveSession,
    ActiveSessionInfo,
    CompletedSession,
    CompletedSessionArchive,
    SessionRegistry,
)
from .shutdown_hooks import ShutdownHooks
from ..shared.telemetry import Telemetry

if TYPE_CHECKING:
    from ..config_manager import ConfigManager

__all__ = [
    "CommandResult",
    "TerminalManager",
    "DEFAULT_SHELL",
    "SHELL_ARGS",
]

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/bash"
SHELL_ARGS = ["-c"]
DEFAULT_TIMEOUT_MS = 1000

READ_CHUNK_SIZE = 4096

# How long to wait for the pipes to reach EOF once the shell has exited.
# Background children holding the pipes open must not stall the result.
DRAIN_GRACE_SECONDS = 0.5


@dataclass(frozen=True)
class CommandResult:
    pid: int
    output: str
    start_time: datetime
    end_time: datetime
    exit_code: int | None = None

    @property
    def runtime_sec(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


class TerminalManager:
    """Runs shell commands as pollable sessions.

    Example:
        manager = TerminalManager(config_manager=config_manager, telemetry=telemetry)
        result = await manager.execute("echo hello", timeout_ms=1000)
        manager.get_new_output(result.pid)   # completed summary

    Attributes:
        sessions: Active sessions
        completed: Archive of sessions that exited within their timeout
        terminator: Escalating termination applied on timeout
        shutdown_hooks: Per-session cleanup run when the server shuts down
    """

    def __init__(
        self,
        config_manager: "ConfigManager | None" = None,
        telemetry: Telemetry | None = None,
        terminator: ProcessTerminator | None = None,
        shutdown_hooks: ShutdownHooks | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        archive_capacity: int = DEFAULT_ARCHIVE_CAPACITY,
    ) -> None:
        self.config_manager = config_manager
        self.telemetry = telemetry or Telemetry(enabled=False)
        self.terminator = terminator or ProcessTerminator(self.telemetry)
        self.shutdown_hooks = shutdown_hooks or ShutdownHooks()
        self.default_timeout_ms = default_timeout_ms
        self.sessions = SessionRegistry()
        self.completed = CompletedSessionArchive(archive_capacity)

    def resolve_shell(self, shell: str | None = None) -> str:
        """Explicit shell, then configured default, then /bin/bash."""
        if shell:
            return shell
        if self.config_manager is not None:
            try:
                configured = self.config_manager.get_config().default_shell
                if configured:
                    return configured
            except Exception as e:
                logger.error(f"Failed to get shell from config, using default: {e}")
        return DEFAULT_SHELL

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        shell: str | None = None,
    ) -> CommandResult:
        """Run ``command`` and wait for it to exit or time out.

        Raises:
            CommandSpawnError: The shell could not be started
            CommandTimeoutError: The command was still running after timeout_ms
        """
        timeout_ms = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        shell_to_use = self.resolve_shell(shell)
        spec = ProcessSpec(
            argv=[shell_to_use, *SHELL_ARGS, command],
            env={**os.environ, "TERM": "xterm-256color"},
        )

        try:
            process = await spawn_process(spec)
        except OSError as e:
            self.telemetry.capture(
                "server_request_error",
                {"error": f"Command execution failed: {e}"},
            )
            raise CommandSpawnError(shell_to_use, e) from e

        session = self.sessions.create(process)
        pid = session.pid
        transcript: list[str] = []
        session.drain_tasks = [
            asyncio.create_task(self._drain(process.stdout, session, transcript)),
            asyncio.create_task(self._drain(process.stderr, session, transcript)),
        ]
        self.shutdown_hooks.register(pid, lambda: self.terminator.terminate(process))
        logger.info(f"Session {pid} started: os_pid={process.pid} shell={shell_to_use}")

        try:
            exit_code = await asyncio.wait_for(process.wait_exit(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.info(f"Session {pid} timed out after {timeout_ms}ms, terminating")
            self.terminator.terminate(process)
            self.telemetry.capture(
                "server_request_error",
                {"error": f"Command timed out after {timeout_ms}ms", "pid": pid},
            )
            raise CommandTimeoutError(pid, timeout_ms) from None
        except asyncio.CancelledError:
            logger.info(f"Session {pid} cancelled, terminating")
            self.terminator.terminate(process)
            self.sessions.remove(pid)
            self.shutdown_hooks.unregister(pid)
            raise

        await self._finish_drains(session)
        end_time = datetime.now()

        self.completed.archive(CompletedSession(
            pid=pid,
            output=session.last_output or "".join(transcript),
            exit_code=exit_code,
            start_time=session.start_time,
            end_time=end_time,
        ))
        self.sessions.remove(pid)
        self.shutdown_hooks.unregister(pid)
        logger.info(f"Session {pid} completed: exit_code={exit_code}")

        return CommandResult(
            pid=pid,
            output="".join(transcript),
            start_time=session.start_time,
            end_time=end_time,
            exit_code=exit_code,
        )

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        session: ActiveSession,
        transcript: list[str],
    ) -> None:
        """Copy decoded chunks into the session mailbox and the transcript."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            chunk = decoder.decode(data, final=not data)
            if chunk:
                session.last_output = chunk
                transcript.append(chunk)
            if not data:
                break

    async def _finish_drains(self, session: ActiveSession) -> None:
        tasks = session.drain_tasks
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=DRAIN_GRACE_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"Session {session.pid}: output pipes still open after exit")
            await asyncio.gather(*pending, return_exceptions=True)

    def get_new_output(self, pid: int) -> str | None:
        """Poll a session.

        Active sessions hand out their pending chunk exactly once; completed
        sessions return a repeatable summary; unknown identifiers give None.
        """
        session = self.sessions.get(pid)
        if session is not None:
            return session.take_output()

        completed = self.completed.get(pid)
        if completed is not None:
            return completed.summary()

        return None

    def get_session(self, pid: int) -> ActiveSession | None:
        return self.sessions.get(pid)

    def force_terminate(self, pid: int) -> bool:
        """Signal an active session and drop it from the registry.

        Returns:
            False if the session is unknown or could not be signalled
        """
        session = self.sessions.get(pid)
        if session is None:
            return False

        # An exited shell (e.g. a timed-out run the escalation already killed)
        # may still have background children in its group.
        if session.process.returncode is None:
            if not self.terminator.signal_process(session.process, signal.SIGTERM):
                return False
        else:
            self.terminator.signal_leftovers(session.process, signal.SIGTERM)

        self.sessions.remove(pid)
        self.shutdown_hooks.unregister(pid)
        logger.info(f"Session {pid} force-terminated")
        return True

    def list_active_sessions(self) -> list[ActiveSessionInfo]:
        now = datetime.now()
        return [
            ActiveSessionInfo(
                pid=session.pid,
                is_blocked=session.is_blocked,
                runtime_ms=session.runtime_ms(now),
            )
            for session in self.sessions.list()
        ]

    def list_completed_sessions(self) -> list[CompletedSession]:
        return self.completed.list()
