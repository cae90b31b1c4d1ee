"""Process spawning and escalating termination.

shell-session-mcp runtime module

This module provides:
- Subprocess isolation (new session/process group on POSIX)
- Non-blocking escalating termination (SIGTERM -> grace period -> SIGKILL)

Key design points:
- POSIX: start_new_session=True so the whole process group can be signalled
- Windows: CREATE_NEW_PROCESS_GROUP, terminate()/kill() on the handle
- stdin is DEVNULL: the MCP JSON-RPC channel must never leak into children
- Termination schedules its escalation on the event loop and returns at once;
  whoever awaits the process observes the actual exit
- ShellProcess.wait_exit() resolves when the child itself exits. Process.wait()
  also waits for every pipe to close, which a background child can hold open
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..shared.telemetry import Telemetry

__all__ = [
    "IS_WINDOWS",
    "ProcessSpec",
    "ProcessTerminator",
    "ShellProcess",
    "spawn_process",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Seconds between SIGTERM and SIGKILL
DEFAULT_GRACE_PERIOD = 2.0

SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)

# StreamReader buffer limit, same as asyncio.create_subprocess_exec
STREAM_LIMIT = 2 ** 16


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None


def _build_subprocess_kwargs(spec: ProcessSpec) -> dict[str, Any]:
    """Build platform-specific kwargs for loop.subprocess_exec."""
    kwargs: dict[str, Any] = {}

    if spec.env is not None:
        kwargs["env"] = dict(spec.env)
    if spec.cwd is not None:
        kwargs["cwd"] = spec.cwd

    if IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        # equivalent to setsid
        kwargs["start_new_session"] = True

    return kwargs


class _ExitAwareProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that also resolves a future when the child exits."""

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[int | None] = loop.create_future()
        self._subprocess_transport: asyncio.SubprocessTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        super().connection_made(transport)
        self._subprocess_transport = transport  # type: ignore[assignment]

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done() and self._subprocess_transport is not None:
            self.exited.set_result(self._subprocess_transport.get_returncode())


class ShellProcess(asyncio.subprocess.Process):
    """asyncio Process whose exit can be awaited apart from its pipes."""

    def __init__(
        self,
        transport: asyncio.SubprocessTransport,
        protocol: _ExitAwareProtocol,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__(transport, protocol, loop)
        self._exited = protocol.exited

    async def wait_exit(self) -> int | None:
        """Wait until the child exits, even if its pipes are still open."""
        return await asyncio.shield(self._exited)


async def spawn_process(spec: ProcessSpec) -> ShellProcess:
    """Start a subprocess with both output streams piped.

    Raises:
        OSError: If the executable cannot be started
    """
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.subprocess_exec(
        lambda: _ExitAwareProtocol(STREAM_LIMIT, loop),
        *spec.argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **_build_subprocess_kwargs(spec),
    )
    process = ShellProcess(transport, protocol, loop)
    logger.debug(f"Started subprocess pid={process.pid} argv={spec.argv[0]}")
    return process


class ProcessTerminator:
    """Escalating, non-blocking termination of a live process.

    terminate() sends SIGTERM to the process group and schedules a SIGKILL
    after ``grace_period`` seconds unless the process has exited by then.
    Signalling errors never propagate: they are logged and reported to
    telemetry.

    Example:
        terminator = ProcessTerminator(telemetry)
        terminator.terminate(process)   # returns immediately
        await process.wait()            # observe the actual exit
    """

    def __init__(
        self,
        telemetry: Telemetry | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self.telemetry = telemetry or Telemetry(enabled=False)
        self.grace_period = grace_period

    def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Start the SIGTERM -> SIGKILL escalation for ``process``.

        Idempotent against an already-exited process.
        """
        if process.returncode is not None:
            logger.debug(f"Subprocess already exited pid={process.pid}")
            return

        if not self.signal_process(process, signal.SIGTERM):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Interpreter shutdown: no loop left to run the grace timer.
            self._escalate(process)
            return

        loop.call_later(self.grace_period, self._escalate, process)

    def signal_process(
        self,
        process: asyncio.subprocess.Process,
        sig: int,
    ) -> bool:
        """Send ``sig`` to the process group of ``process``.

        Returns:
            True if the signal was delivered, False if it failed (the failure
            has already been reported)
        """
        try:
            self._send(process, sig)
            return True
        except Exception as e:
            logger.debug(f"Failed to send signal {sig} to pid={process.pid}: {e}")
            self.telemetry.capture(
                "server_request_error",
                {"error": f"Failed to signal process {process.pid}: {e}"},
            )
            return False

    def signal_leftovers(self, process: asyncio.subprocess.Process, sig: int) -> None:
        """Signal what is left of an exited shell's process group.

        Background children keep the group alive after the shell is reaped.
        An empty group is the normal case and is not reported.
        """
        if IS_WINDOWS:
            return
        try:
            # pgid == pid because of start_new_session
            os.killpg(process.pid, sig)
            logger.debug(f"Sent signal {sig} to leftover group pgid={process.pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"Failed to signal leftover group pgid={process.pid}: {e}")

    def _escalate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            self.signal_leftovers(process, SIGKILL)
            return
        logger.debug(f"Force killing subprocess pid={process.pid}")
        self.signal_process(process, SIGKILL)

    def _send(self, process: asyncio.subprocess.Process, sig: int) -> None:
        if IS_WINDOWS:
            if sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
            return

        try:
            # pgid == pid because of start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent signal {sig} to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)
