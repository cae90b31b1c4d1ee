"""Active session registry and the bounded archive of completed sessions."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime

__all__ = [
    "ActiveSession",
    "ActiveSessionInfo",
    "CompletedSession",
    "CompletedSessionArchive",
    "SessionRegistry",
    "MAX_SESSION_ID",
    "DEFAULT_ARCHIVE_CAPACITY",
]

logger = logging.getLogger(__name__)

MAX_SESSION_ID = 0xFFFFFFFF
DEFAULT_ARCHIVE_CAPACITY = 100


@dataclass
class ActiveSession:
    """A command run whose process has not been observed to exit.

    Attributes:
        pid: Session identifier (not the OS pid)
        process: The owned process handle
        last_output: Latest undelivered output chunk, cleared on poll
        is_blocked: Reserved for interactive/blocking detection
        start_time: When the session was created
        drain_tasks: Stream readers feeding ``last_output``
    """

    pid: int
    process: asyncio.subprocess.Process
    last_output: str = ""
    is_blocked: bool = False
    start_time: datetime = field(default_factory=datetime.now)
    drain_tasks: list[asyncio.Task] = field(default_factory=list, repr=False)

    def runtime_ms(self, now: datetime | None = None) -> int:
        now = now or datetime.now()
        return int((now - self.start_time).total_seconds() * 1000)

    def take_output(self) -> str:
        """Return the mailbox chunk and clear it."""
        output, self.last_output = self.last_output, ""
        return output


@dataclass(frozen=True)
class ActiveSessionInfo:
    pid: int
    is_blocked: bool
    runtime_ms: int


@dataclass(frozen=True)
class CompletedSession:
    """Immutable record of a session that exited within its timeout."""

    pid: int
    output: str
    exit_code: int | None
    start_time: datetime
    end_time: datetime

    @property
    def runtime_sec(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def summary(self) -> str:
        exit_code = "unknown" if self.exit_code is None else self.exit_code
        return (
            f"Process completed with exit code {exit_code}\n"
            f"Runtime: {self.runtime_sec:.3f}s\n"
            f"Final output:\n{self.output}"
        )


class SessionRegistry:
    """Mapping from session identifier to active session.

    Identifiers start at 1 and wrap to 0 after MAX_SESSION_ID. The allocator
    does not check for collisions with still-active sessions after a wrap.

    All access happens on the event loop thread, so no locking is done.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, ActiveSession] = {}
        self._next_id: int = 1

    def _allocate_id(self) -> int:
        session_id = self._next_id
        self._next_id = (self._next_id + 1) & MAX_SESSION_ID
        return session_id

    def create(self, process: asyncio.subprocess.Process) -> ActiveSession:
        """Install a new active session for ``process``."""
        session = ActiveSession(pid=self._allocate_id(), process=process)
        self._sessions[session.pid] = session
        logger.debug(f"Registered session pid={session.pid} os_pid={process.pid}")
        return session

    def get(self, pid: int) -> ActiveSession | None:
        return self._sessions.get(pid)

    def remove(self, pid: int) -> None:
        """Remove a session; unknown identifiers are ignored."""
        if self._sessions.pop(pid, None) is not None:
            logger.debug(f"Removed session pid={pid}")

    def list(self) -> list[ActiveSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, pid: int) -> bool:
        return pid in self._sessions


class CompletedSessionArchive:
    """FIFO-evicted store of completed sessions.

    Reads never consume entries; only eviction removes them.
    """

    def __init__(self, capacity: int = DEFAULT_ARCHIVE_CAPACITY) -> None:
        self.capacity = capacity
        self._entries: OrderedDict[int, CompletedSession] = OrderedDict()

    def archive(self, entry: CompletedSession) -> None:
        # A reused identifier (after wraparound) counts as a fresh insertion.
        self._entries.pop(entry.pid, None)
        self._entries[entry.pid] = entry
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted completed session pid={evicted}")

    def get(self, pid: int) -> CompletedSession | None:
        return self._entries.get(pid)

    def list(self) -> list[CompletedSession]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pid: int) -> bool:
        return pid in self._entries
