"""Process spawning and termination tests.

Test coverage:
- Spawning with piped output and DEVNULL stdin
- Process isolation (new session/process group)
- Child exit observed independently of pipe EOF
- SIGTERM -> SIGKILL escalation after a 2 second grace period
- Leftover process group members after the shell exits
- Signalling failures reported, never raised
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from unittest import mock

import pytest

from shell_session_mcp.runtime.process_runner import (
    IS_WINDOWS,
    ProcessSpec,
    ProcessTerminator,
    spawn_process,
)
from shell_session_mcp.shared.process_tools import process_exists
from shell_session_mcp.shared.telemetry import Telemetry

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific tests")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def terminator(telemetry: Telemetry) -> ProcessTerminator:
    """Terminator with a short grace period for testing."""
    return ProcessTerminator(telemetry, grace_period=0.2)


# =============================================================================
# Spawning
# =============================================================================


class TestSpawn:
    """Test spawn_process."""

    @pytest.mark.asyncio
    async def test_simple_command(self, temp_workspace: Path):
        process = await spawn_process(ProcessSpec(argv=["echo", "hello"], cwd=temp_workspace))
        stdout, stderr = await process.communicate()

        assert stdout.decode().strip() == "hello"
        assert stderr == b""
        assert process.returncode == 0

    @pytest.mark.asyncio
    async def test_working_directory(self, temp_workspace: Path):
        process = await spawn_process(ProcessSpec(argv=["pwd"], cwd=temp_workspace))
        stdout, _ = await process.communicate()

        assert Path(stdout.decode().strip()).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_environment(self, temp_workspace: Path):
        spec = ProcessSpec(
            argv=["/bin/sh", "-c", "echo $SSM_TEST_VALUE"],
            env={**os.environ, "SSM_TEST_VALUE": "42"},
        )
        process = await spawn_process(spec)
        stdout, _ = await process.communicate()

        assert stdout.decode().strip() == "42"

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self):
        # cat exits immediately on EOF from /dev/null
        process = await spawn_process(ProcessSpec(argv=["cat"]))
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=3)

        assert stdout == b""
        assert process.returncode == 0

    @pytest.mark.asyncio
    async def test_missing_executable_raises(self):
        with pytest.raises(OSError):
            await spawn_process(ProcessSpec(argv=["/nonexistent/binary"]))

    @pytest.mark.asyncio
    async def test_wait_exit_does_not_wait_for_pipes(self, terminator: ProcessTerminator):
        """A background child holding stdout open does not delay the exit."""
        process = await spawn_process(
            ProcessSpec(argv=["/bin/sh", "-c", "sleep 5 & echo started"])
        )
        try:
            returncode = await asyncio.wait_for(process.wait_exit(), timeout=3)

            assert returncode == 0
            assert process.returncode == 0
            assert not process.stdout.at_eof()
        finally:
            terminator.signal_leftovers(process, signal.SIGKILL)
            await asyncio.wait_for(process.wait(), timeout=3)

    @pytest.mark.asyncio
    async def test_new_session_posix(self):
        """Child leads its own process group."""
        process = await spawn_process(ProcessSpec(argv=["sleep", "1"]))
        try:
            assert os.getpgid(process.pid) == process.pid
            assert os.getpgid(process.pid) != os.getpgid(0)
        finally:
            process.kill()
            await process.wait()


# =============================================================================
# Termination
# =============================================================================


class TestTermination:
    """Test ProcessTerminator."""

    @pytest.mark.asyncio
    async def test_sigterm_stops_cooperative_process(self, terminator: ProcessTerminator):
        process = await spawn_process(ProcessSpec(argv=["sleep", "5"]))

        terminator.terminate(process)
        returncode = await asyncio.wait_for(process.wait(), timeout=3)

        assert returncode == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_escalates_to_sigkill(self, terminator: ProcessTerminator):
        process = await spawn_process(
            ProcessSpec(argv=["/bin/sh", "-c", "trap '' TERM; sleep 5"])
        )
        # Let the shell install its trap
        await asyncio.sleep(0.2)

        terminator.terminate(process)
        returncode = await asyncio.wait_for(process.wait(), timeout=3)

        assert returncode == -signal.SIGKILL

    @pytest.mark.asyncio
    async def test_terminate_signals_whole_group(self, terminator: ProcessTerminator):
        process = await spawn_process(
            ProcessSpec(argv=["/bin/sh", "-c", "sleep 5 & echo $!; wait"])
        )
        line = await asyncio.wait_for(process.stdout.readline(), timeout=3)
        child_pid = int(line.decode().strip())

        terminator.terminate(process)
        await asyncio.wait_for(process.wait(), timeout=3)

        for _ in range(20):
            if not await process_exists(child_pid):
                break
            await asyncio.sleep(0.05)
        assert not await process_exists(child_pid)

    @pytest.mark.asyncio
    async def test_terminate_exited_process_is_noop(
        self,
        terminator: ProcessTerminator,
        telemetry_recorder,
    ):
        process = await spawn_process(ProcessSpec(argv=["true"]))
        await process.wait()

        with mock.patch.object(terminator, "_send") as send:
            terminator.terminate(process)
            terminator.terminate(process)

        send.assert_not_called()
        assert telemetry_recorder.events == []

    def test_signal_failure_is_reported(self, terminator: ProcessTerminator, telemetry_recorder):
        process = mock.Mock(pid=4242, returncode=None)

        with mock.patch.object(terminator, "_send", side_effect=ProcessLookupError("gone")):
            delivered = terminator.signal_process(process, signal.SIGTERM)

        assert delivered is False
        assert telemetry_recorder.names() == ["server_request_error"]
        assert "4242" in telemetry_recorder.events[0][1]["error"]

    def test_terminate_without_loop_escalates_immediately(self, terminator: ProcessTerminator):
        process = mock.Mock(pid=4242, returncode=None)

        with mock.patch.object(terminator, "_send") as send:
            terminator.terminate(process)

        assert [c.args[1] for c in send.call_args_list] == [signal.SIGTERM, signal.SIGKILL]

    @pytest.mark.asyncio
    async def test_escalation_scheduled_after_two_seconds(self, telemetry: Telemetry):
        terminator = ProcessTerminator(telemetry)
        process = mock.Mock(pid=4242, returncode=None)
        loop = asyncio.get_running_loop()

        with mock.patch.object(terminator, "_send"), \
                mock.patch.object(loop, "call_later") as call_later:
            terminator.terminate(process)

        assert terminator.grace_period == 2.0
        call_later.assert_called_once_with(2.0, terminator._escalate, process)

    @pytest.mark.asyncio
    async def test_leftover_group_members_are_signalled(self, terminator: ProcessTerminator):
        process = await spawn_process(
            ProcessSpec(argv=["/bin/sh", "-c", "sleep 5 & echo $!"])
        )
        line = await asyncio.wait_for(process.stdout.readline(), timeout=3)
        child_pid = int(line.decode().strip())
        await asyncio.wait_for(process.wait_exit(), timeout=3)

        terminator.signal_leftovers(process, signal.SIGKILL)
        await asyncio.wait_for(process.wait(), timeout=3)

        assert not await process_exists(child_pid)

    @pytest.mark.asyncio
    async def test_leftovers_of_empty_group_not_reported(
        self,
        terminator: ProcessTerminator,
        telemetry_recorder,
    ):
        process = await spawn_process(ProcessSpec(argv=["true"]))
        await process.wait()

        terminator.signal_leftovers(process, signal.SIGKILL)

        assert telemetry_recorder.events == []
