"""终端会话工具处理器。

处理 execute_command, read_output, force_terminate,
list_sessions, list_completed_sessions 工具调用。
"""

from __future__ import annotations

import logging

from mcp.types import TextContent

from .base import ToolContext, ToolHandler
from ..runtime import CommandSpawnError, CommandTimeoutError
from ..shared.response_formatter import (
    DebugInfo,
    format_error_response,
    format_text_response,
)
from ..tool_schema import EmptyArgs, ExecuteCommandArgs, PidArgs

__all__ = [
    "ExecuteCommandHandler",
    "ReadOutputHandler",
    "ForceTerminateHandler",
    "ListSessionsHandler",
    "ListCompletedSessionsHandler",
]

logger = logging.getLogger(__name__)


class ExecuteCommandHandler(ToolHandler[ExecuteCommandArgs]):
    """execute_command 处理器。"""

    @property
    def name(self) -> str:
        return "execute_command"

    async def run(
        self,
        args: ExecuteCommandArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        if ctx.config_manager.is_command_blocked(args.command):
            logger.warning(f"Blocked command rejected: {args.command!r}")
            return format_error_response(f"Command not allowed: {args.command}")

        try:
            result = await ctx.terminal_manager.execute(
                args.command,
                timeout_ms=args.timeout_ms,
                shell=args.shell,
            )
        except CommandTimeoutError as e:
            return format_error_response(
                str(e),
                hint=(
                    f"Session PID {e.pid} may still be running. Use read_output with this PID "
                    f"to get further output, or force_terminate to stop it."
                ),
            )
        except CommandSpawnError as e:
            return format_error_response(str(e))

        text = (
            f"Command completed with PID {result.pid}\n"
            f"Exit code: {result.exit_code}\n"
            f"Runtime: {result.runtime_sec:.3f}s\n"
            f"Output:\n{result.output}"
        )
        debug_info = DebugInfo(
            duration_sec=result.runtime_sec,
            session_pid=result.pid,
            exit_code=result.exit_code,
            log_file=ctx.config.log_file if ctx.config.log_debug else None,
        ) if debug else None
        return format_text_response(text, debug=debug, debug_info=debug_info)


class ReadOutputHandler(ToolHandler[PidArgs]):
    """read_output 处理器。"""

    @property
    def name(self) -> str:
        return "read_output"

    async def run(
        self,
        args: PidArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        output = ctx.terminal_manager.get_new_output(args.pid)
        if output is None:
            return format_error_response(f"No session found for PID {args.pid}")
        return format_text_response(output or "No new output available")


class ForceTerminateHandler(ToolHandler[PidArgs]):
    """force_terminate 处理器。"""

    @property
    def name(self) -> str:
        return "force_terminate"

    async def run(
        self,
        args: PidArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        if ctx.terminal_manager.force_terminate(args.pid):
            return format_text_response(f"Successfully initiated termination of session {args.pid}")
        return format_error_response(f"No active session found for PID {args.pid}")


class ListSessionsHandler(ToolHandler[EmptyArgs]):
    """list_sessions 处理器。"""

    @property
    def name(self) -> str:
        return "list_sessions"

    async def run(
        self,
        args: EmptyArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        sessions = ctx.terminal_manager.list_active_sessions()
        if not sessions:
            return format_text_response("No active sessions")
        return format_text_response("\n".join(
            f"PID: {s.pid}, Blocked: {s.is_blocked}, Runtime: {s.runtime_ms / 1000:.1f}s"
            for s in sessions
        ))


class ListCompletedSessionsHandler(ToolHandler[EmptyArgs]):
    """list_completed_sessions 处理器。"""

    @property
    def name(self) -> str:
        return "list_completed_sessions"

    async def run(
        self,
        args: EmptyArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        completed = ctx.terminal_manager.list_completed_sessions()
        if not completed:
            return format_text_response("No completed sessions")
        blocks = []
        for s in completed:
            blocks.append(
                f"PID: {s.pid}, Exit code: {s.exit_code}, "
                f"Start: {s.start_time.isoformat(timespec='milliseconds')}, "
                f"End: {s.end_time.isoformat(timespec='milliseconds')}\n"
                f"Output:\n{s.output}"
            )
        return format_text_response("\n\n".join(blocks))
