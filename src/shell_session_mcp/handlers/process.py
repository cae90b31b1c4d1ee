"""OS 进程工具处理器。

处理 list_processes, kill_process 工具调用。
"""

from __future__ import annotations

from mcp.types import TextContent

from .base import ToolContext, ToolHandler
from ..shared.process_tools import ProcessToolError, kill_process, list_processes
from ..shared.response_formatter import format_error_response, format_text_response
from ..tool_schema import EmptyArgs, KillProcessArgs

__all__ = ["ListProcessesHandler", "KillProcessHandler"]


class ListProcessesHandler(ToolHandler[EmptyArgs]):
    """list_processes 处理器。"""

    @property
    def name(self) -> str:
        return "list_processes"

    async def run(
        self,
        args: EmptyArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        try:
            processes = await list_processes(ctx.telemetry)
        except ProcessToolError as e:
            return format_error_response(str(e))
        return format_text_response("\n".join(p.format() for p in processes))


class KillProcessHandler(ToolHandler[KillProcessArgs]):
    """kill_process 处理器。"""

    @property
    def name(self) -> str:
        return "kill_process"

    async def run(
        self,
        args: KillProcessArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        try:
            message = await kill_process(args.pid, ctx.telemetry)
        except ProcessToolError as e:
            return format_error_response(str(e))
        return format_text_response(message)
