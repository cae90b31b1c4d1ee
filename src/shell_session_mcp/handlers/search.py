"""search_code 工具处理器。"""

from __future__ import annotations

from mcp.types import TextContent

from .base import ToolContext, ToolHandler
from ..shared.response_formatter import format_error_response, format_text_response
from ..shared.search import SearchError, SearchOptions, format_search_results, search_code
from ..tool_schema import SearchCodeArgs

__all__ = ["SearchCodeHandler"]


class SearchCodeHandler(ToolHandler[SearchCodeArgs]):
    """search_code 处理器。"""

    @property
    def name(self) -> str:
        return "search_code"

    async def run(
        self,
        args: SearchCodeArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        options = SearchOptions(
            root_path=args.path,
            pattern=args.pattern,
            file_pattern=args.file_pattern,
            ignore_case=args.ignore_case,
            max_results=args.max_results,
            include_hidden=args.include_hidden,
            context_lines=args.context_lines,
        )
        try:
            results = await search_code(
                options,
                timeout_ms=args.timeout_ms,
                allowed_directories=ctx.config_manager.get_config().allowed_directories,
                telemetry=ctx.telemetry,
            )
        except SearchError as e:
            return format_error_response(str(e))

        if not results:
            return format_text_response(
                f"No matches found or search timed out after {args.timeout_ms}ms."
            )
        return format_text_response(format_search_results(results))
