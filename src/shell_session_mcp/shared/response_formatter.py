"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <answer>: 工具输出
    - <error>: 错误信息（失败时）
    - <hint>: 后续操作提示（可选）
    - <debug_info>: 调试信息（debug=True 时输出）
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "DebugInfo",
    "ResponseData",
    "ResponseFormatter",
    "get_formatter",
    "format_text_response",
    "format_error_response",
]


@dataclass
class DebugInfo:
    """调试信息。"""

    duration_sec: float = 0.0
    session_pid: int | None = None
    exit_code: int | None = None
    log_file: str | None = None  # DEBUG 日志文件路径

    def to_dict(self) -> dict[str, Any]:
        """转换为字典。"""
        data: dict[str, Any] = {"duration_sec": round(self.duration_sec, 3)}
        if self.session_pid is not None:
            data["session_pid"] = self.session_pid
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        if self.log_file:
            data["log_file"] = self.log_file
        return data


@dataclass
class ResponseData:
    """响应数据。"""

    # 工具输出
    answer: str

    # 后续操作提示（如超时后用 read_output 继续读取）
    hint: str = ""

    # 调试信息（可选，debug 时使用）
    debug_info: DebugInfo | None = None

    # 是否成功
    success: bool = True

    # 错误信息
    error: str | None = None


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        >>> formatter = ResponseFormatter()
        >>> data = ResponseData(answer="hello", debug_info=DebugInfo(duration_sec=0.01))
        >>> output = formatter.format(data, debug=True)
    """

    def format(
        self,
        data: ResponseData,
        *,
        debug: bool = False,
    ) -> str:
        """格式化响应数据。"""
        parts = ["<response>"]

        if not data.success:
            parts.append(f"  <error>{data.error or 'Unknown error'}</error>")
        else:
            parts.append(self._format_answer(data.answer))

        if data.hint:
            parts.append(f"  <hint>{data.hint}</hint>")

        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)

    def _format_answer(self, answer: str) -> str:
        """格式化工具输出。"""
        return f"  <answer>\n{answer}\n  </answer>"

    def _format_debug_info(self, debug_info: DebugInfo) -> str:
        """格式化调试信息（XML 格式）。"""
        lines = ["  <debug_info>"]
        for key, value in debug_info.to_dict().items():
            if key == "duration_sec":
                value = f"{value:.3f}"
            lines.append(f"    <{key}>{value}</{key}>")
        lines.append("  </debug_info>")
        return "\n".join(lines)


# 全局实例
_formatter: ResponseFormatter | None = None


def get_formatter() -> ResponseFormatter:
    """获取全局格式化器实例。"""
    global _formatter
    if _formatter is None:
        _formatter = ResponseFormatter()
    return _formatter


def format_text_response(
    text: str,
    *,
    hint: str = "",
    debug: bool = False,
    debug_info: DebugInfo | None = None,
) -> list[TextContent]:
    """统一的成功响应格式化函数。"""
    from mcp.types import TextContent

    response_data = ResponseData(answer=text, hint=hint, debug_info=debug_info)
    return [TextContent(type="text", text=get_formatter().format(response_data, debug=debug))]


def format_error_response(
    error: str,
    *,
    hint: str = "",
) -> list[TextContent]:
    """统一的错误响应格式化函数。

    确保所有错误都以 <response><error>...</error></response> 格式返回，
    保持 API 契约一致性。
    """
    from mcp.types import TextContent

    response_data = ResponseData(answer="", hint=hint, success=False, error=error)
    return [TextContent(type="text", text=get_formatter().format(response_data))]
