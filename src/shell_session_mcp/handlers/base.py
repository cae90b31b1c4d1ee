"""Tool Handler 基础抽象。

定义工具处理器的协议和上下文。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from mcp.types import TextContent
from pydantic import BaseModel, ValidationError

from ..shared.response_formatter import format_error_response
from ..tool_schema import TOOL_ARGUMENTS, TOOL_DESCRIPTIONS, create_tool_schema

if TYPE_CHECKING:
    from ..config import Config
    from ..config_manager import ConfigManager
    from ..runtime import TerminalManager
    from ..shared.telemetry import Telemetry

__all__ = [
    "ToolContext",
    "ToolHandler",
]

ArgsT = TypeVar("ArgsT", bound=BaseModel)


@dataclass
class ToolContext:
    """工具执行上下文。

    封装工具执行所需的所有依赖，避免在函数间传递大量参数。
    """

    config: "Config"
    terminal_manager: "TerminalManager"
    config_manager: "ConfigManager"
    telemetry: "Telemetry"

    def resolve_debug(self, arguments: dict[str, Any]) -> bool:
        """统一解析 debug 开关。"""
        if "debug" in arguments:
            return bool(arguments["debug"])
        return self.config.debug


class ToolHandler(ABC, Generic[ArgsT]):
    """工具处理器协议。

    子类声明 name，并实现 run()；参数校验由 handle() 统一完成，
    校验失败返回错误响应而不是抛出异常。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """工具名称。"""
        ...

    @property
    def description(self) -> str:
        """工具描述。"""
        return TOOL_DESCRIPTIONS.get(self.name, "")

    def get_input_schema(self) -> dict[str, Any]:
        """获取输入参数 schema。"""
        return create_tool_schema(self.name)

    def validate(self, arguments: dict[str, Any]) -> ArgsT | str:
        """验证参数。

        Returns:
            解析后的参数模型，或错误消息
        """
        try:
            return TOOL_ARGUMENTS[self.name].model_validate(arguments or {})  # type: ignore[return-value]
        except ValidationError as e:
            return f"Invalid arguments for {self.name}: {e}"

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。"""
        args = self.validate(arguments)
        if isinstance(args, str):
            return format_error_response(args)
        return await self.run(args, ctx, debug=ctx.resolve_debug(arguments))

    @abstractmethod
    async def run(
        self,
        args: ArgsT,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        """执行已校验的工具调用。

        Args:
            args: 参数模型
            ctx: 执行上下文
            debug: 是否输出调试信息

        Returns:
            TextContent 列表
        """
        ...
