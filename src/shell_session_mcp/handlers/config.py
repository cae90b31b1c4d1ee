"""配置工具处理器。

处理 get_config, set_config_value 工具调用。
"""

from __future__ import annotations

import json
import logging

from mcp.types import TextContent
from pydantic import ValidationError

from .base import ToolContext, ToolHandler
from ..shared.response_formatter import format_error_response, format_text_response
from ..tool_schema import EmptyArgs, SetConfigValueArgs

__all__ = ["GetConfigHandler", "SetConfigValueHandler"]

logger = logging.getLogger(__name__)


class GetConfigHandler(ToolHandler[EmptyArgs]):
    """get_config 处理器。"""

    @property
    def name(self) -> str:
        return "get_config"

    async def run(
        self,
        args: EmptyArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        settings = ctx.config_manager.get_config()
        return format_text_response(json.dumps(settings.to_dict(), indent=2, ensure_ascii=False))


class SetConfigValueHandler(ToolHandler[SetConfigValueArgs]):
    """set_config_value 处理器。"""

    @property
    def name(self) -> str:
        return "set_config_value"

    async def run(
        self,
        args: SetConfigValueArgs,
        ctx: ToolContext,
        *,
        debug: bool = False,
    ) -> list[TextContent]:
        try:
            ctx.config_manager.set_value(args.key, args.value)
        except ValidationError as e:
            return format_error_response(f"Invalid value for {args.key}: {e}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return format_error_response(f"Failed to save config: {e}")

        value = ctx.config_manager.get_value(args.key)
        return format_text_response(
            f"Successfully set {args.key} to {json.dumps(value, ensure_ascii=False, default=str)}"
        )
