"""Shell Session MCP Server。

通过 MCP 暴露会话式 shell 命令执行工具。

环境变量:
    SSM_ENABLE / SSM_DISABLE: 启用/禁用的工具列表（逗号分隔）
    SSM_DEBUG: 响应中包含调试信息
    SSM_SIGINT_MODE: SIGINT 处理模式 (cancel/exit/cancel_then_exit)
    SSM_COMMAND_TIMEOUT_MS: execute_command 默认超时 (默认 1000)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import anyio
from mcp.server import Server
from mcp.types import TextContent, Tool

from . import __version__
from .config import Config, get_config
from .config_manager import ConfigManager
from .handlers import HANDLERS, ToolContext
from .orchestrator import RequestRegistry
from .runtime import TerminalManager
from .shared.response_formatter import format_error_response
from .shared.telemetry import Telemetry
from .tool_schema import SUPPORTED_TOOLS

__all__ = ["create_server", "TOOL_CALL_LOGGER"]

logger = logging.getLogger(__name__)

# 工具调用日志（app.main() 为其挂载 tool_calls.log 滚动文件）
TOOL_CALL_LOGGER = "shell_session_mcp.tool_calls"
tool_call_logger = logging.getLogger(TOOL_CALL_LOGGER)


def _truncate_arguments(arguments: dict[str, Any], limit: int = 100) -> dict[str, Any]:
    return {
        k: v[:limit] + "..." if isinstance(v, str) and len(v) > limit else v
        for k, v in arguments.items()
    }


def create_server(
    terminal_manager: TerminalManager,
    config_manager: ConfigManager,
    telemetry: Telemetry,
    registry: RequestRegistry | None = None,
    config: Config | None = None,
) -> Server:
    """创建 MCP Server 实例。

    Args:
        terminal_manager: 会话执行器
        config_manager: 持久化配置
        telemetry: 事件上报器
        registry: 请求注册表（可选，用于信号隔离）
        config: 环境配置（默认 get_config()）
    """
    config = config or get_config()
    server = Server("shell-session-mcp", version=__version__)

    tool_ctx = ToolContext(
        config=config,
        terminal_manager=terminal_manager,
        config_manager=config_manager,
        telemetry=telemetry,
    )

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = []
        for name in SUPPORTED_TOOLS:
            if not config.is_tool_allowed(name):
                continue
            handler = HANDLERS[name]()
            tools.append(
                Tool(
                    name=name,
                    description=handler.description,
                    inputSchema=handler.get_input_schema(),
                )
            )
        logger.debug(f"[MCP] list_tools called, returning {len(tools)} tools: {[t.name for t in tools]}")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        arguments = arguments or {}
        logged_args = json.dumps(_truncate_arguments(arguments), ensure_ascii=False, default=str)
        logger.debug(f"[MCP] call_tool request: tool={name} arguments={logged_args}")
        tool_call_logger.info(f"{name} | {logged_args}")

        if name not in HANDLERS:
            return format_error_response(f"Unknown tool '{name}'")
        if not config.is_tool_allowed(name):
            return format_error_response(f"Tool '{name}' is not enabled")

        telemetry.capture("server_call_tool", {"name": name})

        request_id = None
        if registry is not None:
            current_task = asyncio.current_task()
            if current_task:
                request_id = registry.generate_request_id()
                registry.register(request_id, name, current_task, str(arguments.get("command", "")))
            else:
                logger.warning(f"No current task, cannot register request for '{name}'")

        try:
            return await HANDLERS[name]().handle(arguments, tool_ctx)

        except anyio.get_cancelled_exc_class():
            logger.info(f"Tool '{name}' cancelled")
            raise

        except Exception as e:
            logger.exception(f"Tool '{name}' failed: {e}")
            telemetry.capture("server_request_error", {"tool": name, "error": str(e)})
            return format_error_response(str(e))

        finally:
            if registry is not None and request_id:
                registry.unregister(request_id)

    return server
