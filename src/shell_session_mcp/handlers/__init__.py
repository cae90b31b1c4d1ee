"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import ToolContext, ToolHandler
from .config import GetConfigHandler, SetConfigValueHandler
from .process import KillProcessHandler, ListProcessesHandler
from .search import SearchCodeHandler
from .terminal import (
    ExecuteCommandHandler,
    ForceTerminateHandler,
    ListCompletedSessionsHandler,
    ListSessionsHandler,
    ReadOutputHandler,
)

__all__ = [
    "ToolContext",
    "ToolHandler",
    "HANDLERS",
    "ExecuteCommandHandler",
    "ReadOutputHandler",
    "ForceTerminateHandler",
    "ListSessionsHandler",
    "ListCompletedSessionsHandler",
    "ListProcessesHandler",
    "KillProcessHandler",
    "SearchCodeHandler",
    "GetConfigHandler",
    "SetConfigValueHandler",
]

# 工具名 → 处理器类
HANDLERS: dict[str, type[ToolHandler]] = {
    "execute_command": ExecuteCommandHandler,
    "read_output": ReadOutputHandler,
    "force_terminate": ForceTerminateHandler,
    "list_sessions": ListSessionsHandler,
    "list_completed_sessions": ListCompletedSessionsHandler,
    "list_processes": ListProcessesHandler,
    "kill_process": KillProcessHandler,
    "search_code": SearchCodeHandler,
    "get_config": GetConfigHandler,
    "set_config_value": SetConfigValueHandler,
}
