"""Shell Session MCP - 会话式 shell 命令执行 MCP 服务器。

环境变量:
    SSM_ENABLE / SSM_DISABLE: 启用/禁用的工具列表
    SSM_COMMAND_TIMEOUT_MS: execute_command 默认超时（毫秒）
    SSM_CONFIG_DIR: 持久化配置目录

用法:
    uvx shell-session-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
