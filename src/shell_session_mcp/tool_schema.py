"""Tool Schema 定义。

包含工具描述、参数模型和 schema 创建函数。
参数模型使用 pydantic 校验，JSON Schema 由模型生成，保证两者一致。
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "TOOL_ARGUMENTS",
    "ExecuteCommandArgs",
    "PidArgs",
    "KillProcessArgs",
    "EmptyArgs",
    "SearchCodeArgs",
    "SetConfigValueArgs",
    "create_tool_schema",
]


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EmptyArgs(_ToolArgs):
    """无参数工具。"""


class ExecuteCommandArgs(_ToolArgs):
    command: str = Field(min_length=1, description="Shell command to execute.")
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        description=(
            "Milliseconds to wait for the command to exit. "
            "On timeout the command is terminated and its session stays readable via read_output. "
            "Default: server setting (1000)."
        ),
    )
    shell: str | None = Field(
        default=None,
        description="Shell executable to run the command with (default: configured defaultShell, then /bin/bash).",
    )


class PidArgs(_ToolArgs):
    pid: int = Field(ge=0, description="Session PID returned by execute_command.")


class KillProcessArgs(_ToolArgs):
    pid: int = Field(gt=0, description="OS process ID (from list_processes).")


class SearchCodeArgs(_ToolArgs):
    path: str = Field(min_length=1, description="Root directory to search.")
    pattern: str = Field(min_length=1, description="Text or regex pattern (grep syntax).")
    file_pattern: str | None = Field(default=None, description="File name glob, e.g. '*.py'.")
    ignore_case: bool = Field(default=True, description="Case-insensitive match. Default: true.")
    max_results: int = Field(default=1000, gt=0, description="Maximum number of result lines.")
    include_hidden: bool = Field(default=False, description="Include hidden files and directories.")
    context_lines: int = Field(default=0, ge=0, description="Context lines before and after each match.")
    timeout_ms: int = Field(default=30000, gt=0, description="Search timeout in milliseconds.")


class SetConfigValueArgs(_ToolArgs):
    key: str = Field(min_length=1, description="Configuration key (camelCase, e.g. 'defaultShell').")
    value: Any = Field(description="New value (any JSON value).")


# 工具描述
TOOL_DESCRIPTIONS = {
    "execute_command": """Execute a shell command and wait for it to finish (or time out).

BEHAVIOR:
- Returns the session PID, exit code, runtime and combined stdout/stderr.
- On timeout the command receives SIGTERM (SIGKILL after 2s) and an error is returned
  with the session PID; remaining output can still be read with read_output.
- PIDs are session IDs of this server, NOT OS process IDs.""",
    "read_output": """Read new output from a session.

- Active session: returns output produced since the last read (each chunk delivered once).
- Completed session: returns exit code, runtime and final output (repeatable).""",
    "force_terminate": "Terminate an active session started by execute_command.",
    "list_sessions": "List active sessions with their blocked state and runtime.",
    "list_completed_sessions": "List recently completed sessions (last 100) with exit code and output.",
    "list_processes": "List running OS processes (PID, command, CPU%, memory%).",
    "kill_process": "Terminate an OS process by PID: SIGTERM first, SIGKILL if it persists.",
    "search_code": """Search file contents recursively (grep).

Results are grouped by file as '<line>: <text>'. Skips node_modules/.git/dist/build/coverage
and hidden files unless include_hidden is set.""",
    "get_config": "Get the server configuration as JSON.",
    "set_config_value": "Set one server configuration value (e.g. defaultShell, telemetryEnabled).",
}

# 工具名 → 参数模型
TOOL_ARGUMENTS: dict[str, type[BaseModel]] = {
    "execute_command": ExecuteCommandArgs,
    "read_output": PidArgs,
    "force_terminate": PidArgs,
    "list_sessions": EmptyArgs,
    "list_completed_sessions": EmptyArgs,
    "list_processes": EmptyArgs,
    "kill_process": KillProcessArgs,
    "search_code": SearchCodeArgs,
    "get_config": EmptyArgs,
    "set_config_value": SetConfigValueArgs,
}

# 支持的工具列表（保持展示顺序）
SUPPORTED_TOOLS = list(TOOL_ARGUMENTS)


def create_tool_schema(tool_name: str) -> dict[str, Any]:
    """创建工具的 JSON Schema。"""
    schema = TOOL_ARGUMENTS[tool_name].model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema
