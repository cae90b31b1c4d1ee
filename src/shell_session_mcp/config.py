"""SSM 环境变量配置管理。

环境变量:
    SSM_ENABLE: 启用的工具列表
        - 空/未设置 = 全部可用
        - 逗号分割，忽略大小写
        - 例: "execute_command,read_output"

    SSM_DISABLE: 禁用的工具列表（从 enable 中减去）
        - 逗号分割，忽略大小写
        - 例: "kill_process,list_processes" 禁用 OS 进程工具

    SSM_DEBUG: 调试模式
        - true/1/yes = 开启 (响应包含耗时信息)
        - false/0/no = 关闭 (默认)

    SSM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    SSM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 取消活动请求（无活动请求则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先取消请求，第二次才退出

    SSM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出

    SSM_COMMAND_TIMEOUT_MS: execute_command 的默认超时（毫秒）
        - 默认 1000

    SSM_CONFIG_DIR: 持久化配置目录
        - 默认 ~/.config/shell-session-mcp
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .tool_schema import TOOL_ARGUMENTS

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode", "SUPPORTED_TOOLS"]


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只取消活动请求，不退出（如果没有活动请求则退出）
    - EXIT: 直接退出进程（传统行为）
    - CANCEL_THEN_EXIT: 先取消请求，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


# 支持的工具，以 tool_schema 中登记的参数模型为准
SUPPORTED_TOOLS = frozenset(TOOL_ARGUMENTS)

DEFAULT_COMMAND_TIMEOUT_MS = 1000


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_tool_list(value: str | None) -> set[str]:
    """解析工具列表环境变量（逗号分割，忽略大小写，忽略未知工具）。"""
    if not value or not value.strip():
        return set()

    tools = set()
    for item in value.split(","):
        tool = item.strip().lower()
        if tool and tool in SUPPORTED_TOOLS:
            tools.add(tool)

    return tools


def _compute_enabled_tools(enable: str | None, disable: str | None) -> set[str]:
    """计算最终启用的工具列表。"""
    enabled = _parse_tool_list(enable)
    disabled = _parse_tool_list(disable)

    # enable 为空时默认全开
    if not enabled:
        enabled = set(SUPPORTED_TOOLS)

    return enabled - disabled


def _default_config_dir() -> Path:
    return Path.home() / ".config" / "shell-session-mcp"


@dataclass
class Config:
    """SSM 配置。

    Attributes:
        tools: 允许的工具集合
        debug: 调试模式（响应包含耗时信息）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
        default_timeout_ms: execute_command 的默认超时（毫秒）
        config_dir: 持久化配置目录（config.json / config/commands.yaml / tool_calls.log）
    """

    tools: set[str] = field(default_factory=lambda: set(SUPPORTED_TOOLS))
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0
    default_timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS
    config_dir: Path = field(default_factory=_default_config_dir)

    @property
    def allowed_tools(self) -> set[str]:
        """获取实际允许的工具列表。"""
        return self.tools

    def is_tool_allowed(self, tool: str) -> bool:
        """检查工具是否允许使用。"""
        return tool.lower() in self.tools

    def __repr__(self) -> str:
        tools_str = ",".join(sorted(self.allowed_tools)) or "none"
        return (
            f"Config(tools={tools_str}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window}, "
            f"default_timeout_ms={self.default_timeout_ms}, "
            f"config_dir={self.config_dir})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "shell-session-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"ssm_debug_{timestamp}.log"

    return str(log_file.resolve())


def _parse_sigint_mode(value: str | None) -> SigintMode:
    """解析 SIGINT 模式环境变量。"""
    if not value:
        return SigintMode.CANCEL
    return SigintMode.from_string(value)


def _parse_double_tap_window(value: str | None) -> float:
    """解析双击窗口时间环境变量。"""
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))  # 限制在 0.1-10 秒范围
    except ValueError:
        return 1.0


def _parse_timeout_ms(value: str | None) -> int:
    """解析默认超时环境变量（非正数或无效值回退到默认值）。"""
    if not value:
        return DEFAULT_COMMAND_TIMEOUT_MS
    try:
        timeout = int(value)
    except ValueError:
        return DEFAULT_COMMAND_TIMEOUT_MS
    return timeout if timeout > 0 else DEFAULT_COMMAND_TIMEOUT_MS


def _parse_config_dir(value: str | None) -> Path:
    if not value or not value.strip():
        return _default_config_dir()
    return Path(value.strip()).expanduser()


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("SSM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        tools=_compute_enabled_tools(
            os.environ.get("SSM_ENABLE"),
            os.environ.get("SSM_DISABLE"),
        ),
        debug=_parse_bool(os.environ.get("SSM_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=_parse_sigint_mode(os.environ.get("SSM_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("SSM_SIGINT_DOUBLE_TAP_WINDOW")
        ),
        default_timeout_ms=_parse_timeout_ms(os.environ.get("SSM_COMMAND_TIMEOUT_MS")),
        config_dir=_parse_config_dir(os.environ.get("SSM_CONFIG_DIR")),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
