"""持久化配置管理。

与 config.py（进程级环境变量）不同，这里管理的是可以在运行时通过
get_config / set_config_value 工具读写的配置：

    {config_dir}/config.json            服务器配置（JSON，camelCase 键）
    {config_dir}/config/commands.yaml   命令配置（YAML，含 blocked 列表）

首次访问时自动创建缺失的文件；读取失败时回退到默认配置，不影响命令执行。
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import __version__
from .shared.telemetry import Telemetry

__all__ = [
    "CommandEntry",
    "CommandConfig",
    "ServerSettings",
    "ConfigManager",
]

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/bash"

# 按 shell 控制符拆分命令，用于提取每一段的基础命令
_COMMAND_SEPARATORS = re.compile(r"\|\||&&|[;|&\n]")


class _CamelModel(BaseModel):
    """JSON/YAML 使用 camelCase，Python 侧使用 snake_case。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class CommandEntry(_CamelModel):
    command: str
    description: str = ""
    reason: str | None = None


class SystemCommands(_CamelModel):
    allow_sudo: bool = False
    allow_network_config: bool = False


class CommandConfig(_CamelModel):
    """命令配置（commands.yaml）。

    除 systemCommands / blocked 外，允许任意按工具分组的 allowed 列表
    （如 docker、kubernetes），原样保留。
    """

    system_commands: SystemCommands = Field(default_factory=SystemCommands)
    blocked: list[CommandEntry] = Field(default_factory=list)


class ServerSettings(_CamelModel):
    """服务器配置（config.json）。"""

    default_shell: str | None = DEFAULT_SHELL
    allowed_directories: list[str] = Field(default_factory=list)
    telemetry_enabled: bool = True
    file_write_line_limit: int = 50
    file_read_line_limit: int = 1000
    version: str | None = None
    command_config: CommandConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为 camelCase 字典（用于落盘和返回给调用方）。"""
        return self.model_dump(by_alias=True, exclude_none=True)


def _base_commands(command: str) -> list[str]:
    """提取命令串中每一段的第一个词。"""
    bases = []
    for segment in _COMMAND_SEPARATORS.split(command):
        words = segment.strip().split()
        if words:
            bases.append(Path(words[0]).name)
    return bases


class ConfigManager:
    """持久化配置管理器。

    Example:
        ```python
        manager = ConfigManager(Path("~/.config/shell-session-mcp").expanduser())
        settings = manager.get_config()
        manager.set_value("defaultShell", "/bin/zsh")
        ```

    Attributes:
        config_dir: 配置目录
        config_path: config.json 路径
        command_config_path: commands.yaml 路径
    """

    def __init__(self, config_dir: Path, telemetry: Telemetry | None = None) -> None:
        self.config_dir = Path(config_dir)
        self.config_path = self.config_dir / "config.json"
        self.command_config_path = self.config_dir / "config" / "commands.yaml"
        self.telemetry = telemetry
        self._settings = ServerSettings()
        self._initialized = False

    def _load_command_config(self) -> CommandConfig:
        """加载 commands.yaml，不存在或无法解析时写入空配置。"""
        self.command_config_path.parent.mkdir(parents=True, exist_ok=True)
        if self.command_config_path.exists():
            try:
                data = yaml.safe_load(self.command_config_path.read_text(encoding="utf-8"))
                return CommandConfig.model_validate(data or {})
            except (OSError, yaml.YAMLError, ValueError) as e:
                logger.warning(f"Command config not usable ({e}), using empty configuration")

        command_config = CommandConfig()
        self.command_config_path.write_text(
            yaml.safe_dump(command_config.model_dump(by_alias=True), sort_keys=False),
            encoding="utf-8",
        )
        return command_config

    def init(self) -> None:
        """初始化配置（幂等）：从磁盘加载或创建默认配置。"""
        if self._initialized:
            return

        try:
            command_config = self._load_command_config()
            self.config_dir.mkdir(parents=True, exist_ok=True)

            if self.config_path.exists():
                data = json.loads(self.config_path.read_text(encoding="utf-8"))
                self._settings = ServerSettings.model_validate(data)
            else:
                self._settings = self._default_settings()
                self._save()

            self._settings.command_config = command_config
            self._settings.version = __version__
        except Exception as e:
            logger.error(f"Failed to initialize config, using defaults: {e}")
            self._settings = self._default_settings()

        self._initialized = True
        self._sync_telemetry()

    def _default_settings(self) -> ServerSettings:
        return ServerSettings(version=__version__)

    def _save(self) -> None:
        data = self._settings.to_dict()
        # commandConfig 单独保存在 commands.yaml 中
        data.pop("commandConfig", None)
        self.config_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    def _sync_telemetry(self) -> None:
        if self.telemetry is not None:
            self.telemetry.enabled = self._settings.telemetry_enabled

    @staticmethod
    def _normalize_key(key: str) -> str:
        """snake_case 字段名统一转换为 camelCase 别名。"""
        field_info = ServerSettings.model_fields.get(key)
        if field_info is not None and field_info.alias:
            return field_info.alias
        return key

    def get_config(self) -> ServerSettings:
        """获取完整配置（副本）。"""
        self.init()
        return self._settings.model_copy(deep=True)

    def get_value(self, key: str) -> Any:
        """获取单个配置值。"""
        self.init()
        return self._settings.to_dict().get(self._normalize_key(key))

    def set_value(self, key: str, value: Any) -> ServerSettings:
        """设置单个配置值并落盘。

        关闭 telemetry 时，先发送一条 opt-out 事件再关闭。

        Raises:
            pydantic.ValidationError: 值类型不合法
        """
        self.init()
        key = self._normalize_key(key)

        if key == "telemetryEnabled" and value is False:
            current = self._settings.telemetry_enabled
            if current is not False and self.telemetry is not None:
                self.telemetry.capture(
                    "server_telemetry_opt_out",
                    {"reason": "user_disabled", "prev_value": current},
                )

        return self.update_config({key: value})

    def update_config(self, updates: dict[str, Any]) -> ServerSettings:
        """批量更新配置并落盘。"""
        self.init()
        data = self._settings.model_dump(by_alias=True)
        for key, value in updates.items():
            data[self._normalize_key(key)] = value

        self._settings = ServerSettings.model_validate(data)
        self._save()
        self._sync_telemetry()
        logger.info(f"Config updated: {sorted(updates)}")
        return self.get_config()

    def reset_config(self) -> ServerSettings:
        """重置为默认配置（保留命令配置）。"""
        self.init()
        command_config = self._settings.command_config
        self._settings = self._default_settings()
        self._save()
        self._settings.command_config = command_config
        self._sync_telemetry()
        return self.get_config()

    def is_command_blocked(self, command: str) -> bool:
        """检查命令串中是否包含被禁止的命令。

        blocked 列表中的命令名与每一段的基础命令比较；
        systemCommands.allowSudo 为 false 时 sudo 也视为禁止。
        """
        self.init()
        command_config = self._settings.command_config or CommandConfig()
        blocked = {entry.command for entry in command_config.blocked}
        if not command_config.system_commands.allow_sudo:
            blocked.add("sudo")
        return any(base in blocked for base in _base_commands(command))
