"""ConfigManager 测试。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from shell_session_mcp import __version__
from shell_session_mcp.config_manager import ConfigManager, ServerSettings
from shell_session_mcp.shared.telemetry import Telemetry


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "ssm"


class TestInit:
    """初始化与落盘。"""

    def test_creates_default_files(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        settings = manager.get_config()

        assert settings.default_shell == "/bin/bash"
        assert settings.allowed_directories == []
        assert settings.telemetry_enabled is True
        assert settings.version == __version__

        data = json.loads((config_dir / "config.json").read_text(encoding="utf-8"))
        assert data["defaultShell"] == "/bin/bash"
        assert data["fileReadLineLimit"] == 1000
        assert "commandConfig" not in data

        commands = yaml.safe_load((config_dir / "config" / "commands.yaml").read_text(encoding="utf-8"))
        assert commands["blocked"] == []
        assert commands["systemCommands"]["allowSudo"] is False

    def test_loads_existing_files(self, config_dir: Path):
        (config_dir / "config").mkdir(parents=True)
        (config_dir / "config.json").write_text(
            json.dumps({"defaultShell": "/bin/zsh", "customKey": "kept"}),
            encoding="utf-8",
        )
        (config_dir / "config" / "commands.yaml").write_text(
            "systemCommands:\n  allowSudo: true\n"
            "blocked:\n  - command: rm\n    reason: destructive\n"
            "docker:\n  allowed: [ps]\n",
            encoding="utf-8",
        )

        settings = ConfigManager(config_dir).get_config()

        assert settings.default_shell == "/bin/zsh"
        assert settings.to_dict()["customKey"] == "kept"
        assert settings.command_config.system_commands.allow_sudo is True
        assert [e.command for e in settings.command_config.blocked] == ["rm"]

    def test_corrupt_json_falls_back_to_defaults(self, config_dir: Path):
        config_dir.mkdir(parents=True)
        (config_dir / "config.json").write_text("{not json", encoding="utf-8")

        settings = ConfigManager(config_dir).get_config()

        assert settings.default_shell == "/bin/bash"

    def test_invalid_yaml_is_replaced(self, config_dir: Path):
        (config_dir / "config").mkdir(parents=True)
        path = config_dir / "config" / "commands.yaml"
        path.write_text("blocked: [unclosed", encoding="utf-8")

        manager = ConfigManager(config_dir)
        manager.init()

        assert yaml.safe_load(path.read_text(encoding="utf-8"))["blocked"] == []

    def test_get_config_returns_copy(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        settings = manager.get_config()
        settings.allowed_directories.append("/tmp")

        assert manager.get_config().allowed_directories == []


class TestSetValue:
    """读写单个配置值。"""

    def test_set_and_persist(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        manager.set_value("defaultShell", "/bin/sh")

        assert manager.get_value("defaultShell") == "/bin/sh"
        reloaded = ConfigManager(config_dir).get_config()
        assert reloaded.default_shell == "/bin/sh"

    def test_snake_case_key(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        manager.set_value("allowed_directories", ["/srv"])

        assert manager.get_value("allowedDirectories") == ["/srv"]
        assert manager.get_value("allowed_directories") == ["/srv"]

    def test_invalid_value_rejected(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        with pytest.raises(ValidationError):
            manager.set_value("fileReadLineLimit", "lots")

        assert manager.get_value("fileReadLineLimit") == 1000

    def test_unknown_key_kept(self, config_dir: Path):
        manager = ConfigManager(config_dir)

        manager.set_value("myFlag", True)

        assert manager.get_value("myFlag") is True

    def test_telemetry_opt_out(self, config_dir: Path, telemetry_recorder):
        telemetry = Telemetry(sink=telemetry_recorder)
        manager = ConfigManager(config_dir, telemetry)

        manager.set_value("telemetryEnabled", False)

        assert telemetry_recorder.events == [
            ("server_telemetry_opt_out", {"reason": "user_disabled", "prev_value": True}),
        ]
        assert telemetry.enabled is False

        manager.set_value("telemetryEnabled", True)
        assert telemetry.enabled is True

    def test_reset_config(self, config_dir: Path):
        manager = ConfigManager(config_dir)
        manager.set_value("defaultShell", "/bin/zsh")

        settings = manager.reset_config()

        assert settings.default_shell == "/bin/bash"
        assert settings.command_config is not None


class TestBlockedCommands:
    """blocked 列表检查。"""

    @pytest.fixture
    def manager(self, config_dir: Path) -> ConfigManager:
        (config_dir / "config").mkdir(parents=True)
        (config_dir / "config" / "commands.yaml").write_text(
            "blocked:\n  - command: mkfs\n  - command: shutdown\n",
            encoding="utf-8",
        )
        return ConfigManager(config_dir)

    @pytest.mark.parametrize(
        "command",
        ["mkfs /dev/sda", "echo hi && shutdown now", "ls | /sbin/mkfs", "sudo ls"],
    )
    def test_blocked(self, manager: ConfigManager, command: str):
        assert manager.is_command_blocked(command) is True

    @pytest.mark.parametrize("command", ["echo mkfs", "ls -la", "grep shutdown log.txt"])
    def test_allowed(self, manager: ConfigManager, command: str):
        assert manager.is_command_blocked(command) is False

    def test_sudo_allowed_when_configured(self, config_dir: Path):
        (config_dir / "config").mkdir(parents=True)
        (config_dir / "config" / "commands.yaml").write_text(
            "systemCommands:\n  allowSudo: true\n",
            encoding="utf-8",
        )

        assert ConfigManager(config_dir).is_command_blocked("sudo ls") is False


class TestServerSettings:
    def test_to_dict_uses_camel_case(self):
        data = ServerSettings(default_shell="/bin/sh").to_dict()

        assert data["defaultShell"] == "/bin/sh"
        assert data["telemetryEnabled"] is True
        assert "version" not in data
