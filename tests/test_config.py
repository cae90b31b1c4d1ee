"""Config 模块测试。

测试 SSM_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from shell_session_mcp.config import (
    DEFAULT_COMMAND_TIMEOUT_MS,
    SUPPORTED_TOOLS,
    Config,
    SigintMode,
    get_config,
    load_config,
    reload_config,
)
from shell_session_mcp.tool_schema import TOOL_ARGUMENTS

SSM_VARS = (
    "SSM_ENABLE",
    "SSM_DISABLE",
    "SSM_DEBUG",
    "SSM_LOG_DEBUG",
    "SSM_SIGINT_MODE",
    "SSM_SIGINT_DOUBLE_TAP_WINDOW",
    "SSM_COMMAND_TIMEOUT_MS",
    "SSM_CONFIG_DIR",
)


def _clean_env(**overrides: str) -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if k not in SSM_VARS}
    env.update(overrides)
    return env


class TestParseTools:
    """测试工具列表解析。"""

    def test_unset_tools_means_all(self):
        """未设置工具列表表示全部可用。"""
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config()
            assert config.allowed_tools == SUPPORTED_TOOLS

    def test_enable_subset(self):
        with mock.patch.dict(os.environ, _clean_env(SSM_ENABLE="execute_command,read_output"), clear=True):
            config = load_config()
            assert config.allowed_tools == {"execute_command", "read_output"}

    def test_case_and_whitespace(self):
        with mock.patch.dict(os.environ, _clean_env(SSM_ENABLE=" Execute_Command , READ_OUTPUT "), clear=True):
            config = load_config()
            assert config.allowed_tools == {"execute_command", "read_output"}

    def test_disable_subtracts(self):
        with mock.patch.dict(os.environ, _clean_env(SSM_DISABLE="kill_process,list_processes"), clear=True):
            config = load_config()
            assert config.allowed_tools == SUPPORTED_TOOLS - {"kill_process", "list_processes"}

    def test_all_invalid_means_all(self):
        """全部无效时返回全部可用（enable 解析为空）。"""
        with mock.patch.dict(os.environ, _clean_env(SSM_ENABLE="invalid1,invalid2"), clear=True):
            config = load_config()
            assert config.allowed_tools == SUPPORTED_TOOLS

    def test_every_schema_tool_can_be_enabled(self):
        """参数模型中登记的工具都能通过 SSM_ENABLE 启用。"""
        assert SUPPORTED_TOOLS == frozenset(TOOL_ARGUMENTS)

        for name in TOOL_ARGUMENTS:
            with mock.patch.dict(os.environ, _clean_env(SSM_ENABLE=name), clear=True):
                assert load_config().allowed_tools == {name}


class TestParseValues:
    """测试标量环境变量解析。"""

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_debug_truthy(self, value: str):
        with mock.patch.dict(os.environ, _clean_env(SSM_DEBUG=value), clear=True):
            assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_debug_falsy(self, value: str):
        with mock.patch.dict(os.environ, _clean_env(SSM_DEBUG=value), clear=True):
            assert load_config().debug is False

    def test_defaults(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config()
            assert config.debug is False
            assert config.log_debug is False
            assert config.log_file is None
            assert config.sigint_mode == SigintMode.CANCEL
            assert config.sigint_double_tap_window == 1.0
            assert config.default_timeout_ms == DEFAULT_COMMAND_TIMEOUT_MS == 1000
            assert config.config_dir == Path.home() / ".config" / "shell-session-mcp"

    @pytest.mark.parametrize(
        "value,expected",
        [("2500", 2500), ("0", 1000), ("-5", 1000), ("abc", 1000)],
    )
    def test_timeout(self, value: str, expected: int):
        with mock.patch.dict(os.environ, _clean_env(SSM_COMMAND_TIMEOUT_MS=value), clear=True):
            assert load_config().default_timeout_ms == expected

    def test_config_dir(self, tmp_path: Path):
        with mock.patch.dict(os.environ, _clean_env(SSM_CONFIG_DIR=str(tmp_path)), clear=True):
            assert load_config().config_dir == tmp_path

    def test_log_debug_generates_log_file(self):
        with mock.patch.dict(os.environ, _clean_env(SSM_LOG_DEBUG="1"), clear=True):
            config = load_config()
            assert config.log_debug is True
            assert config.log_file is not None
            assert Path(config.log_file).name.startswith("ssm_debug_")


class TestConfigMethods:
    """测试 Config 方法。"""

    def test_is_tool_allowed_case_insensitive(self):
        config = Config(tools={"search_code"})
        assert config.is_tool_allowed("SEARCH_CODE") is True
        assert config.is_tool_allowed("execute_command") is False

    def test_repr(self):
        config = Config(tools={"read_output"}, debug=True)
        repr_str = repr(config)
        assert "read_output" in repr_str
        assert "debug=True" in repr_str
        assert "default_timeout_ms=1000" in repr_str


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_returns_same_instance(self):
        reload_config()
        assert get_config() is get_config()

    def test_reload_config_creates_new_instance(self):
        config1 = get_config()
        config2 = reload_config()
        assert config1 is not config2
