"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径（未安装时）
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shell_session_mcp.runtime import ProcessTerminator, ShutdownHooks, TerminalManager  # noqa: E402
from shell_session_mcp.shared.telemetry import Telemetry  # noqa: E402

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


class TelemetryRecorder:
    """收集 telemetry 事件的 sink。"""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def telemetry_recorder() -> TelemetryRecorder:
    return TelemetryRecorder()


@pytest.fixture
def telemetry(telemetry_recorder: TelemetryRecorder) -> Telemetry:
    return Telemetry(enabled=True, sink=telemetry_recorder)


@pytest.fixture
def shutdown_hooks() -> ShutdownHooks:
    """不注册 atexit 的 hooks。"""
    return ShutdownHooks(register_atexit=False)


@pytest.fixture
def manager(telemetry: Telemetry, shutdown_hooks: ShutdownHooks) -> TerminalManager:
    """使用 /bin/sh、短宽限期的执行器。"""
    return TerminalManager(
        telemetry=telemetry,
        terminator=ProcessTerminator(telemetry, grace_period=0.3),
        shutdown_hooks=shutdown_hooks,
    )
