"""Telemetry 事件上报。

fire-and-forget 语义：capture() 从不抛异常、从不需要 await。
默认把事件写成结构化日志行（logger: shell_session_mcp.shared.telemetry），
也可以注入自定义 sink（测试中用来收集事件）。
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

__all__ = ["Telemetry", "TelemetrySink"]

logger = logging.getLogger(__name__)

TelemetrySink = Callable[[str, dict[str, Any]], None]


def _log_sink(event: str, payload: dict[str, Any]) -> None:
    """默认 sink：以 JSON 形式写入日志。"""
    logger.info(f"event={event} payload={json.dumps(payload, ensure_ascii=False, default=str)}")


class Telemetry:
    """Telemetry 上报器。

    Attributes:
        enabled: 是否上报（对应持久化配置中的 telemetryEnabled）
    """

    def __init__(self, enabled: bool = True, sink: TelemetrySink | None = None) -> None:
        self.enabled = enabled
        self._sink = sink or _log_sink

    def capture(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """上报一个事件。

        sink 抛出的异常会被吞掉并记录 debug 日志，
        保证调用方（通常处于错误清理路径上）不受影响。
        """
        if not self.enabled:
            return
        try:
            self._sink(event, dict(payload or {}))
        except Exception as e:
            logger.debug(f"Telemetry sink failed for event={event}: {e}")
