"""进行中的工具调用登记。

SIGINT/SIGTERM 通过 RequestRegistry 取消正在执行的工具调用，
而不是直接终止整个服务器进程。被取消的 execute_command 会终止其子进程。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

__all__ = ["RequestRegistry", "RequestInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RequestInfo:
    """一次工具调用。

    Attributes:
        request_id: 唯一请求标识符
        tool_name: 工具名称
        task: 执行该调用的 asyncio Task
        created_at: 创建时间
        summary: 可选的简要说明（如命令文本）
    """

    request_id: str
    tool_name: str
    task: asyncio.Task
    created_at: datetime = field(default_factory=datetime.now)
    summary: str = ""

    @property
    def elapsed_sec(self) -> float:
        return (datetime.now() - self.created_at).total_seconds()

    def __repr__(self) -> str:
        status = "done" if self.task.done() else "running"
        summary = f", summary={self.summary[:40]!r}" if self.summary else ""
        return (
            f"RequestInfo(id={self.request_id[:8]}..., tool={self.tool_name}, "
            f"status={status}, elapsed={self.elapsed_sec:.1f}s{summary})"
        )


class RequestRegistry:
    """活动工具调用的注册表。

    所有操作都是同步的，调用方需保证在同一事件循环中使用。
    """

    def __init__(self) -> None:
        self._requests: dict[str, RequestInfo] = {}

    @staticmethod
    def generate_request_id() -> str:
        return str(uuid.uuid4())

    def register(
        self,
        request_id: str,
        tool_name: str,
        task: asyncio.Task,
        summary: str = "",
    ) -> None:
        """登记调用。

        Raises:
            ValueError: request_id 已存在
        """
        if request_id in self._requests:
            raise ValueError(f"Request {request_id} already registered")
        info = RequestInfo(request_id=request_id, tool_name=tool_name, task=task, summary=summary)
        self._requests[request_id] = info
        logger.debug(f"Registered request: {info}")

    def unregister(self, request_id: str) -> bool:
        """注销调用。"""
        info = self._requests.pop(request_id, None)
        if info is None:
            return False
        logger.debug(f"Unregistered request: {info}")
        return True

    def cancel_all(self) -> int:
        """取消所有未完成的调用，返回发起取消的数量。"""
        cancelled = 0
        for info in list(self._requests.values()):
            if not info.task.done():
                info.task.cancel()
                logger.info(f"Cancelled request: {info}")
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} active request(s)")
        return cancelled

    def has_active_requests(self) -> bool:
        return any(not info.task.done() for info in self._requests.values())

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests
