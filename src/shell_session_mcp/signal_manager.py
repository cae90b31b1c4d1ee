"""信号管理模块。

将 OS 信号转换为请求级别的操作：
- SIGINT: 取消进行中的工具调用（取消后的 execute_command 会终止其子进程）
- SIGTERM: 取消所有调用并优雅退出

配置（环境变量）：
- SSM_SIGINT_MODE: cancel | exit | cancel_then_exit
- SSM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable

from .config import SigintMode, get_config
from .orchestrator import RequestRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """SIGINT/SIGTERM 处理器。

    Example:
        ```python
        registry = RequestRegistry()
        signal_manager = SignalManager(registry, on_shutdown=hooks.run_all)

        await signal_manager.start()
        try:
            await serve()
        finally:
            await signal_manager.stop()
        ```
    """

    def __init__(
        self,
        registry: RequestRegistry,
        sigint_mode: SigintMode | None = None,
        double_tap_window: float | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        """
        Args:
            registry: 请求注册表
            sigint_mode: SIGINT 处理模式（默认从环境配置读取）
            double_tap_window: 双击退出窗口时间（默认从环境配置读取）
            on_shutdown: 请求关闭时调用的回调
        """
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested = False
        self._force_exit = False
        self._shutdown_event: asyncio.Event | None = None
        self._original_sigint_handler = None
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """双击 SIGINT 触发的强制退出。"""
        return self._force_exit

    async def start(self) -> None:
        """安装信号处理器。必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._handle_sigint(),
            )
        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """恢复原始信号处理。"""
        if not self._running:
            return
        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")
        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        now = time.time()
        since_last = now - self._last_sigint_time
        self._last_sigint_time = now

        if since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._shutdown(force=True)
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._shutdown()
            return

        if not self.registry.has_active_requests():
            logger.info(
                f"SIGINT received (mode={self.sigint_mode.value}), no active requests, requesting shutdown"
            )
            self._shutdown()
            return

        count = self.registry.cancel_all()
        if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            logger.info(
                f"SIGINT received (mode=cancel_then_exit), cancelled {count} request(s). "
                f"Press Ctrl+C again within {self.double_tap_window}s to exit."
            )
            # 仅标记，等待第二次 SIGINT
            self._shutdown_requested = True
        else:
            logger.info(f"SIGINT received (mode=cancel), cancelled {count} request(s)")

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._shutdown()

    def _shutdown(self, force: bool = False) -> None:
        """取消所有调用、执行关闭回调并唤醒 wait_for_shutdown()。

        进程的实际退出（含强制退出的 130 退出码）由 run_server() 在清理后完成。
        """
        self._shutdown_requested = True
        if force:
            self._force_exit = True

        if self.registry.has_active_requests():
            count = self.registry.cancel_all()
            logger.info(f"Cancelled {count} active request(s) for shutdown")

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._shutdown()
