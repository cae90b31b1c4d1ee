"""Shell Session MCP 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from mcp.server.stdio import stdio_server

from .config import Config, get_config
from .config_manager import ConfigManager
from .orchestrator import RequestRegistry
from .runtime import ShutdownHooks, TerminalManager
from .server import TOOL_CALL_LOGGER, create_server
from .shared.telemetry import Telemetry
from .signal_manager import SignalManager

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)

TOOL_CALL_LOG_MAX_BYTES = 10 * 1024 * 1024
TOOL_CALL_LOG_BACKUPS = 1

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


async def run_server() -> None:
    """运行 MCP Server。

    并发运行两个任务：
    - server_task: 通过 stdio 运行 MCP server
    - shutdown_watcher: 等待 SignalManager 的关闭事件并取消 server_task

    退出时执行所有 ShutdownHooks，确保不遗留子进程。
    """
    config = get_config()
    logger.info(f"Starting Shell Session MCP Server: {config}")

    telemetry = Telemetry()
    config_manager = ConfigManager(config.config_dir, telemetry)
    config_manager.init()

    shutdown_hooks = ShutdownHooks()
    terminal_manager = TerminalManager(
        config_manager=config_manager,
        telemetry=telemetry,
        shutdown_hooks=shutdown_hooks,
        default_timeout_ms=config.default_timeout_ms,
    )
    registry = RequestRegistry()

    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown() -> None:
        logger.info("Shutdown callback triggered")
        count = shutdown_hooks.run_all()
        if count:
            logger.info(f"Terminated {count} active session(s)")
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
        except Exception as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(registry=registry, on_shutdown=on_shutdown)
    server = create_server(terminal_manager, config_manager, telemetry, registry, config)

    async def _serve() -> None:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
        logger.debug("MCP server completed normally")

    async def _watch_shutdown() -> None:
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        telemetry.capture("server_start", {"default_timeout_ms": config.default_timeout_ms})

        server_task = asyncio.create_task(_serve(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        await signal_manager.stop()

        count = shutdown_hooks.run_all()
        if count:
            logger.info(f"Terminated {count} remaining session(s) on exit")
        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)


def _setup_tool_call_log(config_dir: Path) -> None:
    """在配置目录挂载 tool_calls.log（超过 10MB 滚动）。"""
    try:
        config_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            config_dir / "tool_calls.log",
            maxBytes=TOOL_CALL_LOG_MAX_BYTES,
            backupCount=TOOL_CALL_LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning(f"Tool call log disabled: {e}")
        return
    handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s"))
    tool_logger = logging.getLogger(TOOL_CALL_LOGGER)
    tool_logger.addHandler(handler)
    tool_logger.setLevel(logging.INFO)


def _build_log_handlers(config: Config) -> tuple[list[logging.Handler], int]:
    """按配置选择日志输出，返回 (handlers, 包日志级别)。"""
    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        # stdout 承载 JSON-RPC，日志只能写 stderr
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return [handler], log_level


def main() -> None:
    """主入口点。"""
    config = get_config()
    log_handlers, log_level = _build_log_handlers(config)

    # 第三方库保持 WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("shell_session_mcp").setLevel(log_level)
    _setup_tool_call_log(config.config_dir)

    asyncio.run(run_server())


if __name__ == "__main__":
    main()
