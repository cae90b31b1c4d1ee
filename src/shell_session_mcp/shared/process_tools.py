"""OS 进程查看与终止。

通过外部工具（ps / kill）操作真实的 OS 进程号，
与 TerminalManager 的会话号（session pid）无关。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .telemetry import Telemetry

__all__ = [
    "ProcessInfo",
    "ProcessToolError",
    "parse_ps_output",
    "process_exists",
    "list_processes",
    "kill_process",
]

logger = logging.getLogger(__name__)

# kill 之后等待进程消失的时间（秒）与轮询间隔
KILL_GRACE_SECONDS = 0.5
POLL_INTERVAL = 0.05


class ProcessToolError(Exception):
    """外部进程工具执行失败。"""


@dataclass(frozen=True)
class ProcessInfo:
    """ps 输出中的一行。

    Attributes:
        pid: OS 进程号
        command: 完整命令行
        cpu: CPU 占用百分比（原样保留 ps 的文本）
        memory: 内存占用百分比（原样保留 ps 的文本）
    """

    pid: int
    command: str
    cpu: str
    memory: str

    def format(self) -> str:
        return f"PID: {self.pid}, Command: {self.command}, CPU: {self.cpu}%, Memory: {self.memory}%"


async def _run(*argv: str) -> tuple[int, str, str]:
    """运行外部工具，返回 (returncode, stdout, stderr)。"""
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode if process.returncode is not None else -1,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


def parse_ps_output(text: str) -> list[ProcessInfo]:
    """解析 `ps aux` 格式输出。

    列: USER PID %CPU %MEM VSZ RSS TTY STAT START TIME COMMAND，
    第 11 列之后全部属于命令行。无法解析的行被跳过。
    """
    processes = []
    for line in text.splitlines()[1:]:
        parts = line.split(None, 10)
        if len(parts) < 11:
            continue
        try:
            pid = int(parts[1])
        except ValueError:
            continue
        processes.append(ProcessInfo(pid=pid, command=parts[10], cpu=parts[2], memory=parts[3]))
    return processes


async def list_processes(telemetry: Telemetry | None = None) -> list[ProcessInfo]:
    """列出所有进程（ps auxww，ww 保证命令行不被截断）。

    Raises:
        ProcessToolError: ps 执行失败
    """
    try:
        returncode, stdout, stderr = await _run("ps", "auxww")
    except OSError as e:
        raise ProcessToolError(f"Failed to list processes: {e}") from e

    if returncode != 0:
        if "permission denied" in stderr.lower() and stdout.strip():
            # 部分信息不可读时仍返回可见部分
            if telemetry:
                telemetry.capture("server_request_error", {"error": "Permission denied listing processes"})
        else:
            raise ProcessToolError(f"Error listing processes: {stderr.strip()}")

    return parse_ps_output(stdout)


async def process_exists(pid: int) -> bool:
    """检查 OS 进程是否存在（僵尸进程视为不存在）。"""
    try:
        returncode, stdout, _ = await _run("ps", "-o", "stat=", "-p", str(pid))
    except OSError:
        return False
    if returncode != 0:
        return False
    state = stdout.strip()
    return bool(state) and not state.startswith("Z")


async def _wait_gone(pid: int, timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while await process_exists(pid):
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(POLL_INTERVAL)
    return True


async def _send_kill(pid: int, *flags: str, telemetry: Telemetry | None) -> bool:
    """调用 kill 工具，返回是否成功。权限错误上报 telemetry。"""
    try:
        returncode, _, stderr = await _run("kill", *flags, str(pid))
    except OSError as e:
        raise ProcessToolError(f"Failed to kill process: {e}") from e

    if returncode == 0:
        return True
    if "not permitted" in stderr.lower() or "permission denied" in stderr.lower():
        if telemetry:
            telemetry.capture(
                "server_request_error",
                {"error": f"Permission denied killing process {pid}", "flags": list(flags)},
            )
    logger.debug(f"kill {' '.join(flags)} {pid} failed: {stderr.strip()}")
    return False


async def kill_process(
    pid: int,
    telemetry: Telemetry | None = None,
    grace_seconds: float = KILL_GRACE_SECONDS,
) -> str:
    """终止 OS 进程：先 SIGTERM，失败或进程仍存在时再 SIGKILL。

    Returns:
        成功信息

    Raises:
        ProcessToolError: 进程不存在、SIGKILL 失败、或 SIGKILL 后进程仍存在
    """
    if not await process_exists(pid):
        raise ProcessToolError(f"Process {pid} does not exist")

    if await _send_kill(pid, telemetry=telemetry) and await _wait_gone(pid, grace_seconds):
        logger.info(f"Terminated process {pid} with SIGTERM")
        return f"Successfully terminated process {pid}"

    logger.info(f"Process {pid} still running, sending SIGKILL")
    if not await _send_kill(pid, "-9", telemetry=telemetry):
        # SIGTERM 可能在等待窗口之后才生效
        if not await process_exists(pid):
            return f"Successfully terminated process {pid}"
        raise ProcessToolError(f"Failed to force kill process {pid}")

    if not await _wait_gone(pid, grace_seconds):
        raise ProcessToolError(f"Failed to kill process {pid} - process still exists after SIGKILL")

    return f"Successfully terminated process {pid}"
