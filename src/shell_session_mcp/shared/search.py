"""基于 grep 的代码搜索。

直接以参数列表调用 grep（不经过 shell），避免模式和路径被 shell 解释。
grep 退出码 1 表示没有匹配，属于正常情况。
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .telemetry import Telemetry

__all__ = [
    "SearchError",
    "SearchOptions",
    "SearchResult",
    "DEFAULT_EXCLUDE_DIRS",
    "validate_path",
    "build_grep_argv",
    "parse_grep_output",
    "search_code",
    "format_search_results",
]

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_DIRS = ("node_modules", ".git", "dist", "build", "coverage")

# 文件名之后的部分: 匹配行 "12:content"，上下文行 "12-content"
_LINE_BODY = re.compile(r"^(?P<line>\d+)[:-](?P<match>.*)$")


class SearchError(Exception):
    """搜索失败（非"无匹配"的 grep 错误，或路径不允许）。"""


@dataclass(frozen=True)
class SearchResult:
    file: str
    line: int
    match: str


@dataclass
class SearchOptions:
    """搜索参数。

    Attributes:
        root_path: 搜索根目录
        pattern: 文本/正则模式
        file_pattern: 文件名 glob（如 "*.py"）
        ignore_case: 是否忽略大小写
        max_results: 结果数量上限
        include_hidden: 是否包含隐藏文件/目录
        context_lines: 匹配前后的上下文行数
        exclude_dirs: 排除的目录名
    """

    root_path: str
    pattern: str
    file_pattern: str | None = None
    ignore_case: bool = True
    max_results: int = 1000
    include_hidden: bool = False
    context_lines: int = 0
    exclude_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))


def validate_path(root_path: str, allowed_directories: list[str] | None = None) -> Path:
    """解析路径并检查是否位于允许的目录之内（allowed_directories 为空时不限制）。"""
    path = Path(root_path).expanduser().resolve()
    if not path.is_dir():
        raise SearchError(f"Not a directory: {path}")
    if not allowed_directories:
        return path
    for allowed in allowed_directories:
        base = Path(allowed).expanduser().resolve()
        if path == base or base in path.parents:
            return path
    raise SearchError(f"Access denied - path outside allowed directories: {path}")


def build_grep_argv(options: SearchOptions) -> list[str]:
    # --null: 文件名后输出 NUL，文件名中的 ':' / '-' 不影响解析
    argv = ["grep", "-r", "-n", "-I", "--null"]
    if options.ignore_case:
        argv.append("-i")
    if options.context_lines > 0:
        argv.append(f"-C{options.context_lines}")
    if options.file_pattern:
        argv.append(f"--include={options.file_pattern}")
    for directory in options.exclude_dirs:
        argv.append(f"--exclude-dir={directory}")
    if not options.include_hidden:
        argv.append("--exclude=.*")
    # grep 在 root 内运行；以 "." 为目标，--exclude-dir 不会匹配到 root 本身
    argv.extend(["-e", options.pattern, "--", "."])
    return argv


def _is_hidden(relative: Path) -> bool:
    return any(part.startswith(".") and part not in (".", "..") for part in relative.parts)


def parse_grep_output(
    output: str,
    max_results: int,
    root: Path,
    include_hidden: bool = False,
) -> list[SearchResult]:
    """解析 grep -n --null 输出，上下文行与匹配行一并返回。"""
    results: list[SearchResult] = []
    for line in output.splitlines():
        file_name, sep, rest = line.partition("\0")
        if not sep:
            continue
        m = _LINE_BODY.match(rest)
        if not m:
            continue
        relative = Path(file_name)
        if not include_hidden and _is_hidden(relative):
            continue
        results.append(SearchResult(
            file=str(root / relative),
            line=int(m.group("line")),
            match=m.group("match").strip(),
        ))
        if len(results) >= max_results:
            break
    return results


async def search_code(
    options: SearchOptions,
    *,
    timeout_ms: int = 30000,
    allowed_directories: list[str] | None = None,
    telemetry: Telemetry | None = None,
) -> list[SearchResult]:
    """在文件内容中搜索。超时返回空列表。

    Raises:
        SearchError: 路径不允许或 grep 执行失败
    """
    root = validate_path(options.root_path, allowed_directories)

    try:
        process = await asyncio.create_subprocess_exec(
            *build_grep_argv(options),
            cwd=root,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise SearchError(f"Search failed: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.warning(f"Code search timed out after {timeout_ms}ms: root={root}")
        process.kill()
        await process.wait()
        return []

    error = stderr.decode(errors="replace")
    if process.returncode not in (0, 1):
        if "permission denied" in error.lower():
            if telemetry:
                telemetry.capture(
                    "server_request_error",
                    {"error": "Permission denied accessing some files during search"},
                )
        else:
            if telemetry:
                telemetry.capture("server_request_error", {"error": f"Search error: {error.strip()}"})
            raise SearchError(f"Search failed: {error.strip()}")

    return parse_grep_output(
        stdout.decode(errors="replace"),
        options.max_results,
        root,
        include_hidden=options.include_hidden,
    )


def format_search_results(results: list[SearchResult]) -> str:
    """按文件分组格式化搜索结果。"""
    lines: list[str] = []
    current_file = ""
    for result in results:
        if result.file != current_file:
            if lines:
                lines.append("")
            lines.append(f"{result.file}:")
            current_file = result.file
        lines.append(f"  {result.line}: {result.match}")
    return "\n".join(lines)
