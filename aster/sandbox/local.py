"""
本地沙箱模块 (sandbox/local.py)

模块职责：
    LocalSandbox 以一个本地工作目录作为隔离边界：
      1. 文件操作：所有路径经 resolve_path() 解析，必须落在工作目录内（消除 ../ 与符号链接逃逸）
      2. Shell 命令：工作目录固定为沙箱根目录，执行前经过安全检查（_guard_command）
      3. 进程管理：跟踪所有子进程，超时、取消或 teardown 时强制终止

    安全检查沿用多层防护（尽最大努力，非绝对安全）：
      - 危险命令黑名单（deny_patterns）：拦截 rm -rf、格式化磁盘、fork 炸弹等
      - 命令白名单（allow_patterns）：可选，仅允许匹配的命令执行
      - 工作区限制（restrict_to_workspace）：禁止命令中出现工作目录外的绝对路径和 ../

设计模式对比（Java 视角）：
    类似于 ProcessBuilder.directory(workDir) + SecurityManager 的组合。
"""

import asyncio
import re
from pathlib import Path

from loguru import logger

from aster.config.schema import SandboxConfig
from aster.errors import SandboxViolationError, ToolExecutionError
from aster.sandbox.base import ExecResult, Sandbox
from aster.utils.helpers import ensure_dir

DEFAULT_DENY_PATTERNS = [
    r"\brm\s+-[rf]{1,2}\b",          # rm -r, rm -rf, rm -fr（递归删除）
    r"\bdel\s+/[fq]\b",              # Windows: del /f, del /q
    r"\brmdir\s+/s\b",               # Windows: rmdir /s
    r"\b(format|mkfs|diskpart)\b",   # 磁盘格式化
    r"\bdd\s+if=",                   # dd 直接写盘
    r">\s*/dev/sd",                  # 重定向写入磁盘设备
    r"\b(shutdown|reboot|poweroff)\b",
    r":\(\)\s*\{.*\};\s*:",          # fork 炸弹 :(){ :|:& };:
]


class LocalSandbox(Sandbox):
    """
    基于本地工作目录的沙箱。

    参数:
        config: 沙箱配置（work_dir、exec_timeout、restrict_to_workspace）
        deny_patterns: 危险命令正则黑名单，默认 DEFAULT_DENY_PATTERNS
        allow_patterns: 命令正则白名单（可选）
    """

    def __init__(
        self,
        config: SandboxConfig,
        deny_patterns: list[str] | None = None,
        allow_patterns: list[str] | None = None,
    ):
        super().__init__(config)
        self._work_dir = ensure_dir(Path(config.work_dir).expanduser()).resolve()
        self.deny_patterns = deny_patterns or list(DEFAULT_DENY_PATTERNS)
        self.allow_patterns = allow_patterns or []
        self._processes: set[asyncio.subprocess.Process] = set()
        logger.debug(f"Local sandbox {self.id} created at {self._work_dir}")

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def resolve_path(self, path: str) -> Path:
        """
        解析路径：相对路径相对于工作目录，resolve() 消除 ../ 与符号链接后再做边界检查。

        异常:
            SandboxViolationError: 路径超出工作目录
        """
        self._ensure_open()
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self._work_dir / p
        resolved = p.resolve()
        if resolved != self._work_dir and self._work_dir not in resolved.parents:
            raise SandboxViolationError(f"Path {path} is outside the sandbox working directory")
        return resolved

    async def read_text(self, path: str) -> str:
        return self.resolve_path(path).read_text(encoding="utf-8")

    async def write_text(self, path: str, content: str) -> int:
        file_path = self.resolve_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        file_path.write_bytes(data)
        return len(data)

    async def list_dir(self, path: str) -> list[tuple[str, bool]]:
        dir_path = self.resolve_path(path)
        return [(item.name, item.is_dir()) for item in sorted(dir_path.iterdir())]

    async def exec(self, command: str, timeout: float | None = None) -> ExecResult:
        """
        在工作目录中执行 Shell 命令。

        异常:
            ToolExecutionError: 命令被安全检查拦截或执行超时
            SandboxViolationError: 命令引用了工作目录外的路径
            asyncio.CancelledError: 调用方取消，子进程已被终止
        """
        self._ensure_open()
        self._guard_command(command)
        timeout = timeout or self.config.exec_timeout

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self._work_dir),
        )
        self._processes.add(process)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise ToolExecutionError(f"Command timed out after {timeout} seconds")
        except asyncio.CancelledError:
            await self._kill(process)
            raise
        finally:
            self._processes.discard(process)

        return ExecResult(
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
            exit_code=process.returncode if process.returncode is not None else -1,
        )

    def _guard_command(self, command: str) -> None:
        cmd = command.strip()
        lower = cmd.lower()

        for pattern in self.deny_patterns:
            if re.search(pattern, lower):
                raise ToolExecutionError("Command blocked by safety guard (dangerous pattern detected)")

        if self.allow_patterns and not any(re.search(p, lower) for p in self.allow_patterns):
            raise ToolExecutionError("Command blocked by safety guard (not in allowlist)")

        if self.config.restrict_to_workspace:
            if "..\\" in cmd or "../" in cmd:
                raise SandboxViolationError("Command blocked by safety guard (path traversal detected)")

            if re.search(r"(?:^|[\s|>;&(=])~|\$\{?HOME\b", cmd) or re.search(r"(?:^|[\s;&|(])cd\s*(?:$|[;&|)])", cmd):
                raise SandboxViolationError("Command blocked by safety guard (home directory reference)")

            win_paths = re.findall(r"[A-Za-z]:\\[^\\\"']+", cmd)
            # 只匹配绝对路径（含单独的 /），避免对相对路径（如 .venv/bin/python）的误报
            posix_paths = re.findall(r"(?:^|[\s|>;&(=])(/[^\s\"'>;&|)]*)", cmd)
            for raw in win_paths + posix_paths:
                try:
                    p = Path(raw.strip()).resolve()
                except (OSError, ValueError):
                    continue
                if p.is_absolute() and self._work_dir not in p.parents and p != self._work_dir:
                    raise SandboxViolationError("Command blocked by safety guard (path outside working dir)")

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    async def _release(self) -> None:
        processes = list(self._processes)
        self._processes.clear()
        for process in processes:
            await self._kill(process)
        if processes:
            logger.info(f"Sandbox {self.id} killed {len(processes)} running processes")
