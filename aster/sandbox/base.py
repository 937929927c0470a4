"""
沙箱基类模块 (sandbox/base.py)

模块职责：
    定义沙箱会话（Sandbox）的抽象接口。沙箱是工具执行的隔离上下文，
    负责限制工具调用的影响范围（工作目录、进程），并管理自身资源的生命周期。

生命周期：
    SandboxFactory.create(config) → Sandbox → invoke(tool, call) ... → teardown()

    - invoke() 对状态机来说是同步等待的一次调用，内部异步执行工具；
      调用方所在的 asyncio 任务被取消时，正在执行的工具（包括子进程）随之终止
    - 工具失败（抛异常、参数非法、超时）只会让 ToolCall 变为 failed，不影响沙箱和 Agent
    - teardown() 只在第一次调用时真正释放资源，之后的调用为空操作；
      teardown 之后再 invoke 会抛出 SandboxClosedError

设计模式对比（Java 视角）：
    Sandbox 类似于一个 AutoCloseable 的执行上下文，invoke() 相当于
    executor.submit(task).get(timeout)，并把异常转换为结果对象而不是向上抛出。
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from aster.config.schema import SandboxConfig
from aster.errors import SandboxClosedError
from aster.types import ToolCall, ToolCallState

if TYPE_CHECKING:
    from aster.agent.tools.base import Tool


@dataclass(frozen=True)
class ExecResult:
    """Shell 命令执行结果。"""

    stdout: str
    stderr: str
    exit_code: int


class Sandbox(ABC):
    """
    沙箱会话抽象基类。

    子类需要实现文件与进程相关的原语（resolve_path / read_text / write_text /
    list_dir / exec），工具只能通过这些原语产生副作用。

    属性:
        id: 沙箱会话 ID
        config: 沙箱配置
    """

    def __init__(self, config: SandboxConfig):
        self.id = f"sbx-{uuid.uuid4().hex[:12]}"
        self.config = config
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    @abstractmethod
    def work_dir(self) -> Path:
        """沙箱工作目录。"""

    @abstractmethod
    def resolve_path(self, path: str) -> Path:
        """
        把工具传入的路径解析为沙箱内的绝对路径。

        异常:
            SandboxViolationError: 路径超出沙箱边界
        """

    @abstractmethod
    async def read_text(self, path: str) -> str:
        pass

    @abstractmethod
    async def write_text(self, path: str, content: str) -> int:
        """写入文本，返回写入的字节数。"""

    @abstractmethod
    async def list_dir(self, path: str) -> list[tuple[str, bool]]:
        """列出目录，返回 (名称, 是否目录) 列表。"""

    @abstractmethod
    async def exec(self, command: str, timeout: float | None = None) -> ExecResult:
        """在沙箱中执行 Shell 命令。"""

    def _ensure_open(self) -> None:
        if self._closed:
            raise SandboxClosedError(f"Sandbox {self.id} session closed")

    async def invoke(self, tool: "Tool", call: ToolCall, timeout: float | None = None) -> ToolCall:
        """
        在沙箱中执行一次工具调用。

        参数:
            tool: 已从注册表中查到的工具
            call: 待执行的工具调用（pending 或 running 状态）
            timeout: 超时秒数，None 表示不限

        返回:
            进入终止状态（succeeded / failed）的 ToolCall

        异常:
            SandboxClosedError: 沙箱已销毁
            asyncio.CancelledError: 调用方取消（进行中的工具已被终止）
        """
        self._ensure_open()
        running = call if call.state == ToolCallState.RUNNING else call.start()

        errors = tool.validate_params(call.arguments)
        if errors:
            return running.fail(f"Invalid parameters for tool '{tool.name}': " + "; ".join(errors))

        try:
            result = await asyncio.wait_for(tool.execute(self, **call.arguments), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {tool.name} ({call.id}) timed out after {timeout}s")
            return running.fail(f"Tool '{tool.name}' timed out after {timeout} seconds")
        except asyncio.CancelledError:
            logger.info(f"Tool {tool.name} ({call.id}) cancelled")
            raise
        except Exception as e:
            logger.debug(f"Tool {tool.name} ({call.id}) failed: {e}")
            return running.fail(str(e) or type(e).__name__)

        return running.succeed(result if isinstance(result, str) else str(result))

    async def teardown(self) -> None:
        """释放沙箱资源。只有第一次调用生效。"""
        if self._closed:
            return
        self._closed = True
        await self._release()
        logger.debug(f"Sandbox {self.id} torn down")

    async def _release(self) -> None:
        """子类释放资源的钩子（终止进程、断开连接等）。"""

    async def __aenter__(self) -> "Sandbox":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.teardown()
