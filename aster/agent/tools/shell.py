"""
Shell 命令执行工具模块 (agent/tools/shell.py)

模块职责：
    提供 BashTool（工具名 Bash），允许模型在沙箱工作目录中执行 Shell 命令。

    安全防护分两层：
      1. 沙箱层：命令的工作目录固定为沙箱工作目录，危险命令黑名单、
         路径越界检查、超时与进程回收都由 Sandbox.exec() 负责
      2. 工具层：输出截断（max_output），防止超长输出耗尽模型上下文窗口

    非零退出码视为工具失败（抛出 ToolExecutionError），输出内容会作为错误信息回传给模型。

设计模式对比（Java 视角）：
    类似于 ProcessBuilder + Future.get(timeout)，进程的创建和回收交给沙箱。
"""

from typing import TYPE_CHECKING, Any

from aster.agent.tools.base import Tool
from aster.errors import ToolExecutionError

if TYPE_CHECKING:
    from aster.sandbox.base import Sandbox


class BashTool(Tool):
    """Shell 命令执行工具。"""

    def __init__(self, max_output: int = 10000):
        self.max_output = max_output

    @property
    def name(self) -> str:
        return "Bash"

    @property
    def description(self) -> str:
        return "Execute a shell command in the working directory and return its output."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute"
                },
                "timeout": {
                    "type": "integer",
                    "description": "Optional timeout in seconds",
                    "minimum": 1,
                    "maximum": 600
                }
            },
            "required": ["command"]
        }

    async def execute(self, sandbox: "Sandbox", command: str, timeout: int | None = None, **kwargs: Any) -> str:
        result = await sandbox.exec(command, timeout=timeout)

        output_parts = []
        if result.stdout:
            output_parts.append(result.stdout)
        if result.stderr.strip():
            output_parts.append(f"STDERR:\n{result.stderr}")
        output = "\n".join(output_parts) if output_parts else "(no output)"

        if len(output) > self.max_output:
            output = output[:self.max_output] + f"\n... (truncated, {len(output) - self.max_output} more chars)"

        if result.exit_code != 0:
            raise ToolExecutionError(f"{output}\nExit code: {result.exit_code}")
        return output
