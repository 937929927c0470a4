"""
Agent 工具子包 (agent/tools)

模块职责：
    定义模型可调用的"工具"（Tool），采用"注册表模式"：
      - Tool（基类）：工具的统一接口（名称、描述、参数 schema、执行方法）
      - ToolRegistry（注册表）：工具名称 → 工具实例，可被多个 Agent 共享

内置工具清单（register_builtin 一次性注册）：
    - Read / Write / Edit / Ls：文件系统操作（限定在沙箱工作目录内）
    - Bash：Shell 命令执行
"""

from aster.agent.tools.base import Tool
from aster.agent.tools.filesystem import EditTool, LsTool, ReadTool, WriteTool
from aster.agent.tools.registry import ToolRegistry
from aster.agent.tools.shell import BashTool


def builtin_tools() -> list[Tool]:
    """创建全部内置工具的新实例。"""
    return [ReadTool(), WriteTool(), EditTool(), LsTool(), BashTool()]


def register_builtin(registry: ToolRegistry) -> ToolRegistry:
    """把内置工具注册到给定的注册表，返回注册表本身方便链式使用。"""
    for tool in builtin_tools():
        registry.register(tool)
    return registry


__all__ = [
    "Tool",
    "ToolRegistry",
    "ReadTool",
    "WriteTool",
    "EditTool",
    "LsTool",
    "BashTool",
    "builtin_tools",
    "register_builtin",
]
