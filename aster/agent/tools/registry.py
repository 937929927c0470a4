"""
工具注册表模块 (agent/tools/registry.py)

模块职责：
    管理工具名称到工具实例的映射，提供注册、查找、批量描述的能力。
    一个 ToolRegistry 可以被多个 Agent 共享。

并发约定：
    注册只发生在启动阶段（任何 Agent 开始对话之前），之后注册表只读。
    asyncio 单线程模型下 dict 读操作天然安全，因此不需要额外加锁。

注册策略：
    - 同一个实例重复注册：幂等，忽略
    - 不同实例使用已有名称：拒绝，抛出 ToolRegistrationError

设计模式对比（Java 视角）：
    类似于 ServiceLocator：register() 相当于注册 Bean，lookup() 相当于 getBean()。
"""

from typing import Any, Iterable

from loguru import logger

from aster.agent.tools.base import Tool
from aster.errors import ToolNotFoundError, ToolRegistrationError


class ToolRegistry:
    """工具注册表，内部使用 dict[str, Tool] 存储。"""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """
        注册一个工具。

        异常:
            ToolRegistrationError: 同名工具已注册为另一个实例
        """
        existing = self._tools.get(tool.name)
        if existing is tool:
            return
        if existing is not None:
            raise ToolRegistrationError(f"Tool '{tool.name}' is already registered as {existing!r}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name}")

    def unregister(self, name: str) -> None:
        """按名称注销一个工具，不存在则静默忽略。"""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def lookup(self, name: str) -> Tool:
        """
        按名称查找工具。

        异常:
            ToolNotFoundError: 工具未注册
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' not found")
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def describe_all(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """
        获取工具的 OpenAI Function Calling 格式定义。

        参数:
            names: 需要描述的工具名称（按给定顺序），为 None 时描述全部工具。
                未注册的名称会被跳过：模板可以引用稍后才注册的工具，
                真正被调用时才会产生 tool-error。

        返回:
            list[dict]: 工具定义列表，直接传给模型的 tools 参数
        """
        if names is None:
            return [tool.to_schema() for tool in self._tools.values()]
        schemas = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.debug(f"Tool {name} is not registered yet, omitted from schema")
                continue
            schemas.append(tool.to_schema())
        return schemas

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
