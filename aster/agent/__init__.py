"""
Agent 核心模块。

- agent.py    : Agent 门面、Dependencies、create_agent()
- loop.py     : 会话状态机 AgentLoop（AgentStatus / ChatResult）
- template.py : Agent 模板与模板注册表
- tools/      : 工具基类、注册表与内置工具
"""

from aster.agent.agent import Agent, Dependencies, create_agent
from aster.agent.loop import AgentLoop, AgentStatus, ChatResult
from aster.agent.template import AgentTemplate, TemplateRegistry

__all__ = [
    "Agent",
    "AgentLoop",
    "AgentStatus",
    "AgentTemplate",
    "ChatResult",
    "Dependencies",
    "TemplateRegistry",
    "create_agent",
]
