"""
持久化存储基类模块。

Store 负责保存和恢复 Agent 的会话快照（AgentSnapshot）。状态机在每轮对话结束后
调用 save()；创建 Agent 时若指定了 agent_id，则先 load() 恢复历史。

【Java 开发者类比】
- Store 相当于 Repository<AgentSnapshot, String> 接口
- AgentSnapshot 相当于一个实体类（Entity）
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aster.types import AgentState, BreakpointState


@dataclass
class AgentSnapshot:
    """
    Agent 的可持久化快照。

    属性:
        agent_id: Agent ID
        template_id: 创建时使用的模板
        state: 保存时的状态（通常为 idle）
        step_count: 累计的模型往返次数
        cursor: 历史消息条数
        breakpoint: 保存时的断点位置
        messages: 对话历史（OpenAI 消息格式，不含 system 提示词）
        created_at / updated_at: 创建与最后更新时间
        metadata: 附加元数据（如模型名）
    """

    agent_id: str
    template_id: str
    state: AgentState = AgentState.IDLE
    step_count: int = 0
    cursor: int = 0
    breakpoint: BreakpointState = BreakpointState.READY
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)


class Store(ABC):
    """
    会话快照存储接口。

    实现类可以被多个 Agent 共享；不同 Agent 的快照互不影响。
    读写失败抛出 StoreError。
    """

    @abstractmethod
    async def load(self, agent_id: str) -> AgentSnapshot | None:
        """读取快照，不存在时返回 None。"""

    @abstractmethod
    async def save(self, snapshot: AgentSnapshot) -> None:
        pass

    @abstractmethod
    async def delete(self, agent_id: str) -> bool:
        """删除快照，返回是否确实删除了。"""

    @abstractmethod
    async def list(self) -> list[dict[str, Any]]:
        """列出已保存的会话摘要，按最后更新时间倒序。"""
