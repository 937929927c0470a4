"""
Agent 门面模块 - 对外暴露的唯一入口。

    deps = Dependencies(store, sandbox_factory, tool_registry, provider_factory, template_registry)
    agent = await create_agent(config, deps)
    sub = agent.subscribe([Channel.PROGRESS, Channel.MONITOR])
    result = await agent.chat("hello")
    await agent.close()

Agent 把各组件组装在一起：
- 串行化：同一时间只运行一轮对话，并发的第二个 chat() 立即抛出 AgentBusyError
- 持久化：每轮对话结束后保存快照；失败只记录日志并发布 Monitor 警告，不影响本轮结果
- 生命周期：close() 幂等，取消进行中的对话、销毁沙箱、关闭事件总线（唤醒所有等待中的订阅者）

【Java 开发者类比】
- create_agent() 相当于一个静态工厂方法 + Builder
- Dependencies 相当于 Spring 中注入的一组 Bean
- Agent 实现了 AutoCloseable，支持 async with
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from loguru import logger
from pydantic import ValidationError

from aster.agent.loop import AgentLoop, AgentStatus, ChatResult
from aster.agent.template import TemplateRegistry
from aster.agent.tools.registry import ToolRegistry
from aster.bus import Channel, EventBus, MonitorErrorEvent, Subscription
from aster.bus.queue import EventFilter
from aster.config.schema import AgentConfig
from aster.errors import AgentBusyError, AgentClosedError, ConfigError, StoreError
from aster.providers.base import ProviderFactory
from aster.sandbox.base import Sandbox
from aster.sandbox.factory import SandboxFactory
from aster.store.base import AgentSnapshot, Store


@dataclass
class Dependencies:
    """
    创建 Agent 所需的外部协作者。

    工具注册表、模型工厂、模板注册表可以在多个 Agent 之间共享；
    store 为 None 时不做持久化。
    """

    store: Store | None
    sandbox_factory: SandboxFactory
    tool_registry: ToolRegistry
    provider_factory: ProviderFactory
    template_registry: TemplateRegistry


def new_agent_id() -> str:
    return f"agt-{uuid.uuid4().hex[:12]}"


class Agent:
    """
    一个正在运行的 Agent。

    不直接实例化，使用 create_agent() 创建。
    """

    def __init__(
        self,
        config: AgentConfig,
        loop: AgentLoop,
        bus: EventBus,
        sandbox: Sandbox,
        store: Store | None = None,
        created_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        self.config = config
        self._loop = loop
        self._bus = bus
        self._sandbox = sandbox
        self._store = store
        self._created_at = created_at or datetime.now()
        self._metadata = metadata or {}
        self._task: asyncio.Task | None = None
        self._closed = False
        self._log = logger.bind(agent_id=loop.agent_id)

    @property
    def id(self) -> str:
        return self._loop.agent_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def messages(self) -> list[dict[str, Any]]:
        """对话历史的副本（不含系统提示词）。"""
        return [dict(m) for m in self._loop.messages]

    def status(self) -> AgentStatus:
        """当前状态快照。纯读取，不做任何 I/O。"""
        return self._loop.status()

    def subscribe(
        self,
        channels: Iterable[Channel] | None = None,
        event_filter: EventFilter | None = None,
    ) -> Subscription:
        """
        订阅事件。

        参数:
            channels: 通道集合，默认同时订阅 Progress 和 Monitor
            event_filter: 可选的事件谓词

        Agent 已关闭时返回一个立即结束的订阅。
        """
        if channels is None:
            channels = (Channel.PROGRESS, Channel.MONITOR)
        return self._bus.subscribe(channels, event_filter, buffer_size=self.config.event_buffer)

    async def chat(self, text: str) -> ChatResult:
        """
        运行一轮对话，直到模型给出最终回复、达到最大步数或出错。

        模型调用失败不会抛异常，而是返回 status="error" 的 ChatResult。

        异常:
            AgentBusyError: 已有一轮对话在进行
            AgentClosedError: Agent 已关闭
            asyncio.CancelledError: 调用方取消（历史已回滚，Agent 可继续使用）
        """
        if self._closed:
            raise AgentClosedError(f"Agent {self.id} is closed")
        if self._task is not None:
            raise AgentBusyError(f"Agent {self.id} is already processing a chat")

        # 在独立任务中运行：调用方取消时取消会传递进去，close() 也可以单独取消它
        self._task = asyncio.create_task(self._run(text))
        try:
            return await self._task
        finally:
            self._task = None

    async def _run(self, text: str) -> ChatResult:
        result = await self._loop.run_turn(text)
        await self._persist()
        return result

    def snapshot(self) -> AgentSnapshot:
        status = self._loop.status()
        return AgentSnapshot(
            agent_id=status.agent_id,
            template_id=status.template_id,
            state=status.state,
            step_count=status.step_count,
            cursor=status.cursor,
            breakpoint=status.breakpoint,
            messages=self.messages,
            created_at=self._created_at,
            updated_at=datetime.now(),
            metadata={**self._metadata, "model": self.config.model.model},
        )

    async def _persist(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(self.snapshot())
        except StoreError as e:
            self._log.warning(f"Failed to persist agent {self.id}: {e}")
            self._bus.publish(MonitorErrorEvent(severity="warning", phase="store", message=str(e)))

    async def close(self) -> None:
        """
        关闭 Agent：取消进行中的对话，销毁沙箱，关闭事件总线。幂等。

        沙箱销毁失败会记录日志并发布 Monitor 错误事件，但不会抛出。
        """
        if self._closed:
            return
        self._closed = True

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        try:
            await self._sandbox.teardown()
        except Exception as e:
            self._log.error(f"Sandbox teardown failed for agent {self.id}: {e}")
            self._bus.publish(MonitorErrorEvent(severity="error", phase="sandbox", message=str(e)))

        self._bus.close()
        self._log.info(f"Agent {self.id} closed")

    async def __aenter__(self) -> "Agent":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        status = self._loop.status()
        return f"<Agent {self.id} template={status.template_id} state={status.state.value} steps={status.step_count}>"


async def create_agent(config: AgentConfig | Mapping[str, Any], deps: Dependencies) -> Agent:
    """
    创建 Agent。

    步骤：
      1. 校验配置（dict 会按 AgentConfig 校验）并查找模板
      2. 创建模型适配器和沙箱会话
      3. 指定了 agent_id 且存储中有快照时，恢复历史

    异常:
        ConfigError: 配置非法、模板未注册或沙箱无法创建（已创建的沙箱会被销毁）
        StoreError: 读取快照失败
    """
    if not isinstance(config, AgentConfig):
        try:
            config = AgentConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigError(f"Invalid agent config: {e}") from e

    template = deps.template_registry.get(config.template_id)
    if template is None:
        raise ConfigError(f"Template '{config.template_id}' is not registered")

    try:
        provider = deps.provider_factory.create(config.model)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Invalid model config: {e}") from e

    sandbox = await deps.sandbox_factory.create(config.sandbox)
    try:
        agent_id = config.agent_id or new_agent_id()
        snapshot = None
        if config.agent_id and deps.store is not None:
            snapshot = await deps.store.load(agent_id)

        if snapshot is not None and snapshot.template_id != template.id:
            logger.warning(
                f"Agent {agent_id} was saved with template {snapshot.template_id}, resuming with {template.id}"
            )

        bus = EventBus(buffer_size=config.event_buffer)
        loop = AgentLoop(
            agent_id=agent_id,
            config=config,
            template=template,
            provider=provider,
            tools=deps.tool_registry,
            sandbox=sandbox,
            bus=bus,
            messages=snapshot.messages if snapshot else None,
            step_count=snapshot.step_count if snapshot else 0,
        )
        agent = Agent(
            config=config,
            loop=loop,
            bus=bus,
            sandbox=sandbox,
            store=deps.store,
            created_at=snapshot.created_at if snapshot else None,
            metadata=snapshot.metadata if snapshot else None,
        )
    except BaseException:
        await sandbox.teardown()
        raise

    if snapshot is not None:
        logger.info(f"Agent {agent_id} resumed with {len(snapshot.messages)} messages")
    else:
        logger.info(f"Agent {agent_id} created from template {template.id}")
    return agent
