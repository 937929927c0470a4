"""
事件总线模块 - 实现状态机与观察者之间的解耦通信。

事件流向：
  AgentLoop → publish(event) → EventBus → Subscription（按通道/谓词过滤）→ 观察者

【Java 开发者类比】
- EventBus 类似于 Spring 的 ApplicationEventPublisher，但每个监听者独立排队
- 事件类类似于不可变 DTO
"""

from aster.bus.events import (
    Channel,
    Envelope,
    Event,
    MonitorBreakpointChangedEvent,
    MonitorErrorEvent,
    MonitorEvent,
    MonitorStateChangedEvent,
    MonitorTokenUsageEvent,
    ProgressDoneEvent,
    ProgressEvent,
    ProgressTextChunkEndEvent,
    ProgressTextChunkEvent,
    ProgressTextChunkStartEvent,
    ProgressToolEndEvent,
    ProgressToolErrorEvent,
    ProgressToolStartEvent,
)
from aster.bus.queue import EventBus, Subscription

__all__ = [
    "Channel",
    "Envelope",
    "Event",
    "EventBus",
    "Subscription",
    "ProgressEvent",
    "MonitorEvent",
    "ProgressTextChunkStartEvent",
    "ProgressTextChunkEvent",
    "ProgressTextChunkEndEvent",
    "ProgressToolStartEvent",
    "ProgressToolEndEvent",
    "ProgressToolErrorEvent",
    "ProgressDoneEvent",
    "MonitorStateChangedEvent",
    "MonitorTokenUsageEvent",
    "MonitorErrorEvent",
    "MonitorBreakpointChangedEvent",
]
