"""
事件类型定义模块 - 定义事件总线中传输的数据结构。

事件分为两个通道族（Channel）：
- Progress：单轮对话的细粒度进展（文本块开始/增量/结束、工具开始/结束/失败、本轮结束）
- Monitor：与单轮无关的横切观测信息（状态变化、token 用量、错误、断点变化）

每个事件类都是不可变的 dataclass（frozen=True），并通过类属性 channel 标明所属通道。
ProgressEvent / MonitorEvent 是两个封闭的联合类型，订阅者可以用 isinstance 穷举匹配，
无需对 Any 做未经检查的向下转型。

【Java 开发者类比】
- 每个事件类相当于 Java 的 record
- ProgressEvent = Union[...] 相当于 Java 17 的 sealed interface + permits 列表
- Envelope 相当于消息中间件里的消息头（序号 + 时间戳）+ 消息体
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union

from aster.types import AgentState, BreakpointState, DoneReason, ToolCall


class Channel(str, Enum):
    """事件通道。订阅时按通道过滤。"""

    PROGRESS = "progress"
    MONITOR = "monitor"


# ---------------------------------------------------------------------------
# Progress 通道
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressTextChunkStartEvent:
    """助手文本块开始。"""

    channel: ClassVar[Channel] = Channel.PROGRESS
    step: int


@dataclass(frozen=True)
class ProgressTextChunkEvent:
    """助手文本增量（流式模式下每个 delta 一条，非流式模式下整段文本一条）。"""

    channel: ClassVar[Channel] = Channel.PROGRESS
    step: int
    delta: str


@dataclass(frozen=True)
class ProgressTextChunkEndEvent:
    """助手文本块结束，text 为本块完整文本。"""

    channel: ClassVar[Channel] = Channel.PROGRESS
    step: int
    text: str


@dataclass(frozen=True)
class ProgressToolStartEvent:
    channel: ClassVar[Channel] = Channel.PROGRESS
    call: ToolCall


@dataclass(frozen=True)
class ProgressToolEndEvent:
    channel: ClassVar[Channel] = Channel.PROGRESS
    call: ToolCall


@dataclass(frozen=True)
class ProgressToolErrorEvent:
    channel: ClassVar[Channel] = Channel.PROGRESS
    call: ToolCall
    error: str


@dataclass(frozen=True)
class ProgressDoneEvent:
    """本轮结束。永远是一轮对话中最后一条 Progress 事件。"""

    channel: ClassVar[Channel] = Channel.PROGRESS
    step: int
    reason: DoneReason


# ---------------------------------------------------------------------------
# Monitor 通道
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorStateChangedEvent:
    channel: ClassVar[Channel] = Channel.MONITOR
    state: AgentState


@dataclass(frozen=True)
class MonitorTokenUsageEvent:
    channel: ClassVar[Channel] = Channel.MONITOR
    input_tokens: int
    output_tokens: int
    total_tokens: int


@dataclass(frozen=True)
class MonitorErrorEvent:
    """
    错误事件。

    属性:
        severity: 严重级别（"info" | "warning" | "error"），取消属于 info
        phase: 出错阶段（"provider" | "stream" | "tool" | "store" | "sandbox"）
        message: 错误描述
    """

    channel: ClassVar[Channel] = Channel.MONITOR
    severity: str
    phase: str
    message: str


@dataclass(frozen=True)
class MonitorBreakpointChangedEvent:
    channel: ClassVar[Channel] = Channel.MONITOR
    previous: BreakpointState
    current: BreakpointState


ProgressEvent = Union[
    ProgressTextChunkStartEvent,
    ProgressTextChunkEvent,
    ProgressTextChunkEndEvent,
    ProgressToolStartEvent,
    ProgressToolEndEvent,
    ProgressToolErrorEvent,
    ProgressDoneEvent,
]

MonitorEvent = Union[
    MonitorStateChangedEvent,
    MonitorTokenUsageEvent,
    MonitorErrorEvent,
    MonitorBreakpointChangedEvent,
]

Event = Union[ProgressEvent, MonitorEvent]


@dataclass(frozen=True)
class Envelope:
    """
    事件信封 - 总线为每条发布的事件分配的外层包装。

    属性:
        seq: 总线内单调递增的序号（同一 Agent 内全局唯一，可用于合并多个订阅者的事件流）
        channel: 事件所属通道（与 event.channel 一致）
        event: 事件本体
        timestamp: 发布时间
    """

    seq: int
    channel: Channel
    event: Any
    timestamp: datetime = field(default_factory=datetime.now)
