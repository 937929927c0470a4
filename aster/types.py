"""
核心数据类型模块 - Agent 状态、断点、工具调用等跨组件共享的数据结构。

本模块处于依赖树的最底层（只依赖标准库），事件总线、沙箱、状态机、存储都从这里导入类型，
避免包之间出现循环依赖。

- AgentState：会话状态机的状态
- BreakpointState：状态机内部更细粒度的执行位置（用于 Monitor 断点事件）
- DoneReason：一轮对话结束的原因
- ToolCallState / ToolCall：一次工具调用及其生命周期
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class AgentState(str, Enum):
    """
    会话状态机状态。

    idle → running → {awaiting-tool-results → running} → done
    任何非终止状态都可以进入 error；done / error 之后 Agent 回到 idle 等待下一次 chat。
    """

    IDLE = "idle"
    RUNNING = "running"
    AWAITING_TOOL_RESULTS = "awaiting-tool-results"
    DONE = "done"
    ERROR = "error"


class BreakpointState(str, Enum):
    """状态机在一轮对话中的执行位置。"""

    READY = "ready"
    PRE_MODEL = "pre-model"
    STREAMING_MODEL = "streaming-model"
    TOOL_PENDING = "tool-pending"
    PRE_TOOL = "pre-tool"
    TOOL_EXECUTING = "tool-executing"
    POST_TOOL = "post-tool"


class DoneReason(str, Enum):
    STOP = "stop"
    MAX_STEPS = "max-steps"
    ERROR = "error"


class ToolCallState(str, Enum):
    """工具调用状态：pending → running → succeeded | failed。"""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def new_call_id() -> str:
    """生成 Agent 内唯一的工具调用 ID。"""
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass(frozen=True)
class ToolCall:
    """
    一次工具调用。

    由模型请求产生，之后由状态机和沙箱推进状态。ToolCall 是不可变值：
    每次状态变化都通过 start() / succeed() / fail() 返回一个新对象，
    事件中携带的永远是当时的快照。

    属性:
        id: 工具调用 ID（同一 Agent 生命周期内唯一）
        name: 工具名称
        arguments: 工具参数
        state: 执行状态
        result: 成功时的输出文本
        error: 失败时的错误信息
        started_at / finished_at: 执行起止时间
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    state: ToolCallState = ToolCallState.PENDING
    result: str | None = None
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def start(self) -> "ToolCall":
        return replace(self, state=ToolCallState.RUNNING, started_at=datetime.now())

    def succeed(self, result: str) -> "ToolCall":
        return replace(self, state=ToolCallState.SUCCEEDED, result=result, finished_at=datetime.now())

    def fail(self, error: str) -> "ToolCall":
        return replace(self, state=ToolCallState.FAILED, error=error, finished_at=datetime.now())

    @property
    def output(self) -> str:
        """回传给模型的文本：成功时是结果，失败时是带 Error 前缀的错误信息。"""
        if self.state == ToolCallState.SUCCEEDED:
            return self.result or "(no output)"
        return f"Error: {self.error}" if self.error else "Error: tool call did not complete"
