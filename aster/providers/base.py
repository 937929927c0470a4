"""
模型适配器基类定义模块。

本模块定义了与大语言模型交互的抽象接口：

- ToolCallRequest : 模型请求的一次工具调用
- TextReply       : 完整文本回复（非流式）
- StreamReply     : 惰性、只能消费一次的文本增量序列（流式）
- ToolCallsReply  : 一组按顺序排列的工具调用请求
- LLMProvider     : 所有模型适配器必须实现的抽象基类
- ProviderFactory : 按 ModelConfig 创建适配器的工厂接口

架构角色：
  AgentLoop → LLMProvider.complete(history, tools, mode) → ProviderResult → AgentLoop 分派

类比 Java：
  - LLMProvider 相当于一个 interface
  - ProviderResult 相当于 sealed interface，三个实现类各自对应一种回复形态
  - StreamReply 相当于只能遍历一次的 Iterator<String>

失败约定：网络超时、鉴权失败、响应格式错误统一抛出 ProviderError。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from aster.config.schema import ExecutionMode, ModelConfig


@dataclass
class ToolCallRequest:
    """
    模型返回的工具调用请求。

    属性：
        id: 服务商生成的调用 ID（可能为空或重复，状态机会替换成 Agent 内唯一的 ID）
        name: 工具名称
        arguments: 工具参数字典
    """
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class TextReply:
    text: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"


@dataclass
class ToolCallsReply:
    """
    工具调用回复。

    属性：
        tool_calls: 按模型给出的顺序排列的工具调用请求
        text: 伴随工具调用一起返回的文本（可能为 None）
        usage: token 用量
    """
    tool_calls: list[ToolCallRequest]
    text: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "tool_calls"


@dataclass
class StreamEnd:
    """流式结束标记：由数据源在最后产出，携带用量和结束原因。"""
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"


class StreamReply:
    """
    流式文本回复。

    数据源是一个异步迭代器，产出以下三种元素：
    - str: 文本增量，逐个转交给消费者
    - ToolCallRequest: 文本之后追加的工具调用（部分模型先说话再调工具）
    - StreamEnd: 用量与结束原因

    StreamReply 只能被迭代一次；迭代结束后 text / tool_calls / usage 可读。
    提前停止消费（取消、出错或 break）时调用 aclose() 释放底层数据流。
    """

    def __init__(self, source: AsyncIterator[Any]):
        self._source = source
        self._consumed = False
        self._iterator: Any = None
        self.text = ""
        self.tool_calls: list[ToolCallRequest] = []
        self.usage: dict[str, int] = {}
        self.finish_reason = "stop"

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("StreamReply can only be iterated once")
        self._consumed = True
        self._iterator = self._iterate()
        return self._iterator

    async def aclose(self) -> None:
        """关闭迭代器和数据源。幂等，已耗尽的流调用时无操作。"""
        for stream in (self._iterator, self._source):
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()

    async def _iterate(self) -> AsyncIterator[str]:
        parts: list[str] = []
        async for item in self._source:
            if isinstance(item, str):
                if not item:
                    continue
                parts.append(item)
                self.text = "".join(parts)
                yield item
            elif isinstance(item, ToolCallRequest):
                self.tool_calls.append(item)
            elif isinstance(item, StreamEnd):
                self.usage = dict(item.usage)
                self.finish_reason = item.finish_reason


ProviderResult = Union[TextReply, StreamReply, ToolCallsReply]


class LLMProvider(ABC):
    """
    模型适配器抽象基类。

    同一个适配器实例可以被多个 Agent 共享，实现类不得在实例上保存对话状态。

    属性：
        api_key: API 密钥
        api_base: API 基础 URL（用于自定义端点或代理）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        mode: ExecutionMode = ExecutionMode.NON_STREAMING,
    ) -> ProviderResult:
        """
        发送一次补全请求。

        参数：
            messages: OpenAI 格式的消息列表（含 system 提示词）
            tools: 可用工具的 OpenAI function 定义
            mode: 流式模式返回 StreamReply（纯工具调用时仍返回 ToolCallsReply），
                  非流式模式阻塞直到拿到完整的 TextReply 或 ToolCallsReply

        异常：
            ProviderError: 传输失败、鉴权失败或响应格式错误
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        pass


class ProviderFactory(ABC):
    """按 ModelConfig 创建 LLMProvider。"""

    @abstractmethod
    def create(self, config: ModelConfig) -> LLMProvider:
        pass
