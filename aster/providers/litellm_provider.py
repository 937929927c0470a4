"""
LiteLLM 适配器模块 - 多 LLM 服务商的统一调用层。

LiteLLM 将 100+ 家服务商的 API 统一为 OpenAI 兼容格式，
类比 Java 世界：LiteLLM 类似于 JDBC，一套接口，多种数据库驱动。

核心设计：
  1. 模型名称解析：根据 registry.py 中的元数据，为模型名添加 LiteLLM 路由前缀
     例如 "anthropic/claude-sonnet-4.5" 经 OpenRouter → "openrouter/anthropic/claude-sonnet-4.5"
  2. 凭证随请求传递：api_key / api_base 在每次请求时显式传入，不写环境变量，
     因此多个 Agent 可以使用不同的凭证而互不影响
  3. 流式窥探：流式模式下先读取数据流，直到出现第一段文本（返回 StreamReply）
     或数据流结束（只有工具调用时返回 ToolCallsReply）
  4. 错误上抛：调用失败统一包装为 ProviderError，由状态机决定如何结束本轮对话

数据流：
  AgentLoop → LiteLLMProvider.complete() → _resolve_model() → litellm.acompletion() → LLM API
                                                                       ↓
  AgentLoop ← TextReply / StreamReply / ToolCallsReply ← _parse_response / _peek_stream
"""

import asyncio
import json
from typing import Any, AsyncIterator

import litellm
from litellm import acompletion
from loguru import logger

from aster.config.schema import ExecutionMode, ModelConfig
from aster.errors import ProviderError
from aster.providers.base import (
    LLMProvider,
    ProviderFactory,
    ProviderResult,
    StreamEnd,
    StreamReply,
    TextReply,
    ToolCallRequest,
    ToolCallsReply,
)
from aster.providers.registry import find_by_model, find_gateway

# 禁用 LiteLLM 的调试输出（默认很啰嗦）
litellm.suppress_debug_info = True


async def _close_stream(stream: Any) -> None:
    """释放底层 HTTP 流（LiteLLM 的流包装对象不一定提供 aclose）。"""
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing LLM stream: {e}")


def _parse_arguments(raw: Any) -> dict[str, Any]:
    """工具参数可能是 JSON 字符串，解析失败时保留原始字符串。"""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"raw": raw}


def _usage_dict(usage: Any) -> dict[str, int]:
    if not usage:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }


class _ToolCallAccumulator:
    """拼接流式返回的工具调用片段（同一个 index 的 id / name / arguments 分多次到达）。"""

    def __init__(self):
        self._parts: dict[int, dict[str, str]] = {}

    def feed(self, deltas: Any) -> None:
        for position, tc in enumerate(deltas or []):
            index = getattr(tc, "index", None)
            if index is None:
                index = position
            part = self._parts.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if getattr(tc, "id", None):
                part["id"] = tc.id
            function = getattr(tc, "function", None)
            if function is not None:
                if getattr(function, "name", None):
                    part["name"] = function.name
                if getattr(function, "arguments", None):
                    part["arguments"] += function.arguments

    def build(self) -> list[ToolCallRequest]:
        return [
            ToolCallRequest(
                id=part["id"],
                name=part["name"],
                arguments=_parse_arguments(part["arguments"]),
            )
            for _, part in sorted(self._parts.items())
            if part["name"]
        ]


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的模型适配器。

    服务商特定的逻辑（前缀、默认端点、参数覆盖）由 registry.py 驱动，
    本类中无需编写 if-elif 分支链。

    构造参数：
        api_key: API 密钥
        api_base: 自定义 API 基础 URL（用于代理/网关/本地部署）
        default_model: 模型名称（如 "anthropic/claude-sonnet-4.5"）
        provider_name: 配置中的服务商名称（如 "openrouter"），用于网关检测
        max_tokens / temperature: 采样参数
        extra_headers: 额外的 HTTP 请求头
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4.5",
        provider_name: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        extra_headers: dict[str, str] | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.extra_headers = extra_headers or {}

        # provider_name 是首要信号；api_key/api_base 是备选检测方式
        self._gateway = find_gateway(provider_name, api_key, api_base)
        if not self.api_base and self._gateway and self._gateway.default_api_base:
            self.api_base = self._gateway.default_api_base

    def _resolve_model(self, model: str) -> str:
        """
        解析模型名称，添加 LiteLLM 所需的服务商前缀。

        - 网关模式："anthropic/claude-sonnet-4.5" → "openrouter/anthropic/claude-sonnet-4.5"
        - 标准模式："deepseek-chat" → "deepseek/deepseek-chat"，已有前缀时保持不变
        """
        if self._gateway:
            prefix = self._gateway.litellm_prefix
            if self._gateway.strip_model_prefix:
                model = model.split("/")[-1]
            if prefix and not model.startswith(f"{prefix}/"):
                model = f"{prefix}/{model}"
            return model

        spec = find_by_model(model)
        if spec and spec.litellm_prefix:
            if not any(model.startswith(s) for s in spec.skip_prefixes):
                model = f"{spec.litellm_prefix}/{model}"

        return model

    def _apply_model_overrides(self, model: str, kwargs: dict[str, Any]) -> None:
        """应用 ProviderSpec.model_overrides 中的模型级参数覆盖（就地修改 kwargs）。"""
        model_lower = model.lower()
        spec = find_by_model(model)
        if spec:
            for pattern, overrides in spec.model_overrides:
                if pattern in model_lower:
                    kwargs.update(overrides)
                    return

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        stream: bool,
    ) -> dict[str, Any]:
        model = self._resolve_model(self.default_model)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            # 自动丢弃服务商不支持的参数
            "drop_params": True,
        }
        self._apply_model_overrides(model, kwargs)

        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if stream:
            kwargs["stream"] = True
            kwargs["stream_options"] = {"include_usage": True}
        return kwargs

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        mode: ExecutionMode = ExecutionMode.NON_STREAMING,
    ) -> ProviderResult:
        streaming = mode == ExecutionMode.STREAMING
        kwargs = self._build_kwargs(messages, tools, stream=streaming)
        logger.debug(f"LLM request: model={kwargs['model']}, messages={len(messages)}, stream={streaming}")

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            raise ProviderError(f"Error calling LLM: {e}") from e

        if streaming:
            return await self._peek_stream(response)
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> TextReply | ToolCallsReply:
        """将 LiteLLM 的非流式响应解析为 TextReply 或 ToolCallsReply。"""
        try:
            choice = response.choices[0]
            message = choice.message
            content = message.content
            tool_calls = [
                ToolCallRequest(
                    id=tc.id or "",
                    name=tc.function.name,
                    arguments=_parse_arguments(tc.function.arguments),
                )
                for tc in (getattr(message, "tool_calls", None) or [])
            ]
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(f"Malformed LLM response: {e}") from e

        usage = _usage_dict(getattr(response, "usage", None))
        if tool_calls:
            return ToolCallsReply(
                tool_calls=tool_calls,
                text=content or None,
                usage=usage,
                finish_reason=choice.finish_reason or "tool_calls",
            )
        return TextReply(
            text=content or "",
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
        )

    async def _peek_stream(self, response: Any) -> ProviderResult:
        """
        读取数据流直到出现第一段文本。

        - 出现文本：返回 StreamReply，剩余数据由消费者按需拉取
        - 流结束仍无文本：有工具调用返回 ToolCallsReply，否则返回空 TextReply
        """
        chunks = aiter(response)
        tools = _ToolCallAccumulator()
        usage: dict[str, int] = {}
        finish_reason = "stop"

        try:
            while True:
                try:
                    chunk = await anext(chunks)
                except StopAsyncIteration:
                    break
                usage = _usage_dict(getattr(chunk, "usage", None)) or usage
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                finish_reason = choice.finish_reason or finish_reason
                delta = choice.delta
                tools.feed(getattr(delta, "tool_calls", None))
                text = getattr(delta, "content", None)
                if text:
                    return StreamReply(self._rest_of_stream(chunks, text, tools, usage, finish_reason))
        except asyncio.CancelledError:
            await _close_stream(chunks)
            raise
        except Exception as e:
            await _close_stream(chunks)
            raise ProviderError(f"Error reading LLM stream: {e}") from e

        requests = tools.build()
        if requests:
            return ToolCallsReply(tool_calls=requests, usage=usage, finish_reason=finish_reason)
        return TextReply(text="", usage=usage, finish_reason=finish_reason)

    async def _rest_of_stream(
        self,
        chunks: AsyncIterator[Any],
        first: str,
        tools: _ToolCallAccumulator,
        usage: dict[str, int],
        finish_reason: str,
    ) -> AsyncIterator[Any]:
        try:
            yield first
            async for chunk in chunks:
                usage = _usage_dict(getattr(chunk, "usage", None)) or usage
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                finish_reason = choice.finish_reason or finish_reason
                tools.feed(getattr(choice.delta, "tool_calls", None))
                text = getattr(choice.delta, "content", None)
                if text:
                    yield text
        except Exception as e:
            raise ProviderError(f"Error reading LLM stream: {e}") from e
        finally:
            await _close_stream(chunks)

        for request in tools.build():
            yield request
        yield StreamEnd(usage=usage, finish_reason=finish_reason)

    def get_default_model(self) -> str:
        return self.default_model


class LiteLLMProviderFactory(ProviderFactory):
    """按 ModelConfig 创建 LiteLLMProvider，每个 Agent 一个实例。"""

    def create(self, config: ModelConfig) -> LLMProvider:
        return LiteLLMProvider(
            api_key=config.api_key or None,
            api_base=config.base_url,
            default_model=config.model,
            provider_name=config.provider,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
