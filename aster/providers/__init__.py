"""LLM 模型适配器模块。"""

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
from aster.providers.litellm_provider import LiteLLMProvider, LiteLLMProviderFactory

__all__ = [
    "LLMProvider",
    "LiteLLMProvider",
    "LiteLLMProviderFactory",
    "ProviderFactory",
    "ProviderResult",
    "StreamEnd",
    "StreamReply",
    "TextReply",
    "ToolCallRequest",
    "ToolCallsReply",
]
