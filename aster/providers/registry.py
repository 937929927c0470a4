"""
LLM 服务商元数据表 - 模型名路由规则的唯一真相来源。

LiteLLM 通过模型名前缀路由到具体服务商（如 "deepseek/deepseek-chat"）。
不同服务商/网关的差异（前缀、默认端点、模型级参数覆盖）集中声明在 PROVIDERS 中，
LiteLLMProvider 只做通用的查表逻辑，不写 if-elif 分支链。

与凭证相关的信息不在这里：api_key / base_url 来自每个 Agent 的 ModelConfig，
并在每次请求时显式传给 LiteLLM，不写入进程环境变量。

PROVIDERS 中的顺序决定匹配优先级，网关类型排在最前面。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ProviderSpec:
    """
    单个 LLM 服务商的元数据。

    【身份标识】
        name: ModelConfig.provider 使用的名称（如 "openrouter"）
        keywords: 模型名关键词（小写），用于按模型名匹配服务商
        display_name: 展示名称

    【模型前缀】
        litellm_prefix: LiteLLM 路由前缀（"deepseek" → 模型变为 "deepseek/{model}"）
        skip_prefixes: 模型名已带这些前缀时不再添加

    【网关/本地部署】
        is_gateway / is_local: 网关可以路由任意模型；本地部署如 vLLM
        detect_by_key_prefix / detect_by_base_keyword: 通过 key 前缀或 URL 关键词识别网关
        default_api_base: 默认 API 地址
        strip_model_prefix: 加网关前缀前是否先剥掉原服务商前缀

    【模型级参数覆盖】
        model_overrides: (模型名片段, 覆盖参数) 列表
    """

    name: str
    keywords: tuple[str, ...]
    display_name: str = ""

    litellm_prefix: str = ""
    skip_prefixes: tuple[str, ...] = ()

    is_gateway: bool = False
    is_local: bool = False
    detect_by_key_prefix: str = ""
    detect_by_base_keyword: str = ""
    default_api_base: str = ""

    strip_model_prefix: bool = False

    model_overrides: tuple[tuple[str, dict[str, Any]], ...] = ()

    @property
    def label(self) -> str:
        return self.display_name or self.name.title()


PROVIDERS: tuple[ProviderSpec, ...] = (

    # ===== 网关 =====

    ProviderSpec(
        name="openrouter",
        keywords=("openrouter",),
        display_name="OpenRouter",
        litellm_prefix="openrouter",        # anthropic/claude-sonnet-4.5 → openrouter/anthropic/claude-sonnet-4.5
        is_gateway=True,
        detect_by_key_prefix="sk-or-",
        detect_by_base_keyword="openrouter",
        default_api_base="https://openrouter.ai/api/v1",
    ),
    ProviderSpec(
        name="aihubmix",
        keywords=("aihubmix",),
        display_name="AiHubMix",
        litellm_prefix="openai",            # OpenAI 兼容接口
        is_gateway=True,
        detect_by_base_keyword="aihubmix",
        default_api_base="https://aihubmix.com/v1",
        strip_model_prefix=True,            # anthropic/claude-3 → claude-3 → openai/claude-3
    ),

    # ===== 标准服务商 =====

    ProviderSpec(
        name="anthropic",
        keywords=("anthropic", "claude"),
        display_name="Anthropic",
    ),
    ProviderSpec(
        name="openai",
        keywords=("openai", "gpt"),
        display_name="OpenAI",
    ),
    ProviderSpec(
        name="deepseek",
        keywords=("deepseek",),
        display_name="DeepSeek",
        litellm_prefix="deepseek",
        skip_prefixes=("deepseek/",),
    ),
    ProviderSpec(
        name="gemini",
        keywords=("gemini",),
        display_name="Gemini",
        litellm_prefix="gemini",
        skip_prefixes=("gemini/",),
    ),
    ProviderSpec(
        name="dashscope",
        keywords=("qwen", "dashscope"),
        display_name="DashScope",
        litellm_prefix="dashscope",
        skip_prefixes=("dashscope/", "openrouter/"),
    ),
    ProviderSpec(
        name="moonshot",
        keywords=("moonshot", "kimi"),
        display_name="Moonshot",
        litellm_prefix="moonshot",
        skip_prefixes=("moonshot/", "openrouter/"),
        default_api_base="https://api.moonshot.ai/v1",
        model_overrides=(
            ("kimi-k2.5", {"temperature": 1.0}),  # Kimi K2.5 强制 temperature >= 1.0
        ),
    ),

    # ===== 本地部署 =====

    ProviderSpec(
        name="vllm",
        keywords=("vllm",),
        display_name="vLLM/Local",
        litellm_prefix="hosted_vllm",
        is_local=True,
    ),
)


def find_by_model(model: str) -> ProviderSpec | None:
    """按模型名关键词匹配标准服务商（跳过网关和本地部署），顺序即优先级。"""
    model_lower = model.lower()
    for spec in PROVIDERS:
        if spec.is_gateway or spec.is_local:
            continue
        if any(kw in model_lower for kw in spec.keywords):
            return spec
    return None


def find_gateway(
    provider_name: str | None = None,
    api_key: str | None = None,
    api_base: str | None = None,
) -> ProviderSpec | None:
    """
    检测是否通过网关或本地部署访问模型。

    检测优先级：
      1. provider_name 直接映射到网关/本地 spec
      2. api_key 前缀（如 "sk-or-" → OpenRouter）
      3. api_base 关键词（如 URL 中包含 "aihubmix"）
    """
    if provider_name:
        spec = find_by_name(provider_name)
        if spec and (spec.is_gateway or spec.is_local):
            return spec

    for spec in PROVIDERS:
        if spec.detect_by_key_prefix and api_key and api_key.startswith(spec.detect_by_key_prefix):
            return spec
        if spec.detect_by_base_keyword and api_base and spec.detect_by_base_keyword in api_base:
            return spec

    return None


def find_by_name(name: str) -> ProviderSpec | None:
    for spec in PROVIDERS:
        if spec.name == name:
            return spec
    return None
