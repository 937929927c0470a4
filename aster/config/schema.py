"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 aster 的全部配置结构，分为两部分：

1. Agent 运行配置（创建 Agent 时传入，不可变）：
   AgentConfig
   ├── template_id  - 引用的模板 id
   ├── model        - ModelConfig：服务商、模型、凭证、端点、执行模式
   └── sandbox      - SandboxConfig：沙箱类型、工作目录

2. CLI 全局配置（从 ~/.aster/config.json 和 ASTER_ 环境变量加载）：
   Config (根配置)
   ├── agent    - 默认模板、最大步数、事件缓冲
   ├── model    - 默认模型与凭证
   ├── sandbox  - 默认沙箱
   ├── store    - 持久化目录
   └── logging  - 日志级别

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 Record，但自带字段验证和默认值
- frozen=True 相当于所有字段都是 final
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class ExecutionMode(str, Enum):
    """模型调用方式：流式 / 非流式。"""

    STREAMING = "streaming"
    NON_STREAMING = "non-streaming"


# ============================================================================
# Agent 运行配置
# ============================================================================


class ModelConfig(BaseModel):
    """单个 Agent 使用的模型配置，创建后不可变。"""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)  # 服务商标识，如 "openrouter"、"anthropic"
    model: str = Field(min_length=1)  # 模型标识，如 "anthropic/claude-sonnet-4.5"
    api_key: str = ""
    base_url: str | None = None  # 自定义 API 端点（代理/网关/本地部署）
    execution_mode: ExecutionMode = ExecutionMode.STREAMING
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    @field_validator("provider", "model")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class SandboxConfig(BaseModel):
    """沙箱配置，决定沙箱会话如何创建，创建后不可变。"""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(default="local", min_length=1)  # 沙箱类型，对应 SandboxFactory 中注册的构造函数
    work_dir: Path  # 工作目录根，所有文件操作被限制在其中
    exec_timeout: int = Field(default=60, ge=1)  # Shell 命令默认超时（秒）
    restrict_to_workspace: bool = True  # Shell 命令中的绝对路径是否必须位于工作目录内

    @field_validator("kind")
    @classmethod
    def _normalize_kind(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("kind must not be blank")
        return v.strip().lower()

    @field_validator("work_dir")
    @classmethod
    def _work_dir_not_empty(cls, v: Path) -> Path:
        if not str(v).strip():
            raise ValueError("work_dir must not be empty")
        return v.expanduser()


class AgentConfig(BaseModel):
    """
    单个 Agent 的完整配置。

    agent_id 为空时创建全新的对话；指定时会尝试从 Store 中恢复该 Agent 的历史。
    """

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(min_length=1)
    model: ModelConfig
    sandbox: SandboxConfig
    agent_id: str | None = None
    max_steps: int = Field(default=20, ge=1)  # 单轮对话中模型往返的上限
    event_buffer: int = Field(default=1024, ge=1)  # 每个订阅者的事件队列容量
    tool_timeout: float = Field(default=120.0, gt=0)  # 单次工具调用的超时（秒）


# ============================================================================
# CLI 全局配置
# ============================================================================


class AgentDefaults(BaseModel):
    template_id: str = "simple-assistant"
    agent_id: str | None = None
    max_steps: int = 20
    event_buffer: int = 1024
    tool_timeout: float = 120.0


class ModelDefaults(BaseModel):
    provider: str = "openrouter"
    model: str = "anthropic/claude-sonnet-4.5"
    api_key: str = ""
    base_url: str | None = None
    execution_mode: ExecutionMode = ExecutionMode.STREAMING
    max_tokens: int = 4096
    temperature: float = 0.7


class SandboxDefaults(BaseModel):
    kind: str = "local"
    work_dir: str = "./workspace"
    exec_timeout: int = 60
    restrict_to_workspace: bool = True


class StoreSettings(BaseModel):
    path: str = "~/.aster/store"  # JSONL 会话文件目录


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Config(BaseSettings):
    """
    aster 根配置类。

    除了从 JSON 文件加载，还支持从环境变量读取配置：
    - 环境变量前缀: ASTER_
    - 嵌套分隔符: __ (双下划线)
    - 示例: ASTER_MODEL__API_KEY=sk-or-xxx 可覆盖 model.api_key
    """

    agent: AgentDefaults = Field(default_factory=AgentDefaults)
    model: ModelDefaults = Field(default_factory=ModelDefaults)
    sandbox: SandboxDefaults = Field(default_factory=SandboxDefaults)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def store_path(self) -> Path:
        return Path(self.store.path).expanduser()

    def to_agent_config(self, agent_id: str | None = None) -> AgentConfig:
        """
        根据全局配置构建 AgentConfig。

        参数:
            agent_id: 覆盖配置中的 agent_id（用于恢复指定会话）
        """
        return AgentConfig(
            template_id=self.agent.template_id,
            agent_id=agent_id or self.agent.agent_id,
            max_steps=self.agent.max_steps,
            event_buffer=self.agent.event_buffer,
            tool_timeout=self.agent.tool_timeout,
            model=ModelConfig(**self.model.model_dump()),
            sandbox=SandboxConfig(**self.sandbox.model_dump()),
        )

    model_config = ConfigDict(
        env_prefix="ASTER_",
        env_nested_delimiter="__",
    )
