"""Shared fixtures: a scripted provider, tmp-path sandbox/store and registries."""

import asyncio
from pathlib import Path
from typing import Any

import pytest

from aster.agent import AgentTemplate, Dependencies, TemplateRegistry
from aster.agent.tools import Tool, ToolRegistry, register_builtin
from aster.config.schema import AgentConfig, ExecutionMode, ModelConfig, SandboxConfig
from aster.providers.base import (
    LLMProvider,
    ProviderFactory,
    StreamEnd,
    StreamReply,
    TextReply,
    ToolCallRequest,
    ToolCallsReply,
)
from aster.sandbox import SandboxFactory
from aster.store import JSONStore


class ScriptedProvider(LLMProvider):
    """Returns the scripted replies in order; an Exception entry is raised instead."""

    def __init__(self, replies: list[Any] | None = None, default: Any = None):
        super().__init__()
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    def script(self, *replies: Any) -> None:
        self.replies.extend(replies)

    async def complete(self, messages, tools=None, mode=ExecutionMode.NON_STREAMING):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools, "mode": mode})
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default()
        else:
            reply = TextReply(text="done")
        if callable(reply) and not isinstance(reply, (TextReply, ToolCallsReply, StreamReply)):
            reply = await reply()
        if isinstance(reply, Exception):
            raise reply
        return reply

    def get_default_model(self) -> str:
        return "scripted/model"


class ScriptedProviderFactory(ProviderFactory):
    def __init__(self, provider: ScriptedProvider):
        self.provider = provider
        self.configs: list[ModelConfig] = []

    def create(self, config: ModelConfig) -> LLMProvider:
        self.configs.append(config)
        return self.provider


class EchoTool(Tool):
    @property
    def name(self) -> str:
        return "Echo"

    @property
    def description(self) -> str:
        return "Echo the given text."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }

    async def execute(self, sandbox, text: str, **kwargs: Any) -> str:
        return text


class SleepTool(Tool):
    """Blocks until cancelled; `started` is set once it runs."""

    def __init__(self):
        self.started = asyncio.Event()

    @property
    def name(self) -> str:
        return "Sleep"

    @property
    def description(self) -> str:
        return "Sleep for a long time."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, sandbox, **kwargs: Any) -> str:
        self.started.set()
        await asyncio.sleep(3600)
        return "woke up"


def tool_calls(*calls: tuple[str, dict[str, Any]], text: str | None = None, ids: list[str] | None = None) -> ToolCallsReply:
    requests = [
        ToolCallRequest(id=ids[i] if ids else f"tc_{i}", name=name, arguments=args)
        for i, (name, args) in enumerate(calls)
    ]
    return ToolCallsReply(
        tool_calls=requests,
        text=text,
        usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    )


def stream_reply(*deltas: str, trailing: list[ToolCallRequest] | None = None, fail_after: int | None = None) -> StreamReply:
    async def source():
        for i, delta in enumerate(deltas):
            if fail_after is not None and i == fail_after:
                from aster.errors import ProviderError
                raise ProviderError("stream interrupted")
            yield delta
        for request in trailing or []:
            yield request
        yield StreamEnd(usage={"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10})

    return StreamReply(source())


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "workspace"


@pytest.fixture
def sandbox_config(work_dir: Path) -> SandboxConfig:
    return SandboxConfig(work_dir=work_dir, exec_timeout=10)


@pytest.fixture
def store(tmp_path: Path) -> JSONStore:
    return JSONStore(tmp_path / "store")


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def sleep_tool() -> SleepTool:
    return SleepTool()


@pytest.fixture
def tool_registry(sleep_tool: SleepTool) -> ToolRegistry:
    registry = register_builtin(ToolRegistry())
    registry.register(EchoTool())
    registry.register(sleep_tool)
    return registry


@pytest.fixture
def template_registry() -> TemplateRegistry:
    templates = TemplateRegistry()
    templates.register(AgentTemplate(
        id="simple-assistant",
        model="anthropic/claude-sonnet-4.5",
        system_prompt="You are a helpful assistant that can read and write files.",
        tools=("Read", "Write", "Bash"),
    ))
    templates.register(AgentTemplate(
        id="echo-assistant",
        model="scripted/model",
        system_prompt="Echo things.",
        tools=("Echo", "Sleep", "Missing"),
    ))
    return templates


@pytest.fixture
def deps(store, provider, tool_registry, template_registry) -> Dependencies:
    return Dependencies(
        store=store,
        sandbox_factory=SandboxFactory(),
        tool_registry=tool_registry,
        provider_factory=ScriptedProviderFactory(provider),
        template_registry=template_registry,
    )


@pytest.fixture
def make_config(work_dir: Path):
    def _make(template_id: str = "echo-assistant", mode: ExecutionMode = ExecutionMode.NON_STREAMING, **overrides: Any) -> AgentConfig:
        return AgentConfig(
            template_id=template_id,
            model=ModelConfig(provider="scripted", model="scripted/model", execution_mode=mode),
            sandbox=SandboxConfig(work_dir=work_dir, exec_timeout=10),
            **overrides,
        )

    return _make
