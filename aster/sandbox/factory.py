"""
沙箱工厂模块 (sandbox/factory.py)

按 SandboxConfig.kind 创建沙箱会话。工厂可以被多个 Agent 共享，
新的沙箱类型（如容器、远程执行环境）通过 register() 接入，无需修改状态机。
"""

from typing import Callable

from aster.config.schema import SandboxConfig
from aster.errors import ConfigError
from aster.sandbox.base import Sandbox
from aster.sandbox.local import LocalSandbox

SandboxBuilder = Callable[[SandboxConfig], Sandbox]


class SandboxFactory:
    """沙箱工厂：kind → 构造函数。"""

    def __init__(self):
        self._builders: dict[str, SandboxBuilder] = {"local": LocalSandbox}

    def register(self, kind: str, builder: SandboxBuilder) -> None:
        self._builders[kind.strip().lower()] = builder

    @property
    def kinds(self) -> list[str]:
        return list(self._builders)

    async def create(self, config: SandboxConfig) -> Sandbox:
        """
        创建沙箱会话。

        异常:
            ConfigError: 未知的沙箱类型，或沙箱无法按配置初始化（如工作目录不可创建）
        """
        kind = config.kind
        builder = self._builders.get(kind)
        if builder is None:
            raise ConfigError(f"Unknown sandbox kind: {kind!r}")
        try:
            return builder(config)
        except OSError as e:
            raise ConfigError(f"Failed to create {kind} sandbox at {config.work_dir}: {e}") from e
