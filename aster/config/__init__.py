"""
配置模块 (config)
================
1. schema.py - Pydantic 配置模型：Agent 运行配置（AgentConfig / ModelConfig / SandboxConfig）
   与 CLI 全局配置（Config）
2. loader.py - 从 JSON 文件读取/保存 CLI 配置，支持 camelCase ↔ snake_case 自动转换
"""

from aster.config.loader import get_config_path, load_config, save_config
from aster.config.schema import (
    AgentConfig,
    Config,
    ExecutionMode,
    ModelConfig,
    SandboxConfig,
)

__all__ = [
    "AgentConfig",
    "Config",
    "ExecutionMode",
    "ModelConfig",
    "SandboxConfig",
    "get_config_path",
    "load_config",
    "save_config",
]
