"""
沙箱模块 (sandbox)

工具执行的隔离上下文：
- base.py     : Sandbox 抽象基类（invoke / teardown 生命周期）与 ExecResult
- local.py    : LocalSandbox，以本地工作目录为边界
- factory.py  : SandboxFactory，按配置中的 kind 创建沙箱
"""

from aster.sandbox.base import ExecResult, Sandbox
from aster.sandbox.factory import SandboxFactory
from aster.sandbox.local import LocalSandbox

__all__ = ["ExecResult", "LocalSandbox", "Sandbox", "SandboxFactory"]
