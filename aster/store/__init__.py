"""会话持久化模块：Store 接口与 JSONL 文件实现。"""

from aster.store.base import AgentSnapshot, Store
from aster.store.json_store import JSONStore

__all__ = ["AgentSnapshot", "JSONStore", "Store"]
