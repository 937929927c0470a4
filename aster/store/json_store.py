"""
JSONL 文件存储实现模块。

【存储格式 - JSONL】
每个 Agent 存储为一个 .jsonl 文件：
- 第一行：元数据行（_type="metadata"），包含 agent_id、模板、状态、步数、游标、断点、时间戳
- 后续行：每行一条对话消息（OpenAI 消息格式）

写入采用"先写临时文件再替换"，避免进程中途退出留下半个文件。

【存储路径】
默认位于 ~/.aster/store/ 目录下，文件名由 agent_id 经 safe_filename 转换而来。

【Java 开发者类比】
- JSONStore 类似于一个带有文件持久化的 ConcurrentHashMap
- _cache 是一个简单的内存缓存层（类似 Guava Cache）
"""

import copy
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from aster.errors import StoreError
from aster.store.base import AgentSnapshot, Store
from aster.types import AgentState, BreakpointState
from aster.utils.helpers import ensure_dir, safe_filename


class JSONStore(Store):
    """
    基于 JSONL 文件的快照存储。

    参数:
        root: 存储目录，不存在时自动创建
    """

    def __init__(self, root: Path | str):
        self.root = ensure_dir(Path(root).expanduser())
        self._cache: dict[str, AgentSnapshot] = {}

    def _path(self, agent_id: str) -> Path:
        return self.root / f"{safe_filename(agent_id)}.jsonl"

    async def load(self, agent_id: str) -> AgentSnapshot | None:
        if agent_id in self._cache:
            return copy.deepcopy(self._cache[agent_id])

        snapshot = self._read(agent_id)
        if snapshot is not None:
            self._cache[agent_id] = snapshot
            return copy.deepcopy(snapshot)
        return None

    def _read(self, agent_id: str) -> AgentSnapshot | None:
        path = self._path(agent_id)
        if not path.exists():
            return None

        try:
            meta: dict[str, Any] | None = None
            messages: list[dict[str, Any]] = []
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    if not isinstance(data, dict):
                        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                    if data.get("_type") == "metadata":
                        meta = data
                    else:
                        messages.append(data)

            if meta is None:
                raise ValueError("missing metadata line")

            return AgentSnapshot(
                agent_id=meta.get("agent_id", agent_id),
                template_id=meta["template_id"],
                state=AgentState(meta.get("state", AgentState.IDLE.value)),
                step_count=int(meta.get("step_count", 0)),
                cursor=int(meta.get("cursor", len(messages))),
                breakpoint=BreakpointState(meta.get("breakpoint", BreakpointState.READY.value)),
                messages=messages,
                created_at=datetime.fromisoformat(meta["created_at"]) if meta.get("created_at") else datetime.now(),
                updated_at=datetime.fromisoformat(meta["updated_at"]) if meta.get("updated_at") else datetime.now(),
                metadata=meta.get("metadata", {}),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load agent snapshot {agent_id}: {e}")
            return None

    async def save(self, snapshot: AgentSnapshot) -> None:
        path = self._path(snapshot.agent_id)
        tmp = path.with_suffix(".jsonl.tmp")
        metadata_line = {
            "_type": "metadata",
            "agent_id": snapshot.agent_id,
            "template_id": snapshot.template_id,
            "state": snapshot.state.value,
            "step_count": snapshot.step_count,
            "cursor": snapshot.cursor,
            "breakpoint": snapshot.breakpoint.value,
            "created_at": snapshot.created_at.isoformat(),
            "updated_at": snapshot.updated_at.isoformat(),
            "metadata": snapshot.metadata,
        }

        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(json.dumps(metadata_line, ensure_ascii=False) + "\n")
                for msg in snapshot.messages:
                    f.write(json.dumps(msg, ensure_ascii=False) + "\n")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Failed to save agent snapshot {snapshot.agent_id}: {e}") from e

        self._cache[snapshot.agent_id] = copy.deepcopy(snapshot)
        logger.debug(f"Saved agent snapshot {snapshot.agent_id} ({len(snapshot.messages)} messages)")

    async def delete(self, agent_id: str) -> bool:
        self._cache.pop(agent_id, None)
        path = self._path(agent_id)
        if path.exists():
            path.unlink()
            return True
        return False

    async def list(self) -> list[dict[str, Any]]:
        sessions = []
        for path in self.root.glob("*.jsonl"):
            try:
                with open(path, encoding="utf-8") as f:
                    first_line = f.readline().strip()
                if not first_line:
                    continue
                data = json.loads(first_line)
            except (OSError, json.JSONDecodeError) as e:
                logger.debug(f"Skipping unreadable snapshot {path.name}: {e}")
                continue
            if not isinstance(data, dict) or data.get("_type") != "metadata":
                continue
            sessions.append({
                "agent_id": data.get("agent_id", path.stem),
                "template_id": data.get("template_id"),
                "step_count": data.get("step_count", 0),
                "cursor": data.get("cursor", 0),
                "created_at": data.get("created_at"),
                "updated_at": data.get("updated_at"),
                "path": str(path),
            })

        return sorted(sessions, key=lambda x: x.get("updated_at") or "", reverse=True)
