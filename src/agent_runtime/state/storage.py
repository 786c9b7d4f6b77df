"""
持久化 key-value Storage（被 ApprovalStore 等消费的外部接口）。

约定：
- `get(key) -> value | None`、`set(key, value)`；value 必须可 JSON 序列化；
- 本层只保证“单次 set 原子落盘”，不提供跨 get/set 的事务语义；
  read-modify-write 的串行化由上层（ConfirmationGate）负责。
"""

from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from agent_runtime.core.errors import StateError


@runtime_checkable
class KeyValueStorage(Protocol):
    """持久化 key-value 存储协议。"""

    async def get(self, key: str) -> Optional[Any]:
        """读取 key；不存在返回 None。"""

        ...

    async def set(self, key: str, value: Any) -> None:
        """写入 key（整体覆盖）。"""

        ...


class InMemoryStorage:
    """进程内存储（测试与一次性会话使用；读写均深拷贝，避免调用方共享可变对象）。"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        """创建内存存储（可选初始数据）。"""

        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.set_calls = 0

    async def get(self, key: str) -> Optional[Any]:
        """读取 key 的深拷贝。"""

        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        """写入 value 的深拷贝。"""

        self._data[key] = copy.deepcopy(value)
        self.set_calls += 1


class JsonFileStorage:
    """
    单文件 JSON 存储（所有 key 存在一个 JSON object 中）。

    参数：
    - path：文件路径（父目录不存在时自动创建）

    说明：
    - 写入采用“临时文件 + os.replace”保证单次 set 原子性；
    - 同进程内通过锁串行化文件访问。
    """

    def __init__(self, path: Path) -> None:
        """绑定文件路径。"""

        self.path = Path(path)
        self._lock = threading.RLock()

    def _read_all(self) -> Dict[str, Any]:
        """读取整个文件；不存在返回空 dict。"""

        if not self.path.exists():
            return {}
        try:
            obj = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise StateError(f"storage file is not valid JSON: {self.path}") from e
        if not isinstance(obj, dict):
            raise StateError(f"storage file root must be a JSON object: {self.path}")
        return obj

    async def get(self, key: str) -> Optional[Any]:
        """读取 key。"""

        with self._lock:
            return self._read_all().get(key)

    async def set(self, key: str, value: Any) -> None:
        """写入 key（原子替换文件）。"""

        with self._lock:
            data = self._read_all()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
