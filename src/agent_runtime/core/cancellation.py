"""
CancellationSignal：协作式取消信号。

约束：
- 线程安全（CLI 的 SIGINT handler 可能在其它线程触发 cancel）；
- 子信号跟随父信号：父取消时子立即视为取消，子取消不影响父；
- 信号只负责“告知”，是否及何时停止由持有方在挂起点自行检查。
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class CancellationSignal:
    """可链接的取消信号（parent → child 单向传播）。"""

    def __init__(self, *, parent: Optional["CancellationSignal"] = None) -> None:
        """
        创建取消信号。

        参数：
        - parent：可选父信号；父信号取消时本信号视为已取消
        """

        self._parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        if parent is not None:
            parent.add_callback(self._on_parent_cancelled)

    @property
    def reason(self) -> Optional[str]:
        """取消原因（未取消时为 None；跟随父信号时返回父信号原因）。"""

        if self._reason is not None:
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return None

    def is_cancelled(self) -> bool:
        """检查本信号（或任一祖先信号）是否已取消。"""

        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled()

    def cancel(self, reason: str = "cancelled") -> None:
        """触发取消（幂等）；已注册的回调只会被调用一次。"""

        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for cb in callbacks:
            try:
                cb()
            except Exception:
                # fail-open：回调失败不应阻止取消传播
                logger.debug("Cancellation callback raised", exc_info=True)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """注册取消回调；若已取消则立即调用。"""

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """注销取消回调（未注册或已触发时忽略）。"""

        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def child(self) -> "CancellationSignal":
        """派生一个跟随本信号的子信号（用于嵌套 subagent / 单次 tool 执行）。"""

        return CancellationSignal(parent=self)

    def detach(self) -> None:
        """
        从父信号注销传播回调（子信号用完后调用）。

        detach 之后 `is_cancelled()` 仍会查询父信号，只是父信号不再持有本信号的引用。
        """

        if self._parent is not None:
            self._parent.remove_callback(self._on_parent_cancelled)

    def _on_parent_cancelled(self) -> None:
        """父信号取消时的传播回调。"""

        parent_reason = self._parent.reason if self._parent is not None else None
        self.cancel(reason=parent_reason or "cancelled")
