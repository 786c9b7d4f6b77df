"""
ActivityStream：活动事件的统一出口（单生产者、append-only）。

说明：
- executor 需要一个“单点出口”来保证事件顺序一致：
  1) 分配单调递增的 seq 并记录到有界缓冲（可选，供事后检查）
  2) 依次推送给订阅者（CLI 渲染器 / 父 agent 的桥接回调）

约束：
- fire-and-forget：emit 不等待、不阻塞在订阅者上；
- 订阅者异常只影响可观测性，不得中断 run（fail-open）；
- 本模块不负责事件的业务语义，只负责“如何发出”。
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from agent_runtime.core.contracts import ActivityEvent, ActivityEventType
from agent_runtime.core.utils import now_rfc3339

logger = logging.getLogger(__name__)


ActivityCallback = Callable[[ActivityEvent], None]


class ActivityStream:
    """
    ActivityStream（单个 executor 实例独占）。

    参数：
    - agent_name：写入每条事件的 agent 名称
    - subscribers：初始订阅者列表
    - max_buffer：记录最近 N 条事件（0 表示不记录）
    """

    def __init__(
        self,
        *,
        agent_name: Optional[str] = None,
        subscribers: Optional[List[ActivityCallback]] = None,
        max_buffer: int = 1000,
    ) -> None:
        """创建活动流并绑定初始订阅者。"""

        self._agent_name = agent_name
        self._subscribers: List[ActivityCallback] = [s for s in (subscribers or []) if callable(s)]
        self._buffer: Deque[ActivityEvent] = deque(maxlen=max_buffer if max_buffer > 0 else 0)
        self._lock = threading.Lock()
        self._seq = 0

    def subscribe(self, callback: ActivityCallback) -> Callable[[], None]:
        """
        追加一个订阅者，返回取消订阅函数。

        参数：
        - callback：`(ActivityEvent) -> None`
        """

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            """从订阅列表中移除（重复调用无副作用）。"""

            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, type_: ActivityEventType, data: Optional[Dict[str, Any]] = None) -> ActivityEvent:
        """
        发出一条事件：分配 seq → 记录缓冲 → 推送订阅者。

        返回：
        - 已发出的 ActivityEvent（不可变视角；订阅者不得修改）
        """

        with self._lock:
            self._seq += 1
            event = ActivityEvent(
                type=type_,
                data=dict(data or {}),
                timestamp=now_rfc3339(),
                agent_name=self._agent_name,
                seq=self._seq,
            )
            if self._buffer.maxlen:
                self._buffer.append(event)
            subscribers = list(self._subscribers)

        for sub in subscribers:
            try:
                sub(event)
            except Exception:
                # fail-open：订阅者失败只影响可观测性
                logger.debug("Activity subscriber raised for %s", event.type.value, exc_info=True)
        return event

    def thought(self, text: str) -> ActivityEvent:
        """便捷方法：发出 THOUGHT_CHUNK。"""

        return self.emit(ActivityEventType.THOUGHT_CHUNK, {"text": text})

    def error(self, message: str, *, context: str, **extra: Any) -> ActivityEvent:
        """便捷方法：发出 ERROR（context 标识出错阶段，例如 tool_call / transport）。"""

        data: Dict[str, Any] = {"error": message, "context": context}
        data.update(extra)
        return self.emit(ActivityEventType.ERROR, data)

    def events(self) -> List[ActivityEvent]:
        """返回缓冲中的事件快照（按发出顺序）。"""

        with self._lock:
            return list(self._buffer)
