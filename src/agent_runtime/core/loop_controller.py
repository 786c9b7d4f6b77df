"""
LoopController：turn loop 的计数/预算/取消控制（internal）。

目标：
- 将“turn 计数、max_turns、wall time、取消信号”等状态收敛到单一对象，
  executor 只在挂起点询问它，不自行维护计数器。
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import TerminateReason

# 等待 stream / tool 时检查取消与 wall time 的间隔
POLL_INTERVAL_SEC = 0.05

T = TypeVar("T")


class LoopInterrupted(Exception):
    """挂起点被取消或 wall time 耗尽打断（控制流异常，只在 executor 内部传递）。"""

    def __init__(self, reason: TerminateReason) -> None:
        """记录终止原因（ABORTED 或 MAX_TIME）。"""

        super().__init__(reason.value)
        self.reason = reason


@dataclass
class LoopController:
    """
    LoopController（internal）。

    字段：
    - max_turns：最多允许发起的模型 turn 数
    - max_time_sec：wall time 预算（None 表示不限制）
    - started_monotonic：起始 monotonic 时间戳（用于 wall time 计算）
    - cancellation：可选取消信号
    """

    max_turns: int
    max_time_sec: Optional[float]
    started_monotonic: float
    cancellation: Optional[CancellationSignal] = None

    def __post_init__(self) -> None:
        """初始化内部计数器。"""

        self._turn = 0

    @property
    def turns(self) -> int:
        """已发起的 turn 数。"""

        return self._turn

    def next_turn_id(self) -> str:
        """推进 turn 计数并返回 turn_id（形如 `turn_1`）。"""

        self._turn += 1
        return f"turn_{self._turn}"

    def is_cancelled(self) -> bool:
        """检查本次 run 是否已被外部取消。"""

        return self.cancellation is not None and self.cancellation.is_cancelled()

    def turns_exhausted(self) -> bool:
        """检查 turn 预算是否耗尽（已发起 turn 数 >= max_turns）。"""

        return self._turn >= int(self.max_turns)

    def elapsed_sec(self) -> float:
        """返回自 run 开始以来的秒数。"""

        return time.monotonic() - float(self.started_monotonic)

    def wall_time_exceeded(self) -> bool:
        """检查 wall time 预算是否耗尽（未配置则返回 False）。"""

        if self.max_time_sec is None:
            return False
        return self.elapsed_sec() > float(self.max_time_sec)

    def interruption(self) -> Optional[TerminateReason]:
        """返回当前应中断的原因（取消优先于超时）；无需中断返回 None。"""

        if self.is_cancelled():
            return TerminateReason.ABORTED
        if self.wall_time_exceeded():
            return TerminateReason.MAX_TIME
        return None

    async def watch(self, awaitable: Awaitable[T]) -> T:
        """
        等待 awaitable 完成，期间轮询取消与 wall time。

        异常：
        - LoopInterrupted：被打断；此时 awaitable 对应的 task 已被取消并回收
        """

        task = asyncio.ensure_future(awaitable)
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=POLL_INTERVAL_SEC)
                if done:
                    return task.result()
                reason = self.interruption()
                if reason is not None:
                    raise LoopInterrupted(reason)
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(BaseException):
                    await asyncio.gather(task, return_exceptions=True)
