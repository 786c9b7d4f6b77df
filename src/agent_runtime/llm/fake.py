"""
Fake 模型服务（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归 turn loop 的编排逻辑（tool call → 执行 → 回注 → 继续）。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.llm.protocol import Content, Part, StreamEvent, StreamEventType
from agent_runtime.tools.protocol import ToolCallRequestInfo


@dataclass(frozen=True)
class FakeTurn:
    """
    一次 send_message_stream 的预期输出。

    字段：
    - events：按顺序吐出的事件
    - error：可选；事件吐完后抛出的异常（模拟传输失败）
    - hang：True 时吐完事件后一直挂起（模拟卡住的流，用于取消/超时回归）
    - delay_sec：每条事件之前的等待秒数
    """

    events: List[StreamEvent] = field(default_factory=list)
    error: Optional[BaseException] = None
    hang: bool = False
    delay_sec: float = 0.0

    @classmethod
    def text(cls, *chunks: str) -> "FakeTurn":
        """便捷构造：只输出文本片段。"""

        return cls(events=[StreamEvent(StreamEventType.CONTENT, c) for c in chunks])

    @classmethod
    def calls(cls, *calls: ToolCallRequestInfo, text: Optional[str] = None) -> "FakeTurn":
        """便捷构造：可选文本 + 若干 tool call 请求。"""

        events: List[StreamEvent] = []
        if text:
            events.append(StreamEvent(StreamEventType.CONTENT, text))
        events.extend(StreamEvent(StreamEventType.TOOL_CALL_REQUEST, c) for c in calls)
        return cls(events=events)


def tool_call(name: str, args: Optional[Dict[str, Any]] = None, *, call_id: Optional[str] = None) -> ToolCallRequestInfo:
    """便捷构造 ToolCallRequestInfo（call_id 默认 `call_<name>`）。"""

    return ToolCallRequestInfo(name=name, args=dict(args or {}), call_id=call_id or f"call_{name}")


class FakeModelService:
    """
    用脚本化事件序列模拟模型流式输出。

    说明：
    - 每次 `send_message_stream(...)` 消耗一个 `FakeTurn`；
    - 事件序列未包含 FINISHED 时会在末尾自动补齐；
    - `requests` 记录每次收到的 parts（便于断言回注内容与顺序）。
    """

    def __init__(self, turns: Sequence[FakeTurn]) -> None:
        """
        创建 fake 服务。

        参数：
        - turns：预设的 turn 序列
        """

        self._turns = list(turns)
        self._idx = 0
        self.requests: List[List[Part]] = []
        self.request_ids: List[str] = []
        self.factory_calls: List[Dict[str, Any]] = []

    @property
    def calls_made(self) -> int:
        """已消费的 turn 数。"""

        return self._idx

    async def send_message_stream(
        self,
        parts: List[Part],
        cancellation: CancellationSignal,
        request_id: str,
    ) -> AsyncIterator[StreamEvent]:
        """按预设事件序列产出流事件。"""

        if self._idx >= len(self._turns):
            raise ValueError("FakeModelService turns exhausted")
        turn = self._turns[self._idx]
        self._idx += 1
        self.requests.append(list(parts))
        self.request_ids.append(request_id)

        finished_seen = False
        for ev in turn.events:
            if turn.delay_sec:
                await asyncio.sleep(turn.delay_sec)
            if isinstance(ev, StreamEvent) and ev.type == StreamEventType.FINISHED:
                finished_seen = True
            yield ev
        if turn.error is not None:
            raise turn.error
        if turn.hang:
            await asyncio.Event().wait()
        if not finished_seen:
            yield StreamEvent(StreamEventType.FINISHED, "fake_eof")

    def factory(self):  # type: ignore[no-untyped-def]
        """返回一个总是交付本实例的 ModelServiceFactory（并记录调用参数）。"""

        def _factory(definition: Any, system_prompt: str, declarations: List[Dict[str, Any]], history: List[Content]):
            """记录参数并返回本实例。"""

            self.factory_calls.append(
                {
                    "agent": getattr(definition, "name", None),
                    "system_prompt": system_prompt,
                    "declarations": [d.get("name") for d in declarations],
                    "history": list(history),
                }
            )
            return self

        return _factory
