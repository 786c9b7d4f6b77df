"""
核心契约（Core Contracts）：活动事件与 run 结果。

说明：
- `ActivityEvent` 是对外唯一的通知载体（CLI 渲染器、父 agent 都只订阅它）；
- `RunResult` 是每个终态都必须产出的结构（非 GOAL 视为“未完成但未崩溃”）。
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivityEventType(str, Enum):
    """活动事件类型（tagged union 的 tag）。"""

    THOUGHT_CHUNK = "THOUGHT_CHUNK"
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_END = "TOOL_CALL_END"
    ERROR = "ERROR"


class ActivityEvent(BaseModel):
    """
    ActivityEvent：活动流条目（append-only，按真实发出顺序排列）。

    字段：
    - type：事件类型
    - data：事件专用字段（THOUGHT_CHUNK: text；TOOL_CALL_*: name/call_id/...；ERROR: error/context）
    - timestamp：RFC3339 时间字符串
    - agent_name：发出事件的 agent 名称
    - seq：单个活动流内单调递增的序号（由 ActivityStream 分配）
    """

    model_config = ConfigDict(extra="forbid")

    type: ActivityEventType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
    agent_name: Optional[str] = None
    seq: int = 0

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)


class TerminateReason(str, Enum):
    """run 的终止原因（全部为终态）。"""

    GOAL = "GOAL"
    MAX_TURNS = "MAX_TURNS"
    MAX_TIME = "MAX_TIME"
    ERROR = "ERROR"
    ABORTED = "ABORTED"


class RunResult(BaseModel):
    """
    AgentExecutor.run 的返回结构。

    字段：
    - result：最终结果文本（GOAL）；其它终态为已累积的最佳部分结果或错误消息
    - terminate_reason：终止原因
    - turns：实际发起的模型 turn 数
    - error_kind：可选；ERROR 终态时的稳定错误分类
    """

    model_config = ConfigDict(extra="forbid")

    result: str = ""
    terminate_reason: TerminateReason
    turns: int = 0
    error_kind: Optional[str] = None

    @property
    def is_goal(self) -> bool:
        """是否以 GOAL 结束。"""

        return self.terminate_reason == TerminateReason.GOAL
