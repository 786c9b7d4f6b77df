"""
模型流式服务协议：StreamEvent / ModelStreamService / ModelServiceFactory。

设计目标：
- executor 只依赖“不透明的流式服务”：发送 parts，按顺序消费 StreamEvent；
- 具体 provider 的 wire format 不在本层定义。

Parts / history 约定（dict 形态）：
- 用户输入：`{"text": "..."}`；工具结果：`{"function_response": {...}}`（见 tools.protocol）
- history 条目：`{"role": "user" | "model", "parts": [...]}`；
  模型发起的调用记录为 `{"function_call": {"id", "name", "args"}}` part。
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Protocol, runtime_checkable

from agent_runtime.core.cancellation import CancellationSignal

Part = Dict[str, Any]
Content = Dict[str, Any]


class StreamEventType(str, Enum):
    """流事件类型。"""

    CONTENT = "CONTENT"
    TOOL_CALL_REQUEST = "TOOL_CALL_REQUEST"
    FINISHED = "FINISHED"


@dataclass(frozen=True)
class StreamEvent:
    """
    一条流事件。

    字段：
    - type：事件类型
    - value：CONTENT → 文本片段；TOOL_CALL_REQUEST → ToolCallRequestInfo；FINISHED → 结束原因（可为 None）
    """

    type: StreamEventType
    value: Any = None


@runtime_checkable
class ModelStreamService(Protocol):
    """模型流式服务（每个 run 一个实例）。"""

    def send_message_stream(
        self,
        parts: List[Part],
        cancellation: CancellationSignal,
        request_id: str,
    ) -> AsyncIterator[StreamEvent]:
        """
        发送一条用户消息（parts）并以异步迭代器返回流事件。

        约束：
        - 传输失败以异常形式抛出（建议 `TransportError` 或 httpx 异常）；
        - cancellation 被触发时应尽快结束迭代。
        """

        ...


class ModelServiceFactory(Protocol):
    """按 agent definition 创建模型服务。"""

    def __call__(
        self,
        definition: Any,
        system_prompt: str,
        declarations: List[Dict[str, Any]],
        history: List[Content],
    ) -> ModelStreamService:
        """
        创建服务实例。

        参数：
        - definition：AgentDefinition（提供 model 设置）
        - system_prompt：已完成模板替换的系统提示词
        - declarations：可用工具的函数声明
        - history：恢复会话时的初始 history（新会话为空列表）
        """

        ...


def validate_model_service(service: Any) -> None:
    """
    校验 ModelStreamService 协议（fail-fast）。

    异常：
    - ValueError：协议不匹配（将被分类为 `config_error`）
    """

    fn = getattr(service, "send_message_stream", None)
    if not callable(fn):
        raise ValueError("ModelStreamService protocol mismatch: missing send_message_stream(parts, cancellation, request_id)")

    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        # 无法 introspect 时只保证可调用；实际调用失败会被 run 分类
        return

    params = [p for p in sig.parameters.values() if p.name not in ("self", "cls")]
    if any(p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD) for p in params):
        return
    if len(params) < 3:
        raise ValueError("ModelStreamService.send_message_stream must accept (parts, cancellation, request_id)")
