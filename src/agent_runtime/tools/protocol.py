"""
Tool 协议（ToolCallRequestInfo / ToolResult / Invocable）。

本模块只定义“可实现级”的最小协议：
- ToolKind：工具类别（用于 tool_kind 审批规则与“是否需要确认”的默认判断）
- ToolCallRequestInfo：模型请求的一次调用（name/args/call_id）
- ToolResult：执行输出（llm_content/return_display/error）
- Invocable：原子工具与 subagent 包装统一实现的能力接口
- function_response_part：将 ToolResult 映射为回注模型的 part
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.core.cancellation import CancellationSignal


class ToolKind(str, Enum):
    """工具类别。"""

    READ = "read"
    EDIT = "edit"
    DELETE = "delete"
    MOVE = "move"
    SEARCH = "search"
    EXECUTE = "execute"
    THINK = "think"
    FETCH = "fetch"
    OTHER = "other"


# 只读类别默认无需人工确认
READ_ONLY_KINDS = frozenset({ToolKind.READ, ToolKind.SEARCH, ToolKind.THINK})


class ToolErrorType(str, Enum):
    """工具错误分类（回注模型，供其决定重试或调整）。"""

    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    CANCELLED = "CANCELLED"


class ToolCallRequestInfo(BaseModel):
    """
    模型请求的一次 tool 调用。

    字段：
    - name：工具名
    - args：参数 dict
    - call_id：同一 turn 内唯一；用于把结果与请求关联（并发调度时必需）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    call_id: str


class ToolErrorInfo(BaseModel):
    """ToolResult 的错误部分。"""

    model_config = ConfigDict(extra="forbid")

    message: str
    type: ToolErrorType


LlmContent = Union[str, List[Dict[str, Any]]]


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - llm_content：回注给模型的内容（字符串或 parts 列表）
    - return_display：面向人类展示的内容
    - error：可选；存在时表示失败，但不会中止 run
    """

    model_config = ConfigDict(extra="forbid")

    llm_content: LlmContent
    return_display: str = ""
    error: Optional[ToolErrorInfo] = None

    @property
    def ok(self) -> bool:
        """是否成功（error 为空）。"""

        return self.error is None

    @classmethod
    def success(cls, llm_content: LlmContent, *, return_display: Optional[str] = None) -> "ToolResult":
        """便捷构造：成功结果（display 默认与字符串 content 相同）。"""

        display = return_display
        if display is None:
            display = llm_content if isinstance(llm_content, str) else ""
        return cls(llm_content=llm_content, return_display=display)

    @classmethod
    def failure(cls, *, message: str, error_type: ToolErrorType, return_display: Optional[str] = None) -> "ToolResult":
        """便捷构造：失败结果（llm_content 携带错误类型与消息，便于模型调整）。"""

        return cls(
            llm_content=f"Error ({error_type.value}): {message}",
            return_display=return_display if return_display is not None else message,
            error=ToolErrorInfo(message=message, type=error_type),
        )


PartialOutputCallback = Callable[[str], None]


@runtime_checkable
class Invocable(Protocol):
    """
    可执行能力（已校验参数的一次调用）。

    原子工具与 subagent 包装都实现本接口，executor 不对递归做特殊处理。
    """

    def get_description(self) -> str:
        """返回待执行调用的人类可读摘要（有长度上限）。"""

        ...

    async def execute(
        self,
        cancellation: CancellationSignal,
        on_partial_output: Optional[PartialOutputCallback] = None,
    ) -> ToolResult:
        """
        执行调用并返回 ToolResult。

        约束：
        - cancellation 被触发时应尽快返回；
        - on_partial_output 接收增量进度文本（由调用方保证不会抛出）。
        """

        ...


def _content_to_text(content: LlmContent) -> str:
    """把 llm_content 展平为字符串（parts 只拼接 text 字段）。"""

    if isinstance(content, str):
        return content
    texts: List[str] = []
    for part in content:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            texts.append(part["text"])
    return "\n".join(texts)


def function_response_part(request: ToolCallRequestInfo, result: ToolResult) -> Dict[str, Any]:
    """
    将 ToolResult 映射为回注模型的 function_response part。

    返回形状：
    {"function_response": {"id": call_id, "name": name, "response": {"output": "..."} | {"error": "..."}}}
    """

    if result.error is not None:
        response: Dict[str, Any] = {
            "error": result.error.message,
            "error_type": result.error.type.value,
        }
    else:
        response = {"output": _content_to_text(result.llm_content)}
    return {"function_response": {"id": request.call_id, "name": request.name, "response": response}}
