"""
complete_task：终止型内置工具（模型以此声明目标完成并交付结果）。

说明：
- 每个 executor 实例各自创建一个（输出字段名来自 agent definition 的 output_name）；
- 不注册到共享 ToolRegistry，避免与用户工具冲突；
- 类别为 think（只读），不经过确认询问。
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import ConfigDict, Field, create_model

from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.tools.base import BaseTool, BaseToolInvocation
from agent_runtime.tools.protocol import PartialOutputCallback, ToolKind, ToolResult

COMPLETE_TASK_TOOL_NAME = "complete_task"


class _CompleteTaskInvocation(BaseToolInvocation[Any]):
    """complete_task 调用实例。"""

    @property
    def result_text(self) -> str:
        """模型交付的结果文本。"""

        tool = self.tool
        if not isinstance(tool, CompleteTaskTool):
            raise TypeError(f"complete_task invocation bound to {type(tool).__name__}")
        return str(getattr(self.params, tool.output_name, "") or "")

    def get_description(self) -> str:
        """返回固定摘要。"""

        return "Completing task"

    def requires_confirmation(self) -> bool:
        """终止工具从不需要确认。"""

        return False

    async def execute(
        self,
        cancellation: CancellationSignal,
        on_partial_output: Optional[PartialOutputCallback] = None,
    ) -> ToolResult:
        """返回结果文本（无副作用）。"""

        return ToolResult.success(self.result_text)


class CompleteTaskTool(BaseTool):
    """complete_task 工具。"""

    kind = ToolKind.THINK

    def __init__(self, *, output_name: str = "result", output_description: str = "The final result of the task.") -> None:
        """
        创建 complete_task 工具。

        参数：
        - output_name：结果字段名（默认 result）
        - output_description：结果字段说明（写入参数 schema）
        """

        self.name = COMPLETE_TASK_TOOL_NAME
        self.display_name = "Complete Task"
        self.description = (
            "Call this tool when the task is finished. Pass the final answer in the "
            f"'{output_name}' argument. This ends the run."
        )
        self.output_name = output_name
        self.params_model = create_model(  # type: ignore[call-overload]
            "_complete_task_Args",
            __config__=ConfigDict(extra="forbid"),
            **{output_name: (str, Field(..., description=output_description))},
        )

    def create_invocation(self, params: Any) -> BaseToolInvocation[Any]:
        """创建调用实例。"""

        return _CompleteTaskInvocation(self, params)


def is_complete_task(name: str) -> bool:
    """判断工具名是否为终止工具。"""

    return name == COMPLETE_TASK_TOOL_NAME
