"""内置工具。"""

from agent_runtime.tools.builtin.complete_task import COMPLETE_TASK_TOOL_NAME, CompleteTaskTool, is_complete_task

__all__ = ["COMPLETE_TASK_TOOL_NAME", "CompleteTaskTool", "is_complete_task"]
