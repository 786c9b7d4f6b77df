"""Tool 协议、基类与注册表。"""

from agent_runtime.tools.base import BaseTool, BaseToolInvocation, FunctionTool, function_tool
from agent_runtime.tools.protocol import (
    Invocable,
    ToolCallRequestInfo,
    ToolErrorInfo,
    ToolErrorType,
    ToolKind,
    ToolResult,
)
from agent_runtime.tools.registry import ToolRegistry

__all__ = [
    "BaseTool",
    "BaseToolInvocation",
    "FunctionTool",
    "Invocable",
    "ToolCallRequestInfo",
    "ToolErrorInfo",
    "ToolErrorType",
    "ToolKind",
    "ToolRegistry",
    "ToolResult",
    "function_tool",
]
