"""
ToolRegistry：工具注册表（名称 → 可执行能力）。

本模块提供：
- 注册：`register/get_tool/list_tools/get_all_tool_names`
- 调用构造：`build_invocation(request)`（参数校验在此发生，失败时无副作用）
- 声明导出：`function_declarations(names)`（供模型服务构造 tools 列表）
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from agent_runtime.core.errors import UserError
from agent_runtime.tools.base import BaseTool, BaseToolInvocation
from agent_runtime.tools.protocol import ToolCallRequestInfo

logger = logging.getLogger(__name__)


class ToolRegistry:
    """工具注册表（按注册顺序保存）。"""

    def __init__(self) -> None:
        """创建空注册表。"""

        self._tools: Dict[str, BaseTool] = {}

    def register(self, tool: BaseTool, *, override: bool = False) -> None:
        """
        注册工具。

        参数：
        - tool：工具实例
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 UserError）
        """

        name = str(getattr(tool, "name", "") or "").strip()
        if not name:
            raise UserError("tool name must be a non-empty string")
        if name in self._tools and not override:
            raise UserError(f"tool already registered: {name}")
        if name in self._tools:
            logger.debug("Overriding tool %r", name)
        self._tools[name] = tool

    def unregister(self, name: str) -> bool:
        """移除工具；返回是否存在并已移除。"""

        return self._tools.pop(name, None) is not None

    def get_tool(self, name: str) -> Optional[BaseTool]:
        """按名称查找工具（不存在返回 None）。"""

        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        """是否已注册。"""

        return name in self._tools

    def get_all_tool_names(self) -> List[str]:
        """按注册顺序返回所有工具名。"""

        return list(self._tools.keys())

    def list_tools(self) -> List[BaseTool]:
        """按注册顺序返回所有工具。"""

        return list(self._tools.values())

    def build_invocation(self, request: ToolCallRequestInfo) -> BaseToolInvocation[Any]:
        """
        为一次请求构造已校验的调用实例。

        异常：
        - UserError(code=TOOL_NOT_FOUND)：工具未注册
        - ToolValidationError：参数不合法
        """

        tool = self._tools.get(request.name)
        if tool is None:
            raise UserError(f"tool not found: {request.name}", code="TOOL_NOT_FOUND", details={"tool": request.name})
        return tool.build(dict(request.args or {}))

    def function_declarations(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """
        导出函数声明列表。

        参数：
        - names：可选；仅导出这些工具（按给定顺序，忽略未注册名称）
        """

        if names is None:
            return [t.function_declaration() for t in self._tools.values()]
        out: List[Dict[str, Any]] = []
        for n in names:
            tool = self._tools.get(n)
            if tool is not None:
                out.append(tool.function_declaration())
        return out
