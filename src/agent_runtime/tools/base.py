"""
Tool 基类：声明式工具（BaseTool）与已校验的调用实例（BaseToolInvocation）。

约定：
- 参数校验发生在 `BaseTool.build(args)`（构造 invocation 时），而不是 execute 时；
  非法参数必须在任何副作用发生之前失败（抛 `ToolValidationError`）。
- `FunctionTool` 把一个 Python 函数封装为工具：由函数签名生成 pydantic 参数模型。
"""

from __future__ import annotations

import inspect
import json
from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.errors import ToolValidationError
from agent_runtime.core.utils import truncate_text
from agent_runtime.tools.protocol import READ_ONLY_KINDS, PartialOutputCallback, ToolKind, ToolResult

DESCRIPTION_MAX_LENGTH = 200

# 被 executor 注入、不出现在参数 schema 中的函数参数名
_INJECTED_PARAMS = frozenset({"cancellation", "on_partial_output"})

P = TypeVar("P", bound=BaseModel)


class BaseToolInvocation(Generic[P]):
    """一次已校验参数的工具调用（实现 Invocable 协议）。"""

    def __init__(self, tool: "BaseTool", params: P) -> None:
        """
        创建调用实例。

        参数：
        - tool：所属工具（提供 name/kind/server_name 等元信息）
        - params：已校验的参数模型实例
        """

        self.tool = tool
        self.params = params

    def get_description(self) -> str:
        """返回人类可读摘要（工具显示名 + 参数预览，截断到 DESCRIPTION_MAX_LENGTH）。"""

        preview = json.dumps(self.params.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)
        return truncate_text(f"{self.tool.display_name}: {preview}", max_chars=DESCRIPTION_MAX_LENGTH)

    def requires_confirmation(self) -> bool:
        """是否需要经过确认门禁的询问流程（默认：非只读类别需要）。"""

        return self.tool.kind not in READ_ONLY_KINDS

    def confirmation_command(self) -> Optional[str]:
        """shell 类工具返回待执行命令（用于 command_pattern 规则）；其它返回 None。"""

        if self.tool.kind != ToolKind.EXECUTE:
            return None
        command = getattr(self.params, "command", None)
        return command if isinstance(command, str) and command.strip() else None

    async def execute(
        self,
        cancellation: CancellationSignal,
        on_partial_output: Optional[PartialOutputCallback] = None,
    ) -> ToolResult:
        """执行调用（子类实现）。"""

        raise NotImplementedError


class BaseTool:
    """
    声明式工具基类。

    子类需提供：
    - name / display_name / description / kind 类属性（或在 __init__ 中赋值）
    - params_model：pydantic 参数模型
    - create_invocation(params)：返回 BaseToolInvocation
    """

    name: str = ""
    display_name: str = ""
    description: str = ""
    kind: ToolKind = ToolKind.OTHER
    server_name: Optional[str] = None
    params_model: Type[BaseModel] = BaseModel

    def build(self, args: Dict[str, Any]) -> BaseToolInvocation[Any]:
        """
        校验参数并构造调用实例。

        异常：
        - ToolValidationError：参数不合法（未产生任何副作用）
        """

        if not isinstance(args, dict):
            raise ToolValidationError("tool arguments must be a JSON object", tool=self.name)
        try:
            params = self.params_model.model_validate(args)
        except ValidationError as e:
            raise ToolValidationError(
                f"invalid parameters for tool '{self.name}': {e.error_count()} validation error(s)",
                tool=self.name,
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        return self.create_invocation(params)

    def create_invocation(self, params: Any) -> BaseToolInvocation[Any]:
        """由已校验参数创建调用实例（子类实现）。"""

        raise NotImplementedError

    def parameters_schema(self) -> Dict[str, Any]:
        """返回参数 JSON Schema（object schema）。"""

        schema = self.params_model.model_json_schema()
        return {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }

    def function_declaration(self) -> Dict[str, Any]:
        """返回给模型的函数声明（name/description/parameters）。"""

        return {"name": self.name, "description": self.description, "parameters": self.parameters_schema()}


class _FunctionInvocation(BaseToolInvocation[BaseModel]):
    """FunctionTool 的调用实例。"""

    async def execute(
        self,
        cancellation: CancellationSignal,
        on_partial_output: Optional[PartialOutputCallback] = None,
    ) -> ToolResult:
        """调用被封装的函数（支持 sync/async）；返回值非 ToolResult 时按字符串封装。"""

        tool = self.tool
        if not isinstance(tool, FunctionTool):
            raise TypeError(f"function invocation bound to {type(tool).__name__}, expected FunctionTool")
        kwargs = self.params.model_dump()
        if "cancellation" in tool.injected:
            kwargs["cancellation"] = cancellation
        if "on_partial_output" in tool.injected:
            kwargs["on_partial_output"] = on_partial_output
        out = tool.func(**kwargs)
        if inspect.isawaitable(out):
            out = await out
        if isinstance(out, ToolResult):
            return out
        return ToolResult.success(str(out))


class FunctionTool(BaseTool):
    """把 Python 函数注册为工具：由函数签名生成参数 schema。"""

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        kind: ToolKind = ToolKind.OTHER,
        display_name: Optional[str] = None,
        server_name: Optional[str] = None,
    ) -> None:
        """
        创建函数工具。

        参数：
        - func：被封装的函数（可为 async）；名为 cancellation/on_partial_output 的参数由 executor 注入
        - name：工具名（默认函数名）
        - description：工具说明（默认函数 docstring）
        - kind：工具类别
        - display_name：显示名（默认同 name）
        - server_name：可选；MCP 来源 server（用于 mcp_server 审批规则）
        """

        self.func = func
        self.name = name or func.__name__
        self.description = description or (func.__doc__ or "").strip() or f"custom tool: {self.name}"
        self.display_name = display_name or self.name
        self.kind = kind
        self.server_name = server_name

        fields: Dict[str, Any] = {}
        injected = set()
        for param_name, param in inspect.signature(func, eval_str=True).parameters.items():
            if param_name in _INJECTED_PARAMS:
                injected.add(param_name)
                continue
            ann = param.annotation
            if ann is inspect.Parameter.empty:
                ann = str
            default = param.default if param.default is not inspect.Parameter.empty else ...
            fields[param_name] = (ann, default)
        self.injected = frozenset(injected)
        self.params_model = create_model(  # type: ignore[call-overload]
            f"_{self.name}_Args",
            __config__=ConfigDict(extra="forbid"),
            **fields,
        )

    def create_invocation(self, params: Any) -> BaseToolInvocation[Any]:
        """创建函数调用实例。"""

        return _FunctionInvocation(self, params)


def function_tool(
    func: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    kind: ToolKind = ToolKind.OTHER,
    server_name: Optional[str] = None,
):  # type: ignore[no-untyped-def]
    """decorator：把函数包装为 FunctionTool（支持 `@function_tool` 与 `@function_tool(...)`）。"""

    def _wrap(f: Callable[..., Any]) -> FunctionTool:
        """构造 FunctionTool。"""

        return FunctionTool(f, name=name, description=description, kind=kind, server_name=server_name)

    if func is None:
        return _wrap
    return _wrap(func)
