"""
Subagent 工具：把一个 agent definition 包装为可被父 agent 调用的工具。

说明：
- SubagentInvocation 与原子工具实现同一 Invocable 接口，executor 不对递归做特殊处理；
- 父 agent 的取消信号原样传入子 executor；
- 子 agent 的 THOUGHT_CHUNK 通过 on_partial_output 转发给父 agent；
- 子 agent 内部的工具调用各自经过确认门禁，因此 subagent 调用本身不再询问。
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.agents.inputs import build_inputs_model
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import ActivityEvent, ActivityEventType, RunResult, TerminateReason
from agent_runtime.core.errors import AgentRuntimeError
from agent_runtime.core.executor import AgentExecutor
from agent_runtime.core.runtime_context import RuntimeContext
from agent_runtime.tools.base import DESCRIPTION_MAX_LENGTH, BaseTool, BaseToolInvocation
from agent_runtime.tools.protocol import PartialOutputCallback, ToolErrorType, ToolKind, ToolResult
from agent_runtime.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

INPUT_PREVIEW_MAX_LENGTH = 50
THOUGHT_PREFIX = "🤖💭 "


def _format_result(result: str) -> str:
    """结果形如 JSON 对象且带字符串 `result` 字段时提取该字段，否则原样返回。"""

    if not result.strip().startswith("{"):
        return result
    try:
        parsed = json.loads(result)
    except json.JSONDecodeError:
        return result
    inner = parsed.get("result") if isinstance(parsed, dict) else None
    return inner if isinstance(inner, str) and inner else result


class SubagentInvocation(BaseToolInvocation[Any]):
    """一次 subagent 调用。"""

    @property
    def subagent_tool(self) -> "SubagentTool":
        """所属的 SubagentTool。"""

        tool = self.tool
        if not isinstance(tool, SubagentTool):
            raise TypeError(f"subagent invocation bound to {type(tool).__name__}, expected SubagentTool")
        return tool

    @property
    def definition(self) -> AgentDefinition:
        """被调用的 agent 定义。"""

        return self.subagent_tool.definition

    def get_description(self) -> str:
        """`Running subagent '<name>' with inputs: { k: v, ... }`（每个值预览 50 字符，总长 200）。"""

        inputs = self.params.model_dump(exclude_none=True)
        summary = ", ".join(f"{k}: {str(v)[:INPUT_PREVIEW_MAX_LENGTH]}" for k, v in inputs.items())
        return f"Running subagent '{self.definition.name}' with inputs: {{ {summary} }}"[:DESCRIPTION_MAX_LENGTH]

    def requires_confirmation(self) -> bool:
        """子 agent 内部的工具调用各自确认。"""

        return False

    async def execute(
        self,
        cancellation: CancellationSignal,
        on_partial_output: Optional[PartialOutputCallback] = None,
    ) -> ToolResult:
        """运行子 agent 并把 RunResult 映射为 ToolResult。"""

        name = self.definition.name

        def _bridge(event: ActivityEvent) -> None:
            """把子 agent 的思考片段转发为增量输出。"""

            if on_partial_output is None or event.type != ActivityEventType.THOUGHT_CHUNK:
                return
            text = event.data.get("text")
            if isinstance(text, str):
                on_partial_output(f"{THOUGHT_PREFIX}{text}")

        try:
            executor = await AgentExecutor.create(self.definition, self.subagent_tool.runtime, on_activity=_bridge)
            output: RunResult = await executor.run(self.params.model_dump(exclude_none=True), cancellation)
        except AgentRuntimeError as e:
            logger.warning("Subagent %r failed to start: %s", name, e)
            return ToolResult.failure(
                message=str(e),
                error_type=ToolErrorType.EXECUTION_FAILED,
                return_display=f"Subagent Failed: {name}\nError: {e}",
            )

        if output.terminate_reason == TerminateReason.ERROR:
            return ToolResult.failure(
                message=f"Subagent '{name}' failed. Error: {output.result}",
                error_type=ToolErrorType.EXECUTION_FAILED,
                return_display=f"Subagent Failed: {name}\nError: {output.result}",
            )
        if output.terminate_reason == TerminateReason.ABORTED and cancellation.is_cancelled():
            return ToolResult.failure(
                message=f"Subagent '{name}' was cancelled.",
                error_type=ToolErrorType.CANCELLED,
            )

        formatted = _format_result(output.result)
        header = f"Subagent '{name}' finished."
        if output.terminate_reason != TerminateReason.GOAL:
            header = f"Subagent '{name}' stopped ({output.terminate_reason.value})."
        return ToolResult.success([{"text": f"{header}\n\n{formatted}"}], return_display=formatted)


class SubagentTool(BaseTool):
    """以 agent definition 为底的工具（工具名即 agent name）。"""

    kind = ToolKind.OTHER

    def __init__(self, definition: AgentDefinition, runtime: RuntimeContext) -> None:
        """
        创建 subagent 工具。

        参数：
        - definition：被包装的 agent 定义（其 inputs 即工具参数）
        - runtime：子 executor 使用的共享运行时依赖
        """

        self.definition = definition
        self.runtime = runtime
        self.name = definition.name
        self.display_name = definition.label
        self.description = definition.description
        self.params_model = build_inputs_model(definition)

    def create_invocation(self, params: Any) -> BaseToolInvocation[Any]:
        """创建 subagent 调用实例。"""

        return SubagentInvocation(self, params)


def register_subagent_tools(
    tool_registry: ToolRegistry,
    agent_registry: AgentRegistry,
    runtime: RuntimeContext,
) -> Dict[str, SubagentTool]:
    """
    把注册表中的每个 agent 暴露为工具。

    说明：
    - 已注册的同名 subagent 工具会被替换；
    - 与非 subagent 工具重名时跳过并记录 warning。
    """

    registered: Dict[str, SubagentTool] = {}
    for definition in agent_registry.get_all_definitions():
        existing = tool_registry.get_tool(definition.name)
        if existing is not None and not isinstance(existing, SubagentTool):
            logger.warning("Skipping subagent tool %r: name already used by a tool", definition.name)
            continue
        tool = SubagentTool(definition, runtime)
        tool_registry.register(tool, override=True)
        registered[definition.name] = tool
    return registered
