"""
agent_runtime：多 turn agent 执行引擎（确认门禁、工具调度、活动流、subagent、checkpoint）。

常用入口：
- `build_runtime(...)`：装配 RuntimeContext
- `AgentExecutor.create(definition, runtime, on_activity)` → `run(inputs, cancellation)`
"""

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.bootstrap import build_runtime
from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import ActivityEvent, ActivityEventType, RunResult, TerminateReason
from agent_runtime.core.executor import AgentExecutor
from agent_runtime.core.runtime_context import RuntimeContext
from agent_runtime.safety.approval_store import ApprovalRuleType, ApprovalStore
from agent_runtime.safety.gate import ConfirmationDecision, ConfirmationGate, ConfirmationOutcome
from agent_runtime.state.checkpoints import CheckpointManager, trim_history
from agent_runtime.tools.base import BaseTool, FunctionTool, function_tool
from agent_runtime.tools.protocol import ToolKind, ToolResult
from agent_runtime.tools.registry import ToolRegistry

__version__ = "0.1.0"

__all__ = [
    "ActivityEvent",
    "ActivityEventType",
    "AgentDefinition",
    "AgentExecutor",
    "AgentRegistry",
    "ApprovalRuleType",
    "ApprovalStore",
    "BaseTool",
    "CancellationSignal",
    "CheckpointManager",
    "ConfirmationDecision",
    "ConfirmationGate",
    "ConfirmationOutcome",
    "FunctionTool",
    "RunResult",
    "RuntimeContext",
    "TerminateReason",
    "ToolKind",
    "ToolRegistry",
    "ToolResult",
    "__version__",
    "build_runtime",
    "function_tool",
    "trim_history",
]
