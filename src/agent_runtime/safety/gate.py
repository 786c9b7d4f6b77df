"""
ConfirmationGate：tool 调用执行前的确认门禁（policy + 持久化规则 + 人工确认）。

决策顺序：
1) 无需确认的调用（只读类别、complete_task）直接放行；
2) `safety.mode`：deny 拒绝全部需确认调用，allow 全部放行；
3) 持久化规则：tool_name → tool_kind → command_pattern → mcp_server，命中即放行并刷新 last_used；
4) 确认回调：deny / allow_once / allow_and_remember（后者写入规则）。

约束：
- fail-closed：无回调、回调超时、回调异常都视为 deny；
- 所有 ApprovalStore 访问经过同一把 `asyncio.Lock`（single writer，按运行中的事件循环惰性创建）；
  锁覆盖“查规则 → 询问 → 写规则”全过程，因此并发调用不会对同一规则重复询问。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.safety.approval_store import (
    ApprovalRule,
    ApprovalRuleType,
    ApprovalStore,
    find_command_rule,
    find_rule,
)
from agent_runtime.tools.base import BaseToolInvocation
from agent_runtime.tools.builtin.complete_task import is_complete_task
from agent_runtime.tools.protocol import ToolCallRequestInfo, ToolErrorType, ToolKind, ToolResult

logger = logging.getLogger(__name__)

SAFETY_MODES = ("allow", "ask", "deny")


class ConfirmationOutcome(str, Enum):
    """确认回调的决策。"""

    DENY = "deny"
    ALLOW_ONCE = "allow_once"
    ALLOW_AND_REMEMBER = "allow_and_remember"


class ConfirmationRequest(BaseModel):
    """
    确认请求（面向 UI/人类）。

    字段：
    - call_id / tool_name / display_name / kind：调用身份
    - description：invocation 的人类可读摘要
    - command：shell 类工具的待执行命令（否则 None）
    - server_name：MCP 来源 server（否则 None）
    - suggested_rule_type / suggested_rule_value：选择“记住”时默认写入的规则
    """

    model_config = ConfigDict(extra="forbid")

    call_id: str
    tool_name: str
    display_name: str = ""
    kind: ToolKind = ToolKind.OTHER
    description: str = ""
    command: Optional[str] = None
    server_name: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    suggested_rule_type: ApprovalRuleType
    suggested_rule_value: str


class ConfirmationDecision(BaseModel):
    """
    确认回调返回值。

    字段：
    - outcome：决策
    - rule_type / rule_value：可选；覆盖“记住”时写入的规则（例如 `command_pattern` + `npm *`）
    """

    model_config = ConfigDict(extra="forbid")

    outcome: ConfirmationOutcome
    rule_type: Optional[ApprovalRuleType] = None
    rule_value: Optional[str] = None


ConfirmCallback = Callable[
    [ConfirmationRequest],
    Union[Awaitable[Union[ConfirmationDecision, ConfirmationOutcome]], ConfirmationDecision, ConfirmationOutcome],
]


@dataclass
class GateDecision:
    """门禁决策输出。"""

    action: str
    reason: str
    matched_rule: Optional[str] = None
    remembered: Optional[ApprovalRule] = None

    @property
    def allowed(self) -> bool:
        """是否放行。"""

        return self.action == "allow"


def _describe_rule(rule: ApprovalRule) -> str:
    """规则的简短标识（写入 GateDecision.matched_rule）。"""

    return f"{rule.type.value}={rule.value}"


class ConfirmationGate:
    """确认门禁（单个 runtime 共享一个实例）。"""

    def __init__(
        self,
        store: ApprovalStore,
        *,
        confirm: Optional[ConfirmCallback] = None,
        mode: str = "ask",
        timeout_ms: Optional[int] = 60_000,
    ) -> None:
        """
        创建门禁。

        参数：
        - store：持久化规则存储
        - confirm：可选确认回调（None 时需要确认的调用一律拒绝）
        - mode：allow | ask | deny
        - timeout_ms：回调超时（None 表示不限制）
        """

        mode_norm = str(mode or "ask").strip().lower()
        if mode_norm not in SAFETY_MODES:
            raise ValueError(f"safety mode must be one of {SAFETY_MODES}, got: {mode!r}")
        self.store = store
        self._confirm = confirm
        self._mode = mode_norm
        self._timeout_ms = timeout_ms
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def mode(self) -> str:
        """当前 safety mode。"""

        return self._mode

    def _loop_lock(self) -> asyncio.Lock:
        """返回当前事件循环上的锁（runtime 跨多次 `asyncio.run` 复用时按 loop 重建）。"""

        running = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not running:
            self._lock = asyncio.Lock()
            self._lock_loop = running
        return self._lock

    @staticmethod
    def suggested_rule(invocation: BaseToolInvocation[Any]) -> Tuple[ApprovalRuleType, str]:
        """“记住”时的默认规则：shell 命令 → command_pattern，MCP 工具 → mcp_server，否则 tool_name。"""

        command = invocation.confirmation_command()
        if command:
            return ApprovalRuleType.COMMAND_PATTERN, command
        server = invocation.tool.server_name
        if server:
            return ApprovalRuleType.MCP_SERVER, server
        return ApprovalRuleType.TOOL_NAME, invocation.tool.name

    async def _match_rule(self, invocation: BaseToolInvocation[Any]) -> Optional[ApprovalRule]:
        """按固定顺序查找命中的规则（调用方持锁）。"""

        rules = await self.store.load_rules()
        tool = invocation.tool
        matched = find_rule(rules, ApprovalRuleType.TOOL_NAME, tool.name)
        if matched is None:
            matched = find_rule(rules, ApprovalRuleType.TOOL_KIND, tool.kind.value)
        if matched is None:
            command = invocation.confirmation_command()
            if command:
                matched = find_command_rule(rules, command)
        if matched is None and tool.server_name:
            matched = find_rule(rules, ApprovalRuleType.MCP_SERVER, tool.server_name)
        if matched is not None:
            await self.store.update_last_used(matched.id)
        return matched

    async def _ask(self, request: ConfirmationRequest) -> Tuple[Optional[ConfirmationDecision], str]:
        """调用确认回调；返回 (decision, reason)。decision 为 None 表示 fail-closed。"""

        if self._confirm is None:
            return None, "no_callback"
        try:
            out = self._confirm(request)
            if inspect.isawaitable(out):
                timeout = None if self._timeout_ms is None else self._timeout_ms / 1000.0
                out = await asyncio.wait_for(out, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Confirmation timed out for tool %r (call_id=%s)", request.tool_name, request.call_id)
            return None, "timeout"
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Confirmation callback raised for tool %r", request.tool_name, exc_info=True)
            return None, "callback_error"

        if isinstance(out, ConfirmationOutcome):
            return ConfirmationDecision(outcome=out), "callback"
        if isinstance(out, ConfirmationDecision):
            return out, "callback"
        logger.warning("Confirmation callback returned unsupported value: %r", out)
        return None, "invalid_decision"

    async def check(self, request: ToolCallRequestInfo, invocation: BaseToolInvocation[Any]) -> GateDecision:
        """
        对单次调用做出放行/拒绝决策。

        参数：
        - request：模型请求（call_id/name/args）
        - invocation：已校验参数的调用实例
        """

        if is_complete_task(request.name) or not invocation.requires_confirmation():
            return GateDecision(action="allow", reason="No confirmation required")
        if self._mode == "deny":
            return GateDecision(action="deny", reason="Tool is denied by safety.mode=deny.", matched_rule="mode=deny")
        if self._mode == "allow":
            return GateDecision(action="allow", reason="Allowed by safety.mode=allow.", matched_rule="mode=allow")

        async with self._loop_lock():
            matched = await self._match_rule(invocation)
            if matched is not None:
                return GateDecision(action="allow", reason="Allowed by approval rule.", matched_rule=_describe_rule(matched))

            rule_type, rule_value = self.suggested_rule(invocation)
            confirmation = ConfirmationRequest(
                call_id=request.call_id,
                tool_name=invocation.tool.name,
                display_name=invocation.tool.display_name or invocation.tool.name,
                kind=invocation.tool.kind,
                description=invocation.get_description(),
                command=invocation.confirmation_command(),
                server_name=invocation.tool.server_name,
                args=dict(request.args or {}),
                suggested_rule_type=rule_type,
                suggested_rule_value=rule_value,
            )
            decision, reason = await self._ask(confirmation)
            if decision is None or decision.outcome == ConfirmationOutcome.DENY:
                return GateDecision(action="deny", reason=f"Confirmation denied ({reason}).")
            if decision.outcome == ConfirmationOutcome.ALLOW_ONCE:
                return GateDecision(action="allow", reason="Allowed once by confirmation.")

            remember_type = decision.rule_type or rule_type
            remember_value = decision.rule_value or rule_value
            rule = await self.store.add_rule(
                remember_type,
                remember_value,
                f"Remembered from confirmation of {invocation.tool.name}",
            )
            return GateDecision(
                action="allow",
                reason="Allowed and remembered by confirmation.",
                matched_rule=_describe_rule(rule),
                remembered=rule,
            )

    @staticmethod
    def build_denied_result(request: ToolCallRequestInfo, decision: GateDecision) -> ToolResult:
        """基于门禁决策构造 PERMISSION_DENIED 的 ToolResult（工具体未执行）。"""

        return ToolResult.failure(
            message=f"Tool '{request.name}' was not executed: {decision.reason}",
            error_type=ToolErrorType.PERMISSION_DENIED,
        )
