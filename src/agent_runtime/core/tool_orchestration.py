"""
工具调用编排（从 executor 拆出）。

每个调用：
- TOOL_CALL_START
- 查找工具 → 构造 invocation（参数校验，失败无副作用）→ 确认门禁 → execute
- 成功发出 TOOL_CALL_END，失败（含拒绝/校验失败/异常）发出 ERROR

调度：
- 默认按请求顺序串行；`concurrent=True` 时并发执行；
- 两种模式下返回结果都按请求顺序排列（call_id 一一对应）。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from agent_runtime.core.activity import ActivityStream
from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import ActivityEventType, TerminateReason
from agent_runtime.core.errors import ExecutionFailedError, PermissionDeniedError, ToolValidationError
from agent_runtime.core.loop_controller import LoopController, LoopInterrupted
from agent_runtime.safety.gate import ConfirmationGate
from agent_runtime.tools.base import BaseTool, BaseToolInvocation
from agent_runtime.tools.protocol import ToolCallRequestInfo, ToolErrorType, ToolResult, function_response_part

logger = logging.getLogger(__name__)


@dataclass
class ToolCallOutcome:
    """
    单次调用的结果。

    字段：
    - request：原始请求
    - result：回注模型的 ToolResult
    - denied：是否被确认门禁拒绝（工具体未执行）
    """

    request: ToolCallRequestInfo
    result: ToolResult
    denied: bool = False


def _safe_partial_output(activity: ActivityStream, request: ToolCallRequestInfo):  # type: ignore[no-untyped-def]
    """构造不会抛出的 on_partial_output（增量输出以 THOUGHT_CHUNK 转发，带 call_id）。"""

    def _on_partial(text: str) -> None:
        """转发增量输出（fail-open）。"""

        try:
            activity.emit(
                ActivityEventType.THOUGHT_CHUNK,
                {"text": str(text), "call_id": request.call_id, "name": request.name},
            )
        except Exception:
            logger.debug("Partial output forwarding failed for %s", request.call_id, exc_info=True)

    return _on_partial


def _failed(activity: ActivityStream, request: ToolCallRequestInfo, result: ToolResult, *, denied: bool = False) -> ToolCallOutcome:
    """发出 ERROR 事件并包装失败结果。"""

    error = result.error
    if error is None:
        raise ValueError(f"tool call {request.call_id} has no error to report")
    activity.error(
        error.message,
        context="tool_call",
        name=request.name,
        call_id=request.call_id,
        error_type=error.type.value,
    )
    return ToolCallOutcome(request=request, result=result, denied=denied)


async def execute_tool_call(
    request: ToolCallRequestInfo,
    *,
    tools: Mapping[str, BaseTool],
    gate: ConfirmationGate,
    activity: ActivityStream,
    cancellation: CancellationSignal,
) -> ToolCallOutcome:
    """
    执行单个调用（不会因工具错误抛出；取消以 CancelledError 传播）。

    参数：
    - tools：本 executor 可用的工具（name → BaseTool）
    - gate：确认门禁
    - activity：活动流
    - cancellation：本批次的取消信号（传递给工具与 subagent）
    """

    activity.emit(
        ActivityEventType.TOOL_CALL_START,
        {"name": request.name, "call_id": request.call_id, "args": dict(request.args or {})},
    )

    tool = tools.get(request.name)
    if tool is None:
        return _failed(
            activity,
            request,
            ToolResult.failure(message=f"Tool '{request.name}' not found.", error_type=ToolErrorType.TOOL_NOT_FOUND),
        )

    try:
        invocation: BaseToolInvocation[Any] = tool.build(dict(request.args or {}))
    except ToolValidationError as e:
        return _failed(
            activity,
            request,
            ToolResult.failure(message=e.message, error_type=ToolErrorType.INVALID_PARAMETERS),
        )

    decision = await gate.check(request, invocation)
    if not decision.allowed:
        return _failed(activity, request, gate.build_denied_result(request, decision), denied=True)

    try:
        result = await invocation.execute(cancellation, _safe_partial_output(activity, request))
    except asyncio.CancelledError:
        raise
    except PermissionDeniedError as e:
        result = ToolResult.failure(message=str(e), error_type=ToolErrorType.PERMISSION_DENIED)
    except ExecutionFailedError as e:
        result = ToolResult.failure(message=str(e), error_type=ToolErrorType.EXECUTION_FAILED)
    except Exception as e:
        logger.warning("Tool %r raised during execution", request.name, exc_info=True)
        result = ToolResult.failure(
            message=f"{type(e).__name__}: {e}",
            error_type=ToolErrorType.EXECUTION_FAILED,
        )

    if not isinstance(result, ToolResult):
        result = ToolResult.failure(
            message=f"Tool '{request.name}' returned {type(result).__name__}, expected ToolResult",
            error_type=ToolErrorType.EXECUTION_FAILED,
        )
    if result.error is not None:
        return _failed(activity, request, result)

    activity.emit(
        ActivityEventType.TOOL_CALL_END,
        {"name": request.name, "call_id": request.call_id, "display": result.return_display},
    )
    return ToolCallOutcome(request=request, result=result)


class ToolBatchInterrupted(LoopInterrupted):
    """批次执行被打断；`completed` 保存已完成调用的结果（按请求顺序）。"""

    def __init__(self, reason: TerminateReason, completed: Sequence[ToolCallOutcome]) -> None:
        """记录终止原因与已完成结果。"""

        super().__init__(reason)
        self.completed: List[ToolCallOutcome] = list(completed)


async def process_tool_calls(
    requests: Sequence[ToolCallRequestInfo],
    *,
    tools: Mapping[str, BaseTool],
    gate: ConfirmationGate,
    activity: ActivityStream,
    loop: LoopController,
    cancellation: CancellationSignal,
    concurrent: bool = False,
    stop_on_denial: bool = False,
) -> List[ToolCallOutcome]:
    """
    执行一批调用并按请求顺序返回结果。

    参数：
    - concurrent：是否并发执行
    - stop_on_denial：串行模式下遇到拒绝即停止后续调用（denial 为 fatal 时使用）

    异常：
    - ToolBatchInterrupted：等待期间被取消或 wall time 耗尽（未完成的工具已被取消）
    """

    batch_signal = cancellation.child()
    outcomes: List[ToolCallOutcome] = []

    def _one(request: ToolCallRequestInfo):  # type: ignore[no-untyped-def]
        """单个调用的协程。"""

        return execute_tool_call(request, tools=tools, gate=gate, activity=activity, cancellation=batch_signal)

    try:
        if concurrent:
            tasks = [asyncio.ensure_future(_one(r)) for r in requests]
            try:
                return list(await loop.watch(asyncio.gather(*tasks)))
            except LoopInterrupted:
                for t in tasks:
                    if not t.done():
                        t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                outcomes.extend(t.result() for t in tasks if not t.cancelled() and t.exception() is None)
                raise

        for request in requests:
            reason = loop.interruption()
            if reason is not None:
                raise LoopInterrupted(reason)
            outcome = await loop.watch(_one(request))
            outcomes.append(outcome)
            if outcome.denied and stop_on_denial:
                break
        return outcomes
    except LoopInterrupted as e:
        batch_signal.cancel(reason=e.reason.value)
        raise ToolBatchInterrupted(e.reason, outcomes) from None
    finally:
        batch_signal.detach()


def response_parts(outcomes: Sequence[ToolCallOutcome]) -> List[Dict[str, Any]]:
    """把结果映射为回注模型的 function_response parts（保持顺序）。"""

    return [function_response_part(o.request, o.result) for o in outcomes]


def interrupted_response_parts(
    requests: Sequence[ToolCallRequestInfo],
    completed: Sequence[ToolCallOutcome],
    reason: TerminateReason,
) -> List[Dict[str, Any]]:
    """
    被打断批次的 function_response parts：已完成的调用用真实结果，其余补 CANCELLED 占位。

    保证 history 中每个 function_call 都有对应的 function_response（恢复 checkpoint 时模型要求配对）。
    """

    by_id = {o.request.call_id: o for o in completed}
    parts: List[Dict[str, Any]] = []
    for request in requests:
        done = by_id.get(request.call_id)
        if done is not None:
            parts.append(function_response_part(done.request, done.result))
            continue
        placeholder = ToolResult.failure(
            message=f"Tool call did not complete: run ended with {reason.value}.",
            error_type=ToolErrorType.CANCELLED,
        )
        parts.append(function_response_part(request, placeholder))
    return parts


def find_outcome(outcomes: Sequence[ToolCallOutcome], name: str) -> Optional[ToolCallOutcome]:
    """查找第一个指定工具名且成功的结果。"""

    for o in outcomes:
        if o.request.name == name and o.result.ok:
            return o
    return None
