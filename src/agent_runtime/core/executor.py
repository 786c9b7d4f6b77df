"""
AgentExecutor：单个 agent definition 的多 turn 执行循环。

状态机：INIT → RUNNING → {GOAL, MAX_TURNS, MAX_TIME, ERROR, ABORTED}

每个 turn：
1) 取消检查（ABORTED，不再发起模型调用）→ wall time / turn 预算检查；
2) 流式调用模型：文本片段立即作为 THOUGHT_CHUNK 发出，tool call 请求收集起来；
3) 无 tool call：视为完成（GOAL）；`require_complete_task` 时改为回注提醒并继续；
4) 执行 tool call（串行或并发，结果按请求顺序回注）；complete_task 成功即 GOAL。

约束：
- 工具错误不会中止 run（转换为 ToolResult.error 回注模型）；
- 只有传输失败或未处理的内部错误会以 ERROR 结束；
- 等待流与工具期间持续轮询取消与 wall time；
- history 中每个 function_call 都有对应的 function_response（未完成的调用以 CANCELLED 占位）。
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from agent_runtime.agents.definition import DEFAULT_QUERY, AgentDefinition
from agent_runtime.agents.inputs import render_template, validate_inputs
from agent_runtime.core.activity import ActivityCallback, ActivityStream
from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import RunResult, TerminateReason
from agent_runtime.core.errors import AgentInitError, StateError
from agent_runtime.core.loop_controller import POLL_INTERVAL_SEC, LoopController, LoopInterrupted
from agent_runtime.core.run_errors import classify_run_exception
from agent_runtime.core.runtime_context import RuntimeContext
from agent_runtime.core.tool_orchestration import (
    ToolBatchInterrupted,
    ToolCallOutcome,
    find_outcome,
    interrupted_response_parts,
    process_tool_calls,
    response_parts,
)
from agent_runtime.llm.protocol import Content, ModelStreamService, Part, StreamEvent, StreamEventType, validate_model_service
from agent_runtime.tools.base import BaseTool
from agent_runtime.tools.builtin.complete_task import COMPLETE_TASK_TOOL_NAME, CompleteTaskTool
from agent_runtime.tools.protocol import ToolCallRequestInfo

logger = logging.getLogger(__name__)

COMPLETE_TASK_REMINDER = (
    "You have not called the complete_task tool. When the task is finished, "
    "call complete_task with your final answer; otherwise continue working."
)

_STREAM_EVENT_ALIASES = {t.value.replace("_", ""): t for t in StreamEventType}


class AgentExecutor:
    """单个 agent 的执行器（一个实例同一时间只运行一个 run）。"""

    def __init__(
        self,
        definition: AgentDefinition,
        runtime: RuntimeContext,
        *,
        tools: Mapping[str, BaseTool],
        activity: ActivityStream,
    ) -> None:
        """
        创建执行器（请使用 `AgentExecutor.create`，它会校验工具配置）。

        参数：
        - definition：agent 定义
        - runtime：共享运行时依赖
        - tools：本 agent 可用的工具（已包含 complete_task）
        - activity：本实例的活动流
        """

        self.definition = definition
        self.runtime = runtime
        self._tools: Dict[str, BaseTool] = dict(tools)
        self.activity = activity
        self._history: List[Content] = []
        self._running = False

        run_defaults = runtime.config.run
        run = definition.run
        self.max_turns = run.max_turns if run.max_turns is not None else run_defaults.max_turns
        max_minutes = run.max_time_minutes if run.max_time_minutes is not None else run_defaults.max_time_minutes
        self.max_time_sec: Optional[float] = float(max_minutes) * 60.0 if max_minutes else None
        self.concurrent_tool_calls = (
            run.concurrent_tool_calls if run.concurrent_tool_calls is not None else run_defaults.concurrent_tool_calls
        )

    @classmethod
    async def create(
        cls,
        definition: AgentDefinition,
        runtime: RuntimeContext,
        on_activity: Optional[ActivityCallback] = None,
    ) -> "AgentExecutor":
        """
        创建并校验执行器。

        参数：
        - on_activity：可选活动订阅者（fire-and-forget）

        异常：
        - AgentInitError：definition 引用了未注册的工具
        """

        registry = runtime.tool_registry
        if definition.tools.tools is None:
            names = [n for n in registry.get_all_tool_names() if n not in (definition.name, COMPLETE_TASK_TOOL_NAME)]
        else:
            names = [n for n in definition.tools.tools if n != COMPLETE_TASK_TOOL_NAME]
            missing = [n for n in names if not registry.has_tool(n)]
            if missing:
                raise AgentInitError(
                    f"agent '{definition.name}' references unregistered tool(s): {', '.join(missing)}",
                    details={"agent": definition.name, "missing_tools": missing},
                )

        tools: Dict[str, BaseTool] = {}
        for n in names:
            tool = registry.get_tool(n)
            if tool is not None:
                tools[n] = tool
        tools[COMPLETE_TASK_TOOL_NAME] = CompleteTaskTool(
            output_name=definition.output_name,
            output_description=definition.output_description,
        )
        activity = ActivityStream(agent_name=definition.name, subscribers=[on_activity] if on_activity else None)
        return cls(definition, runtime, tools=tools, activity=activity)

    @property
    def tool_names(self) -> List[str]:
        """本 agent 可用的工具名（含 complete_task）。"""

        return list(self._tools.keys())

    @property
    def history(self) -> List[Content]:
        """当前对话历史的副本（用于 checkpoint）。"""

        return copy.deepcopy(self._history)

    async def run(
        self,
        inputs: Optional[Mapping[str, Any]] = None,
        cancellation: Optional[CancellationSignal] = None,
        *,
        initial_history: Optional[List[Content]] = None,
    ) -> RunResult:
        """
        执行一次 run。

        参数：
        - inputs：agent 输入（run 开始前校验）
        - cancellation：可选取消信号
        - initial_history：可选；恢复 checkpoint 时的已有 history

        异常：
        - AgentValidationError：inputs 或模板不合法（尚未发起任何模型调用）
        - StateError：同一实例上已有 run 在执行
        """

        if self._running:
            raise StateError(f"executor for agent '{self.definition.name}' is already running")

        validated = validate_inputs(self.definition, inputs)
        prompt = self.definition.prompt
        system_prompt = render_template(prompt.system_prompt, validated, declared=self.definition.inputs)
        query = render_template(prompt.query or DEFAULT_QUERY, validated, declared=self.definition.inputs)

        signal = cancellation or CancellationSignal()
        loop = LoopController(
            max_turns=self.max_turns,
            max_time_sec=self.max_time_sec,
            started_monotonic=time.monotonic(),
            cancellation=signal,
        )
        self._history = copy.deepcopy(list(initial_history or []))
        self._running = True
        logger.info("Agent %r started (max_turns=%s, max_time_sec=%s)", self.definition.name, self.max_turns, self.max_time_sec)
        try:
            declarations = [t.function_declaration() for t in self._tools.values()]
            service = self.runtime.model_service_factory(self.definition, system_prompt, declarations, self.history)
            validate_model_service(service)
            return await self._run_loop(service, loop, signal, [{"text": query}])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            err = classify_run_exception(e)
            logger.warning("Agent %r failed: %s", self.definition.name, err.message, exc_info=True)
            payload = err.to_payload()
            payload.pop("message", None)
            self.activity.error(err.message, context="run", **payload)
            return RunResult(
                result=err.message,
                terminate_reason=TerminateReason.ERROR,
                turns=loop.turns,
                error_kind=err.error_kind.value,
            )
        finally:
            self._running = False

    def _finish(self, loop: LoopController, reason: TerminateReason, result: str) -> RunResult:
        """记录终态并构造 RunResult。"""

        logger.info("Agent %r finished: %s after %d turn(s)", self.definition.name, reason.value, loop.turns)
        return RunResult(result=result, terminate_reason=reason, turns=loop.turns)

    async def _run_loop(
        self,
        service: ModelStreamService,
        loop: LoopController,
        signal: CancellationSignal,
        parts: List[Part],
    ) -> RunResult:
        """turn loop 主体（返回终态；传输失败以异常抛出）。"""

        prompt_id = uuid.uuid4().hex[:12]
        best_text = ""
        recorded = False
        while True:
            if loop.is_cancelled():
                return self._finish(loop, TerminateReason.ABORTED, best_text)
            if loop.wall_time_exceeded():
                return self._finish(loop, TerminateReason.MAX_TIME, best_text)
            if loop.turns_exhausted():
                return self._finish(loop, TerminateReason.MAX_TURNS, best_text)

            turn_id = loop.next_turn_id()
            if not recorded:
                self._history.append({"role": "user", "parts": list(parts)})
            recorded = False
            try:
                text, calls = await self._stream_turn(service, parts, loop, signal, f"{prompt_id}#{turn_id}", turn_id)
            except LoopInterrupted as e:
                return self._finish(loop, e.reason, best_text)

            model_parts: List[Part] = []
            if text:
                model_parts.append({"text": text})
            model_parts.extend({"function_call": {"id": c.call_id, "name": c.name, "args": dict(c.args)}} for c in calls)
            self._history.append({"role": "model", "parts": model_parts})
            if text.strip():
                best_text = text

            if not calls:
                if self.definition.run.require_complete_task:
                    parts = [{"text": COMPLETE_TASK_REMINDER}]
                    continue
                return self._finish(loop, TerminateReason.GOAL, best_text)

            try:
                outcomes = await process_tool_calls(
                    calls,
                    tools=self._tools,
                    gate=self.runtime.gate,
                    activity=self.activity,
                    loop=loop,
                    cancellation=signal,
                    concurrent=self.concurrent_tool_calls,
                    stop_on_denial=self.definition.run.denial_is_fatal,
                )
            except ToolBatchInterrupted as e:
                self._history.append({"role": "user", "parts": interrupted_response_parts(calls, e.completed, e.reason)})
                return self._finish(loop, e.reason, best_text)

            if len(outcomes) < len(calls):
                parts = interrupted_response_parts(calls, outcomes, TerminateReason.ABORTED)
            else:
                parts = response_parts(outcomes)
            self._history.append({"role": "user", "parts": list(parts)})
            recorded = True

            if self.definition.run.denial_is_fatal and any(o.denied for o in outcomes):
                return self._finish(loop, TerminateReason.ABORTED, best_text)

            done = find_outcome(outcomes, COMPLETE_TASK_TOOL_NAME)
            if done is not None:
                return self._finish(loop, TerminateReason.GOAL, _result_text(done))

    async def _stream_turn(
        self,
        service: ModelStreamService,
        parts: List[Part],
        loop: LoopController,
        signal: CancellationSignal,
        request_id: str,
        turn_id: str,
    ) -> Tuple[str, List[ToolCallRequestInfo]]:
        """
        消费一次流式响应，返回 (累积文本, tool call 请求)。

        异常：
        - LoopInterrupted：等待期间被取消或 wall time 耗尽
        """

        agen = service.send_message_stream(list(parts), signal, request_id)
        q: "asyncio.Queue[Any]" = asyncio.Queue()

        async def _consume() -> None:
            """消费模型流并写入队列（异常与 EOF 通过哨兵传递）。"""

            try:
                async for item in agen:
                    await q.put(item)
            except asyncio.CancelledError:
                with contextlib.suppress(Exception):
                    await agen.aclose()  # type: ignore[attr-defined]
                raise
            except BaseException as e:
                await q.put(e)
            finally:
                await q.put(None)

        task = asyncio.create_task(_consume())
        text = ""
        calls: List[ToolCallRequestInfo] = []
        try:
            while True:
                reason = loop.interruption()
                if reason is not None:
                    raise LoopInterrupted(reason)
                try:
                    item = await asyncio.wait_for(q.get(), timeout=POLL_INTERVAL_SEC)
                except asyncio.TimeoutError:
                    continue
                if item is None:
                    break
                if isinstance(item, BaseException):
                    raise item
                t, value = _coerce_event(item)
                if t == StreamEventType.CONTENT:
                    chunk = str(value or "")
                    if chunk:
                        text += chunk
                        self.activity.thought(chunk)
                elif t == StreamEventType.TOOL_CALL_REQUEST:
                    calls.append(_coerce_call(value, fallback_id=f"{turn_id}_call_{len(calls) + 1}"))
                elif t == StreamEventType.FINISHED:
                    break
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(BaseException):
                    await asyncio.gather(task, return_exceptions=True)
        return text, calls


def _coerce_event(item: Any) -> Tuple[StreamEventType, Any]:
    """
    把流中的一项规范化为 (type, value)。

    支持 `StreamEvent` 与形如 `{"type": "Content", "value": ...}` 的映射（type 不区分大小写与下划线）；
    其它形态或未知 type 抛出 ValueError（run 以 ERROR 结束）。
    """

    if isinstance(item, StreamEvent):
        raw_type, value = item.type, item.value
    elif isinstance(item, Mapping):
        raw_type, value = item.get("type"), item.get("value")
    else:
        raise ValueError(f"unsupported stream item: {type(item).__name__}")
    if isinstance(raw_type, StreamEventType):
        return raw_type, value
    event_type = _STREAM_EVENT_ALIASES.get(str(raw_type or "").replace("_", "").upper())
    if event_type is None:
        raise ValueError(f"unknown stream event type: {raw_type!r}")
    return event_type, value


def _coerce_call(value: Any, *, fallback_id: str) -> ToolCallRequestInfo:
    """把流事件中的调用请求规范化为 ToolCallRequestInfo（缺少 call_id 时补齐）。"""

    if isinstance(value, ToolCallRequestInfo):
        return value if value.call_id else value.model_copy(update={"call_id": fallback_id})
    if isinstance(value, dict):
        return ToolCallRequestInfo(
            name=str(value.get("name") or ""),
            args=dict(value.get("args") or {}),
            call_id=str(value.get("call_id") or value.get("id") or fallback_id),
        )
    raise ValueError(f"unsupported tool call request payload: {type(value).__name__}")


def _result_text(outcome: ToolCallOutcome) -> str:
    """complete_task 结果的文本形态。"""

    content = outcome.result.llm_content
    return content if isinstance(content, str) else str(content)
