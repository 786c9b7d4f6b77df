from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional

import pytest

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.agents.invocation import register_subagent_tools
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.core.contracts import ActivityEvent
from agent_runtime.core.runtime_context import RuntimeContext
from agent_runtime.safety.approval_store import ApprovalStore
from agent_runtime.safety.gate import ConfirmationGate
from agent_runtime.state.storage import InMemoryStorage, KeyValueStorage
from agent_runtime.tools.base import BaseTool
from agent_runtime.tools.registry import ToolRegistry


def build_runtime_for_tests(
    factory: Callable[..., Any],
    *,
    tools: Iterable[BaseTool] = (),
    agents: Iterable[AgentDefinition] = (),
    confirm: Optional[Callable[..., Any]] = None,
    mode: str = "ask",
    timeout_ms: Optional[int] = 60_000,
    storage: Optional[KeyValueStorage] = None,
) -> RuntimeContext:
    store = ApprovalStore(storage if storage is not None else InMemoryStorage())
    gate = ConfirmationGate(store, confirm=confirm, mode=mode, timeout_ms=timeout_ms)
    tool_registry = ToolRegistry()
    for t in tools:
        tool_registry.register(t)
    agent_registry = AgentRegistry()
    for a in agents:
        agent_registry.register_agent(a)
    runtime = RuntimeContext(
        tool_registry=tool_registry,
        agent_registry=agent_registry,
        gate=gate,
        model_service_factory=factory,
    )
    register_subagent_tools(tool_registry, agent_registry, runtime)
    return runtime


@pytest.fixture
def make_runtime() -> Callable[..., RuntimeContext]:
    return build_runtime_for_tests


@pytest.fixture
def collected_events() -> List[ActivityEvent]:
    return []
