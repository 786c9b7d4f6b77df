from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List

from agent_runtime.agents.definition import AgentDefinition, InputParameter, PromptSettings, RunSettings
from agent_runtime.agents.invocation import SubagentTool, register_subagent_tools
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.core.cancellation import CancellationSignal
from agent_runtime.core.contracts import ActivityEvent, ActivityEventType, TerminateReason
from agent_runtime.core.executor import AgentExecutor
from agent_runtime.llm.errors import TransportError
from agent_runtime.llm.fake import FakeModelService, FakeTurn, tool_call
from agent_runtime.tools.base import FunctionTool
from agent_runtime.tools.protocol import ToolErrorType, ToolKind
from agent_runtime.tools.registry import ToolRegistry

RESEARCHER = AgentDefinition(
    name="researcher",
    display_name="Researcher",
    description="Digs through the codebase",
    prompt=PromptSettings(system_prompt="Research ${task}", query="${task}"),
    inputs={
        "task": InputParameter(description="what to research", type="string", required=True),
        "depth": InputParameter(description="how deep", type="integer"),
    },
)

PARENT = AgentDefinition(name="lead", description="Coordinates work", prompt=PromptSettings(query="go"))


def _routing_factory(services: Dict[str, FakeModelService]):  # type: ignore[no-untyped-def]
    def _factory(definition: AgentDefinition, system_prompt: str, declarations: List[Dict[str, Any]], history: List[Any]):
        return services[definition.name].factory()(definition, system_prompt, declarations, history)

    return _factory


def test_subagent_tool_schema_and_description(make_runtime) -> None:  # type: ignore[no-untyped-def]
    runtime = make_runtime(lambda *a: None, agents=[RESEARCHER])
    tool = runtime.tool_registry.get_tool("researcher")
    assert isinstance(tool, SubagentTool)

    decl = tool.function_declaration()
    assert decl["description"] == "Digs through the codebase"
    assert decl["parameters"]["required"] == ["task"]
    assert set(decl["parameters"]["properties"]) == {"task", "depth"}

    inv = tool.build({"task": "x" * 80, "depth": 2})
    assert inv.get_description() == "Running subagent 'researcher' with inputs: { task: " + "x" * 50 + ", depth: 2 }"
    assert inv.requires_confirmation() is False


def test_parent_receives_subagent_result_and_thoughts(make_runtime) -> None:  # type: ignore[no-untyped-def]
    events: List[ActivityEvent] = []
    parent = FakeModelService(
        [
            FakeTurn.calls(tool_call("researcher", {"task": "find the bug"})),
            FakeTurn.text("lead done"),
        ]
    )
    child = FakeModelService(
        [
            FakeTurn.calls(
                tool_call("complete_task", {"result": json.dumps({"result": "bug is in parser"})}),
                text="looking around",
            ),
        ]
    )
    runtime = make_runtime(_routing_factory({"lead": parent, "researcher": child}), agents=[RESEARCHER])
    executor = asyncio.run(AgentExecutor.create(PARENT, runtime, events.append))

    result = asyncio.run(executor.run({}))

    assert result.terminate_reason == TerminateReason.GOAL
    assert result.result == "lead done"
    output = parent.requests[1][0]["function_response"]["response"]["output"]
    assert output == "Subagent 'researcher' finished.\n\nbug is in parser"
    assert child.factory_calls[0]["system_prompt"] == "Research find the bug"
    assert "researcher" not in child.factory_calls[0]["declarations"]

    bridged = [e for e in events if e.type == ActivityEventType.THOUGHT_CHUNK and e.data.get("call_id")]
    assert [e.data["text"] for e in bridged] == ["🤖💭 looking around"]
    assert bridged[0].data["call_id"] == "call_researcher"
    assert all(e.agent_name == "lead" for e in events)


def test_subagent_stopping_early_is_reported_with_reason(make_runtime) -> None:  # type: ignore[no-untyped-def]
    limited = RESEARCHER.model_copy(update={"run": RunSettings(max_turns=1)})
    parent = FakeModelService([FakeTurn.calls(tool_call("researcher", {"task": "t"})), FakeTurn.text("ok")])
    child = FakeModelService([FakeTurn.calls(tool_call("lookup", {"query": "q"}), text="partial finding")])
    runtime = make_runtime(
        _routing_factory({"lead": parent, "researcher": child}),
        agents=[limited],
        tools=[FunctionTool(lambda query: "", name="lookup", kind=ToolKind.READ)],
    )
    executor = asyncio.run(AgentExecutor.create(PARENT, runtime))
    asyncio.run(executor.run({}))

    output = parent.requests[1][0]["function_response"]["response"]["output"]
    assert output == "Subagent 'researcher' stopped (MAX_TURNS).\n\npartial finding"


def test_subagent_error_becomes_tool_failure(make_runtime) -> None:  # type: ignore[no-untyped-def]
    parent = FakeModelService([FakeTurn.calls(tool_call("researcher", {"task": "t"})), FakeTurn.text("handled")])
    child = FakeModelService([FakeTurn(error=TransportError("upstream closed"))])
    runtime = make_runtime(_routing_factory({"lead": parent, "researcher": child}), agents=[RESEARCHER])
    executor = asyncio.run(AgentExecutor.create(PARENT, runtime))

    result = asyncio.run(executor.run({}))

    assert result.terminate_reason == TerminateReason.GOAL
    response = parent.requests[1][0]["function_response"]["response"]
    assert response["error_type"] == ToolErrorType.EXECUTION_FAILED.value
    assert response["error"] == "Subagent 'researcher' failed. Error: upstream closed"


def test_subagent_invalid_inputs_are_rejected_before_running(make_runtime) -> None:  # type: ignore[no-untyped-def]
    parent = FakeModelService([FakeTurn.calls(tool_call("researcher", {"depth": 1})), FakeTurn.text("fine")])
    child = FakeModelService([])
    runtime = make_runtime(_routing_factory({"lead": parent, "researcher": child}), agents=[RESEARCHER])
    executor = asyncio.run(AgentExecutor.create(PARENT, runtime))
    asyncio.run(executor.run({}))

    assert parent.requests[1][0]["function_response"]["response"]["error_type"] == "INVALID_PARAMETERS"
    assert child.factory_calls == []


def test_parent_cancellation_reaches_nested_tool(make_runtime) -> None:  # type: ignore[no-untyped-def]
    seen: List[CancellationSignal] = []

    async def wait_forever(cancellation) -> str:  # type: ignore[no-untyped-def]
        seen.append(cancellation)
        await asyncio.Event().wait()
        return "unreachable"

    parent = FakeModelService([FakeTurn.calls(tool_call("researcher", {"task": "t"}))])
    child = FakeModelService([FakeTurn.calls(tool_call("wait_forever"))])
    runtime = make_runtime(
        _routing_factory({"lead": parent, "researcher": child}),
        agents=[RESEARCHER],
        tools=[FunctionTool(wait_forever, kind=ToolKind.READ)],
    )
    executor = asyncio.run(AgentExecutor.create(PARENT, runtime))
    signal = CancellationSignal()

    async def _main():
        asyncio.get_running_loop().call_later(0.2, signal.cancel)
        return await executor.run({}, signal)

    result = asyncio.run(_main())

    assert result.terminate_reason == TerminateReason.ABORTED
    assert len(seen) == 1
    assert seen[0].is_cancelled()


def test_register_subagent_tools_skips_name_collisions(make_runtime) -> None:  # type: ignore[no-untyped-def]
    runtime = make_runtime(lambda *a: None)
    tools = ToolRegistry()
    plain = FunctionTool(lambda task: task, name="researcher", kind=ToolKind.READ)
    tools.register(plain)
    agents = AgentRegistry()
    agents.register_agent(RESEARCHER)
    agents.register_agent(AgentDefinition(name="writer", description="Writes docs"))

    registered = register_subagent_tools(tools, agents, runtime)

    assert list(registered) == ["writer"]
    assert tools.get_tool("researcher") is plain
    assert isinstance(tools.get_tool("writer"), SubagentTool)

    again = register_subagent_tools(tools, agents, runtime)
    assert tools.get_tool("writer") is again["writer"]
