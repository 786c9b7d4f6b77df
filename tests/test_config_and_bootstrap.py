from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_runtime.agents.invocation import SubagentTool
from agent_runtime.bootstrap import CONFIG_ENV_VAR, build_runtime, discover_overlay_paths, resolve_config
from agent_runtime.config.defaults import load_default_config_dict
from agent_runtime.config.loader import load_config, load_config_dicts
from agent_runtime.core.contracts import TerminateReason
from agent_runtime.core.executor import AgentExecutor
from agent_runtime.llm.fake import FakeModelService, FakeTurn, tool_call
from agent_runtime.tools.base import FunctionTool
from agent_runtime.tools.protocol import ToolKind


def test_embedded_defaults() -> None:
    cfg = load_config_dicts([load_default_config_dict()])
    assert cfg.run.max_turns == 10
    assert cfg.run.max_time_minutes == 5
    assert cfg.run.concurrent_tool_calls is False
    assert cfg.safety.mode == "ask"
    assert cfg.safety.confirmation_timeout_ms == 60000
    assert cfg.agents.dirs == [".agent_runtime/agents"]
    assert cfg.checkpoints.keep_last == 6


def test_overlays_deep_merge_in_order(tmp_path: Path) -> None:
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text("run:\n  max_turns: 4\n  concurrent_tool_calls: true\nsafety:\n  mode: deny\n", encoding="utf-8")
    b.write_text("run:\n  max_turns: 7\n", encoding="utf-8")

    cfg = load_config([a, b])
    assert cfg.run.max_turns == 7
    assert cfg.run.concurrent_tool_calls is True
    assert cfg.safety.mode == "deny"


def test_unknown_keys_and_bad_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"run": {"max_turnz": 3}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"safety": {"mode": "sometimes"}}])


def test_missing_overlay_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "nope.yaml"])


def test_env_overlays_are_appended_after_explicit_paths(tmp_path: Path) -> None:
    (tmp_path / "explicit.yaml").write_text("run:\n  max_turns: 2\n", encoding="utf-8")
    (tmp_path / "env1.yaml").write_text("run:\n  max_turns: 3\n", encoding="utf-8")
    (tmp_path / "env2.yaml").write_text("safety:\n  mode: allow\n", encoding="utf-8")
    env = {CONFIG_ENV_VAR: " env1.yaml; env2.yaml ,explicit.yaml"}

    paths = discover_overlay_paths(workspace_root=tmp_path, config_paths=[Path("explicit.yaml")], env=env)
    assert [p.name for p in paths] == ["explicit.yaml", "env1.yaml", "env2.yaml"]

    cfg = resolve_config(workspace_root=tmp_path, config_paths=[Path("explicit.yaml")], env=env)
    assert cfg.run.max_turns == 3
    assert cfg.safety.mode == "allow"


def test_build_runtime_wires_agents_tools_and_storage(tmp_path: Path) -> None:
    agents_dir = tmp_path / ".agent_runtime" / "agents"
    agents_dir.mkdir(parents=True)
    (agents_dir / "helper.md").write_text("# Helper\n\nHelps with ${task}.\n", encoding="utf-8")
    (tmp_path / "cfg.yaml").write_text("safety:\n  mode: allow\n", encoding="utf-8")

    fake = FakeModelService(
        [
            FakeTurn.calls(tool_call("write_note", {"text": "hello"})),
            FakeTurn.calls(tool_call("complete_task", {"result": "noted"})),
        ]
    )
    notes = []
    runtime = build_runtime(
        tmp_path,
        fake.factory(),
        config_paths=[Path("cfg.yaml")],
        tools=[FunctionTool(lambda text: notes.append(text) or "ok", name="write_note", kind=ToolKind.EDIT)],
        env={},
    )

    assert runtime.workspace_root == tmp_path.resolve()
    assert runtime.gate.mode == "allow"
    assert runtime.agent_registry.get_definition("helper") is not None
    assert isinstance(runtime.tool_registry.get_tool("helper"), SubagentTool)
    assert runtime.checkpoints is not None
    assert runtime.checkpoints.dir == (tmp_path / ".agent_runtime" / "checkpoints").resolve()

    definition = runtime.agent_registry.get_definition("helper")
    executor = asyncio.run(AgentExecutor.create(definition, runtime))  # type: ignore[arg-type]
    result = asyncio.run(executor.run({"task": "notes"}))

    assert result.terminate_reason == TerminateReason.GOAL
    assert result.result == "noted"
    assert notes == ["hello"]
    assert fake.factory_calls[0]["system_prompt"] == "# Helper\n\nHelps with notes."


def test_build_runtime_persists_remembered_rules(tmp_path: Path) -> None:
    runtime = build_runtime(tmp_path, FakeModelService([]).factory(), env={})
    asyncio.run(runtime.gate.store.approve_tool("write_note"))
    assert (tmp_path / ".agent_runtime" / "approvals.json").is_file()

    again = build_runtime(tmp_path, FakeModelService([]).factory(), env={})
    rules = asyncio.run(again.gate.store.load_rules())
    assert [r.value for r in rules] == ["write_note"]
