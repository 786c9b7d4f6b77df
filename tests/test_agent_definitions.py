from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_runtime.agents.definition import AgentDefinition, InputParameter
from agent_runtime.agents.inputs import build_inputs_model, render_template, validate_inputs
from agent_runtime.agents.loader import load_agents_from_dir, load_yaml_agent, parse_markdown_agent
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.core.errors import AgentValidationError


def _with_inputs(**inputs: InputParameter) -> AgentDefinition:
    return AgentDefinition(name="a", description="d", inputs=inputs)


def test_definition_is_frozen_and_rejects_unknown_fields() -> None:
    d = AgentDefinition(name="a", description="d")
    with pytest.raises(ValidationError):
        d.name = "b"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        AgentDefinition(name="a", description="d", colour="blue")  # type: ignore[call-arg]
    assert d.label == "a"


def test_validate_inputs_types_and_required() -> None:
    definition = _with_inputs(
        task=InputParameter(type="string", required=True),
        count=InputParameter(type="integer"),
        strict=InputParameter(type="boolean"),
        tags=InputParameter(type="string[]"),
    )
    out = validate_inputs(definition, {"task": "t", "count": 3, "tags": ["a", "b"]})
    assert out == {"task": "t", "count": 3, "tags": ["a", "b"]}

    with pytest.raises(AgentValidationError):
        validate_inputs(definition, {"count": 3})
    with pytest.raises(AgentValidationError):
        validate_inputs(definition, {"task": "t", "strict": "yes"})
    with pytest.raises(AgentValidationError) as ei:
        validate_inputs(definition, {"task": "t", "surprise": 1})
    assert ei.value.details["agent"] == "a"


def test_inputs_model_marks_required_fields() -> None:
    model = build_inputs_model(_with_inputs(task=InputParameter(type="string", required=True), n=InputParameter(type="number")))
    schema = model.model_json_schema()
    assert schema["required"] == ["task"]


def test_render_template_only_replaces_braced_placeholders() -> None:
    text = render_template(
        "Fix ${task} in $HOME for ${tags} ${note}",
        {"task": "bug", "tags": ["x", "y"]},
        declared={"task": None, "tags": None, "note": None},
    )
    assert text == "Fix bug in $HOME for x, y "


def test_render_template_rejects_undeclared_placeholder() -> None:
    with pytest.raises(AgentValidationError) as ei:
        render_template("Hello ${who}", {})
    assert ei.value.details["placeholder"] == "who"


def test_markdown_agent_defaults(tmp_path: Path) -> None:
    content = (
        "# Code Reviewer\n"
        "\n"
        "Reviews diffs for bugs\n"
        "and style issues.\n"
        "\n"
        "## Steps\n"
        "Read the diff carefully.\n"
    )
    d = parse_markdown_agent(content, tmp_path / "code-reviewer.md")
    assert d is not None
    assert d.name == "code_reviewer"
    assert d.display_name == "Code Reviewer"
    assert d.description == "Reviews diffs for bugs and style issues."
    assert d.prompt.system_prompt == content.strip()
    assert d.prompt.query == "${task}"
    assert d.inputs["task"].required is True
    assert d.run.max_turns == 10
    assert d.run.max_time_minutes == 5
    assert d.source == str(tmp_path / "code-reviewer.md")


def test_markdown_agent_description_fallback(tmp_path: Path) -> None:
    d = parse_markdown_agent("# Helper\n\n## Section\ntext\n", tmp_path / "helper.md")
    assert d is not None
    assert d.description == "Specialized agent for helper tasks"


def test_markdown_without_heading_is_skipped(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert parse_markdown_agent("just some text\n", tmp_path / "x.md") is None
    assert "doesn't start with a heading" in caplog.text


def test_markdown_frontmatter_overrides(tmp_path: Path) -> None:
    content = (
        "---\n"
        "description: Finds things\n"
        "tools: [lookup]\n"
        "model: fast-model\n"
        "query: Find ${task} quickly\n"
        "run:\n"
        "  max_turns: 3\n"
        "---\n"
        "# Finder\n"
        "Body text.\n"
    )
    d = parse_markdown_agent(content, tmp_path / "finder.md")
    assert d is not None
    assert d.description == "Finds things"
    assert d.tools.tools == ["lookup"]
    assert d.model.model == "fast-model"
    assert d.prompt.query == "Find ${task} quickly"
    assert d.prompt.system_prompt == "# Finder\nBody text."
    assert d.run.max_turns == 3
    assert d.run.max_time_minutes is None


def test_yaml_agent(tmp_path: Path) -> None:
    p = tmp_path / "summarizer.yaml"
    p.write_text(
        "description: Summarizes text\n"
        "prompt:\n"
        "  system_prompt: Summarize.\n"
        "  query: ${text}\n"
        "inputs:\n"
        "  text:\n"
        "    type: string\n"
        "    required: true\n"
        "output_name: summary\n",
        encoding="utf-8",
    )
    d = load_yaml_agent(p)
    assert d.name == "summarizer"
    assert d.output_name == "summary"
    assert d.inputs["text"].required is True


def test_load_agents_from_dir_skips_broken_files(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "b-agent.md").write_text("# B Agent\n\nDoes b.\n", encoding="utf-8")
    (tmp_path / "a.yaml").write_text("description: Does a\n", encoding="utf-8")
    (tmp_path / "broken.yaml").write_text("description: [unclosed\n", encoding="utf-8")
    (tmp_path / "unknown.yaml").write_text("description: x\nflavour: spicy\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        agents = load_agents_from_dir(tmp_path)

    assert [a.name for a in agents] == ["a", "b_agent"]
    assert "broken.yaml" in caplog.text
    assert "unknown.yaml" in caplog.text
    assert load_agents_from_dir(tmp_path / "missing") == []


def test_registry_skips_incomplete_and_overrides_by_name(caplog: pytest.LogCaptureFixture) -> None:
    registry = AgentRegistry()
    assert registry.register_agent(AgentDefinition(name="x", description="")) is False
    assert registry.register_agent(AgentDefinition(name="x", description="first")) is True
    with caplog.at_level(logging.INFO):
        assert registry.register_agent(AgentDefinition(name="x", description="second")) is True
    assert registry.get_definition("x").description == "second"  # type: ignore[union-attr]
    assert len(registry.get_all_definitions()) == 1
    assert "Overriding agent" in caplog.text


def test_registry_initialize_lets_files_override_builtins(tmp_path: Path) -> None:
    (tmp_path / "finder.md").write_text("# Finder\n\nUser finder.\n", encoding="utf-8")
    registry = AgentRegistry()
    registry.initialize(
        builtins=[
            AgentDefinition(name="finder", description="builtin finder"),
            AgentDefinition(name="planner", description="builtin planner"),
        ],
        agent_dirs=[tmp_path],
    )
    finder = registry.get_definition("finder")
    assert finder is not None
    assert finder.description == "User finder."
    assert finder.source is not None and finder.source.endswith("finder.md")
    assert [d.name for d in registry.get_all_definitions()] == ["finder", "planner"]
