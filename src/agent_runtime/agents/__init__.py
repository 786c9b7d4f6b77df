"""Agent 定义、注册表与加载器（subagent 工具见 `agent_runtime.agents.invocation`）。"""

from agent_runtime.agents.definition import (
    AgentDefinition,
    InputParameter,
    ModelSettings,
    PromptSettings,
    RunSettings,
    ToolSettings,
)
from agent_runtime.agents.inputs import render_template, validate_inputs
from agent_runtime.agents.loader import load_agent_file, load_agents_from_dir
from agent_runtime.agents.registry import AgentRegistry

__all__ = [
    "AgentDefinition",
    "AgentRegistry",
    "InputParameter",
    "ModelSettings",
    "PromptSettings",
    "RunSettings",
    "ToolSettings",
    "load_agent_file",
    "load_agents_from_dir",
    "render_template",
    "validate_inputs",
]
