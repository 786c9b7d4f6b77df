"""
Agent 定义加载器（Markdown / YAML 文件）。

Markdown 约定：
- 可选 YAML frontmatter（`---` 包围），字段与 AgentDefinition 一致，另支持 `query` 简写；
- 首个 `#` 标题为显示名；文件名（`-` 转 `_`）为 name；
- 标题后的第一段为 description（缺省为 `Specialized agent for <display> tasks`）；
- 正文整体作为 system prompt；默认输入 `task`（必填字符串），query 为 `${task}`。

YAML 约定：
- 文件内容即 AgentDefinition 字段；name 缺省为文件名（`-` 转 `_`）。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.core.errors import AgentValidationError

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md",)
YAML_SUFFIXES = (".yaml", ".yml")

DEFAULT_TASK_INPUT: Dict[str, Any] = {
    "task": {
        "description": "The specific task or request for this agent to complete",
        "type": "string",
        "required": True,
    }
}
DEFAULT_RUN: Dict[str, Any] = {"max_turns": 10, "max_time_minutes": 5}


def _split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """
    将 Markdown 拆分为 frontmatter 与 body。

    约定：
    - frontmatter 必须以 `---` 开始并以第二个 `---` 结束
    - 若不满足：视为无 frontmatter（返回空 dict + 原文 body）
    """

    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return {}, text

    fm_lines: List[str] = []
    end_idx = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            end_idx = i
            break
        fm_lines.append(lines[i])
    if end_idx is None:
        return {}, text

    body = "".join(lines[end_idx + 1 :])
    try:
        obj = yaml.safe_load("".join(fm_lines)) or {}
    except yaml.YAMLError:
        logger.warning("Ignoring malformed agent frontmatter")
        obj = {}
    if not isinstance(obj, dict):
        obj = {}
    return obj, body


def _name_from_path(path: Path) -> str:
    """文件名 → agent name（去扩展名，`-` 转 `_`）。"""

    return path.stem.replace("-", "_")


def _first_paragraph(lines: List[str]) -> str:
    """提取标题之后的第一段文字（遇到 `##` 标题停止）。"""

    collected: List[str] = []
    for line in lines:
        s = line.strip()
        if s.startswith("##"):
            break
        if not s:
            if collected:
                break
            continue
        collected.append(s)
    return " ".join(collected).strip()


def _normalize_shorthands(data: Dict[str, Any]) -> None:
    """展开简写：`tools: [..]` → `{tools: [..]}`，`model: name` → `{model: name}`。"""

    if isinstance(data.get("tools"), list):
        data["tools"] = {"tools": data["tools"]}
    if isinstance(data.get("model"), str):
        data["model"] = {"model": data["model"]}


def _build(data: Dict[str, Any], path: Path) -> AgentDefinition:
    """校验并构造 AgentDefinition（失败抛 AgentValidationError）。"""

    _normalize_shorthands(data)
    data["source"] = str(path)
    try:
        return AgentDefinition.model_validate(data)
    except ValidationError as e:
        raise AgentValidationError(
            f"invalid agent definition: {path}",
            details={"path": str(path), "errors": e.errors(include_url=False, include_context=False)},
        ) from e


def parse_markdown_agent(content: str, path: Path) -> Optional[AgentDefinition]:
    """
    解析 Markdown agent 定义。

    返回：
    - AgentDefinition；文件既无标题也无 frontmatter name 时返回 None
    """

    fm, body = _split_frontmatter(content)
    lines = body.strip().splitlines()

    display_name: Optional[str] = None
    rest = lines
    if lines and lines[0].strip().startswith("#"):
        display_name = lines[0].strip().lstrip("#").strip()
        rest = lines[1:]
    if display_name is None and not fm.get("name") and not fm.get("display_name"):
        logger.warning("Agent file %s doesn't start with a heading", path)
        return None

    data: Dict[str, Any] = {
        "name": _name_from_path(path),
        "inputs": dict(DEFAULT_TASK_INPUT),
        "run": dict(DEFAULT_RUN),
        "prompt": {"system_prompt": body.strip(), "query": "${task}"},
    }
    if display_name:
        data["display_name"] = display_name

    query = fm.pop("query", None)
    system_prompt = fm.pop("system_prompt", None)
    data.update(fm)
    if query is not None or system_prompt is not None:
        prompt = dict(data["prompt"])
        if query is not None:
            prompt["query"] = str(query)
        if system_prompt is not None:
            prompt["system_prompt"] = str(system_prompt)
        data["prompt"] = prompt

    if not data.get("description"):
        label = str(data.get("display_name") or data["name"])
        data["description"] = _first_paragraph(rest) or f"Specialized agent for {label.lower()} tasks"
    return _build(data, path)


def load_yaml_agent(path: Path) -> AgentDefinition:
    """加载 YAML agent 定义。"""

    try:
        obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise AgentValidationError(f"agent file is not valid YAML: {path}", details={"path": str(path)}) from e
    if not isinstance(obj, dict):
        raise AgentValidationError(f"agent file root must be a mapping: {path}", details={"path": str(path)})
    data = dict(obj)
    data.setdefault("name", _name_from_path(path))
    return _build(data, path)


def load_agent_file(path: Path) -> Optional[AgentDefinition]:
    """按扩展名加载单个 agent 文件（不支持的扩展名返回 None）。"""

    p = Path(path)
    if p.suffix in MARKDOWN_SUFFIXES:
        return parse_markdown_agent(p.read_text(encoding="utf-8"), p)
    if p.suffix in YAML_SUFFIXES:
        return load_yaml_agent(p)
    return None


def load_agents_from_dir(agents_dir: Path) -> List[AgentDefinition]:
    """
    加载目录下所有 agent 定义（按文件名排序）。

    说明：
    - 目录不存在时返回空列表；
    - 单个文件失败只记录 warning 并跳过。
    """

    d = Path(agents_dir)
    if not d.is_dir():
        logger.debug("No agents directory found at %s", d)
        return []

    agents: List[AgentDefinition] = []
    for p in sorted(d.iterdir()):
        if not p.is_file() or p.suffix not in MARKDOWN_SUFFIXES + YAML_SUFFIXES:
            continue
        try:
            agent = load_agent_file(p)
        except (AgentValidationError, OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to load agent from %s: %s", p, e)
            continue
        if agent is not None:
            agents.append(agent)
            logger.debug("Loaded agent %r from %s", agent.name, p.name)
    return agents
