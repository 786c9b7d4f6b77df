"""
Bootstrap Layer（应用层启动：配置发现与依赖装配）。

设计目标：
- 保持核心无隐式 I/O：AgentExecutor 不会自己读配置或发现 overlay；
- 提供可选入口：CLI/服务可复用同一套装配逻辑。

overlay 顺序（后者覆盖前者）：
1) 内置默认配置
2) 调用方显式传入的 `config_paths`
3) `AGENT_RUNTIME_CONFIG`（逗号/分号分隔；相对路径相对 workspace_root）
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.agents.invocation import register_subagent_tools
from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.config.defaults import load_default_config_dict
from agent_runtime.config.loader import RuntimeConfig, _load_yaml_file, load_config_dicts
from agent_runtime.core.runtime_context import RuntimeContext
from agent_runtime.llm.protocol import ModelServiceFactory
from agent_runtime.safety.approval_store import ApprovalStore
from agent_runtime.safety.gate import ConfirmCallback, ConfirmationGate
from agent_runtime.state.checkpoints import CheckpointManager
from agent_runtime.state.storage import JsonFileStorage, KeyValueStorage
from agent_runtime.tools.base import BaseTool
from agent_runtime.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENT_RUNTIME_CONFIG"


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白与空项，保序）。"""

    parts: List[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def _resolve(workspace_root: Path, p: Any) -> Path:
    """相对路径以 workspace_root 为锚点解析。"""

    pp = Path(str(p)).expanduser()
    if not pp.is_absolute():
        pp = workspace_root / pp
    return pp.resolve()


def discover_overlay_paths(
    *,
    workspace_root: Path,
    config_paths: Iterable[Path] = (),
    env: Optional[Mapping[str, str]] = None,
) -> List[Path]:
    """
    返回 overlay 路径列表（显式路径在前，env 路径在后；按 canonical path 去重保序）。

    参数：
    - workspace_root：相对路径锚点
    - config_paths：调用方显式传入的 overlay
    - env：可选；替代 os.environ（测试使用）
    """

    ws = Path(workspace_root).resolve()
    overlays = [_resolve(ws, p) for p in config_paths]
    raw = _get_env_nonempty(CONFIG_ENV_VAR, env=env) or ""
    overlays.extend(_resolve(ws, p) for p in _split_paths(raw))

    seen: set = set()
    uniq: List[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def resolve_config(
    *,
    workspace_root: Path,
    config_paths: Iterable[Path] = (),
    env: Optional[Mapping[str, str]] = None,
) -> RuntimeConfig:
    """合并内置默认配置与 overlays，返回校验后的配置。"""

    dicts: List[Dict[str, Any]] = [load_default_config_dict()]
    for p in discover_overlay_paths(workspace_root=workspace_root, config_paths=config_paths, env=env):
        logger.debug("Loading config overlay %s", p)
        dicts.append(_load_yaml_file(p))
    return load_config_dicts(dicts)


def build_runtime(
    workspace_root: Path,
    model_service_factory: ModelServiceFactory,
    *,
    confirm: Optional[ConfirmCallback] = None,
    config_paths: Iterable[Path] = (),
    tools: Iterable[BaseTool] = (),
    builtin_agents: Iterable[AgentDefinition] = (),
    storage: Optional[KeyValueStorage] = None,
    env: Optional[Mapping[str, str]] = None,
) -> RuntimeContext:
    """
    装配一个可用的 RuntimeContext。

    参数：
    - workspace_root：工作区根目录（配置中的相对路径以此为锚点）
    - model_service_factory：按 definition 创建模型服务
    - confirm：可选确认回调（缺省时需要确认的调用一律拒绝）
    - config_paths：额外 YAML overlay
    - tools：要注册的工具
    - builtin_agents：内置 agent 定义（可被目录中的同名定义覆盖）
    - storage：可选；替代默认的 JSON 文件规则存储
    - env：可选；替代 os.environ
    """

    ws = Path(workspace_root).resolve()
    config = resolve_config(workspace_root=ws, config_paths=config_paths, env=env)

    if storage is None:
        storage = JsonFileStorage(_resolve(ws, config.safety.approval_store_path))
    store = ApprovalStore(storage, observer=logging.getLogger("agent_runtime.approvals"))
    gate = ConfirmationGate(
        store,
        confirm=confirm,
        mode=config.safety.mode,
        timeout_ms=config.safety.confirmation_timeout_ms,
    )

    tool_registry = ToolRegistry()
    for tool in tools:
        tool_registry.register(tool)

    agent_registry = AgentRegistry()
    agent_registry.initialize(
        builtins=builtin_agents,
        agent_dirs=[_resolve(ws, d) for d in config.agents.dirs],
    )

    runtime = RuntimeContext(
        tool_registry=tool_registry,
        agent_registry=agent_registry,
        gate=gate,
        model_service_factory=model_service_factory,
        config=config,
        workspace_root=ws,
        checkpoints=CheckpointManager(_resolve(ws, config.checkpoints.dir)),
    )
    register_subagent_tools(tool_registry, agent_registry, runtime)
    logger.info(
        "Runtime ready: %d tool(s), %d agent(s), safety.mode=%s",
        len(tool_registry.get_all_tool_names()),
        len(agent_registry.get_all_definitions()),
        config.safety.mode,
    )
    return runtime
