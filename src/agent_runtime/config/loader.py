"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误被静默吞掉）。

默认配置：`agent_runtime/assets/default.yaml`（见 `config.defaults`）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class AgentsConfig(BaseModel):
    """agent 定义目录（相对路径以 workspace_root 为锚点）。"""

    model_config = ConfigDict(extra="forbid")

    dirs: List[str] = Field(default_factory=lambda: [".agent_runtime/agents"])


class RunConfig(BaseModel):
    """运行预算默认值（agent definition 未设置时使用）。"""

    model_config = ConfigDict(extra="forbid")

    max_turns: int = Field(default=10, ge=1)
    max_time_minutes: float = Field(default=5, gt=0)
    concurrent_tool_calls: bool = False


class SafetyConfig(BaseModel):
    """
    确认门禁配置。

    说明：
    - `mode=ask` 时依赖确认回调；回调缺失按 deny 处理（保守策略）；
    - `confirmation_timeout_ms` 限制等待确认的最长时间，超时按 deny 处理。
    """

    model_config = ConfigDict(extra="forbid")

    mode: Literal["allow", "ask", "deny"] = Field(default="ask")
    confirmation_timeout_ms: Optional[int] = Field(default=60_000, ge=1)
    approval_store_path: str = ".agent_runtime/approvals.json"


class CheckpointsConfig(BaseModel):
    """checkpoint 存放目录与裁剪参数。"""

    model_config = ConfigDict(extra="forbid")

    dir: str = ".agent_runtime/checkpoints"
    keep_last: int = Field(default=6, ge=1)
    max_output_chars: int = Field(default=500, ge=1)


class RuntimeConfig(BaseModel):
    """根配置。"""

    model_config = ConfigDict(extra="forbid")

    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    checkpoints: CheckpointsConfig = Field(default_factory=CheckpointsConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config file root must be a mapping: {path}")
    return data


def load_config_dicts(config_dicts: List[Dict[str, Any]]) -> RuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `RuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return RuntimeConfig.model_validate(merged)


def load_config(config_paths: List[Path]) -> RuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `RuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: List[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
