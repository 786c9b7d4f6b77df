"""
RuntimeContext：一组 executor 共享的运行时依赖（显式注入，不使用全局单例）。

说明：
- 父 agent 与其 subagent 共享同一个 RuntimeContext（同一注册表、同一确认门禁、同一规则存储）；
- 单次 run 的可变状态（history、turn 计数）由 AgentExecutor 自己持有，不放在这里。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from agent_runtime.agents.registry import AgentRegistry
from agent_runtime.config.loader import RuntimeConfig
from agent_runtime.llm.protocol import ModelServiceFactory
from agent_runtime.safety.gate import ConfirmationGate
from agent_runtime.state.checkpoints import CheckpointManager
from agent_runtime.tools.registry import ToolRegistry


@dataclass
class RuntimeContext:
    """
    共享运行时依赖。

    字段：
    - tool_registry / agent_registry：注册表
    - gate：确认门禁（持有规则存储与写锁）
    - model_service_factory：按 definition 创建模型服务
    - config：已合并的配置（提供 run.* 默认值）
    - workspace_root：相对路径锚点
    - checkpoints：可选；checkpoint 管理器
    """

    tool_registry: ToolRegistry
    agent_registry: AgentRegistry
    gate: ConfirmationGate
    model_service_factory: ModelServiceFactory
    config: RuntimeConfig = field(default_factory=RuntimeConfig)
    workspace_root: Path = field(default_factory=Path.cwd)
    checkpoints: Optional[CheckpointManager] = None
