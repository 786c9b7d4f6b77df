"""
AgentRegistry：agent 定义注册表（name → AgentDefinition）。

说明：
- 显式对象，不使用全局单例；
- 同名重复注册覆盖旧定义（last-writer-wins，记录日志）；
- 内置定义先注册，目录加载的定义后注册，因此用户定义可以覆盖内置定义。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from agent_runtime.agents.definition import AgentDefinition
from agent_runtime.agents.loader import load_agents_from_dir

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Agent 定义注册表。"""

    def __init__(self) -> None:
        """创建空注册表。"""

        self._agents: Dict[str, AgentDefinition] = {}

    def register_agent(self, definition: AgentDefinition) -> bool:
        """
        注册定义。

        返回：
        - True：已注册；False：缺少 name 或 description，已忽略
        """

        if not definition.name.strip() or not definition.description.strip():
            logger.warning("Skipping invalid agent definition. Missing name or description.")
            return False
        if definition.name in self._agents:
            logger.info("Overriding agent %r", definition.name)
        self._agents[definition.name] = definition
        return True

    def get_definition(self, name: str) -> Optional[AgentDefinition]:
        """按名称查找定义。"""

        return self._agents.get(name)

    def get_all_definitions(self) -> List[AgentDefinition]:
        """按注册顺序返回全部定义。"""

        return list(self._agents.values())

    def initialize(
        self,
        *,
        builtins: Iterable[AgentDefinition] = (),
        agent_dirs: Iterable[Path] = (),
    ) -> None:
        """
        加载内置定义与目录中的定义。

        参数：
        - builtins：内置定义（先注册）
        - agent_dirs：定义目录（按顺序加载，后者覆盖前者）
        """

        for definition in builtins:
            self.register_agent(definition)
        for d in agent_dirs:
            loaded = load_agents_from_dir(Path(d))
            for definition in loaded:
                self.register_agent(definition)
            if loaded:
                logger.info("Loaded %d agent definition(s) from %s", len(loaded), d)
        logger.debug("Agent registry initialized with %d agent(s)", len(self._agents))
