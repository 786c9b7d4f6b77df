"""
ApprovalStore：跨会话持久化的“总是允许”规则。

动机：
- 用户在确认时选择 allow-and-remember 后，同类调用不应再次打扰；
- 规则按类型匹配：tool_name / tool_kind / command_pattern / mcp_server。

约束：
- 规则列表整体存放在单个 storage key（`persistent_approvals`）下，所有修改均为 read-modify-write；
- 本类不加锁：并发写入的串行化由 ConfirmationGate 负责（single writer）；
- `(type, value)` 唯一：`add_rule` 遇到重复时不写入；
- 规则变更通过注入的 logger 记录，本层不做任何额外文件 I/O。
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from agent_runtime.core.utils import now_ms
from agent_runtime.state.storage import KeyValueStorage

APPROVAL_RULES_KEY = "persistent_approvals"

# command_pattern 的通配后缀：`npm *` 匹配 `npm` 本身以及任何 `npm <args>`
WILDCARD_SUFFIX = " *"


class ApprovalRuleType(str, Enum):
    """规则类型。"""

    TOOL_KIND = "tool_kind"
    TOOL_NAME = "tool_name"
    MCP_SERVER = "mcp_server"
    COMMAND_PATTERN = "command_pattern"


class ApprovalRule(BaseModel):
    """
    审批规则（持久化形态）。

    字段：
    - id：规则 id（创建时生成）
    - type：规则类型
    - value：匹配值（例如 `edit`、`shell`、`my-server`、`npm *`）
    - description：人类可读说明
    - created_at：创建时间（epoch ms）
    - last_used：最近一次命中时间（epoch ms；从未命中为 None）
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    type: ApprovalRuleType
    value: str
    description: str = ""
    created_at: int
    last_used: Optional[int] = None


def command_matches(pattern: str, command: str) -> bool:
    """
    判断命令是否命中 command_pattern。

    规则：
    - 精确相等命中；
    - pattern 以 `" *"` 结尾时，命令等于前缀或以 `前缀 + 空格` 开头即命中
      （`npm *` 命中 `npm test`，不命中 `npmx install`）。
    """

    if pattern == command:
        return True
    if not pattern.endswith(WILDCARD_SUFFIX):
        return False
    prefix = pattern[: -len(WILDCARD_SUFFIX)]
    if not prefix:
        return False
    return command == prefix or command.startswith(prefix + " ")


def find_rule(rules: List[ApprovalRule], rule_type: ApprovalRuleType, value: str) -> Optional[ApprovalRule]:
    """在规则列表中查找 `(type, value)` 精确命中的规则。"""

    for r in rules:
        if r.type == rule_type and r.value == value:
            return r
    return None


def find_command_rule(rules: List[ApprovalRule], command: str) -> Optional[ApprovalRule]:
    """查找命中命令的 command_pattern 规则（先精确匹配，再通配匹配）。"""

    exact = find_rule(rules, ApprovalRuleType.COMMAND_PATTERN, command)
    if exact is not None:
        return exact
    for r in rules:
        if r.type == ApprovalRuleType.COMMAND_PATTERN and command_matches(r.value, command):
            return r
    return None


class ApprovalStore:
    """持久化审批规则的数据访问层。"""

    def __init__(self, storage: KeyValueStorage, *, observer: Optional[logging.Logger] = None) -> None:
        """
        创建 ApprovalStore。

        参数：
        - storage：持久化 key-value 存储
        - observer：可选 logger；规则变更以 debug 级别记录（默认使用模块 logger）
        """

        self._storage = storage
        self._log = observer or logging.getLogger(__name__)

    async def load_rules(self) -> List[ApprovalRule]:
        """读取全部规则（损坏条目跳过并记录 warning）。"""

        data = await self._storage.get(APPROVAL_RULES_KEY)
        raw_rules = data.get("rules") if isinstance(data, dict) else None
        if not isinstance(raw_rules, list):
            return []
        rules: List[ApprovalRule] = []
        for item in raw_rules:
            try:
                rules.append(ApprovalRule.model_validate(item))
            except ValidationError:
                self._log.warning("Skipping malformed approval rule: %r", item)
        return rules

    async def save_rules(self, rules: List[ApprovalRule]) -> None:
        """整体写回规则列表。"""

        self._log.debug("Saving %d approval rule(s)", len(rules))
        await self._storage.set(APPROVAL_RULES_KEY, {"rules": [r.model_dump(mode="json") for r in rules]})

    async def add_rule(self, rule_type: ApprovalRuleType, value: str, description: str = "") -> ApprovalRule:
        """
        新增规则（`(type, value)` 已存在时不写入）。

        返回：
        - 新建的规则，或已存在的同 `(type, value)` 规则
        """

        rules = await self.load_rules()
        existing = find_rule(rules, rule_type, value)
        if existing is not None:
            self._log.debug("Approval rule already exists: type=%s value=%s", rule_type.value, value)
            return existing
        created = now_ms()
        rule = ApprovalRule(
            id=f"{created}-{uuid.uuid4().hex[:9]}",
            type=rule_type,
            value=value,
            description=description,
            created_at=created,
        )
        rules.append(rule)
        await self.save_rules(rules)
        self._log.debug("Added approval rule id=%s type=%s value=%s", rule.id, rule_type.value, value)
        return rule

    async def remove_rule(self, rule_id: str) -> bool:
        """按 id 移除规则；返回是否有规则被移除。"""

        rules = await self.load_rules()
        kept = [r for r in rules if r.id != rule_id]
        if len(kept) == len(rules):
            return False
        await self.save_rules(kept)
        self._log.debug("Removed approval rule id=%s", rule_id)
        return True

    async def clear_all(self) -> None:
        """清空全部规则。"""

        await self._storage.set(APPROVAL_RULES_KEY, {"rules": []})
        self._log.debug("Cleared all approval rules")

    async def update_last_used(self, rule_id: str) -> None:
        """更新规则的 last_used（规则不存在时 no-op）。"""

        rules = await self.load_rules()
        for r in rules:
            if r.id == rule_id:
                r.last_used = now_ms()
                await self.save_rules(rules)
                return

    async def _touch(self, rule: Optional[ApprovalRule]) -> Optional[ApprovalRule]:
        """命中规则时刷新 last_used 并返回规则。"""

        if rule is not None:
            await self.update_last_used(rule.id)
        return rule

    async def is_tool_approved(self, tool_name: str) -> Optional[ApprovalRule]:
        """tool_name 规则查询（命中时刷新 last_used）。"""

        return await self._touch(find_rule(await self.load_rules(), ApprovalRuleType.TOOL_NAME, tool_name))

    async def is_kind_approved(self, kind: str) -> Optional[ApprovalRule]:
        """tool_kind 规则查询（命中时刷新 last_used）。"""

        return await self._touch(find_rule(await self.load_rules(), ApprovalRuleType.TOOL_KIND, kind))

    async def is_mcp_server_approved(self, server_name: str) -> Optional[ApprovalRule]:
        """mcp_server 规则查询（命中时刷新 last_used）。"""

        return await self._touch(find_rule(await self.load_rules(), ApprovalRuleType.MCP_SERVER, server_name))

    async def is_command_approved(self, command: str) -> Optional[ApprovalRule]:
        """command_pattern 规则查询（命中时刷新 last_used）。"""

        return await self._touch(find_command_rule(await self.load_rules(), command))

    async def approve_kind(self, kind: str, description: Optional[str] = None) -> ApprovalRule:
        """总是允许某一工具类别。"""

        return await self.add_rule(ApprovalRuleType.TOOL_KIND, kind, description or f"Always allow {kind} operations")

    async def approve_tool(self, tool_name: str, description: Optional[str] = None) -> ApprovalRule:
        """总是允许某个工具。"""

        return await self.add_rule(ApprovalRuleType.TOOL_NAME, tool_name, description or f"Always allow {tool_name} tool")

    async def approve_mcp_server(self, server_name: str, description: Optional[str] = None) -> ApprovalRule:
        """总是允许某个 MCP server 的工具。"""

        return await self.add_rule(
            ApprovalRuleType.MCP_SERVER, server_name, description or f"Always allow MCP server: {server_name}"
        )

    async def approve_command(self, command: str, description: Optional[str] = None) -> ApprovalRule:
        """总是允许某条命令（或 `prefix *` 模式）。"""

        return await self.add_rule(
            ApprovalRuleType.COMMAND_PATTERN, command, description or f"Always allow command: {command}"
        )
