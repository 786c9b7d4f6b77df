"""确认门禁与持久化审批规则。"""

from agent_runtime.safety.approval_store import ApprovalRule, ApprovalRuleType, ApprovalStore
from agent_runtime.safety.gate import (
    ConfirmationDecision,
    ConfirmationGate,
    ConfirmationOutcome,
    ConfirmationRequest,
    GateDecision,
)

__all__ = [
    "ApprovalRule",
    "ApprovalRuleType",
    "ApprovalStore",
    "ConfirmationDecision",
    "ConfirmationGate",
    "ConfirmationOutcome",
    "ConfirmationRequest",
    "GateDecision",
]
