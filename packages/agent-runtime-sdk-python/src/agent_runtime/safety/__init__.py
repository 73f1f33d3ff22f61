"""
Safety（ApprovalGate + Approval providers + 自由文本解释器）。
"""

from __future__ import annotations

from agent_runtime.safety.approvals import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalProvider,
    ApprovalRequest,
    CallbackApprovalProvider,
    InteractiveApprovalProvider,
    StaticApprovalProvider,
)
from agent_runtime.safety.gate import ApprovalGate
from agent_runtime.safety.interpreters import KeywordApprovalInterpreter, LlmApprovalInterpreter
from agent_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalProvider",
    "ApprovalRequest",
    "ApprovalRule",
    "CallbackApprovalProvider",
    "InteractiveApprovalProvider",
    "KeywordApprovalInterpreter",
    "LlmApprovalInterpreter",
    "RuleBasedApprovalProvider",
    "StaticApprovalProvider",
]
