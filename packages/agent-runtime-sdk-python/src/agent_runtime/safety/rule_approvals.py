"""
规则审批（RuleBasedApprovalProvider）。

动机：
- 无人值守场景不应“等待人类回复”，而应使用程序化规则做审批决策；
- 默认必须 fail-closed：任何未命中规则的请求一律拒绝；
- condition 抛异常时视为不匹配，避免 fail-open 风险。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from agent_runtime.safety.approvals import ApprovalDecision, ApprovalOutcome, ApprovalRequest

logger = logging.getLogger(__name__)


ApprovalCondition = Callable[[ApprovalRequest], bool]


@dataclass(frozen=True)
class ApprovalRule:
    """
    审批规则。

    字段：
    - tool：工具名（精确匹配；`*` 匹配任意工具）
    - condition：可选谓词；返回 True 表示命中；抛异常视为不命中
    - outcome：命中后的决策
    - rationale：可选理由（写入决策）
    """

    tool: str
    condition: Optional[ApprovalCondition] = None
    outcome: ApprovalOutcome = ApprovalOutcome.REJECTED
    rationale: Optional[str] = None


class RuleBasedApprovalProvider:
    """
    基于规则的程序化审批 Provider。

    约束：
    - 默认 fail-closed：无规则命中时返回 REJECTED；
    - 规则按顺序匹配，首个命中即返回。
    """

    def __init__(
        self,
        *,
        rules: List[ApprovalRule],
        default: ApprovalOutcome = ApprovalOutcome.REJECTED,
    ) -> None:
        self._rules = list(rules or [])
        self._default = default

    async def request_approval(self, *, request: ApprovalRequest) -> ApprovalDecision:
        tool = str(request.tool or "").strip()
        for rule in self._rules:
            rule_tool = str(rule.tool or "").strip()
            if rule_tool != "*" and rule_tool != tool:
                continue
            cond = rule.condition
            if cond is not None:
                try:
                    if not bool(cond(request)):
                        continue
                except Exception:
                    logger.debug("Approval rule condition raised an exception", exc_info=True)
                    continue
            return ApprovalDecision(
                tool_call_id=request.tool_call_id,
                outcome=rule.outcome,
                rationale=rule.rationale or f"matched rule for {rule_tool}",
            )
        return ApprovalDecision(
            tool_call_id=request.tool_call_id,
            outcome=self._default,
            rationale="no approval rule matched",
        )
