"""ApprovalGate：在 executor 执行前为受控 tool call 取得审批决策。"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, Optional

from agent_runtime.core.messages import ToolCallRequest
from agent_runtime.safety.approvals import ApprovalDecision, ApprovalOutcome, ApprovalProvider, ApprovalRequest
from agent_runtime.tools.protocol import ToolDefinition

logger = logging.getLogger(__name__)


class ApprovalGate:
    """
    审批门禁。

    约束：
    - risk_tier=none 的工具不询问 provider，直接放行；
    - provider 异常、返回值不可识别、超时 → rejected（fail-closed）；
    - 仅在显式配置 `timeout_ms` 时施加超时；交互式审批默认无限等待；
    - 取消（CancelledError）不吞掉，向上传播。
    """

    def __init__(self, provider: Optional[ApprovalProvider] = None, *, timeout_ms: Optional[int] = None) -> None:
        """
        参数：
        - provider：决策来源；为 None 时所有受控调用都被拒绝
        - timeout_ms：可选的等待上限（毫秒）
        """

        self._provider = provider
        self._timeout_ms = timeout_ms

    @property
    def provider(self) -> Optional[ApprovalProvider]:
        return self._provider

    async def decide(
        self,
        call: ToolCallRequest,
        definition: ToolDefinition,
        arguments: Dict[str, Any],
    ) -> ApprovalDecision:
        """为单个 tool call 产出一次决策（不重试）。"""

        if not definition.requires_approval:
            return ApprovalDecision(tool_call_id=call.id, outcome=ApprovalOutcome.APPROVED, rationale="no approval required")
        if self._provider is None:
            return ApprovalDecision(
                tool_call_id=call.id,
                outcome=ApprovalOutcome.REJECTED,
                rationale="no approval provider configured",
            )

        request = ApprovalRequest.for_call(tool_call_id=call.id, tool=definition.name, arguments=arguments)
        try:
            raw = self._provider.request_approval(request=request)
            if inspect.isawaitable(raw):
                if self._timeout_ms is not None:
                    raw = await asyncio.wait_for(raw, timeout=self._timeout_ms / 1000.0)
                else:
                    raw = await raw
        except asyncio.TimeoutError:
            return ApprovalDecision(tool_call_id=call.id, outcome=ApprovalOutcome.REJECTED, rationale="approval timed out")
        except Exception as e:
            logger.warning("Approval provider failed for tool %r; rejecting", definition.name, exc_info=True)
            return ApprovalDecision(
                tool_call_id=call.id,
                outcome=ApprovalOutcome.REJECTED,
                rationale=f"approval provider error: {e}",
            )
        return self._normalize(call.id, raw)

    @staticmethod
    def _normalize(tool_call_id: str, raw: Any) -> ApprovalDecision:
        if isinstance(raw, ApprovalDecision):
            if raw.tool_call_id == tool_call_id:
                return raw
            return ApprovalDecision(tool_call_id=tool_call_id, outcome=raw.outcome, rationale=raw.rationale)
        if isinstance(raw, bool):
            return ApprovalDecision(
                tool_call_id=tool_call_id,
                outcome=ApprovalOutcome.APPROVED if raw else ApprovalOutcome.REJECTED,
            )
        return ApprovalDecision(
            tool_call_id=tool_call_id,
            outcome=ApprovalOutcome.REJECTED,
            rationale=f"unrecognized approval result: {type(raw).__name__}",
        )
