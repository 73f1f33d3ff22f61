"""
Approvals（审批）协议与内置 Provider。

说明：
- SDK 不直接读 stdin/弹窗；决策来源通过 `ApprovalProvider` 注入；
- Provider 可返回 `ApprovalDecision`，也可直接返回 bool（gate 负责规范化）；
- 交互式 Provider 的等待时间不设上限，超时只在配置了 `approval_timeout_ms` 时由 gate 施加。
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.core.utils import canonical_json


class ApprovalOutcome(str, Enum):
    """审批结果（只有两种）。"""

    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalDecision(BaseModel):
    """
    审批决策（每个受控 tool call 恰好产生一次，不会自动重试）。

    字段：
    - tool_call_id：关联的 tool call
    - outcome：approved/rejected
    - rationale：可选理由（拒绝时回注给模型）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    tool_call_id: str
    outcome: ApprovalOutcome
    rationale: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.outcome == ApprovalOutcome.APPROVED


class ApprovalRequest(BaseModel):
    """
    审批请求（面向 UI/人类/规则）。

    字段：
    - tool_call_id：关联的 tool call
    - tool：工具名
    - arguments：校验后的参数
    - summary：人类可读摘要
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    tool_call_id: str
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    summary: str = ""

    @classmethod
    def for_call(cls, *, tool_call_id: str, tool: str, arguments: Dict[str, Any]) -> "ApprovalRequest":
        return cls(
            tool_call_id=tool_call_id,
            tool=tool,
            arguments=dict(arguments),
            summary=f"Approve {tool} with arguments {canonical_json(arguments)}?",
        )


ProviderResult = Union[ApprovalDecision, bool]


@runtime_checkable
class ApprovalProvider(Protocol):
    """
    审批适配层。

    约束：
    - 返回 ApprovalDecision 或 bool；
    - 抛出的异常一律按“拒绝”处理（fail-closed，由 gate 负责）。
    """

    async def request_approval(self, *, request: ApprovalRequest) -> ProviderResult:
        ...


class StaticApprovalProvider:
    """固定决策（测试/无人值守场景：全部放行或全部拒绝）。"""

    def __init__(self, approve: bool, *, rationale: Optional[str] = None) -> None:
        self._approve = bool(approve)
        self._rationale = rationale
        self.requests: list[ApprovalRequest] = []

    async def request_approval(self, *, request: ApprovalRequest) -> ApprovalDecision:
        self.requests.append(request)
        return ApprovalDecision(
            tool_call_id=request.tool_call_id,
            outcome=ApprovalOutcome.APPROVED if self._approve else ApprovalOutcome.REJECTED,
            rationale=self._rationale,
        )


BooleanOracle = Callable[[ApprovalRequest], Union[bool, ApprovalDecision, Awaitable[Union[bool, ApprovalDecision]]]]


class CallbackApprovalProvider:
    """
    直接布尔 oracle：把回调函数适配为 Provider。

    说明：
    - 回调可以是同步或 async；返回 bool 或 ApprovalDecision。
    """

    def __init__(self, oracle: BooleanOracle) -> None:
        self._oracle = oracle

    async def request_approval(self, *, request: ApprovalRequest) -> ProviderResult:
        out = self._oracle(request)
        if inspect.isawaitable(out):
            out = await out
        return out  # type: ignore[return-value]


class InteractiveApprovalProvider:
    """
    交互式审批：向人提问，拿到自由文本回复后交给解释器映射为决策。

    参数：
    - ask：`(prompt) -> reply`，同步（如 `input`，在线程中执行）或 async
    - interpreter：自由文本解释器（KeywordApprovalInterpreter/LlmApprovalInterpreter）
    """

    def __init__(self, *, ask: Callable[[str], Any], interpreter: Any) -> None:
        self._ask = ask
        self._interpreter = interpreter

    async def request_approval(self, *, request: ApprovalRequest) -> ApprovalDecision:
        if inspect.iscoroutinefunction(self._ask):
            reply = await self._ask(request.summary)
        else:
            reply = await asyncio.to_thread(self._ask, request.summary)
        outcome, rationale = await self._interpreter.interpret(str(reply or ""))
        return ApprovalDecision(tool_call_id=request.tool_call_id, outcome=outcome, rationale=rationale)
