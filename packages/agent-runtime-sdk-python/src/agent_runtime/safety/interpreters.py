"""
自由文本审批解释器（free-text → approved/rejected）。

约束：
- 映射必须是全函数：任意输入都得到一个决策；
- 含糊、无法识别或解释过程出错时一律判为 rejected（“不清楚”即“不同意”）。
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, FrozenSet, Optional, Protocol, Tuple

from agent_runtime.core.messages import Message
from agent_runtime.safety.approvals import ApprovalOutcome

if TYPE_CHECKING:
    from agent_runtime.llm.protocol import ChatBackend

logger = logging.getLogger(__name__)

Interpretation = Tuple[ApprovalOutcome, Optional[str]]

APPROVAL_INTERPRETER_PROMPT = """You are an approval interpreter.
The user was asked whether an action may proceed. Classify their reply.

Examples of approval: yes, ok, sure, go ahead, do it, please proceed, yep, yeah, approve
Examples of rejection: no, don't, stop, cancel, nevermind, nope, reject

Respond with exactly one word: APPROVED or REJECTED.
If the reply is unclear, respond REJECTED."""

DEFAULT_YES_PHRASES: FrozenSet[str] = frozenset(
    {
        "yes",
        "y",
        "ok",
        "okay",
        "sure",
        "go ahead",
        "do it",
        "proceed",
        "please proceed",
        "yep",
        "yeah",
        "yup",
        "approve",
        "approved",
        "confirm",
        "confirmed",
        "affirmative",
        "send it",
    }
)

DEFAULT_NO_PHRASES: FrozenSet[str] = frozenset(
    {
        "no",
        "n",
        "not",  # 否定词优先：“sure, why not” 判为 rejected
        "don't",
        "do not",
        "dont",
        "stop",
        "cancel",
        "nevermind",
        "never mind",
        "nope",
        "nah",
        "reject",
        "rejected",
        "deny",
        "abort",
        "wait",
        "hold on",
    }
)

_WORD_RE = re.compile(r"[a-z']+")


def _normalize(text: str) -> str:
    lowered = (text or "").lower().replace("’", "'")
    return " ".join(_WORD_RE.findall(lowered))


def _contains_phrase(normalized: str, phrase: str) -> bool:
    return f" {phrase} " in f" {normalized} "


class ApprovalInterpreter(Protocol):
    async def interpret(self, reply: str) -> Interpretation:
        ...


class KeywordApprovalInterpreter:
    """
    确定性关键词解释器（规则匹配，不依赖模型）。

    规则：
    - 命中任何否定短语 → rejected（否定优先）；
    - 否则命中任何肯定短语 → approved；
    - 都未命中 → rejected（含糊）。
    """

    def __init__(
        self,
        *,
        yes_phrases: FrozenSet[str] = DEFAULT_YES_PHRASES,
        no_phrases: FrozenSet[str] = DEFAULT_NO_PHRASES,
    ) -> None:
        self._yes = frozenset(_normalize(p) for p in yes_phrases)
        self._no = frozenset(_normalize(p) for p in no_phrases)

    def classify(self, reply: str) -> Interpretation:
        normalized = _normalize(reply)
        if not normalized:
            return ApprovalOutcome.REJECTED, "empty reply"
        for phrase in self._no:
            if _contains_phrase(normalized, phrase):
                return ApprovalOutcome.REJECTED, f"reply matched rejection phrase: {phrase}"
        for phrase in self._yes:
            if _contains_phrase(normalized, phrase):
                return ApprovalOutcome.APPROVED, None
        return ApprovalOutcome.REJECTED, "ambiguous reply"

    async def interpret(self, reply: str) -> Interpretation:
        return self.classify(reply)


class LlmApprovalInterpreter:
    """
    模型解释器：让模型把自由文本回复归类为 APPROVED/REJECTED。

    说明：
    - 只有去掉空白与标点后恰好为 `APPROVED` 的回复才算批准；
    - 模型调用异常、空回复、任何其它文本都判为 rejected。
    """

    def __init__(self, *, backend: ChatBackend, model: str, system_prompt: str = APPROVAL_INTERPRETER_PROMPT) -> None:
        self._backend = backend
        self._model = model
        self._system_prompt = system_prompt

    async def interpret(self, reply: str) -> Interpretation:
        # llm.protocol 依赖 tools.protocol；延迟导入，safety 包可独立先加载。
        from agent_runtime.llm.protocol import ModelRequest

        request = ModelRequest(
            model=self._model,
            messages=(Message.system(self._system_prompt), Message.user(reply or "")),
        )
        try:
            response = await self._backend.complete(request)
        except Exception as e:
            logger.warning("Approval interpreter call failed; treating reply as rejected", exc_info=True)
            return ApprovalOutcome.REJECTED, f"interpreter error: {e}"

        verdict = re.sub(r"[^A-Z]", "", str(response.content or "").upper())
        if verdict == "APPROVED":
            return ApprovalOutcome.APPROVED, None
        if verdict == "REJECTED":
            return ApprovalOutcome.REJECTED, "interpreter rejected the reply"
        return ApprovalOutcome.REJECTED, "interpreter returned an unclear verdict"
