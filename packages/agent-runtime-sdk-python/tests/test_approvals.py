from __future__ import annotations

import asyncio

import pytest

from agent_runtime.core.messages import ToolCallRequest
from agent_runtime.llm.fake import FakeChatBackend, FakeChatCall
from agent_runtime.llm.protocol import ModelResponse
from agent_runtime.safety.approvals import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalRequest,
    CallbackApprovalProvider,
    InteractiveApprovalProvider,
    StaticApprovalProvider,
)
from agent_runtime.safety.gate import ApprovalGate
from agent_runtime.safety.interpreters import KeywordApprovalInterpreter, LlmApprovalInterpreter
from agent_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider
from agent_runtime.tools.protocol import RiskTier, ToolDefinition

_SEND_EMAIL = ToolDefinition(
    name="send_email",
    description="Send an email",
    risk_tier=RiskTier.REQUIRES_APPROVAL,
    executor=lambda args: {"sent": True},
)
_SAFE = ToolDefinition(name="get_time", description="Current time", executor=lambda args: "12:00")


def _decide(gate: ApprovalGate, definition: ToolDefinition = _SEND_EMAIL, call_id: str = "c1") -> ApprovalDecision:
    call = ToolCallRequest(id=call_id, name=definition.name, arguments={"to": "bob@example.com"})
    return asyncio.run(gate.decide(call, definition, {"to": "bob@example.com"}))


class TestKeywordInterpreter:
    @pytest.mark.parametrize(
        "reply",
        ["yes", "Yes!", "ok", "sure", "go ahead", "do it", "please proceed", "yep", "Yeah, send it."],
    )
    def test_affirmative_replies_approve(self, reply: str) -> None:
        outcome, _ = KeywordApprovalInterpreter().classify(reply)
        assert outcome == ApprovalOutcome.APPROVED

    @pytest.mark.parametrize(
        "reply",
        ["no", "No.", "don't", "Don’t do that", "stop", "cancel", "nevermind", "nope", "reject"],
    )
    def test_negative_replies_reject(self, reply: str) -> None:
        outcome, _ = KeywordApprovalInterpreter().classify(reply)
        assert outcome == ApprovalOutcome.REJECTED

    @pytest.mark.parametrize("reply", ["", "   ", "maybe later", "hmm", "what does it do?", "🤔"])
    def test_ambiguous_replies_reject(self, reply: str) -> None:
        outcome, rationale = KeywordApprovalInterpreter().classify(reply)
        assert outcome == ApprovalOutcome.REJECTED
        assert rationale

    def test_negation_wins_over_affirmation(self) -> None:
        outcome, _ = KeywordApprovalInterpreter().classify("yes, wait, no")
        assert outcome == ApprovalOutcome.REJECTED
        outcome, _ = KeywordApprovalInterpreter().classify("ok but do not send it")
        assert outcome == ApprovalOutcome.REJECTED

    @pytest.mark.parametrize("reply", ["sure, why not", "why not?", "ok, not now"])
    def test_bare_not_counts_as_negation(self, reply: str) -> None:
        outcome, rationale = KeywordApprovalInterpreter().classify(reply)
        assert outcome == ApprovalOutcome.REJECTED
        assert rationale is not None and rationale.startswith("reply matched rejection phrase")

    def test_words_are_matched_whole(self) -> None:
        # "know" contains "no" but is not a rejection; it is still not an approval
        outcome, rationale = KeywordApprovalInterpreter().classify("I know")
        assert outcome == ApprovalOutcome.REJECTED
        assert rationale == "ambiguous reply"


class TestLlmInterpreter:
    def test_exact_approved_verdict_approves(self) -> None:
        backend = FakeChatBackend([ModelResponse.final(" Approved. ")])
        outcome, _ = asyncio.run(LlmApprovalInterpreter(backend=backend, model="m").interpret("sounds good"))
        assert outcome == ApprovalOutcome.APPROVED
        request = backend.requests[0]
        assert request.messages[0].role == "system"
        assert request.messages[1].content == "sounds good"
        assert request.tools == ()

    @pytest.mark.parametrize("verdict", ["REJECTED", "", "I think APPROVED", "NOT APPROVED"])
    def test_anything_else_rejects(self, verdict: str) -> None:
        backend = FakeChatBackend([ModelResponse.final(verdict)])
        outcome, _ = asyncio.run(LlmApprovalInterpreter(backend=backend, model="m").interpret("hmm"))
        assert outcome == ApprovalOutcome.REJECTED

    def test_backend_failure_rejects(self) -> None:
        backend = FakeChatBackend([FakeChatCall(error=RuntimeError("down"))])
        outcome, rationale = asyncio.run(LlmApprovalInterpreter(backend=backend, model="m").interpret("yes"))
        assert outcome == ApprovalOutcome.REJECTED
        assert rationale is not None and "down" in rationale


class TestApprovalGate:
    def test_safe_tools_skip_the_provider(self) -> None:
        provider = StaticApprovalProvider(False)
        decision = _decide(ApprovalGate(provider), definition=_SAFE)
        assert decision.approved
        assert provider.requests == []

    def test_static_provider_decisions(self) -> None:
        assert _decide(ApprovalGate(StaticApprovalProvider(True))).approved
        assert not _decide(ApprovalGate(StaticApprovalProvider(False))).approved

    def test_no_provider_rejects(self) -> None:
        decision = _decide(ApprovalGate())
        assert decision.outcome == ApprovalOutcome.REJECTED

    def test_boolean_oracle_is_normalized(self) -> None:
        decision = _decide(ApprovalGate(CallbackApprovalProvider(lambda req: True)), call_id="c7")
        assert decision.approved
        assert decision.tool_call_id == "c7"

    def test_provider_exception_rejects(self) -> None:
        def _boom(req: ApprovalRequest) -> bool:
            raise RuntimeError("ui crashed")

        decision = _decide(ApprovalGate(CallbackApprovalProvider(_boom)))
        assert not decision.approved
        assert decision.rationale is not None and "ui crashed" in decision.rationale

    def test_unrecognized_result_rejects(self) -> None:
        decision = _decide(ApprovalGate(CallbackApprovalProvider(lambda req: "yes")))  # type: ignore[arg-type,return-value]
        assert not decision.approved

    def test_timeout_rejects_only_when_configured(self) -> None:
        async def _slow(req: ApprovalRequest) -> bool:
            await asyncio.sleep(0.2)
            return True

        assert not _decide(ApprovalGate(CallbackApprovalProvider(_slow), timeout_ms=20)).approved
        assert _decide(ApprovalGate(CallbackApprovalProvider(_slow))).approved

    def test_mismatched_decision_id_is_rewritten(self) -> None:
        decision = _decide(
            ApprovalGate(
                CallbackApprovalProvider(
                    lambda req: ApprovalDecision(tool_call_id="other", outcome=ApprovalOutcome.APPROVED, rationale="fine")
                )
            ),
            call_id="c3",
        )
        assert decision.tool_call_id == "c3"
        assert decision.approved and decision.rationale == "fine"


class TestInteractiveProvider:
    def test_sync_ask_runs_and_reply_is_interpreted(self) -> None:
        prompts = []

        def _ask(prompt: str) -> str:
            prompts.append(prompt)
            return "go ahead"

        provider = InteractiveApprovalProvider(ask=_ask, interpreter=KeywordApprovalInterpreter())
        decision = _decide(ApprovalGate(provider))
        assert decision.approved
        assert "send_email" in prompts[0]

    def test_async_ask_with_ambiguous_reply_rejects(self) -> None:
        async def _ask(prompt: str) -> str:
            return "not sure"

        provider = InteractiveApprovalProvider(ask=_ask, interpreter=KeywordApprovalInterpreter())
        assert not _decide(ApprovalGate(provider)).approved


class TestRuleBasedProvider:
    def _request(self, tool: str, **arguments) -> ApprovalRequest:  # type: ignore[no-untyped-def]
        return ApprovalRequest.for_call(tool_call_id="c1", tool=tool, arguments=arguments)

    def test_default_is_fail_closed(self) -> None:
        provider = RuleBasedApprovalProvider(rules=[])
        decision = asyncio.run(provider.request_approval(request=self._request("send_email")))
        assert decision.outcome == ApprovalOutcome.REJECTED

    def test_first_matching_rule_wins(self) -> None:
        provider = RuleBasedApprovalProvider(
            rules=[
                ApprovalRule(
                    tool="send_email",
                    condition=lambda r: str(r.arguments.get("to", "")).endswith("@example.com"),
                    outcome=ApprovalOutcome.APPROVED,
                ),
                ApprovalRule(tool="*", outcome=ApprovalOutcome.REJECTED, rationale="catch-all"),
            ]
        )
        ok = asyncio.run(provider.request_approval(request=self._request("send_email", to="bob@example.com")))
        assert ok.outcome == ApprovalOutcome.APPROVED
        denied = asyncio.run(provider.request_approval(request=self._request("send_email", to="eve@evil.test")))
        assert denied.outcome == ApprovalOutcome.REJECTED
        assert denied.rationale == "catch-all"

    def test_raising_condition_counts_as_no_match(self) -> None:
        def _bad(req: ApprovalRequest) -> bool:
            raise KeyError("x")

        provider = RuleBasedApprovalProvider(
            rules=[ApprovalRule(tool="send_email", condition=_bad, outcome=ApprovalOutcome.APPROVED)],
        )
        decision = asyncio.run(provider.request_approval(request=self._request("send_email")))
        assert decision.outcome == ApprovalOutcome.REJECTED
        assert decision.rationale == "no approval rule matched"
