from __future__ import annotations

from agent_runtime.core.errors import MessageStoreError, RunawayToolLoopError, TurnCancelledError, UserError
from agent_runtime.core.loop_controller import LoopController
from agent_runtime.core.run_errors import RunErrorKind, classify_run_exception
from agent_runtime.llm.errors import ModelEndpointError


def test_rounds_reset_per_turn() -> None:
    loop = LoopController(max_tool_rounds=2)
    assert loop.next_turn_id() == "turn_1"
    assert loop.try_consume_round(["a"])
    assert loop.try_consume_round(["b"])
    assert not loop.try_consume_round(["c"])
    assert loop.rounds == 2
    assert loop.last_tools == ["c"]

    assert loop.next_turn_id() == "turn_2"
    assert loop.rounds == 0
    assert loop.try_consume_round(["a"])


def test_cancel_checker_fails_open() -> None:
    def _boom() -> bool:
        raise RuntimeError("checker broken")

    assert LoopController(max_tool_rounds=1, cancel_checker=_boom).is_cancelled() is False
    assert LoopController(max_tool_rounds=1, cancel_checker=lambda: True).is_cancelled() is True
    assert LoopController(max_tool_rounds=1).is_cancelled() is False


def test_classify_run_exceptions() -> None:
    runaway = classify_run_exception(RunawayToolLoopError(conversation_id="c", rounds=3, max_rounds=3, last_tools=["t"]))
    assert runaway.error_kind == RunErrorKind.RUNAWAY_TOOL_LOOP
    assert runaway.details["last_tools"] == ["t"]

    endpoint = classify_run_exception(ModelEndpointError("rate limited", model="m", retryable=True))
    assert endpoint.to_payload() == {
        "error_kind": "model_endpoint_error",
        "message": "rate limited",
        "retryable": True,
        "details": {"model": "m"},
    }

    assert classify_run_exception(UserError("bad", code="CONFIG_ERROR")).error_kind == RunErrorKind.CONFIG_ERROR
    assert classify_run_exception(MessageStoreError("x")).error_kind == RunErrorKind.STORE_INVARIANT
    assert classify_run_exception(TurnCancelledError(conversation_id="c")).error_kind == RunErrorKind.CANCELLED
    assert classify_run_exception(KeyError("k")).error_kind == RunErrorKind.UNKNOWN


def test_framework_errors_convert_to_issues() -> None:
    issue = UserError("bad budget", code="CONTEXT_BUDGET_TOO_SMALL", details={"max_tokens": 3}).to_issue()
    assert issue.code == "CONTEXT_BUDGET_TOO_SMALL"
    assert issue.message == "bad budget"
    assert issue.details == {"max_tokens": 3}
