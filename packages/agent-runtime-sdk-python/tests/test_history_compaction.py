from __future__ import annotations

import asyncio
from typing import List

import pytest

from agent_runtime.core.errors import UserError
from agent_runtime.core.messages import Message, ToolCallRequest
from agent_runtime.prompts.history import (
    CompactionState,
    NoCompaction,
    TokenBudgetCompaction,
    WindowCompaction,
    estimate_tokens,
    window_slice,
)


def _conversation(pairs: int) -> List[Message]:
    out = [Message.system("You are a helpful assistant.")]
    for i in range(pairs):
        out.append(Message.user(f"question {i}"))
        out.append(Message.assistant(f"answer {i}"))
    return out


def test_no_compaction_returns_everything() -> None:
    msgs = _conversation(3)
    result = asyncio.run(NoCompaction().compact(msgs, CompactionState()))
    assert result.messages == msgs
    assert not result.changed


def test_window_keeps_system_and_most_recent_messages() -> None:
    msgs = _conversation(5)
    state = CompactionState()
    result = asyncio.run(WindowCompaction(max_messages=4).compact(msgs, state))

    assert [m.content for m in result.messages] == [
        "You are a helpful assistant.",
        "question 3",
        "answer 3",
        "question 4",
        "answer 4",
    ]
    assert result.dropped == 6
    assert state.compactions == 1
    assert len(msgs) == 11


def test_window_is_idempotent() -> None:
    msgs = _conversation(6)
    once = window_slice(msgs, 5)
    twice = window_slice(once, 5)
    assert once == twice


def test_window_drops_leading_orphan_tool_results() -> None:
    call = ToolCallRequest(id="c1", name="get_weather", arguments={"city": "Tokyo"})
    msgs = [
        Message.system("sys"),
        Message.user("weather?"),
        Message.assistant(None, tool_calls=[call]),
        Message.tool_result(tool_call_id="c1", content='{"forecast": "sunny"}'),
        Message.assistant("It is sunny."),
    ]
    kept = window_slice(msgs, 2)
    assert [m.role for m in kept] == ["system", "assistant"]


def test_window_under_limit_is_unchanged() -> None:
    msgs = _conversation(1)
    result = asyncio.run(WindowCompaction(max_messages=10).compact(msgs, CompactionState()))
    assert result.messages == msgs
    assert not result.changed


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens(Message.user("abcde"), chars_per_token=4) == 2
    assert estimate_tokens(Message.user(""), chars_per_token=4) == 0


def test_token_budget_selects_newest_first_and_stops_at_first_overflow() -> None:
    msgs = [
        Message.system("ss"),
        Message.user("u"),
        Message.assistant("a" * 10),
        Message.user("v"),
    ]
    policy = TokenBudgetCompaction(max_tokens=5, cost_fn=lambda m: len(m.content or ""))
    result = asyncio.run(policy.compact(msgs, CompactionState()))

    assert [m.content for m in result.messages] == ["ss", "v"]
    assert policy.cost(result.messages) <= 5
    assert result.dropped == 2


def test_token_budget_keeps_everything_when_it_fits() -> None:
    msgs = _conversation(2)
    policy = TokenBudgetCompaction(max_tokens=10_000)
    result = asyncio.run(policy.compact(msgs, CompactionState()))
    assert result.messages == msgs


def test_token_budget_rejects_system_messages_over_budget() -> None:
    policy = TokenBudgetCompaction(max_tokens=3, cost_fn=lambda m: len(m.content or ""))
    with pytest.raises(UserError) as ei:
        asyncio.run(policy.compact([Message.system("way too long"), Message.user("hi")], CompactionState()))
    assert ei.value.code == "CONTEXT_BUDGET_TOO_SMALL"


def test_summary_cache_evicts_least_recently_used() -> None:
    state = CompactionState(summary_cache_size=2)
    state.remember_summary("a", "A")
    state.remember_summary("b", "B")
    assert state.cached_summary("a") == "A"
    state.remember_summary("c", "C")
    assert state.cached_summary("b") is None
    assert state.cached_summary("a") == "A"
    assert state.cached_summary("c") == "C"
