from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import pytest

from agent_runtime.core.errors import SummarizationFailure
from agent_runtime.core.messages import Message, ToolCallRequest
from agent_runtime.llm.fake import FakeChatBackend, FakeChatCall
from agent_runtime.llm.protocol import ModelResponse
from agent_runtime.prompts.compaction import (
    FACTS_PREFIX,
    SUMMARY_PREFIX,
    HierarchicalCompaction,
    LlmSummarizer,
    SummarizationCompaction,
    format_transcript,
    summary_text,
)
from agent_runtime.prompts.history import CompactionState


class _SpySummarizer:
    def __init__(self, text: str = "User asked about the weather.", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.transcripts: List[str] = []

    async def summarize(self, transcript: str) -> str:
        self.transcripts.append(transcript)
        if self.error is not None:
            raise self.error
        return self.text


def _conversation(pairs: int) -> List[Message]:
    out = [Message.system("You are a helpful assistant.")]
    for i in range(pairs):
        out.append(Message.user(f"question {i}"))
        out.append(Message.assistant(f"answer {i}"))
    return out


def test_short_history_is_left_alone() -> None:
    spy = _SpySummarizer()
    msgs = _conversation(2)
    result = asyncio.run(SummarizationCompaction(summarizer=spy, window_size=4).compact(msgs, CompactionState()))
    assert result.messages == msgs
    assert spy.transcripts == []


def test_old_prefix_is_replaced_by_a_summary_message() -> None:
    spy = _SpySummarizer()
    msgs = _conversation(3)
    state = CompactionState()
    result = asyncio.run(SummarizationCompaction(summarizer=spy, window_size=2).compact(msgs, state))

    assert len(result.messages) < len(msgs)
    assert result.messages[0] == msgs[0]
    assert result.messages[1].role == "system"
    assert summary_text(result.messages[1]) == "User asked about the weather."
    assert [m.content for m in result.messages[2:]] == ["question 2", "answer 2"]
    assert result.summarized == 4
    assert state.summaries_generated == 1
    assert state.last_summary == "User asked about the weather."
    assert "USER: question 0" in spy.transcripts[0]


def test_same_old_prefix_hits_the_cache() -> None:
    spy = _SpySummarizer()
    msgs = _conversation(4)
    state = CompactionState()
    policy = SummarizationCompaction(summarizer=spy, window_size=2)

    first = asyncio.run(policy.compact(msgs, state))
    second = asyncio.run(policy.compact(msgs, state))

    assert len(spy.transcripts) == 1
    assert not first.cache_hit
    assert second.cache_hit
    assert second.messages == first.messages
    assert state.cache_hits == 1


def test_summarizer_failure_falls_back_to_window() -> None:
    spy = _SpySummarizer(error=SummarizationFailure("model down"))
    msgs = _conversation(4)
    state = CompactionState()
    result = asyncio.run(SummarizationCompaction(summarizer=spy, window_size=2).compact(msgs, state))

    assert result.fallback
    assert result.strategy == "window"
    assert [m.content for m in result.messages] == ["You are a helpful assistant.", "question 3", "answer 3"]
    assert state.fallbacks == 1
    assert not any(summary_text(m) for m in result.messages)


def test_tool_results_stay_with_their_request() -> None:
    call = ToolCallRequest(id="c1", name="get_weather", arguments={"city": "Tokyo"})
    msgs = [
        Message.system("sys"),
        Message.user("weather in Tokyo?"),
        Message.assistant(None, tool_calls=[call]),
        Message.tool_result(tool_call_id="c1", content='{"forecast": "sunny"}'),
        Message.assistant("It is sunny."),
    ]
    spy = _SpySummarizer()
    result = asyncio.run(SummarizationCompaction(summarizer=spy, window_size=2).compact(msgs, CompactionState()))

    assert [m.role for m in result.messages] == ["system", "system", "assistant"]
    assert result.summarized == 3
    assert "TOOL(c1)" in spy.transcripts[0]
    assert 'requested get_weather({"city":"Tokyo"})' in spy.transcripts[0]


def test_hierarchical_inserts_facts_between_system_and_summary() -> None:
    seen: List[int] = []

    def _facts(old: Sequence[Message]) -> List[str]:
        seen.append(len(old))
        return ["User lives in Tokyo", "  "]

    msgs = _conversation(4)
    policy = HierarchicalCompaction(summarizer=_SpySummarizer(), window_size=2, facts_provider=_facts)
    result = asyncio.run(policy.compact(msgs, CompactionState()))

    roles = [m.role for m in result.messages]
    assert roles == ["system", "system", "system", "user", "assistant"]
    assert result.messages[1].content == FACTS_PREFIX + "- User lives in Tokyo"
    assert (result.messages[2].content or "").startswith(SUMMARY_PREFIX)
    assert seen == [6]


def test_hierarchical_with_no_facts_matches_summarization() -> None:
    async def _facts(old: Sequence[Message]) -> List[str]:
        return []

    msgs = _conversation(4)
    h = asyncio.run(
        HierarchicalCompaction(summarizer=_SpySummarizer(), window_size=2, facts_provider=_facts).compact(msgs, CompactionState())
    )
    s = asyncio.run(SummarizationCompaction(summarizer=_SpySummarizer(), window_size=2).compact(msgs, CompactionState()))
    assert h.messages == s.messages


def test_llm_summarizer_uses_backend_and_wraps_failures() -> None:
    backend = FakeChatBackend([ModelResponse.final("  short summary  "), FakeChatCall(error=RuntimeError("503"))])
    summarizer = LlmSummarizer(backend=backend, model="summary-model")

    assert asyncio.run(summarizer.summarize("USER: hi")) == "short summary"
    assert backend.requests[0].model == "summary-model"
    assert "USER: hi" in (backend.requests[0].messages[-1].content or "")

    with pytest.raises(SummarizationFailure):
        asyncio.run(summarizer.summarize("USER: hi"))


def test_format_transcript_clips_long_tool_output() -> None:
    call = ToolCallRequest(id="c1", name="dump", arguments={})
    msgs = [Message.assistant(None, tool_calls=[call]), Message.tool_result(tool_call_id="c1", content="x" * 5000)]
    text = format_transcript(msgs, max_tool_chars=200)
    assert len(text) < 400
    assert "\n...\n" in text
