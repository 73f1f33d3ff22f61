"""
摘要式压缩（summarization / hierarchical）与 summarizer 适配。

目标：
- 把较早的非 system 消息压缩成一条 system 摘要消息，保留最近 W 条原文；
- 摘要不写回 MessageStore：每次压缩都从“当前的 old prefix”重新推导，
  同一 old prefix 通过内容 hash 命中缓存，避免重复调用 summarizer；
- summarizer 失败时降级为滑动窗口，不让整个 turn 失败。
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, Union

from agent_runtime.core.errors import SummarizationFailure
from agent_runtime.core.messages import Message
from agent_runtime.core.utils import sha256_json
from agent_runtime.llm.protocol import ChatBackend, ModelRequest
from agent_runtime.prompts.history import (
    CompactionResult,
    CompactionState,
    split_system,
    window_slice,
)

logger = logging.getLogger(__name__)


SUMMARY_PREFIX = "Previous conversation summary:\n"
FACTS_PREFIX = "Long-term facts about the user and task:\n"

SUMMARIZER_SYSTEM_PROMPT = """You are a conversation summarizer.
Write a concise summary of the conversation that keeps:
1. Key topics discussed
2. Important facts shared, including tool results the assistant relied on
3. User preferences or context

Keep the summary brief but informative. Do not invent facts."""


def _clip_text_middle(text: str, *, max_chars: int) -> str:
    """
    将文本裁剪到不超过 max_chars，并尽量保留首尾两端（中间用省略号替代）。
    """

    s = str(text or "")
    if len(s) <= int(max_chars):
        return s
    if max_chars <= 50:
        return s[: max_chars - 3] + "..."
    head = max_chars // 3
    tail = max_chars - head - 5
    return s[:head] + "\n...\n" + s[-tail:]


def format_transcript(messages: Sequence[Message], *, max_tool_chars: int = 800) -> str:
    """
    将消息序列格式化为供 summarizer 阅读的文本。

    形状：
    - `USER: ...` / `ASSISTANT: ...`
    - assistant 的 tool request 形如 `ASSISTANT requested get_weather({"city":"Tokyo"})`
    - tool result 形如 `TOOL(call_1): {...}`（长输出做首尾裁剪）
    """

    lines: List[str] = []
    for m in messages:
        if m.role == "tool":
            lines.append(f"TOOL({m.tool_call_id}): {_clip_text_middle(m.content or '', max_chars=max_tool_chars)}")
            continue
        if m.content and m.content.strip():
            lines.append(f"{m.role.upper()}: {m.content.strip()}")
        for call in m.tool_calls or ():
            lines.append(f"{m.role.upper()} requested {call.name}({call.arguments_text()})")
    return "\n\n".join(lines)


class Summarizer(Protocol):
    """summarizer 协议：输入转录文本，输出纯文本摘要。"""

    async def summarize(self, transcript: str) -> str:
        ...


class LlmSummarizer:
    """
    基于 ChatBackend 的 summarizer。

    说明：
    - 模型调用失败或返回空文本时抛 `SummarizationFailure`；
    - 输出超过 `max_chars` 时做首尾裁剪。
    """

    def __init__(
        self,
        *,
        backend: ChatBackend,
        model: str,
        system_prompt: str = SUMMARIZER_SYSTEM_PROMPT,
        max_chars: int = 4000,
    ) -> None:
        self._backend = backend
        self._model = model
        self._system_prompt = system_prompt
        self._max_chars = int(max_chars)

    async def summarize(self, transcript: str) -> str:
        request = ModelRequest(
            model=self._model,
            messages=(
                Message.system(self._system_prompt),
                Message.user(f"Summarize this conversation:\n\n{transcript}"),
            ),
        )
        try:
            response = await self._backend.complete(request)
        except Exception as e:
            raise SummarizationFailure(f"summarizer call failed: {e}") from e
        text = str(response.content or "").strip()
        if not text:
            raise SummarizationFailure("summarizer returned an empty summary")
        return _clip_text_middle(text, max_chars=self._max_chars)


def _split_for_summary(others: Sequence[Message], window_size: int, min_old: int) -> Tuple[List[Message], List[Message]]:
    """
    切分 old prefix / recent suffix。

    规则：
    - recent 最多 window_size 条；
    - old 至少 min_old 条（保证输出条数严格小于输入）；
    - recent 开头的 tool result 并入 old（与其 request 一起被摘要）。
    """

    cut = max(len(others) - window_size, min_old)
    cut = min(cut, len(others))
    while cut < len(others) and others[cut].role == "tool":
        cut += 1
    return list(others[:cut]), list(others[cut:])


class SummarizationCompaction:
    """
    摘要式压缩。

    输出：`[system..., summary(system), recent...]`。
    仅当非 system 消息数超过 window_size 时生效；否则原样返回。
    """

    name = "summarization"

    def __init__(self, *, summarizer: Summarizer, window_size: int, max_summary_chars: int = 4000) -> None:
        if window_size < 0:
            raise ValueError("window_size must be >= 0")
        self._summarizer = summarizer
        self.window_size = int(window_size)
        self.max_summary_chars = int(max_summary_chars)

    def _extra_messages(self, old: Sequence[Message]) -> int:
        """除摘要外额外插入的 system 消息条数。"""

        return 0

    async def _extra_system_messages(self, old: Sequence[Message], recent: Sequence[Message]) -> List[Message]:
        return []

    async def compact(self, messages: Sequence[Message], state: CompactionState) -> CompactionResult:
        system, others = split_system(messages)
        if len(others) <= self.window_size:
            return CompactionResult(messages=list(messages), strategy=self.name)

        min_old = self._extra_messages(others) + 2
        if len(others) < min_old:
            kept = window_slice(messages, self.window_size)
            state.compactions += 1
            return CompactionResult(messages=kept, strategy="window", dropped=len(messages) - len(kept))
        old, recent = _split_for_summary(others, self.window_size, min_old=min_old)
        try:
            summary, cache_hit = await self._summary_for(old, state)
            extras = await self._extra_system_messages(old, recent)
        except Exception:
            logger.warning("Summarization failed; falling back to window slicing", exc_info=True)
            state.fallbacks += 1
            state.compactions += 1
            kept = window_slice(messages, self.window_size)
            return CompactionResult(messages=kept, strategy="window", dropped=len(messages) - len(kept), fallback=True)

        state.compactions += 1
        state.last_summary = summary
        out = system + extras + [Message.system(SUMMARY_PREFIX + summary)] + recent
        return CompactionResult(messages=out, strategy=self.name, summarized=len(old), cache_hit=cache_hit)

    async def _summary_for(self, old: Sequence[Message], state: CompactionState) -> Tuple[str, bool]:
        key = sha256_json([m.model_dump(mode="json", exclude_none=True) for m in old])
        cached = state.cached_summary(key)
        if cached is not None:
            return cached, True
        text = await self._summarizer.summarize(format_transcript(old))
        text = _clip_text_middle(str(text or "").strip(), max_chars=self.max_summary_chars)
        if not text:
            raise SummarizationFailure("summarizer returned an empty summary")
        state.summaries_generated += 1
        state.remember_summary(key, text)
        return text, False


FactsProvider = Callable[[Sequence[Message]], Union[Sequence[str], Awaitable[Sequence[str]]]]


class HierarchicalCompaction(SummarizationCompaction):
    """
    分层压缩：system → 长期事实 → 中期摘要 → 最近原文。

    说明：
    - 长期事实来自调用方提供的 facts_provider（入参为被摘要的 old prefix）；
    - facts 为空时不插入事实消息，行为与 summarization 相同。
    """

    name = "hierarchical"

    def __init__(
        self,
        *,
        summarizer: Summarizer,
        window_size: int,
        facts_provider: FactsProvider,
        max_summary_chars: int = 4000,
    ) -> None:
        super().__init__(summarizer=summarizer, window_size=window_size, max_summary_chars=max_summary_chars)
        self._facts_provider = facts_provider

    def _extra_messages(self, old: Sequence[Message]) -> int:
        return 1

    async def _extra_system_messages(self, old: Sequence[Message], recent: Sequence[Message]) -> List[Message]:
        out: Any = self._facts_provider(old)
        if inspect.isawaitable(out):
            out = await out
        facts = [str(f).strip() for f in (out or []) if str(f).strip()]
        if not facts:
            return []
        return [Message.system(FACTS_PREFIX + "\n".join(f"- {f}" for f in facts))]


def summary_text(message: Message) -> Optional[str]:
    """若 message 是摘要消息，返回摘要正文；否则返回 None。"""

    if message.role == "system" and (message.content or "").startswith(SUMMARY_PREFIX):
        return (message.content or "")[len(SUMMARY_PREFIX) :]
    return None

