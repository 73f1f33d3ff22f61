"""
对话历史压缩：策略协议、滑动窗口与 token 预算窗口。

约束（所有策略）：
- 只产出新序列，不修改 MessageStore 中的历史；
- system 消息原样保留，不会被丢弃或被摘要；
- 保留区开头不允许出现“孤立”的 tool result（其 request 已被丢弃），否则模型端会拒绝该上下文。
"""

from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from agent_runtime.core.errors import UserError
from agent_runtime.core.messages import Message


@dataclass
class CompactionState:
    """
    单个会话的压缩工作内存（由 orchestrator 持有，生命周期与会话一致）。

    字段：
    - summary_cache：old prefix 内容 hash → 摘要文本（LRU，容量有限）
    - last_summary：最近一次使用的摘要
    - compactions/summaries_generated/cache_hits/fallbacks：计数器（观测用）
    """

    summary_cache_size: int = 32
    summary_cache: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    last_summary: Optional[str] = None
    compactions: int = 0
    summaries_generated: int = 0
    cache_hits: int = 0
    fallbacks: int = 0

    def cached_summary(self, key: str) -> Optional[str]:
        text = self.summary_cache.get(key)
        if text is not None:
            self.summary_cache.move_to_end(key)
            self.cache_hits += 1
        return text

    def remember_summary(self, key: str, text: str) -> None:
        self.summary_cache[key] = text
        self.summary_cache.move_to_end(key)
        while len(self.summary_cache) > max(1, int(self.summary_cache_size)):
            self.summary_cache.popitem(last=False)


@dataclass(frozen=True)
class CompactionResult:
    """
    一次压缩的输出。

    字段：
    - messages：发送给模型的消息视图
    - strategy：实际生效的策略名（summarization 降级时为 `window`）
    - dropped：被丢弃（未进入视图、也未被摘要）的消息数
    - summarized：被摘要替代的消息数
    - cache_hit：摘要是否命中缓存
    - fallback：是否发生了摘要失败降级
    """

    messages: List[Message]
    strategy: str
    dropped: int = 0
    summarized: int = 0
    cache_hit: bool = False
    fallback: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.dropped or self.summarized)


class CompactionPolicy(Protocol):
    """压缩策略协议（可按会话替换）。"""

    name: str

    async def compact(self, messages: Sequence[Message], state: CompactionState) -> CompactionResult:
        ...


def split_system(messages: Sequence[Message]) -> Tuple[List[Message], List[Message]]:
    """拆分为（system 消息, 非 system 消息），各自保持原顺序。"""

    system = [m for m in messages if m.role == "system"]
    others = [m for m in messages if m.role != "system"]
    return system, others


def drop_orphan_tool_results(messages: Sequence[Message]) -> List[Message]:
    """丢弃开头的 tool result（其对应的 assistant request 不在序列中）。"""

    out = list(messages)
    while out and out[0].role == "tool":
        out.pop(0)
    return out


def window_slice(messages: Sequence[Message], window_size: int) -> List[Message]:
    """
    滑动窗口：保留全部 system 消息 + 最近 `window_size` 条非 system 消息。

    说明：
    - 对已经满足窗口大小的序列再次压缩会原样返回（幂等）。
    """

    if window_size < 0:
        raise ValueError("window_size must be >= 0")
    system, others = split_system(messages)
    recent = others[-window_size:] if window_size > 0 else []
    return system + drop_orphan_tool_results(recent)


def message_text(message: Message) -> str:
    """用于成本估算的消息文本（content + tool request 的名称与参数原文）。"""

    parts: List[str] = []
    if message.content:
        parts.append(message.content)
    for call in message.tool_calls or ():
        parts.append(call.name)
        parts.append(call.arguments_text())
    return "".join(parts)


def estimate_tokens(message: Message, *, chars_per_token: int = 4) -> int:
    """粗估 token 数：ceil(字符数 / chars_per_token)。"""

    if chars_per_token <= 0:
        raise ValueError("chars_per_token must be > 0")
    return int(math.ceil(len(message_text(message)) / float(chars_per_token)))


CostFn = Callable[[Message], int]


class NoCompaction:
    """不压缩（原样发送完整历史）。"""

    name = "none"

    async def compact(self, messages: Sequence[Message], state: CompactionState) -> CompactionResult:
        return CompactionResult(messages=list(messages), strategy=self.name)


class WindowCompaction:
    """滑动窗口策略。"""

    name = "window"

    def __init__(self, *, max_messages: int) -> None:
        if max_messages < 0:
            raise ValueError("max_messages must be >= 0")
        self.max_messages = int(max_messages)

    async def compact(self, messages: Sequence[Message], state: CompactionState) -> CompactionResult:
        kept = window_slice(messages, self.max_messages)
        dropped = len(messages) - len(kept)
        if dropped:
            state.compactions += 1
        return CompactionResult(messages=kept, strategy=self.name, dropped=dropped)


class TokenBudgetCompaction:
    """
    token 预算窗口。

    规则：
    - 先计入全部 system 消息的成本；system 自身超预算时抛 `UserError(CONTEXT_BUDGET_TOO_SMALL)`；
    - 非 system 消息从后往前选择，加入后总成本仍 ≤ 预算才纳入；
    - 第一条会超预算的消息处停止（不做部分消息截断，也不跳过后继续挑选更早的小消息）。
    """

    name = "token_budget"

    def __init__(self, *, max_tokens: int, cost_fn: Optional[CostFn] = None, chars_per_token: int = 4) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        self.max_tokens = int(max_tokens)
        if cost_fn is None:
            cpt = int(chars_per_token)
            cost_fn = lambda m: estimate_tokens(m, chars_per_token=cpt)  # noqa: E731
        self._cost_fn = cost_fn

    def cost(self, messages: Sequence[Message]) -> int:
        return sum(int(self._cost_fn(m)) for m in messages)

    async def compact(self, messages: Sequence[Message], state: CompactionState) -> CompactionResult:
        system, others = split_system(messages)
        total = self.cost(system)
        if total > self.max_tokens:
            raise UserError(
                f"system messages alone cost {total} tokens, exceeding max_tokens={self.max_tokens}",
                code="CONTEXT_BUDGET_TOO_SMALL",
                details={"system_tokens": total, "max_tokens": self.max_tokens},
            )

        selected: List[Message] = []
        for m in reversed(others):
            c = int(self._cost_fn(m))
            if total + c > self.max_tokens:
                break
            selected.append(m)
            total += c
        selected.reverse()

        kept = system + drop_orphan_tool_results(selected)
        dropped = len(messages) - len(kept)
        if dropped:
            state.compactions += 1
        return CompactionResult(messages=kept, strategy=self.name, dropped=dropped)
