"""
上下文压缩（滑窗 / token 预算 / 摘要 / 分层摘要）。
"""

from __future__ import annotations

from agent_runtime.prompts.compaction import HierarchicalCompaction, LlmSummarizer, SummarizationCompaction
from agent_runtime.prompts.history import (
    CompactionResult,
    CompactionState,
    NoCompaction,
    TokenBudgetCompaction,
    WindowCompaction,
    window_slice,
)

__all__ = [
    "CompactionResult",
    "CompactionState",
    "HierarchicalCompaction",
    "LlmSummarizer",
    "NoCompaction",
    "SummarizationCompaction",
    "TokenBudgetCompaction",
    "WindowCompaction",
    "window_slice",
]
