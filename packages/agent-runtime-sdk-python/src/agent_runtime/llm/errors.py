"""
LLM 错误类型（可分类、可回归）。

说明：
- runtime 不在内部重试模型调用；重试策略（若有）属于 backend 自身；
- backend 抛出的任意异常都会被 orchestrator 包装为 `ModelEndpointError` 抛给 turn 的调用方。
"""

from __future__ import annotations

from typing import Optional

from agent_runtime.core.errors import LlmError


class ModelEndpointError(LlmError):
    """
    模型调用失败（传输、限流、响应形态不合法等）。

    字段：
    - conversation_id/turn_id：定位失败发生在哪个会话的哪个 turn
    - model：请求的模型标识
    - retryable：backend 是否提示可重试（仅作提示，runtime 不重试）
    """

    def __init__(
        self,
        message: str,
        *,
        conversation_id: Optional[str] = None,
        turn_id: Optional[str] = None,
        model: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.conversation_id = conversation_id
        self.turn_id = turn_id
        self.model = model
        self.retryable = bool(retryable)
