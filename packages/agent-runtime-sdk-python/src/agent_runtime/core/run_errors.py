"""
Turn 失败错误类型化（RunErrorKind / RunError）。

用途：
- `turn_failed` 事件的 payload 需要稳定、机器可消费的错误分类；
- 异常本身仍原样抛给 turn 的调用方，这里只负责“如何描述”。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from agent_runtime.core.errors import (
    FrameworkError,
    MessageStoreError,
    RunawayToolLoopError,
    TurnCancelledError,
)
from agent_runtime.llm.errors import ModelEndpointError


class RunErrorKind(str, Enum):
    """turn_failed 的稳定错误分类。"""

    RUNAWAY_TOOL_LOOP = "runaway_tool_loop"
    MODEL_ENDPOINT_ERROR = "model_endpoint_error"
    CONFIG_ERROR = "config_error"
    STORE_INVARIANT = "store_invariant"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RunError:
    """
    RunError：结构化运行错误（用于生成稳定 turn_failed payload）。

    字段：
    - error_kind：稳定分类
    - message：可读错误消息
    - retryable：是否建议上层重试
    - details：可选；结构化上下文（必须可 JSON 序列化）
    """

    error_kind: RunErrorKind
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """转换为 turn_failed 的 payload dict（稳定字段名）。"""

        out: Dict[str, Any] = {
            "error_kind": str(self.error_kind.value),
            "message": str(self.message or ""),
            "retryable": bool(self.retryable),
        }
        if self.details:
            out["details"] = dict(self.details)
        return out


def classify_run_exception(exc: BaseException) -> RunError:
    """将 turn 内抛出的异常映射为结构化 RunError。"""

    if isinstance(exc, RunawayToolLoopError):
        return RunError(
            error_kind=RunErrorKind.RUNAWAY_TOOL_LOOP,
            message=str(exc),
            details={
                "conversation_id": exc.conversation_id,
                "rounds": exc.rounds,
                "max_rounds": exc.max_rounds,
                "last_tools": list(exc.last_tools),
            },
        )

    if isinstance(exc, ModelEndpointError):
        details: Dict[str, Optional[str]] = {"model": exc.model}
        return RunError(
            error_kind=RunErrorKind.MODEL_ENDPOINT_ERROR,
            message=str(exc),
            retryable=exc.retryable,
            details={k: v for k, v in details.items() if v is not None},
        )

    if isinstance(exc, FrameworkError):
        return RunError(
            error_kind=RunErrorKind.CONFIG_ERROR,
            message=str(exc),
            details={"framework_code": exc.code, "framework_details": dict(exc.details)},
        )

    if isinstance(exc, MessageStoreError):
        return RunError(error_kind=RunErrorKind.STORE_INVARIANT, message=str(exc))

    if isinstance(exc, TurnCancelledError):
        return RunError(error_kind=RunErrorKind.CANCELLED, message=str(exc))

    return RunError(error_kind=RunErrorKind.UNKNOWN, message=str(exc) or type(exc).__name__)
