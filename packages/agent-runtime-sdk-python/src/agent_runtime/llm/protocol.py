"""
LLM 协议：ModelRequest / ModelResponse / ChatBackend（含可选的 streaming 形态）。

设计目标：
- 用单一参数对象承载一次模型调用（消息序列 + 完整 tools 列表 + 模型标识）；
- 响应只有两种形态：最终回答（无 tool_calls）或有序的 tool request 集合；
- 鉴权与传输属于 backend 自身，runtime 只依赖本协议。
"""

from __future__ import annotations

import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from agent_runtime.core.messages import Message, ToolCallRequest, _loads_object
from agent_runtime.tools.protocol import ToolDefinition, tool_definition_to_openai_tool


@dataclass(frozen=True)
class ModelRequest:
    """
    ModelRequest：一次模型调用的参数包。

    字段：
    - model：模型标识
    - messages：压缩后的消息视图（有序）
    - tools：完整工具定义列表（注册顺序）
    - conversation_id/turn_id：可选，用于下游链路追踪
    - extra：backend 特有扩展字段（backend 可忽略，但必须可传递）
    """

    model: str
    messages: Sequence[Message]
    tools: Sequence[ToolDefinition] = ()
    conversation_id: Optional[str] = None
    turn_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def wire_messages(self) -> List[Dict[str, Any]]:
        return [m.to_wire() for m in self.messages]

    def wire_tools(self) -> List[Dict[str, Any]]:
        return [tool_definition_to_openai_tool(d) for d in self.tools]


@dataclass(frozen=True)
class ModelResponse:
    """
    ModelResponse：模型的一次输出。

    字段：
    - content：文本内容（请求工具时可为 None/空）
    - tool_calls：有序 tool request（为空表示最终回答）
    - finish_reason：backend 给出的结束原因（仅观测用）
    """

    content: Optional[str] = None
    tool_calls: Sequence[ToolCallRequest] = ()
    finish_reason: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return not self.tool_calls

    @classmethod
    def final(cls, text: str) -> "ModelResponse":
        return cls(content=text, finish_reason="stop")

    @classmethod
    def requesting(cls, *calls: ToolCallRequest, content: Optional[str] = None) -> "ModelResponse":
        return cls(content=content, tool_calls=tuple(calls), finish_reason="tool_calls")


@runtime_checkable
class ChatBackend(Protocol):
    """
    模型端点抽象。

    约束：
    - 传输失败、限流等异常直接抛出；runtime 不做内部重试，统一包装为 `ModelEndpointError`；
    - tool request 的 arguments 原文放在 `ToolCallRequest.raw_arguments`，解析/校验由 dispatcher 负责。
    """

    async def complete(self, request: ModelRequest) -> ModelResponse:
        ...


def validate_chat_backend(backend: Any) -> None:
    """
    校验 ChatBackend 协议（fail-fast）。

    异常：
    - ValueError：缺少 `complete(request)` 或签名不匹配
    """

    fn = getattr(backend, "complete", None)
    if not callable(fn):
        raise ValueError("ChatBackend protocol mismatch: missing complete(request: ModelRequest)")
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return

    params = [p for p in sig.parameters.values() if p.name not in ("self", "cls")]
    if not params:
        raise ValueError("ChatBackend.complete must accept a `request` parameter")
    for p in params[1:]:
        if p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if p.default is inspect.Parameter.empty:
            raise ValueError("ChatBackend.complete must accept only `request` (additional required params are not supported)")


@dataclass(frozen=True)
class ModelStreamChunk:
    """
    streaming 输出的一个分片。

    type：
    - `text_delta`：assistant 文本增量（`text`）
    - `tool_call_delta`：某个 tool call 的分片（`index` 定位；`call_id`/`name` 通常只在首片出现，`arguments` 逐片拼接）
    - `completed`：流结束（可带 `finish_reason`）
    """

    type: str
    text: Optional[str] = None
    index: Optional[int] = None
    call_id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None
    finish_reason: Optional[str] = None

    @classmethod
    def text_delta(cls, text: str) -> "ModelStreamChunk":
        return cls(type="text_delta", text=text)

    @classmethod
    def tool_call_delta(
        cls,
        index: int,
        *,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> "ModelStreamChunk":
        return cls(type="tool_call_delta", index=index, call_id=call_id, name=name, arguments=arguments)

    @classmethod
    def completed(cls, finish_reason: Optional[str] = None) -> "ModelStreamChunk":
        return cls(type="completed", finish_reason=finish_reason)


@runtime_checkable
class StreamingChatBackend(Protocol):
    """
    可选的 streaming 端点。

    说明：
    - 实现了 `stream_chat(request)` 的 backend 会被 orchestrator 优先以 streaming 方式调用；
    - 分片经 `ModelStreamAssembler` 还原为与 `complete(...)` 等价的 ModelResponse。
    """

    def stream_chat(self, request: ModelRequest) -> AsyncIterator[ModelStreamChunk]:
        ...


def supports_streaming(backend: Any) -> bool:
    return callable(getattr(backend, "stream_chat", None))


@dataclass
class _PendingToolCall:
    call_id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class ModelStreamAssembler:
    """
    把 streaming 分片拼回 ModelResponse。

    规则：
    - 文本增量按到达顺序拼接；
    - tool call 分片按 `index` 归并（缺 index 时并入上一个 call），最终按首次出现顺序输出；
    - 缺少 name 的 call 会被丢弃；缺少 id 时补 `call_<12 位 hex>`。
    """

    def __init__(self) -> None:
        self._text: List[str] = []
        self._calls: Dict[int, _PendingToolCall] = {}
        self._order: List[int] = []
        self._last_index: Optional[int] = None
        self._finish_reason: Optional[str] = None

    def feed(self, chunk: ModelStreamChunk) -> Optional[str]:
        """
        吸收一个分片。

        返回：
        - 若分片携带文本增量则返回该文本（供调用方实时转发），否则 None
        """

        if chunk.type == "text_delta":
            if chunk.text:
                self._text.append(chunk.text)
                return chunk.text
            return None
        if chunk.type == "tool_call_delta":
            idx = chunk.index if chunk.index is not None else self._last_index
            if idx is None:
                idx = len(self._order)
            if idx not in self._calls:
                self._calls[idx] = _PendingToolCall()
                self._order.append(idx)
            pending = self._calls[idx]
            if chunk.call_id and pending.call_id is None:
                pending.call_id = chunk.call_id
            if chunk.name and pending.name is None:
                pending.name = chunk.name
            if chunk.arguments:
                pending.arguments += chunk.arguments
            self._last_index = idx
            return None
        if chunk.type == "completed":
            self._finish_reason = chunk.finish_reason
        return None

    def finish(self) -> ModelResponse:
        calls: List[ToolCallRequest] = []
        for idx in self._order:
            pending = self._calls[idx]
            if not pending.name:
                continue
            calls.append(
                ToolCallRequest(
                    id=pending.call_id or f"call_{uuid.uuid4().hex[:12]}",
                    name=pending.name,
                    arguments=_loads_object(pending.arguments),
                    raw_arguments=pending.arguments,
                )
            )
        text = "".join(self._text)
        finish_reason = self._finish_reason or ("tool_calls" if calls else "stop")
        return ModelResponse(content=text if (text or not calls) else None, tool_calls=tuple(calls), finish_reason=finish_reason)
