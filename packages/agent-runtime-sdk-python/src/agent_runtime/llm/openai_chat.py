"""
OpenAI-compatible `/v1/chat/completions` 形状映射（不含网络层）。

本模块提供：
- build_chat_completions_payload：ModelRequest → 请求 body（dict）
- parse_chat_completion：响应 body（或单个 choice.message）→ ModelResponse

说明：
- tool_calls[].function.arguments 原文保留在 `raw_arguments`，是否合法由 dispatcher 判定；
- 缺失 id 的 tool call 会被补一个随机 id（`call_<12 位 hex>`），保证在整个会话内唯一、结果可关联。
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from agent_runtime.core.messages import ToolCallRequest, _loads_object
from agent_runtime.llm.errors import ModelEndpointError
from agent_runtime.llm.protocol import ModelRequest, ModelResponse


def build_chat_completions_payload(request: ModelRequest, *, parallel_tool_calls: Optional[bool] = None) -> Dict[str, Any]:
    """构造 chat.completions 请求 body（非 streaming）。"""

    payload: Dict[str, Any] = {"model": request.model, "messages": request.wire_messages()}
    if request.tools:
        payload["tools"] = request.wire_tools()
        if parallel_tool_calls is not None:
            payload["parallel_tool_calls"] = bool(parallel_tool_calls)
    for k, v in (request.extra or {}).items():
        payload.setdefault(k, v)
    return payload


def parse_chat_completion(body: Dict[str, Any]) -> ModelResponse:
    """
    解析 chat.completions 响应。

    参数：
    - body：完整响应（含 `choices`）或单个 `message` 对象

    异常：
    - ModelEndpointError：响应形态不合法（缺少 choices/message）
    """

    finish_reason: Optional[str] = None
    message: Any = body
    if "choices" in body:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ModelEndpointError("chat completion has no choices")
        choice = choices[0] or {}
        finish_reason = choice.get("finish_reason")
        message = choice.get("message")
    if not isinstance(message, dict):
        raise ModelEndpointError("chat completion choice has no message object")

    calls: List[ToolCallRequest] = []
    for tc in message.get("tool_calls") or []:
        if not isinstance(tc, dict):
            continue
        fn = tc.get("function") or {}
        raw = fn.get("arguments")
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                name=str(fn.get("name") or ""),
                arguments=_loads_object(raw),
                raw_arguments=raw if isinstance(raw, str) else None,
            )
        )

    content = message.get("content")
    return ModelResponse(
        content=content if isinstance(content, str) else None,
        tool_calls=tuple(calls),
        finish_reason=finish_reason,
    )
