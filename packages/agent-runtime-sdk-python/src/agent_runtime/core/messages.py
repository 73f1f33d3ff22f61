"""
会话消息模型（Message / ToolCallRequest）。

说明：
- 消息一旦创建即不可变（pydantic frozen）；tool result 永远是新消息，不会回写到 assistant 消息；
- `to_wire()` 产出 OpenAI-compatible chat message 形状（tool_calls[].function.arguments 为 JSON 字符串）。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["system", "user", "assistant", "tool"]


class ToolCallRequest(BaseModel):
    """
    模型请求的一次 tool 调用。

    字段：
    - id：会话内唯一（用于 tool result 回注关联）
    - name：工具名
    - arguments：解析后的参数（raw_arguments 解析失败时为空 dict）
    - raw_arguments：模型产出的原始 arguments 文本（可选；dispatcher 以它为准做解析）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_arguments: Optional[str] = None

    def arguments_text(self) -> str:
        """返回写入 wire 的 arguments 字符串（优先原文）。"""

        if self.raw_arguments is not None:
            return self.raw_arguments
        return json.dumps(self.arguments, ensure_ascii=False, separators=(",", ":"))

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_text()},
        }


class Message(BaseModel):
    """
    会话消息。

    约束：
    - `tool_calls` 只能出现在 assistant 消息上；
    - `tool_call_id` 只能且必须出现在 tool 消息上；
    - 除“仅携带 tool_calls 的 assistant 消息”外，content 不可为 None。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    role: Role
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCallRequest]] = None
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Message":
        if self.tool_calls is not None and self.role != "assistant":
            raise ValueError("tool_calls is only allowed on assistant messages")
        if self.role == "tool":
            if not self.tool_call_id:
                raise ValueError("tool messages require tool_call_id")
        elif self.tool_call_id is not None:
            raise ValueError("tool_call_id is only allowed on tool messages")
        if self.content is None and not (self.role == "assistant" and self.tool_calls):
            raise ValueError(f"{self.role} messages require content")
        return self

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: Optional[str], *, tool_calls: Optional[List[ToolCallRequest]] = None) -> "Message":
        return cls(role="assistant", content=content, tool_calls=list(tool_calls) if tool_calls else None)

    @classmethod
    def tool_result(cls, *, tool_call_id: str, content: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def requests_tools(self) -> bool:
        return bool(self.role == "assistant" and self.tool_calls)

    def to_wire(self) -> Dict[str, Any]:
        """转换为 chat.completions 的 message dict。"""

        out: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            out["tool_calls"] = [c.to_wire() for c in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        return out

    @classmethod
    def from_wire(cls, obj: Dict[str, Any]) -> "Message":
        """
        从 chat.completions 形状的 dict 构造 Message。

        说明：
        - tool_calls[].function.arguments 解析失败时 arguments 置空，原文保留在 raw_arguments。
        """

        calls: Optional[List[ToolCallRequest]] = None
        raw_calls = obj.get("tool_calls")
        if isinstance(raw_calls, list) and raw_calls:
            calls = []
            for tc in raw_calls:
                fn = tc.get("function") or {}
                raw = fn.get("arguments")
                calls.append(
                    ToolCallRequest(
                        id=str(tc.get("id") or ""),
                        name=str(fn.get("name") or ""),
                        arguments=_loads_object(raw),
                        raw_arguments=raw if isinstance(raw, str) else None,
                    )
                )
        return cls(
            role=obj.get("role"),
            content=obj.get("content"),
            tool_calls=calls,
            tool_call_id=obj.get("tool_call_id"),
        )


def _loads_object(raw: Any) -> Dict[str, Any]:
    """best-effort 解析 JSON object；失败返回空 dict（是否合法由 dispatcher 判定）。"""

    if isinstance(raw, dict):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return obj if isinstance(obj, dict) else {}
