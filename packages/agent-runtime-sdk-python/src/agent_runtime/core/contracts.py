"""
核心契约（AgentEvent）。

说明：
- 事件是 runtime 对外的唯一观测面：hooks、`run_turn_stream()` 与 metrics 都消费同一事件对象；
- 事件一旦发出即视为不可变。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentEvent(BaseModel):
    """
    AgentEvent：统一事件流条目。

    字段：
    - type：事件类型（turn_started/llm_request_started/tool_call_finished/...）
    - timestamp：RFC3339 时间字符串
    - conversation_id：会话标识
    - turn_id/step_id：可选；step 对应单次 tool call
    - payload：JSON object（dict），承载事件专用字段
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    timestamp: str = Field(description="RFC3339 时间字符串。")
    conversation_id: str
    turn_id: Optional[str] = None
    step_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw_json: str) -> "AgentEvent":
        """从 JSON 字符串反序列化为 `AgentEvent`。"""

        return cls.model_validate_json(raw_json)
