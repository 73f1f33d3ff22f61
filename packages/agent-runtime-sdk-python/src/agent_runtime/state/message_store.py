"""
MessageStore：会话消息的 append-only 日志。

约束：
- 只追加，不修改、不删除；读者拿到的是不可变快照（tuple），compaction 只产出新序列；
- tool result 必须对应一个此前出现、尚未被回答的 ToolCallRequest；
- 存在未回答的 request 时，turn 未完成：此时只允许追加 tool result。
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from agent_runtime.core.errors import MessageStoreError
from agent_runtime.core.messages import Message, ToolCallRequest


class MessageStore:
    """单个会话的消息日志（由 orchestrator 独占持有）。"""

    def __init__(self, messages: Optional[Sequence[Message]] = None) -> None:
        """
        创建消息日志。

        参数：
        - messages：可选的初始消息（按顺序追加，同样受关联约束校验）
        """

        self._messages: List[Message] = []
        self._snapshot: Optional[Tuple[Message, ...]] = ()
        self._pending: Dict[str, ToolCallRequest] = {}
        self._seen_call_ids: Set[str] = set()
        for m in messages or ():
            self.append(m)

    def append(self, message: Message) -> int:
        """
        追加一条消息并返回其下标。

        异常：
        - MessageStoreError：tool result 无法关联到未回答的 request；或存在未回答 request 时追加非 tool 消息；
          或 tool call id 在会话内重复
        """

        if message.role == "tool":
            call_id = str(message.tool_call_id)
            if call_id not in self._pending:
                raise MessageStoreError(f"tool result does not match a pending tool call: {call_id}")
            del self._pending[call_id]
        else:
            if self._pending:
                missing = ",".join(self._pending.keys())
                raise MessageStoreError(f"cannot append {message.role} message while tool calls are unanswered: {missing}")
            for call in message.tool_calls or ():
                if call.id in self._seen_call_ids or call.id in self._pending:
                    raise MessageStoreError(f"duplicate tool call id: {call.id}")
            for call in message.tool_calls or ():
                self._pending[call.id] = call
                self._seen_call_ids.add(call.id)

        self._messages.append(message)
        self._snapshot = None
        return len(self._messages) - 1

    def view(self) -> Tuple[Message, ...]:
        """返回完整有序快照（不可变）。"""

        if self._snapshot is None:
            self._snapshot = tuple(self._messages)
        return self._snapshot

    def pending_tool_calls(self) -> List[ToolCallRequest]:
        """按请求顺序返回尚未回答的 tool call。"""

        return list(self._pending.values())

    @property
    def has_pending_tool_calls(self) -> bool:
        return bool(self._pending)

    def tool_requests(self) -> Iterator[ToolCallRequest]:
        """按出现顺序遍历所有 assistant 消息中的 tool request。"""

        for m in self._messages:
            for call in m.tool_calls or ():
                yield call

    def system_messages(self) -> List[Message]:
        return [m for m in self._messages if m.role == "system"]

    def to_wire(self) -> List[dict]:
        return [m.to_wire() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.view())
