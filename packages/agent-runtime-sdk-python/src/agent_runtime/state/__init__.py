"""会话状态（append-only MessageStore）。"""

from __future__ import annotations

from agent_runtime.state.message_store import MessageStore

__all__ = ["MessageStore"]
