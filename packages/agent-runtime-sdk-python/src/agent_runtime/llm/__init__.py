"""
LLM 端点协议（ModelRequest/ModelResponse/ChatBackend）与离线 Fake backend。
"""

from __future__ import annotations

from agent_runtime.llm.errors import ModelEndpointError
from agent_runtime.llm.fake import FakeChatBackend, FakeChatCall, FakeStreamingChatBackend
from agent_runtime.llm.protocol import (
    ChatBackend,
    ModelRequest,
    ModelResponse,
    ModelStreamAssembler,
    ModelStreamChunk,
    StreamingChatBackend,
)

__all__ = [
    "ChatBackend",
    "FakeChatBackend",
    "FakeChatCall",
    "FakeStreamingChatBackend",
    "ModelEndpointError",
    "ModelRequest",
    "ModelResponse",
    "ModelStreamAssembler",
    "ModelStreamChunk",
    "StreamingChatBackend",
]
