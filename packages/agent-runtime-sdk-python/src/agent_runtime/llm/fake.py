"""
Fake LLM backend（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归 orchestrator 的编排逻辑（tool_calls → 执行 → 回注 → 继续）；
- `FakeStreamingChatBackend` 额外提供 `stream_chat`，用于回归文本增量事件与分片拼接。
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Sequence, Union

from agent_runtime.llm.protocol import ModelRequest, ModelResponse, ModelStreamChunk


@dataclass(frozen=True)
class FakeChatCall:
    """
    一次 chat 调用的预期输出。

    字段：
    - response：返回的响应
    - error：若提供，则本次调用抛出该异常（模拟端点失败；streaming 时在 chunks 之后抛出）
    - delay_sec：返回前的等待时间（用于取消/并发测试）
    - chunks：仅 streaming 使用；逐个 yield 的脚本化分片（提供时忽略 response）
    """

    response: Optional[ModelResponse] = None
    error: Optional[BaseException] = None
    delay_sec: float = 0.0
    chunks: Optional[Sequence[ModelStreamChunk]] = None


Responder = Callable[[ModelRequest], ModelResponse]


class FakeChatBackend:
    """
    用脚本化响应序列模拟模型端点。

    说明：
    - 每次 `complete(...)` 消耗一个 `FakeChatCall`（也可直接给 `ModelResponse`）；
    - 序列耗尽后交给 `responder`；未提供 responder 时抛 ValueError；
    - `requests` 记录每次收到的请求，便于断言模型看到的上下文。
    """

    def __init__(
        self,
        calls: Sequence[Union[FakeChatCall, ModelResponse]] = (),
        *,
        responder: Optional[Responder] = None,
    ) -> None:
        """
        创建一个可预测的 fake backend。

        参数：
        - `calls`：预设的调用序列；每次 `complete` 会消费一个条目
        - `responder`：序列耗尽后的兜底响应函数
        """

        self._calls: List[FakeChatCall] = [c if isinstance(c, FakeChatCall) else FakeChatCall(response=c) for c in calls]
        self._idx = 0
        self._responder = responder
        self.requests: List[ModelRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def _take(self, request: ModelRequest) -> FakeChatCall:
        self.requests.append(request)
        if self._idx >= len(self._calls):
            if self._responder is None:
                raise ValueError("FakeChatBackend calls exhausted")
            return FakeChatCall(response=self._responder(request))
        call = self._calls[self._idx]
        self._idx += 1
        return call

    async def _resolve(self, call: FakeChatCall) -> ModelResponse:
        if call.delay_sec > 0:
            await asyncio.sleep(call.delay_sec)
        if call.error is not None:
            raise call.error
        return call.response if call.response is not None else ModelResponse.final("")

    async def complete(self, request: ModelRequest) -> ModelResponse:
        return await self._resolve(self._take(request))


def split_into_chunks(response: ModelResponse, *, text_chunk_chars: int = 4) -> List[ModelStreamChunk]:
    """把一个完整响应切成 streaming 分片（文本按固定字符数切；每个 tool call 的 arguments 切成两片）。"""

    chunks: List[ModelStreamChunk] = []
    text = response.content or ""
    step = max(1, int(text_chunk_chars))
    for start in range(0, len(text), step):
        chunks.append(ModelStreamChunk.text_delta(text[start : start + step]))
    for i, call in enumerate(response.tool_calls):
        raw = call.raw_arguments if call.raw_arguments is not None else json.dumps(call.arguments, ensure_ascii=False)
        half = len(raw) // 2
        chunks.append(ModelStreamChunk.tool_call_delta(i, call_id=call.id, name=call.name, arguments=raw[:half]))
        chunks.append(ModelStreamChunk.tool_call_delta(i, arguments=raw[half:]))
    chunks.append(ModelStreamChunk.completed(response.finish_reason))
    return chunks


class FakeStreamingChatBackend(FakeChatBackend):
    """
    支持 `stream_chat` 的 fake backend。

    说明：
    - 同一脚本序列既可被 `complete` 也可被 `stream_chat` 消费；
    - 未显式给出 `chunks` 的调用，会把 response 按 `text_chunk_chars` 切片后逐个 yield。
    """

    def __init__(
        self,
        calls: Sequence[Union[FakeChatCall, ModelResponse]] = (),
        *,
        responder: Optional[Responder] = None,
        text_chunk_chars: int = 4,
    ) -> None:
        super().__init__(calls, responder=responder)
        self._text_chunk_chars = int(text_chunk_chars)

    async def stream_chat(self, request: ModelRequest) -> AsyncIterator[ModelStreamChunk]:
        call = self._take(request)
        if call.chunks is None:
            response = await self._resolve(call)
            for chunk in split_into_chunks(response, text_chunk_chars=self._text_chunk_chars):
                yield chunk
            return

        if call.delay_sec > 0:
            await asyncio.sleep(call.delay_sec)
        for chunk in call.chunks:
            yield chunk
        if call.error is not None:
            raise call.error
