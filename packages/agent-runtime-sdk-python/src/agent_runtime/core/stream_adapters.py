"""
同步/异步 stream 适配器。

目标：
- 把 `run_turn(text, stream=...)` 的回调式事件输出桥接为迭代器；
- 事件产生即 yield，不缓冲到 turn 结束。
"""

from __future__ import annotations

import asyncio
import contextlib
import queue
import threading
from typing import Any, AsyncIterator, Iterator, Optional, Protocol

from agent_runtime.core.contracts import AgentEvent


class _HasRunTurn(Protocol):
    """最小协议：支持 `run_turn(text, stream=...)` 的会话对象。"""

    async def run_turn(self, text: str, *, stream: Any = None) -> Any:  # pragma: no cover - 仅作静态约束
        ...


async def run_turn_stream_async_iter(orchestrator: _HasRunTurn, text: str) -> AsyncIterator[AgentEvent]:
    """
    异步事件流接口。

    约束：
    - turn 以异常结束时，先 yield 终态事件（turn_failed/turn_cancelled），再抛出同一异常；
    - 迭代器被提前关闭时取消后台 turn。
    """

    q: "asyncio.Queue[Optional[AgentEvent]]" = asyncio.Queue()

    async def _runner() -> None:
        try:
            await orchestrator.run_turn(text, stream=q.put_nowait)
        finally:
            q.put_nowait(None)

    t = asyncio.create_task(_runner())
    try:
        while True:
            item = await q.get()
            if item is None:
                break
            yield item
        await t
    finally:
        if not t.done():
            t.cancel()
            with contextlib.suppress(BaseException):
                await asyncio.gather(t, return_exceptions=True)


def run_turn_stream_sync(orchestrator: _HasRunTurn, text: str) -> Iterator[AgentEvent]:
    """
    同步事件流接口（Iterator[AgentEvent]）。

    实现方式：
    - 在后台线程运行事件循环
    - 通过线程安全队列把事件传回当前线程
    """

    q: "queue.Queue[Optional[AgentEvent]]" = queue.Queue()
    err_q: "queue.Queue[BaseException]" = queue.Queue()

    def _worker() -> None:
        try:
            asyncio.run(orchestrator.run_turn(text, stream=q.put))
        except BaseException as e:  # pragma: no cover（线程内异常兜底）
            err_q.put(e)
        finally:
            q.put(None)

    t = threading.Thread(target=_worker, daemon=True)
    t.start()

    while True:
        ev = q.get()
        if ev is None:
            break
        yield ev

    t.join()
    if not err_q.empty():
        raise err_q.get()
