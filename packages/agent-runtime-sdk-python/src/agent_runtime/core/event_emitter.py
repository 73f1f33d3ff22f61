"""
EventEmitter：事件的统一出口（hooks + 对外推送）。

说明：
- orchestrator 通过单点出口发出事件，保证 hooks 与 stream 看到的顺序一致：
  1) 先调用 hooks（可观测性）
  2) 再推送给调用方（stream）
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from agent_runtime.core.contracts import AgentEvent

logger = logging.getLogger(__name__)

EventStream = Callable[[AgentEvent], None]
EventHook = Callable[[AgentEvent], None]


@dataclass(frozen=True)
class EventEmitter:
    """
    字段：
    - hooks：可观测性 hooks（metrics/日志转发等；不得修改事件对象）
    - stream：可选；对外事件流回调（例如 run_turn_stream 的队列）
    """

    hooks: Sequence[EventHook] = ()
    stream: Optional[EventStream] = None

    def _call_hooks(self, ev: AgentEvent) -> None:
        """
        依次调用 hooks（fail-open）。

        约束：
        - hooks 异常不得影响主流程（避免“监控把主链路打挂”）
        """

        for h in self.hooks or ():
            try:
                h(ev)
            except Exception:
                logger.warning("Event hook failed for %s", ev.type, exc_info=True)
                continue

    def emit(self, ev: AgentEvent) -> None:
        self._call_hooks(ev)
        if self.stream is not None:
            self.stream(ev)

    def with_stream(self, stream: Optional[EventStream]) -> "EventEmitter":
        return EventEmitter(hooks=self.hooks, stream=stream)
