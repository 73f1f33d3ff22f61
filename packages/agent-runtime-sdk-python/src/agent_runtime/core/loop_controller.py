"""
LoopController：orchestrator 的计数/预算/取消控制（internal）。

目标：
- 将“turn 计数、单 turn tool round 预算、cancel_checker”收敛到单一对象；
- 会话级对象：turn 计数跨 turn 递增，round 计数在每个 turn 开始时清零。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional


@dataclass
class LoopController:
    """
    LoopController（internal）。

    字段：
    - max_tool_rounds：单个 turn 内允许的 tool round 次数
    - cancel_checker：取消检测回调（返回 True 表示应尽快停止；异常时 fail-open）
    """

    max_tool_rounds: int
    cancel_checker: Optional[Callable[[], bool]] = None
    _turn: int = field(default=0, init=False)
    _rounds: int = field(default=0, init=False)
    _last_tools: List[str] = field(default_factory=list, init=False)

    def next_turn_id(self) -> str:
        """推进 turn 计数、重置 round 预算，并返回 turn_id（形如 `turn_1`）。"""

        self._turn += 1
        self._rounds = 0
        self._last_tools = []
        return f"turn_{self._turn}"

    @property
    def rounds(self) -> int:
        return self._rounds

    @property
    def last_tools(self) -> List[str]:
        return list(self._last_tools)

    def try_consume_round(self, tool_names: List[str]) -> bool:
        """
        尝试消耗一次 tool round 预算。

        返回：
        - True：预算充足，且已消耗一次
        - False：预算耗尽（调用方应中止 turn）
        """

        self._last_tools = list(tool_names)
        if self._rounds >= int(self.max_tool_rounds):
            return False
        self._rounds += 1
        return True

    def is_cancelled(self) -> bool:
        """
        检查是否需要取消当前 turn。

        约束：
        - 异常时 fail-open：返回 False。
        """

        if self.cancel_checker is None:
            return False
        try:
            return bool(self.cancel_checker())
        except Exception:
            return False
