"""
Agent Runtime SDK（Python）。

说明：
- 工具调用型对话 agent 的运行时：模型调用 → tool request 派发（含风险分级审批）→ 结果回注 → 最终回答；
- 当前包含：
  - 消息模型与 append-only MessageStore
  - ToolRegistry / ToolDispatcher（参数校验、并发执行、按序回注）
  - ApprovalGate（固定决策 / 回调 / 交互式 + 自由文本解释 / 规则）
  - 上下文压缩（滑窗 / token 预算 / 摘要 / 分层摘要）
  - Orchestrator（有界 tool round 的 turn 状态机）与事件流
  - Eval harness（工具选择准确率）
"""

from __future__ import annotations

from agent_runtime.core.agent import Agent
from agent_runtime.core.orchestrator import Orchestrator, OrchestratorState, TurnResult

__all__ = ["Agent", "Orchestrator", "OrchestratorState", "TurnResult", "__version__"]

__version__ = "0.1.0"
