"""
Tool System（协议 + 注册表）。

说明：
- 派发器依赖 safety（审批门禁），需从 `agent_runtime.tools.dispatcher` 显式导入；
  包级别只导出叶子模块，`llm` / `safety` 引用工具协议时不会把派发器一并拉进来。
"""

from __future__ import annotations

from agent_runtime.tools.protocol import REJECTION_MARKER, RiskTier, ToolDefinition, ToolResult
from agent_runtime.tools.registry import ToolRegistry

__all__ = [
    "protocol",
    "registry",
    "REJECTION_MARKER",
    "RiskTier",
    "ToolDefinition",
    "ToolRegistry",
    "ToolResult",
]
