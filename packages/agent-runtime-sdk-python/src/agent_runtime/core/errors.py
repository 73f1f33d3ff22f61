"""
SDK 错误分类（异常类型）。

说明：
- 单次 tool call 内的失败（未知工具、参数非法、执行失败、审批拒绝）一律转成结构化 tool result 回注模型，
  异常类型仅用于模块间传递“错误层级”语义与测试断言；
- 致命错误（RunawayToolLoopError、registry 误配置、ModelEndpointError）会中止当前 turn 并抛给调用方。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class AgentSdkError(Exception):
    """SDK 错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """框架结构化问题对象（可放入事件 payload）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(AgentSdkError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """调用方输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class DuplicateToolError(FrameworkError):
    """同名 tool 重复注册（registry 误配置，fail-fast）。"""

    def __init__(self, tool: str) -> None:
        super().__init__(code="DUPLICATE_TOOL", message=f"tool already registered: {tool}", details={"tool": tool})
        self.tool = tool


class RegistryFrozenError(FrameworkError):
    """registry 冻结后仍尝试注册。"""

    def __init__(self, tool: str) -> None:
        super().__init__(
            code="REGISTRY_FROZEN",
            message=f"tool registry is frozen; cannot register: {tool}",
            details={"tool": tool},
        )
        self.tool = tool


class ToolCallError(AgentSdkError):
    """单次 tool call 的失败（会被 dispatcher 转成结构化结果，不中止 turn）。"""

    error_kind = "unknown"

    def __init__(self, message: str, *, tool: str, tool_call_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.tool = tool
        self.tool_call_id = tool_call_id


class UnknownToolError(ToolCallError):
    """模型请求了未注册的 tool。"""

    error_kind = "not_found"

    def __init__(self, tool: str, *, tool_call_id: Optional[str] = None) -> None:
        super().__init__(f"unknown tool: {tool}", tool=tool, tool_call_id=tool_call_id)


class InvalidArgumentsError(ToolCallError):
    """tool arguments 无法解析为 JSON object，或不符合参数 schema。"""

    error_kind = "validation"

    def __init__(
        self,
        message: str,
        *,
        tool: str,
        tool_call_id: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message, tool=tool, tool_call_id=tool_call_id)
        self.errors: List[Dict[str, Any]] = list(errors or [])


class ToolExecutionError(ToolCallError):
    """executor 抛出的失败（包装原始异常）。"""

    error_kind = "execution"

    def __init__(self, tool: str, cause: BaseException, *, tool_call_id: Optional[str] = None) -> None:
        message = str(cause) or type(cause).__name__
        super().__init__(message, tool=tool, tool_call_id=tool_call_id)
        self.cause = cause


class RunawayToolLoopError(AgentSdkError):
    """单个 turn 内 tool round 次数超过上限（致命，中止 turn）。"""

    def __init__(
        self,
        *,
        conversation_id: str,
        rounds: int,
        max_rounds: int,
        last_tools: Sequence[str] = (),
    ) -> None:
        self.conversation_id = conversation_id
        self.rounds = int(rounds)
        self.max_rounds = int(max_rounds)
        self.last_tools = list(last_tools)
        tools = ",".join(self.last_tools) or "-"
        super().__init__(
            f"tool loop exceeded max_tool_rounds={self.max_rounds} "
            f"(conversation_id={conversation_id}, rounds={self.rounds}, last_tools={tools})"
        )


class SummarizationFailure(AgentSdkError):
    """summarizer 调用失败（compactor 会降级为滑窗，不中止 turn）。"""


class LlmError(AgentSdkError):
    """LLM 通信/协议错误基类。"""


class MessageStoreError(AgentSdkError):
    """违反 message store 的追加约束（tool result 与 request 的关联不成立等）。"""


class TurnCancelledError(AgentSdkError):
    """turn 被 cancel_checker 取消（store 已补齐 cancelled 结果，可继续下一个 turn）。"""

    def __init__(self, *, conversation_id: str, turn_id: Optional[str] = None) -> None:
        self.conversation_id = conversation_id
        self.turn_id = turn_id
        super().__init__(f"turn cancelled (conversation_id={conversation_id}, turn_id={turn_id or '-'})")
