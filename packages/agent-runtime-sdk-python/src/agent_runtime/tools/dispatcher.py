"""
ToolDispatcher：把一轮 tool request 变成同样数量、同样顺序的 tool result 消息。

流程（每个 request）：
1. resolve：未注册 → not_found 结果
2. 解析 + 校验 arguments：非法 → validation 结果
3. 受控工具经 ApprovalGate 审批：拒绝 → 带 rejection marker 的结果（executor 不执行）
4. 执行 executor：异常 → execution 结果

说明：
- 1~3 按请求顺序串行（审批必须逐个、按序进行，且不会因前一个拒绝而短路）；
- 4 在 `parallel=True` 时并发执行，结果仍按请求顺序写入 store；
- 任意路径退出（含取消）都会为每个 request 写入结果，store 不会留下悬空 request。
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agent_runtime.core.errors import InvalidArgumentsError, ToolCallError, ToolExecutionError, TurnCancelledError
from agent_runtime.core.messages import Message, ToolCallRequest
from agent_runtime.safety.approvals import ApprovalDecision
from agent_runtime.safety.gate import ApprovalGate
from agent_runtime.state.message_store import MessageStore
from agent_runtime.tools.protocol import ToolDefinition, ToolResult
from agent_runtime.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

EmitFn = Callable[..., None]
CANCELLED_KIND = "cancelled"


@dataclass(frozen=True)
class ToolDispatchOutcome:
    """单个 tool call 的派发结果（供事件/metrics/测试断言使用）。"""

    call: ToolCallRequest
    result: ToolResult
    decision: Optional[ApprovalDecision] = None


def parse_tool_arguments(call: ToolCallRequest) -> Dict[str, Any]:
    """
    解析模型产出的 arguments 原文。

    规则：
    - raw_arguments 缺失时使用已解析的 `arguments`；
    - 空字符串视为 `{}`（无参工具常见）；
    - 非法 JSON 或非 object → InvalidArgumentsError。
    """

    raw = call.raw_arguments
    if raw is None:
        return dict(call.arguments)
    if not raw.strip():
        return {}
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidArgumentsError(
            f"arguments for {call.name} is not valid JSON: {e.msg}",
            tool=call.name,
            tool_call_id=call.id,
        ) from None
    if not isinstance(obj, dict):
        raise InvalidArgumentsError(
            f"arguments for {call.name} must be a JSON object",
            tool=call.name,
            tool_call_id=call.id,
        )
    return obj


def _error_result(e: ToolCallError) -> ToolResult:
    details: Dict[str, Any] = {"tool": e.tool}
    errors = getattr(e, "errors", None)
    if errors:
        details["errors"] = errors
    return ToolResult.error(error_kind=e.error_kind, message=e.message, details=details)


def _cancelled_result(call: ToolCallRequest) -> ToolResult:
    return ToolResult.error(
        error_kind=CANCELLED_KIND,
        message="tool call cancelled before completion",
        details={"tool": call.name},
    )


def _noop_emit(type_: str, payload: Dict[str, Any], *, step_id: Optional[str] = None) -> None:
    return None


class ToolDispatcher:
    """tool 派发器（无会话状态；可被多个会话共享）。"""

    def __init__(self, *, registry: ToolRegistry, gate: ApprovalGate, parallel: bool = True) -> None:
        """
        参数：
        - registry：只读工具注册表
        - gate：审批门禁
        - parallel：是否并发执行同一轮中已批准的调用
        """

        self._registry = registry
        self._gate = gate
        self._parallel = bool(parallel)

    async def dispatch(
        self,
        calls: Sequence[ToolCallRequest],
        *,
        store: MessageStore,
        emit: Optional[EmitFn] = None,
        cancel_checker: Optional[Callable[[], bool]] = None,
        conversation_id: str = "",
    ) -> List[ToolDispatchOutcome]:
        """
        派发一轮 tool request，并把结果按请求顺序追加到 store。

        参数：
        - calls：assistant 消息中的 tool request（有序）
        - store：会话消息日志（calls 必须是其中尚未回答的 request）
        - emit：事件回调 `(type, payload, step_id=...)`
        - cancel_checker：返回 True 表示应尽快停止（不再发起新的审批/执行）

        返回：
        - 与 calls 同序的 ToolDispatchOutcome 列表

        异常：
        - TurnCancelledError：cancel_checker 触发（结果已补齐为 cancelled）
        - asyncio.CancelledError：外部取消（结果同样已补齐）
        """

        emit_fn = emit or _noop_emit
        results: Dict[str, ToolResult] = {}
        decisions: Dict[str, ApprovalDecision] = {}

        def _check_cancelled() -> None:
            if cancel_checker is not None and cancel_checker():
                raise TurnCancelledError(conversation_id=conversation_id)

        try:
            approved: List[Tuple[ToolCallRequest, ToolDefinition, Dict[str, Any]]] = []
            for call in calls:
                _check_cancelled()
                emit_fn(
                    "tool_call_requested",
                    {"call_id": call.id, "name": call.name, "arguments": call.arguments_text()},
                    step_id=call.id,
                )
                try:
                    definition = self._registry.resolve(call.name, tool_call_id=call.id)
                    args = parse_tool_arguments(call)
                    args = self._registry.validate_arguments(call.name, args, tool_call_id=call.id)
                except ToolCallError as e:
                    results[call.id] = _error_result(e)
                    self._emit_finished(emit_fn, call, results[call.id])
                    continue

                if definition.requires_approval:
                    emit_fn("approval_requested", {"call_id": call.id, "tool": call.name, "arguments": args}, step_id=call.id)
                    decision = await self._gate.decide(call, definition, args)
                    decisions[call.id] = decision
                    emit_fn(
                        "approval_decided",
                        {"call_id": call.id, "tool": call.name, "outcome": decision.outcome.value, "rationale": decision.rationale},
                        step_id=call.id,
                    )
                    if not decision.approved:
                        results[call.id] = ToolResult.rejected_by_approval(tool=call.name, rationale=decision.rationale)
                        self._emit_finished(emit_fn, call, results[call.id])
                        continue
                approved.append((call, definition, args))

            _check_cancelled()
            if self._parallel and len(approved) > 1:
                await self._execute_concurrently(approved, results, emit_fn)
            else:
                for call, definition, args in approved:
                    _check_cancelled()
                    results[call.id] = await self._execute(call, definition, args)
                    self._emit_finished(emit_fn, call, results[call.id])
        finally:
            self._record(calls, results, store)

        return [ToolDispatchOutcome(call=c, result=results[c.id], decision=decisions.get(c.id)) for c in calls]

    async def _execute_concurrently(
        self,
        approved: Sequence[Tuple[ToolCallRequest, ToolDefinition, Dict[str, Any]]],
        results: Dict[str, ToolResult],
        emit_fn: EmitFn,
    ) -> None:
        tasks = {call.id: asyncio.ensure_future(self._execute(call, definition, args)) for call, definition, args in approved}
        try:
            await asyncio.gather(*tasks.values())
        finally:
            for call, _definition, _args in approved:
                task = tasks[call.id]
                if task.done() and not task.cancelled():
                    results[call.id] = task.result()
                    self._emit_finished(emit_fn, call, results[call.id])
                else:
                    task.cancel()

    async def _execute(self, call: ToolCallRequest, definition: ToolDefinition, args: Dict[str, Any]) -> ToolResult:
        try:
            value = await definition.execute(args)
        except Exception as e:
            err = ToolExecutionError(call.name, e, tool_call_id=call.id)
            logger.debug("Tool %r raised during execution", call.name, exc_info=True)
            return _error_result(err)
        return ToolResult.from_value(value)

    @staticmethod
    def _emit_finished(emit_fn: EmitFn, call: ToolCallRequest, result: ToolResult) -> None:
        emit_fn(
            "tool_call_finished",
            {"call_id": call.id, "tool": call.name, "ok": result.ok, "error_kind": result.error_kind},
            step_id=call.id,
        )

    @staticmethod
    def _record(calls: Sequence[ToolCallRequest], results: Dict[str, ToolResult], store: MessageStore) -> None:
        """按请求顺序写入结果；未完成的 request 补 cancelled 结果。"""

        pending = {c.id for c in store.pending_tool_calls()}
        for call in calls:
            if call.id not in pending:
                continue
            result = results.get(call.id)
            if result is None:
                result = _cancelled_result(call)
                results[call.id] = result
            store.append(Message.tool_result(tool_call_id=call.id, content=result.content))
