"""
Orchestrator：驱动单个会话的 turn 状态机。

状态：
    AWAITING_INPUT → MODEL_CALL → {FINISHED | DISPATCHING_TOOLS} → MODEL_CALL → … → FINISHED

约束：
- 一个 Orchestrator 独占一个 MessageStore 与一个 CompactionState；ToolRegistry 只读共享；
- 同一会话严格串行：上一个状态的工作（含所有 await）完成前不会进入下一个状态；
- tool round 有上限，超过即抛 `RunawayToolLoopError`（不会把超限那一轮的 request 写入 store）；
- 任何异常退出后，store 中不存在缺少结果的 request，会话回到 AWAITING_INPUT 可继续使用。
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Optional, Sequence, Tuple

from agent_runtime.core.contracts import AgentEvent
from agent_runtime.core.errors import MessageStoreError, RunawayToolLoopError, TurnCancelledError, UserError
from agent_runtime.core.event_emitter import EventEmitter, EventHook, EventStream
from agent_runtime.core.loop_controller import LoopController
from agent_runtime.core.messages import Message
from agent_runtime.core.run_errors import classify_run_exception
from agent_runtime.core.stream_adapters import run_turn_stream_async_iter, run_turn_stream_sync
from agent_runtime.core.utils import now_rfc3339
from agent_runtime.llm.errors import ModelEndpointError
from agent_runtime.llm.protocol import (
    ChatBackend,
    ModelRequest,
    ModelResponse,
    ModelStreamAssembler,
    ModelStreamChunk,
    supports_streaming,
    validate_chat_backend,
)
from agent_runtime.prompts.history import CompactionPolicy, CompactionState, NoCompaction
from agent_runtime.safety.gate import ApprovalGate
from agent_runtime.state.message_store import MessageStore
from agent_runtime.tools.dispatcher import ToolDispatcher
from agent_runtime.tools.registry import ToolRegistry


class OrchestratorState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    MODEL_CALL = "model_call"
    DISPATCHING_TOOLS = "dispatching_tools"
    FINISHED = "finished"


@dataclass(frozen=True)
class TurnResult:
    """
    一个 turn 的终态。

    字段：
    - final_output：最终回答文本（模型返回 None 时为空字符串）
    - tool_rounds：本 turn 实际执行的 tool round 数
    - messages：turn 结束时 store 的完整快照
    """

    conversation_id: str
    turn_id: str
    final_output: str
    tool_rounds: int
    messages: Tuple[Message, ...]


class Orchestrator:
    """单会话 orchestrator（不可在多个并发 turn 间共享）。"""

    def __init__(
        self,
        *,
        backend: ChatBackend,
        registry: ToolRegistry,
        model: str,
        gate: Optional[ApprovalGate] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        compaction: Optional[CompactionPolicy] = None,
        compaction_state: Optional[CompactionState] = None,
        max_tool_rounds: int = 8,
        parallel_tool_calls: bool = True,
        system_prompt: Optional[str] = None,
        store: Optional[MessageStore] = None,
        conversation_id: Optional[str] = None,
        hooks: Sequence[EventHook] = (),
        cancel_checker: Optional[Callable[[], bool]] = None,
        request_extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        创建会话 orchestrator。

        参数：
        - backend：模型端点（显式注入，不使用模块级全局 client）
        - registry：工具注册表；构造时冻结，此后整个会话看到同一份 tools 列表
        - model：模型标识
        - gate/dispatcher：可选；缺省由 registry + gate 构造（无 provider 的 gate 会拒绝所有受控调用）
        - compaction：压缩策略；缺省不压缩
        - max_tool_rounds：单 turn tool round 上限（>=1）
        - system_prompt：可选；新会话的第一条 system 消息
        - store：可选；接管已有的消息日志（与 system_prompt 互斥）
        - hooks：事件 hooks（fail-open）
        - cancel_checker：取消检测回调（在每个挂起点之间检查）

        异常：
        - UserError：参数不合法（backend 协议不匹配、max_tool_rounds<1、store 与 system_prompt 同时给出）
        """

        try:
            validate_chat_backend(backend)
        except ValueError as e:
            raise UserError(str(e), code="CONFIG_ERROR") from None
        if int(max_tool_rounds) < 1:
            raise UserError("max_tool_rounds must be >= 1", code="CONFIG_ERROR")
        if store is not None and system_prompt is not None:
            raise UserError("pass either store or system_prompt, not both", code="CONFIG_ERROR")

        self._backend = backend
        self._registry = registry.freeze()
        self._model = model
        self._gate = gate or ApprovalGate()
        self._dispatcher = dispatcher or ToolDispatcher(registry=registry, gate=self._gate, parallel=parallel_tool_calls)
        self._compaction: CompactionPolicy = compaction or NoCompaction()
        self._compaction_state = compaction_state or CompactionState()
        self._conversation_id = conversation_id or f"conv_{uuid.uuid4().hex[:12]}"
        self._emitter = EventEmitter(hooks=tuple(hooks))
        self._loop = LoopController(max_tool_rounds=int(max_tool_rounds), cancel_checker=cancel_checker)
        self._request_extra = dict(request_extra or {})
        self._state = OrchestratorState.AWAITING_INPUT

        if store is None:
            store = MessageStore()
            if system_prompt:
                store.append(Message.system(system_prompt))
        self._store = store

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def compaction_state(self) -> CompactionState:
        return self._compaction_state

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def model(self) -> str:
        return self._model

    def reset(self) -> MessageStore:
        """
        开始一段新对话：新的 store 只保留原有的 system 消息，压缩状态清空。

        返回：
        - 旧的 store（供审计/日志；旧 store 本身不会被修改）
        """

        if self._state not in (OrchestratorState.AWAITING_INPUT, OrchestratorState.FINISHED):
            raise UserError("cannot reset while a turn is in progress", code="TURN_IN_PROGRESS")
        old = self._store
        self._store = MessageStore(old.system_messages())
        self._compaction_state = CompactionState(summary_cache_size=self._compaction_state.summary_cache_size)
        return old

    async def run_turn(self, text: str, *, stream: Optional[EventStream] = None) -> TurnResult:
        """
        执行一个 turn：追加用户消息，循环调用模型/派发工具，直到得到最终回答。

        参数：
        - text：用户输入
        - stream：可选；事件实时回调（`run_turn_stream` 使用）

        返回：
        - TurnResult

        异常：
        - RunawayToolLoopError：tool round 超过上限
        - ModelEndpointError：模型调用失败（不在内部重试）
        - TurnCancelledError / asyncio.CancelledError：turn 被取消
        - UserError：上一个 turn 尚未结束，或压缩预算配置不可满足
        """

        if self._state not in (OrchestratorState.AWAITING_INPUT, OrchestratorState.FINISHED):
            raise UserError("a turn is already in progress for this conversation", code="TURN_IN_PROGRESS")

        turn_id = self._loop.next_turn_id()
        emitter = self._emitter.with_stream(stream)

        def emit(type_: str, payload: Dict[str, Any], *, step_id: Optional[str] = None) -> None:
            emitter.emit(
                AgentEvent(
                    type=type_,
                    timestamp=now_rfc3339(),
                    conversation_id=self._conversation_id,
                    turn_id=turn_id,
                    step_id=step_id,
                    payload=payload,
                )
            )

        emit("turn_started", {"input": text, "model": self._model})
        self._store.append(Message.user(text))
        self._state = OrchestratorState.MODEL_CALL
        try:
            while True:
                self._check_cancelled(turn_id)
                response = await self._call_model(turn_id, emit)

                if response.is_final:
                    final = response.content or ""
                    self._store.append(Message.assistant(final))
                    self._state = OrchestratorState.FINISHED
                    emit("turn_completed", {"final_output": final, "tool_rounds": self._loop.rounds})
                    return TurnResult(
                        conversation_id=self._conversation_id,
                        turn_id=turn_id,
                        final_output=final,
                        tool_rounds=self._loop.rounds,
                        messages=self._store.view(),
                    )

                calls = list(response.tool_calls)
                if not self._loop.try_consume_round([c.name for c in calls]):
                    raise RunawayToolLoopError(
                        conversation_id=self._conversation_id,
                        rounds=self._loop.rounds,
                        max_rounds=self._loop.max_tool_rounds,
                        last_tools=self._loop.last_tools,
                    )
                self._append_tool_requests(response, turn_id)

                self._state = OrchestratorState.DISPATCHING_TOOLS
                await self._dispatcher.dispatch(
                    calls,
                    store=self._store,
                    emit=emit,
                    cancel_checker=self._loop.is_cancelled,
                    conversation_id=self._conversation_id,
                )
                self._state = OrchestratorState.MODEL_CALL
        except (TurnCancelledError, asyncio.CancelledError) as e:
            self._state = OrchestratorState.AWAITING_INPUT
            emit("turn_cancelled", {"message": str(e) or "cancelled"})
            if isinstance(e, TurnCancelledError) and e.turn_id is None:
                raise TurnCancelledError(conversation_id=self._conversation_id, turn_id=turn_id) from None
            raise
        except Exception as e:
            self._state = OrchestratorState.AWAITING_INPUT
            emit("turn_failed", classify_run_exception(e).to_payload())
            raise

    async def _call_model(self, turn_id: str, emit: Callable[..., None]) -> ModelResponse:
        view = self._store.view()
        compacted = await self._compaction.compact(view, self._compaction_state)
        if compacted.changed or compacted.fallback:
            emit(
                "compaction_applied",
                {
                    "strategy": compacted.strategy,
                    "before": len(view),
                    "after": len(compacted.messages),
                    "dropped": compacted.dropped,
                    "summarized": compacted.summarized,
                    "cache_hit": compacted.cache_hit,
                    "fallback": compacted.fallback,
                },
            )

        request = ModelRequest(
            model=self._model,
            messages=tuple(compacted.messages),
            tools=tuple(self._registry.list_definitions()),
            conversation_id=self._conversation_id,
            turn_id=turn_id,
            extra=dict(self._request_extra),
        )
        emit(
            "llm_request_started",
            {"model": self._model, "message_count": len(request.messages), "tool_count": len(request.tools)},
        )
        try:
            if supports_streaming(self._backend):
                response = await self._stream_model(request, emit)
            else:
                response = await self._backend.complete(request)
        except ModelEndpointError as e:
            if e.conversation_id is None:
                e.conversation_id = self._conversation_id
                e.turn_id = turn_id
            raise
        except Exception as e:
            raise ModelEndpointError(
                str(e) or type(e).__name__,
                conversation_id=self._conversation_id,
                turn_id=turn_id,
                model=self._model,
            ) from e
        if not isinstance(response, ModelResponse):
            raise ModelEndpointError(
                f"backend returned {type(response).__name__}, expected ModelResponse",
                conversation_id=self._conversation_id,
                turn_id=turn_id,
                model=self._model,
            )

        emit(
            "llm_response_received",
            {
                "finish_reason": response.finish_reason,
                "content_chars": len(response.content or ""),
                "tool_calls": [c.name for c in response.tool_calls],
            },
        )
        return response

    async def _stream_model(self, request: ModelRequest, emit: Callable[..., None]) -> ModelResponse:
        """streaming 调用：文本增量实时发 `llm_text_delta`，分片拼回与 `complete` 等价的响应。"""

        assembler = ModelStreamAssembler()
        async for chunk in self._backend.stream_chat(request):  # type: ignore[attr-defined]
            if not isinstance(chunk, ModelStreamChunk):
                raise ModelEndpointError(f"backend streamed {type(chunk).__name__}, expected ModelStreamChunk")
            text = assembler.feed(chunk)
            if text:
                emit("llm_text_delta", {"delta": text})
        return assembler.finish()

    def _append_tool_requests(self, response: ModelResponse, turn_id: str) -> None:
        """写入携带 tool request 的 assistant 消息；id 缺失/重复视为端点协议错误。"""

        ids = [c.id for c in response.tool_calls]
        if any(not i for i in ids) or len(set(ids)) != len(ids):
            raise ModelEndpointError(
                f"model returned missing or duplicate tool call ids: {ids}",
                conversation_id=self._conversation_id,
                turn_id=turn_id,
                model=self._model,
            )
        try:
            self._store.append(Message.assistant(response.content, tool_calls=list(response.tool_calls)))
        except MessageStoreError as e:
            raise ModelEndpointError(
                str(e), conversation_id=self._conversation_id, turn_id=turn_id, model=self._model
            ) from e

    def _check_cancelled(self, turn_id: str) -> None:
        if self._loop.is_cancelled():
            raise TurnCancelledError(conversation_id=self._conversation_id, turn_id=turn_id)

    def run_turn_stream(self, text: str) -> AsyncIterator[AgentEvent]:
        """异步事件流：事件产生即 yield；turn 失败时在终态事件之后抛出同一异常。"""

        return run_turn_stream_async_iter(self, text)

    def run_turn_stream_sync(self, text: str) -> Iterator[AgentEvent]:
        """同步事件流（在后台线程运行事件循环）。"""

        return run_turn_stream_sync(self, text)
