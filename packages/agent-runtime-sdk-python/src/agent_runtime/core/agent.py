"""
Agent：面向调用方的装配入口。

职责：
- 持有进程级共享的 ToolRegistry、ApprovalGate、配置与模型 backend；
- 按配置构造压缩策略；
- 为每个会话创建独立的 Orchestrator（独立 MessageStore/CompactionState）。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from agent_runtime.config.loader import AgentRuntimeConfig, load_config, load_config_dicts
from agent_runtime.core.event_emitter import EventHook
from agent_runtime.core.orchestrator import Orchestrator
from agent_runtime.llm.protocol import ChatBackend
from agent_runtime.prompts.compaction import FactsProvider, HierarchicalCompaction, LlmSummarizer, SummarizationCompaction, Summarizer
from agent_runtime.prompts.history import (
    CompactionPolicy,
    CompactionState,
    NoCompaction,
    TokenBudgetCompaction,
    WindowCompaction,
)
from agent_runtime.safety.approvals import ApprovalProvider, InteractiveApprovalProvider
from agent_runtime.safety.gate import ApprovalGate
from agent_runtime.safety.interpreters import ApprovalInterpreter, KeywordApprovalInterpreter, LlmApprovalInterpreter
from agent_runtime.tools.dispatcher import ToolDispatcher
from agent_runtime.tools.protocol import RiskTier, ToolDefinition
from agent_runtime.tools.registry import ToolRegistry


class Agent:
    """
    Agent 装配器。

    用法：
        agent = Agent(backend=backend, approval_provider=StaticApprovalProvider(True))

        @agent.tool
        def get_weather(city: str) -> dict:
            ...

        conversation = agent.new_conversation(system_prompt="You are a helpful assistant.")
        result = await conversation.run_turn("What's the weather in Tokyo?")
    """

    def __init__(
        self,
        *,
        backend: ChatBackend,
        config: Optional[AgentRuntimeConfig] = None,
        config_paths: Optional[List[Path]] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
        registry: Optional[ToolRegistry] = None,
        approval_provider: Optional[ApprovalProvider] = None,
        summarizer: Optional[Summarizer] = None,
        facts_provider: Optional[FactsProvider] = None,
        hooks: Sequence[EventHook] = (),
    ) -> None:
        """
        参数：
        - backend：模型端点
        - config：已校验的配置；缺省时按 `config_paths` + `config_overrides` 加载（内置 default.yaml 为底）
        - registry：可选；共享的工具注册表
        - approval_provider：审批来源；缺省时所有受控调用都被拒绝
        - summarizer：可选；summarization/hierarchical 策略使用（缺省由 backend 构造 LlmSummarizer）
        - facts_provider：可选；hierarchical 策略的长期事实来源
        - hooks：每个会话共享的事件 hooks
        """

        if config is None:
            if config_paths:
                config = load_config(list(config_paths))
                if config_overrides:
                    config = load_config_dicts([config.model_dump(), config_overrides], include_defaults=False)
            else:
                config = load_config_dicts([config_overrides or {}])
        self._config = config
        self._backend = backend
        self._registry = registry or ToolRegistry()
        self._gate = ApprovalGate(approval_provider, timeout_ms=config.safety.approval_timeout_ms)
        self._summarizer = summarizer
        self._facts_provider = facts_provider
        self._hooks = tuple(hooks)

    @property
    def config(self) -> AgentRuntimeConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    def tool(
        self,
        func=None,  # type: ignore[no-untyped-def]
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        risk_tier: RiskTier = RiskTier.NONE,
    ):
        """注册自定义 tool（decorator），语义同 `ToolRegistry.tool`。"""

        return self._registry.tool(func, name=name, description=description, risk_tier=risk_tier)

    def register_tool(self, definition: ToolDefinition) -> ToolDefinition:
        return self._registry.register(definition)

    def build_compaction(self) -> CompactionPolicy:
        """按 `compaction.strategy` 构造压缩策略（每个会话一份）。"""

        cfg = self._config.compaction
        if cfg.strategy == "none":
            return NoCompaction()
        if cfg.strategy == "window":
            return WindowCompaction(max_messages=cfg.max_messages)
        if cfg.strategy == "token_budget":
            return TokenBudgetCompaction(max_tokens=cfg.max_tokens, chars_per_token=cfg.chars_per_token)

        summarizer = self._summarizer or LlmSummarizer(
            backend=self._backend,
            model=self._config.models.summarizer_model(),
            max_chars=cfg.summary_max_chars,
        )
        if cfg.strategy == "summarization":
            return SummarizationCompaction(
                summarizer=summarizer,
                window_size=cfg.window_size,
                max_summary_chars=cfg.summary_max_chars,
            )
        return HierarchicalCompaction(
            summarizer=summarizer,
            window_size=cfg.window_size,
            facts_provider=self._facts_provider or (lambda _old: []),
            max_summary_chars=cfg.summary_max_chars,
        )

    def interactive_approval_provider(self, ask: Callable[[str], Any]) -> InteractiveApprovalProvider:
        """
        构造交互式审批 Provider（解释器由 `safety.interpreter` 决定）。

        参数：
        - ask：`(prompt) -> reply`；同步函数在线程中执行（例如 `input`）
        """

        if self._config.safety.interpreter == "llm":
            interpreter: ApprovalInterpreter = LlmApprovalInterpreter(
                backend=self._backend,
                model=self._config.models.approval_interpreter_model(),
            )
        else:
            interpreter = KeywordApprovalInterpreter()
        return InteractiveApprovalProvider(ask=ask, interpreter=interpreter)

    def new_conversation(
        self,
        *,
        system_prompt: Optional[str] = None,
        conversation_id: Optional[str] = None,
        cancel_checker: Optional[Callable[[], bool]] = None,
        compaction: Optional[CompactionPolicy] = None,
        hooks: Sequence[EventHook] = (),
    ) -> Orchestrator:
        """创建一个新会话（registry 在此冻结）。"""

        run = self._config.run
        return Orchestrator(
            backend=self._backend,
            registry=self._registry,
            model=self._config.models.default,
            gate=self._gate,
            dispatcher=ToolDispatcher(registry=self._registry, gate=self._gate, parallel=run.parallel_tool_calls),
            compaction=compaction or self.build_compaction(),
            compaction_state=CompactionState(summary_cache_size=self._config.compaction.summary_cache_size),
            max_tool_rounds=run.max_tool_rounds,
            system_prompt=system_prompt,
            conversation_id=conversation_id,
            hooks=self._hooks + tuple(hooks),
            cancel_checker=cancel_checker,
        )
