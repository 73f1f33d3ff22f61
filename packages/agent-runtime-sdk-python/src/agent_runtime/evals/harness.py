"""
Eval harness：固定输入 → 全新会话 → 检查是否调用了预期工具 → 汇总得分。

设计目标：
- 每个 case 使用独立的 Orchestrator/MessageStore，避免 case 之间互相污染；
- 评分只读取 store 快照，不修改被测系统；
- 输出 Markdown + JSON 两份结果，便于人类阅读与 CI 接入。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.core.errors import UserError
from agent_runtime.core.messages import Message
from agent_runtime.core.orchestrator import Orchestrator

OrchestratorFactory = Callable[[], Orchestrator]
Scorer = Callable[[Sequence[Message], str], Tuple[bool, Optional[str]]]


class EvalCase(BaseModel):
    """单个评测用例：输入文本 + 预期被调用的工具名。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    input: str
    expected_tool_name: str


class EvalResult(BaseModel):
    """
    单个用例的结果。

    字段：
    - passed/score：是否命中（score 为 1.0 或 0.0）
    - actual_tool_name：命中时为预期工具名；未命中时为第一个被调用的工具（可能为 None）
    - tool_names：本 case 中按顺序出现的全部 tool request 名称
    - error：turn 抛出的异常描述（评分仍基于 store 中已有的请求）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    input: str
    expected_tool_name: str
    passed: bool
    score: float
    actual_tool_name: Optional[str] = None
    tool_names: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ExperimentReport(BaseModel):
    """一次实验的汇总（average_score ∈ [0, 1]；无用例时为 0.0）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    experiment_name: str
    per_case_results: List[EvalResult]
    average_score: float

    def to_payload(self) -> Dict[str, Any]:
        """对外形状：`{experimentName, perCaseResults, averageScore}`。"""

        return {
            "experimentName": self.experiment_name,
            "perCaseResults": [
                {
                    "input": r.input,
                    "expectedToolName": r.expected_tool_name,
                    "passed": r.passed,
                    "score": r.score,
                    "actualToolName": r.actual_tool_name,
                    "toolNames": list(r.tool_names),
                    "error": r.error,
                }
                for r in self.per_case_results
            ],
            "averageScore": self.average_score,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, indent=2)


def tool_call_match(messages: Sequence[Message], expected_tool_name: str) -> Tuple[bool, Optional[str]]:
    """
    默认 scorer：store 中任意 tool request 名称等于预期即命中。

    返回：
    - (passed, actual_tool_name)
    """

    names = [c.name for m in messages for c in (m.tool_calls or ())]
    if expected_tool_name in names:
        return True, expected_tool_name
    return False, (names[0] if names else None)


async def _run_case(case: EvalCase, orchestrator: Orchestrator, scorer: Scorer) -> EvalResult:
    error: Optional[str] = None
    try:
        await orchestrator.run_turn(case.input)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
    view = orchestrator.store.view()
    passed, actual = scorer(view, case.expected_tool_name)
    return EvalResult(
        input=case.input,
        expected_tool_name=case.expected_tool_name,
        passed=bool(passed),
        score=1.0 if passed else 0.0,
        actual_tool_name=actual,
        tool_names=[c.name for m in view for c in (m.tool_calls or ())],
        error=error,
    )


async def run_experiment(
    experiment_name: str,
    cases: Sequence[EvalCase],
    factory: OrchestratorFactory,
    *,
    scorer: Scorer = tool_call_match,
    concurrency: int = 1,
) -> ExperimentReport:
    """
    运行一次实验。

    参数：
    - factory：每次调用必须返回一个全新的 Orchestrator（store 中只能有 system 消息）
    - scorer：评分函数
    - concurrency：同时运行的 case 数（case 之间互不共享会话状态）

    异常：
    - UserError：factory 复用了 orchestrator，或返回的会话已有非 system 历史
    """

    if concurrency < 1:
        raise UserError("concurrency must be >= 1", code="CONFIG_ERROR")

    seen: set[int] = set()
    orchestrators: List[Orchestrator] = []
    for _ in cases:
        orch = factory()
        if id(orch) in seen:
            raise UserError("eval factory must return a fresh orchestrator per case", code="EVAL_SHARED_ORCHESTRATOR")
        if any(m.role != "system" for m in orch.store.view()):
            raise UserError("eval factory returned a conversation with existing history", code="EVAL_DIRTY_ORCHESTRATOR")
        seen.add(id(orch))
        orchestrators.append(orch)

    sem = asyncio.Semaphore(int(concurrency))

    async def _guarded(case: EvalCase, orch: Orchestrator) -> EvalResult:
        async with sem:
            return await _run_case(case, orch, scorer)

    results = list(await asyncio.gather(*(_guarded(c, o) for c, o in zip(cases, orchestrators))))
    average = sum(r.score for r in results) / len(results) if results else 0.0
    return ExperimentReport(experiment_name=experiment_name, per_case_results=results, average_score=average)


def format_report_markdown(reports: Sequence[ExperimentReport]) -> str:
    """把一组实验结果渲染为 Markdown。"""

    lines: List[str] = ["# Tool Selection Eval Report", ""]
    for report in reports:
        lines.append(f"## {report.experiment_name}")
        lines.append(f"- Average score: `{report.average_score:.3f}`")
        lines.append("")
        lines.append("| # | Input | Expected | Actual | Result |")
        lines.append("|---|-------|----------|--------|--------|")
        for i, r in enumerate(report.per_case_results, start=1):
            outcome = "PASS" if r.passed else "FAIL"
            if r.error:
                outcome += f" ({r.error})"
            text = r.input.replace("|", "\\|")
            lines.append(f"| {i} | {text} | `{r.expected_tool_name}` | `{r.actual_tool_name or '-'}` | {outcome} |")
        lines.append("")

    if len(reports) > 1:
        lines.append("## Summary")
        for report in reports:
            lines.append(f"- {report.experiment_name}: `{report.average_score:.3f}`")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
