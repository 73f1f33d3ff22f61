"""Eval harness（工具选择准确率）。"""

from __future__ import annotations

from agent_runtime.evals.harness import EvalCase, EvalResult, ExperimentReport, format_report_markdown, run_experiment, tool_call_match

__all__ = ["EvalCase", "EvalResult", "ExperimentReport", "format_report_markdown", "run_experiment", "tool_call_match"]
