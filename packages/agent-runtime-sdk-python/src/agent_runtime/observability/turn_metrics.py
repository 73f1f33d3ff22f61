"""
Turn metrics：基于事件流的会话统计（hook 形式挂到 orchestrator 上）。

说明：
- 只消费 AgentEvent，不触碰会话内部状态；
- `compute_turn_metrics(events)` 可对任意事件序列离线重算，结果与在线 hook 一致。
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from agent_runtime.core.contracts import AgentEvent


def _new_summary() -> Dict[str, Any]:
    """返回一个空的 metrics summary（字段稳定）。"""

    return {
        "status": "unknown",
        "counts": {
            "turns_total": 0,
            "turns_completed": 0,
            "turns_failed": 0,
            "turns_cancelled": 0,
            "llm_requests_total": 0,
            "tool_calls_total": 0,
            "approvals_requested_total": 0,
            "approvals_approved_total": 0,
            "approvals_rejected_total": 0,
            "compactions_total": 0,
            "summarization_fallbacks_total": 0,
        },
        "tools": {"by_name": {}},
        "errors": [],
    }


def _apply(summary: Dict[str, Any], ev: AgentEvent) -> None:
    counts = summary["counts"]
    typ = ev.type
    payload = ev.payload or {}

    if typ == "turn_started":
        counts["turns_total"] += 1
        summary["status"] = "running"
    elif typ == "turn_completed":
        counts["turns_completed"] += 1
        summary["status"] = "completed"
    elif typ == "turn_failed":
        counts["turns_failed"] += 1
        summary["status"] = "failed"
        summary["errors"].append({"kind": payload.get("error_kind"), "message": payload.get("message")})
    elif typ == "turn_cancelled":
        counts["turns_cancelled"] += 1
        summary["status"] = "cancelled"
    elif typ == "llm_request_started":
        counts["llm_requests_total"] += 1
    elif typ == "compaction_applied":
        counts["compactions_total"] += 1
        if payload.get("fallback"):
            counts["summarization_fallbacks_total"] += 1
    elif typ == "approval_requested":
        counts["approvals_requested_total"] += 1
    elif typ == "approval_decided":
        if payload.get("outcome") == "approved":
            counts["approvals_approved_total"] += 1
        else:
            counts["approvals_rejected_total"] += 1
    elif typ == "tool_call_finished":
        counts["tool_calls_total"] += 1
        tool = str(payload.get("tool") or "")
        by_name: Dict[str, Any] = summary["tools"]["by_name"]
        bucket = by_name.setdefault(tool, {"calls": 0, "ok": 0, "failed": 0, "rejected": 0})
        bucket["calls"] += 1
        if payload.get("ok") is True:
            bucket["ok"] += 1
        elif payload.get("error_kind") == "approval_rejected":
            bucket["rejected"] += 1
        else:
            bucket["failed"] += 1


def compute_turn_metrics(events: Iterable[AgentEvent]) -> Dict[str, Any]:
    """从事件序列计算 metrics summary。"""

    summary = _new_summary()
    for ev in events:
        _apply(summary, ev)
    return summary


class TurnMetricsCollector:
    """
    在线 metrics hook。

    用法：
        metrics = TurnMetricsCollector()
        conversation = agent.new_conversation(hooks=[metrics])
    """

    def __init__(self) -> None:
        self.events: List[AgentEvent] = []

    def __call__(self, ev: AgentEvent) -> None:
        self.events.append(ev)

    def summary(self) -> Dict[str, Any]:
        return compute_turn_metrics(self.events)
