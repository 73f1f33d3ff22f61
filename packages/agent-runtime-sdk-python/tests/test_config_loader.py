from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_runtime import Agent
from agent_runtime.config.defaults import load_default_config_dict
from agent_runtime.config.loader import load_config, load_config_dicts
from agent_runtime.llm.fake import FakeChatBackend
from agent_runtime.prompts.compaction import HierarchicalCompaction, SummarizationCompaction
from agent_runtime.prompts.history import NoCompaction, TokenBudgetCompaction, WindowCompaction
from agent_runtime.safety.approvals import InteractiveApprovalProvider


def test_embedded_defaults_load() -> None:
    raw = load_default_config_dict()
    assert raw["config_version"] == 1
    cfg = load_config_dicts([])
    assert cfg.run.max_tool_rounds == 8
    assert cfg.run.parallel_tool_calls is True
    assert cfg.compaction.strategy == "window"
    assert cfg.safety.approval_timeout_ms is None
    assert cfg.models.summarizer_model() == cfg.models.default


def test_overlays_deep_merge_in_order(tmp_path: Path) -> None:
    base = tmp_path / "base.yaml"
    base.write_text("run:\n  max_tool_rounds: 3\nmodels:\n  default: model-a\n", encoding="utf-8")
    over = tmp_path / "over.yaml"
    over.write_text("models:\n  summarizer: model-s\ncompaction:\n  strategy: token_budget\n", encoding="utf-8")

    cfg = load_config([base, over])

    assert cfg.run.max_tool_rounds == 3
    assert cfg.run.parallel_tool_calls is True
    assert cfg.models.default == "model-a"
    assert cfg.models.summarizer_model() == "model-s"
    assert cfg.compaction.strategy == "token_budget"
    assert cfg.compaction.max_tokens == 8000


def test_empty_yaml_file_is_an_empty_overlay(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]).models.default == "gpt-4o-mini"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "missing.yaml"])


def test_non_mapping_root_raises(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])


@pytest.mark.parametrize(
    "overlay",
    [
        {"run": {"max_tool_rounds": 0}},
        {"run": {"unknown_knob": True}},
        {"compaction": {"strategy": "magic"}},
        {"models": {"default": "  "}},
        {"safety": {"interpreter": "psychic"}},
    ],
)
def test_invalid_values_are_rejected(overlay) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError):
        load_config_dicts([overlay])


@pytest.mark.parametrize(
    "strategy,expected",
    [
        ("none", NoCompaction),
        ("window", WindowCompaction),
        ("token_budget", TokenBudgetCompaction),
        ("summarization", SummarizationCompaction),
        ("hierarchical", HierarchicalCompaction),
    ],
)
def test_agent_builds_compaction_from_config(strategy: str, expected: type) -> None:
    agent = Agent(backend=FakeChatBackend([]), config_overrides={"compaction": {"strategy": strategy}})
    assert isinstance(agent.build_compaction(), expected)


def test_agent_config_paths_and_overrides_combine(tmp_path: Path) -> None:
    path = tmp_path / "agent.yaml"
    path.write_text("run:\n  max_tool_rounds: 2\n", encoding="utf-8")
    agent = Agent(
        backend=FakeChatBackend([]),
        config_paths=[path],
        config_overrides={"safety": {"approval_timeout_ms": 500}},
    )
    assert agent.config.run.max_tool_rounds == 2
    assert agent.config.safety.approval_timeout_ms == 500


def test_agent_interactive_provider_uses_configured_interpreter() -> None:
    agent = Agent(backend=FakeChatBackend([]), config_overrides={"safety": {"interpreter": "llm"}})
    provider = agent.interactive_approval_provider(lambda prompt: "yes")
    assert isinstance(provider, InteractiveApprovalProvider)
