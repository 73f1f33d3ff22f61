"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）；
- 内置默认配置随 package 分发（`agent_runtime/assets/default.yaml`）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from agent_runtime.config.defaults import load_default_config_dict


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class AgentRuntimeRunConfig(BaseModel):
    """
    运行参数。

    字段：
    - max_tool_rounds：单个 turn 内允许的 tool round 上限（超过即 RunawayToolLoopError）
    - parallel_tool_calls：同一 round 内已批准的调用是否并发执行
    """

    model_config = ConfigDict(extra="forbid")

    max_tool_rounds: int = Field(default=8, ge=1)
    parallel_tool_calls: bool = True


class AgentRuntimeModelsConfig(BaseModel):
    """模型选择（主模型 + 可选的 summarizer/审批解释器模型；缺省沿用主模型）。"""

    model_config = ConfigDict(extra="forbid")

    default: str
    summarizer: Optional[str] = None
    approval_interpreter: Optional[str] = None

    def summarizer_model(self) -> str:
        return self.summarizer or self.default

    def approval_interpreter_model(self) -> str:
        return self.approval_interpreter or self.default


class AgentRuntimeCompactionConfig(BaseModel):
    """
    上下文压缩配置。

    说明：
    - strategy=window 使用 max_messages；token_budget 使用 max_tokens + chars_per_token；
    - summarization/hierarchical 使用 window_size，并需要 summarizer（缺省由主 backend 构造）。
    """

    model_config = ConfigDict(extra="forbid")

    strategy: Literal["none", "window", "token_budget", "summarization", "hierarchical"] = Field(default="window")
    max_messages: int = Field(default=20, ge=0)
    max_tokens: int = Field(default=8000, ge=1)
    chars_per_token: int = Field(default=4, ge=1)
    window_size: int = Field(default=6, ge=0)
    summary_cache_size: int = Field(default=32, ge=1)
    summary_max_chars: int = Field(default=4000, ge=100)


class AgentRuntimeSafetyConfig(BaseModel):
    """
    审批配置。

    说明：
    - `approval_timeout_ms` 为 None 表示不设上限（交互式审批可无限等待）；超时按 rejected 处理；
    - `interpreter` 决定自由文本回复由关键词规则还是模型解释。
    """

    model_config = ConfigDict(extra="forbid")

    approval_timeout_ms: Optional[int] = Field(default=None, ge=1)
    interpreter: Literal["keyword", "llm"] = Field(default="keyword")


class AgentRuntimeConfig(BaseModel):
    """SDK 配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    run: AgentRuntimeRunConfig = Field(default_factory=AgentRuntimeRunConfig)
    models: AgentRuntimeModelsConfig
    compaction: AgentRuntimeCompactionConfig = Field(default_factory=AgentRuntimeCompactionConfig)
    safety: AgentRuntimeSafetyConfig = Field(default_factory=AgentRuntimeSafetyConfig)

    @model_validator(mode="after")
    def _check_models(self) -> "AgentRuntimeConfig":
        if not str(self.models.default or "").strip():
            raise ValueError("models.default must be a non-empty model identifier")
        return self


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]], *, include_defaults: bool = True) -> AgentRuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `AgentRuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以内置 default.yaml 作为最底层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return AgentRuntimeConfig.model_validate(merged)


def load_config(config_paths: list[Path], *, include_defaults: bool = True) -> AgentRuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `AgentRuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays, include_defaults=include_defaults)
