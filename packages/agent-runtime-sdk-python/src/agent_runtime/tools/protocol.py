"""
Tool 协议（ToolDefinition / ToolResult）。

本模块只定义“可实现级”的最小协议：
- RiskTier：风险分级（决定是否需要审批）
- ToolDefinition：注册表条目（function calling 兼容 JSON schema + executor）
- ToolResult：执行输出的统一 envelope（content 为回注给模型的 JSON 字符串）
- tool_definition_to_openai_tool：将 ToolDefinition 映射为 chat.completions tools[] 形状
"""

from __future__ import annotations

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, create_model

ToolExecutor = Callable[[Dict[str, Any]], Any]

REJECTION_MARKER = "approval_rejected"
REJECTION_MESSAGE = "Action not approved by user"


class RiskTier(str, Enum):
    """tool 风险分级。"""

    NONE = "none"
    REQUIRES_APPROVAL = "requires_approval"


_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


def _annotation_for(prop: Dict[str, Any]) -> Any:
    """把单个 JSON schema property 映射为 pydantic 注解（只覆盖 function calling 常见子集）。"""

    enum = prop.get("enum")
    if isinstance(enum, list) and enum:
        return Literal[tuple(enum)]  # type: ignore[misc]
    t = prop.get("type")
    if isinstance(t, list):
        anns = tuple(_JSON_TYPES.get(x, Any) for x in t)
        if len(anns) == 1:
            return anns[0]
        from typing import Union

        return Union[anns]  # type: ignore[valid-type]
    if t == "array":
        items = prop.get("items")
        if isinstance(items, dict) and items.get("type") in _JSON_TYPES:
            return List[_annotation_for(items)]  # type: ignore[misc]
        return list
    return _JSON_TYPES.get(t, Any)


def build_args_model(tool_name: str, parameters: Dict[str, Any]) -> Type[BaseModel]:
    """
    由 object JSON schema 生成参数校验模型。

    说明：
    - required 字段无默认值；其它字段默认 None（executor 只会收到模型实际给出的字段）；
    - `additionalProperties: false` 时拒绝未知字段，否则原样透传；
    - 字段统一使用 alias 承载原始属性名，避免与 BaseModel 属性冲突。
    """

    props = parameters.get("properties") or {}
    required = set(parameters.get("required") or [])
    fields: Dict[str, Tuple[Any, Any]] = {}
    for i, (prop_name, prop) in enumerate(props.items()):
        ann = _annotation_for(prop if isinstance(prop, dict) else {})
        if prop_name in required:
            fields[f"field_{i}"] = (ann, Field(..., alias=prop_name))
        else:
            fields[f"field_{i}"] = (Optional[ann], Field(None, alias=prop_name))
    extra = "forbid" if parameters.get("additionalProperties") is False else "allow"
    return create_model(  # type: ignore[call-overload]
        f"_{tool_name}_Args",
        __config__=ConfigDict(extra=extra, populate_by_name=False),
        **fields,
    )


class ToolDefinition(BaseModel):
    """
    Tool 注册信息。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：工具说明
    - parameters：JSON Schema（必须为 object schema）
    - risk_tier：风险分级；`requires_approval` 时执行前必须经过 ApprovalGate
    - executor：`(arguments) -> result`，可为同步或 async 函数；返回值必须可 JSON 序列化
    - args_model：参数校验模型；缺省时由 parameters 推导
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    risk_tier: RiskTier = RiskTier.NONE
    executor: ToolExecutor
    args_model: Optional[Type[BaseModel]] = None

    @property
    def requires_approval(self) -> bool:
        return self.risk_tier == RiskTier.REQUIRES_APPROVAL

    def resolved_args_model(self) -> Type[BaseModel]:
        if self.args_model is not None:
            return self.args_model
        return build_args_model(self.name, self.parameters)

    async def execute(self, arguments: Dict[str, Any]) -> Any:
        """
        调用 executor。

        说明：
        - async executor 直接 await；
        - 同步 executor 在线程中执行，避免阻塞同一事件循环上的其它会话。
        """

        if inspect.iscoroutinefunction(self.executor):
            return await self.executor(arguments)
        out = await asyncio.to_thread(self.executor, arguments)
        if inspect.isawaitable(out):
            out = await out
        return out


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - ok：是否成功
    - content：回注给模型的内容（JSON 字符串）
    - error_kind：错误分类（not_found/validation/execution/approval_rejected/cancelled）
    - message：一句话说明
    - details：结构化结果（事件 payload 使用）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    ok: bool
    content: str
    error_kind: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def rejected(self) -> bool:
        return self.error_kind == REJECTION_MARKER

    @classmethod
    def from_value(cls, value: Any) -> "ToolResult":
        """便捷构造：成功结果（executor 返回值原样序列化）。"""

        content = json.dumps(value, ensure_ascii=False, default=str)
        details = value if isinstance(value, dict) else {"result": value}
        return cls(ok=True, content=content, details=json.loads(json.dumps(details, default=str)))

    @classmethod
    def error(cls, *, error_kind: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ToolResult":
        """便捷构造：失败结果（content 形如 `{"error": ..., "error_kind": ...}`）。"""

        payload: Dict[str, Any] = {"error": message, "error_kind": error_kind}
        if details:
            payload["details"] = details
        return cls(
            ok=False,
            content=json.dumps(payload, ensure_ascii=False, default=str),
            error_kind=error_kind,
            message=message,
            details=payload,
        )

    @classmethod
    def rejected_by_approval(cls, *, tool: str, rationale: Optional[str] = None) -> "ToolResult":
        """审批拒绝的结果（数据而非异常；模型可据此在下一轮调整）。"""

        details: Dict[str, Any] = {"tool": tool, "approved": False}
        if rationale:
            details["rationale"] = rationale
        return cls.error(error_kind=REJECTION_MARKER, message=REJECTION_MESSAGE, details=details)


def tool_definition_to_openai_tool(definition: ToolDefinition) -> Dict[str, Any]:
    """
    将 `ToolDefinition` 映射为 OpenAI chat.completions 的 tools[] entry。

    返回形状（function calling）：
    {
      "type": "function",
      "function": { "name": "...", "description": "...", "parameters": {...} }
    }
    """

    return {
        "type": "function",
        "function": {
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters,
        },
    }
