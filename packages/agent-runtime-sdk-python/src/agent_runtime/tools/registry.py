"""
ToolRegistry：工具注册表（name → ToolDefinition）。

本模块提供：
- 注册：`register/tool`（decorator）；启动完成后 `freeze()`，此后拒绝任何变更
- 查询：`resolve/schema_for/list_definitions/openai_tools`
- 校验：`validate_arguments`（pydantic 参数模型）

说明：
- registry 在多个会话间共享且只读；模型每次调用都会拿到完整 tools 列表，
  因此冻结后列表顺序与内容保持稳定。
"""

from __future__ import annotations

import inspect
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from agent_runtime.core.errors import DuplicateToolError, InvalidArgumentsError, RegistryFrozenError, UnknownToolError
from agent_runtime.tools.protocol import RiskTier, ToolDefinition, tool_definition_to_openai_tool


def _compact_validation_errors(e: ValidationError) -> List[Dict[str, Any]]:
    """把 pydantic 错误列表收敛为可 JSON 序列化的最小形状（loc/msg/type）。"""

    out: List[Dict[str, Any]] = []
    for err in e.errors(include_url=False):
        out.append(
            {
                "loc": [str(x) for x in err.get("loc", ())],
                "msg": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
        )
    return out


class ToolRegistry:
    """工具注册表（进程级共享，运行期只读）。"""

    def __init__(self) -> None:
        self._definitions: Dict[str, ToolDefinition] = {}
        self._models: Dict[str, Type[BaseModel]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "ToolRegistry":
        """冻结注册表（幂等）；返回自身便于链式调用。"""

        self._frozen = True
        return self

    def register(self, definition: ToolDefinition) -> ToolDefinition:
        """
        注册工具。

        异常：
        - RegistryFrozenError：注册表已冻结
        - DuplicateToolError：同名工具已存在（不支持覆盖）
        """

        name = definition.name
        if self._frozen:
            raise RegistryFrozenError(name)
        if name in self._definitions:
            raise DuplicateToolError(name)
        self._models[name] = definition.resolved_args_model()
        self._definitions[name] = definition
        return definition

    def resolve(self, name: str, *, tool_call_id: Optional[str] = None) -> ToolDefinition:
        """按名称获取工具；不存在则抛 `UnknownToolError`。"""

        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownToolError(name, tool_call_id=tool_call_id) from None

    def schema_for(self, name: str) -> Dict[str, Any]:
        """返回工具的参数 JSON schema（副本）。"""

        return dict(self.resolve(name).parameters)

    def list_definitions(self) -> List[ToolDefinition]:
        """按注册顺序返回所有工具。"""

        return list(self._definitions.values())

    def openai_tools(self) -> List[Dict[str, Any]]:
        """按注册顺序返回 chat.completions tools[]。"""

        return [tool_definition_to_openai_tool(d) for d in self._definitions.values()]

    def names(self) -> List[str]:
        return list(self._definitions.keys())

    def validate_arguments(
        self,
        name: str,
        arguments: Dict[str, Any],
        *,
        tool_call_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        用工具的参数模型校验 arguments，返回规范化后的参数 dict。

        说明：
        - 只返回调用方实际给出的字段（缺省字段交给 executor 自己的默认值）；
        - 未知字段是否透传由参数模型的 extra 策略决定。

        异常：
        - UnknownToolError：工具不存在
        - InvalidArgumentsError：参数不符合 schema（errors 为 pydantic 错误列表）
        """

        definition = self.resolve(name, tool_call_id=tool_call_id)
        model = self._models.get(name) or definition.resolved_args_model()
        try:
            obj = model.model_validate(arguments)
        except ValidationError as e:
            errors = _compact_validation_errors(e)
            summary = "; ".join(f"{'.'.join(x['loc']) or '<root>'}: {x['msg']}" for x in errors)
            raise InvalidArgumentsError(
                f"invalid arguments for {name}: {summary}",
                tool=name,
                tool_call_id=tool_call_id,
                errors=errors,
            ) from None
        return obj.model_dump(by_alias=True, exclude_unset=True)

    def tool(
        self,
        func=None,  # type: ignore[no-untyped-def]
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        risk_tier: RiskTier = RiskTier.NONE,
    ):
        """
        注册自定义 tool（decorator）。

        用法：
        - `@registry.tool`
        - `@registry.tool(name="send_email", risk_tier=RiskTier.REQUIRES_APPROVAL)`

        说明：
        - 参数 schema 由函数签名推导（无注解的参数按 str 处理）；
        - 同步与 async 函数均可；函数以关键字参数形式接收校验后的 arguments。
        """

        def _register(f):  # type: ignore[no-untyped-def]
            """把函数签名转换成 ToolDefinition 并完成注册。"""

            tool_name = name or f.__name__
            tool_desc = description or inspect.cleandoc(f.__doc__ or "") or f"custom tool: {tool_name}"

            fields: Dict[str, Any] = {}
            for param_name, param in inspect.signature(f, eval_str=True).parameters.items():
                if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                    continue
                ann = param.annotation
                if ann is inspect.Parameter.empty:
                    ann = str
                default = param.default if param.default is not inspect.Parameter.empty else ...
                fields[param_name] = (ann, default)

            Model: Type[BaseModel] = create_model(  # type: ignore[call-overload]
                f"_{tool_name}_Args", __config__=ConfigDict(extra="forbid"), **fields
            )
            schema = Model.model_json_schema()
            parameters = {
                "type": "object",
                "properties": schema.get("properties", {}),
                "required": schema.get("required", []),
                "additionalProperties": False,
            }

            if inspect.iscoroutinefunction(f):

                async def executor(args: Dict[str, Any]) -> Any:
                    return await f(**args)

            else:

                def executor(args: Dict[str, Any]) -> Any:  # type: ignore[misc]
                    return f(**args)

            self.register(
                ToolDefinition(
                    name=tool_name,
                    description=tool_desc,
                    parameters=parameters,
                    risk_tier=risk_tier,
                    executor=executor,
                    args_model=Model,
                )
            )
            return f

        if func is None:
            return _register
        return _register(func)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
