"""
AgentInputs 校验与模板替换。

说明：
- 校验在 run 开始前进行（fail-fast，抛 AgentValidationError），不会发起任何模型调用；
- 模板只识别 `${name}` 占位符，其它 `$` 原样保留（提示词中常含 shell 片段）。
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, create_model

from agent_runtime.agents.definition import AgentDefinition, InputType
from agent_runtime.core.errors import AgentValidationError

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

_TYPE_MAP: Dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": StrictBool,
    "string[]": List[str],
    "number[]": List[float],
}


def _annotation(type_: InputType) -> Any:
    """输入类型到 Python 注解的映射。"""

    return _TYPE_MAP[type_]


def build_inputs_model(definition: AgentDefinition) -> Type[BaseModel]:
    """由 definition.inputs 生成 pydantic 模型（未知字段拒绝）。"""

    fields: Dict[str, Any] = {}
    for name, param in definition.inputs.items():
        ann = _annotation(param.type)
        if param.required:
            fields[name] = (ann, Field(..., description=param.description))
        else:
            fields[name] = (Optional[ann], Field(default=None, description=param.description))
    return create_model(  # type: ignore[call-overload]
        f"_{definition.name or 'agent'}_Inputs",
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )


def validate_inputs(definition: AgentDefinition, inputs: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    校验 inputs 并返回规范化后的 dict（未提供的可选参数不出现在结果中）。

    异常：
    - AgentValidationError：缺少必填参数、类型不匹配或出现未声明参数
    """

    model = build_inputs_model(definition)
    try:
        obj = model.model_validate(dict(inputs or {}))
    except ValidationError as e:
        raise AgentValidationError(
            f"invalid inputs for agent '{definition.name}': {e.error_count()} validation error(s)",
            details={"agent": definition.name, "errors": e.errors(include_url=False, include_context=False)},
        ) from e
    return obj.model_dump(exclude_none=True)


def _format_value(value: Any) -> str:
    """模板值的字符串形态（列表以逗号拼接）。"""

    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def render_template(template: str, inputs: Mapping[str, Any], *, declared: Optional[Mapping[str, Any]] = None) -> str:
    """
    替换模板中的 `${name}` 占位符。

    参数：
    - template：模板文本
    - inputs：已校验的输入
    - declared：可选；已声明的参数名集合（已声明但未提供的可选参数替换为空串）

    异常：
    - AgentValidationError：占位符引用了既未提供也未声明的参数
    """

    declared_names = set(declared or {})

    def _sub(m: "re.Match[str]") -> str:
        """单个占位符替换。"""

        key = m.group(1)
        if key in inputs:
            return _format_value(inputs[key])
        if key in declared_names:
            return ""
        raise AgentValidationError(
            f"template references missing input: {key}",
            details={"placeholder": key},
        )

    return _PLACEHOLDER_RE.sub(_sub, template or "")
