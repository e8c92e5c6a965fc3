"""
Tool 协议（ToolDescriptor / ToolResult）。

本模块只定义协议与纯函数：
- ToolDescriptor：不可变的工具描述符（function calling 兼容 JSON schema + 展示模板 + 默认策略 + 工具种类）
- ToolResultPayload / ToolResult：执行输出的统一封装（content 为回注给 LLM 的 JSON 字符串）
- render_display_template：`{{{ argName }}}` 占位符替换（纯字面量替换，缺失参数渲染为空串）
- descriptor_to_openai_tool：映射为 chat.completions tools[] 形状
- render_system_message_description：为不支持原生 function calling 的模型渲染工具说明
"""

from __future__ import annotations

import copy
import json
import re
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from tool_runtime.safety.policy import ToolPolicy

BUILT_IN_GROUP_NAME = "Built-In"

_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_PLACEHOLDER_RE = re.compile(r"\{\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}\}")


def _freeze_schema(value: Any) -> Any:
    """JSON Schema 的只读形式：mapping → MappingProxyType，list → tuple。"""

    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze_schema(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_schema(v) for v in value)
    return value


def _thaw_schema(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw_schema(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw_schema(v) for v in value]
    return value


class ToolKind(str, Enum):
    """
    工具种类（tagged union 的 tag）。

    - plain：无动态策略；preprocess 为恒等（空 processed args）
    - path_scoped：参数中有一个路径；preprocess 解析路径，策略按 workspace 包含关系重评估
    """

    PLAIN = "plain"
    PATH_SCOPED = "path_scoped"


class DisplayPhase(str, Enum):
    """展示模板对应的生命周期阶段。"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class DisplayTemplates(BaseModel):
    """三段展示模板（pending=想要…，in_progress=正在…，completed=已…）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    pending: str
    in_progress: str
    completed: str


class SystemMessageDescription(BaseModel):
    """系统消息工具说明：前缀文案 + 有序示例参数。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    prefix: str
    example_args: Tuple[Tuple[str, str], ...] = ()


class ToolDescriptor(BaseModel):
    """
    工具描述符（进程启动时由静态定义创建，之后不再修改）。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：面向 LLM 的说明
    - parameters：JSON Schema（object schema，必须含 required 数组与 properties 映射）
    - display_title / display：面向人的标题与三段生命周期模板
    - readonly：调用从不修改外部状态
    - is_instant：调用无需可见等待
    - default_policy：无动态覆盖时的默认策略
    - kind / path_argument：工具种类；path_scoped 必须指明哪个参数是路径
    - group / icon / system_message_description：展示与系统消息元数据
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    description: str
    parameters: Mapping[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}, validate_default=True
    )
    display_title: str
    display: DisplayTemplates
    readonly: bool = False
    is_instant: bool = False
    default_policy: ToolPolicy
    kind: ToolKind = ToolKind.PLAIN
    path_argument: Optional[str] = None
    group: Optional[str] = None
    icon: Optional[str] = None
    system_message_description: Optional[SystemMessageDescription] = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not _TOOL_NAME_RE.match(value or ""):
            raise ValueError(f"tool name must match {_TOOL_NAME_RE.pattern}: {value!r}")
        return value

    @field_validator("parameters", mode="before")
    @classmethod
    def _normalize_parameters(cls, value: Any) -> Dict[str, Any]:
        """补齐空 required/properties，并校验 object schema 形状。"""

        if not isinstance(value, Mapping):
            raise ValueError("parameters must be a JSON Schema object")
        schema = _thaw_schema(value)
        if schema.get("type") != "object":
            raise ValueError('parameters.type must be "object"')
        props = schema.setdefault("properties", {})
        if not isinstance(props, Mapping):
            raise ValueError("parameters.properties must be a mapping")
        required = schema.setdefault("required", [])
        if not isinstance(required, list) or not all(isinstance(x, str) for x in required):
            raise ValueError("parameters.required must be a list of strings")
        unknown = [r for r in required if r not in props]
        if unknown:
            raise ValueError(f"parameters.required references unknown properties: {unknown}")
        return schema

    @field_validator("parameters")
    @classmethod
    def _freeze_parameters(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return _freeze_schema(value)

    @field_serializer("parameters")
    def _serialize_parameters(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        return _thaw_schema(value)

    @model_validator(mode="after")
    def _validate_kind(self) -> "ToolDescriptor":
        if self.kind == ToolKind.PATH_SCOPED:
            arg = self.path_argument
            if not arg:
                raise ValueError(f"{self.name}: path_scoped tools must declare path_argument")
            if arg not in self.parameters["properties"] or arg not in self.parameters["required"]:
                raise ValueError(f"{self.name}: path_argument {arg!r} must be a required property")
        elif self.path_argument is not None:
            raise ValueError(f"{self.name}: path_argument is only valid for path_scoped tools")
        return self

    def function_schema(self) -> Dict[str, Any]:
        """返回 parameters 的可变副本（dict / list；调用方可自由修改而不影响描述符）。"""

        return _thaw_schema(self.parameters)

    def render_display(self, phase: DisplayPhase | str, args: Mapping[str, Any] | None) -> str:
        template = getattr(self.display, DisplayPhase(phase).value)
        return render_display_template(template, args)


class ToolResultPayload(BaseModel):
    """
    Tool 执行结果 payload（统一输出封装）。

    用途：
    1) 回注模型：作为 JSON 字符串写入 tool message content
    2) 事件日志：作为 object 写入 `result`
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    output: str = ""
    error: str = ""
    duration_ms: int = Field(default=0, ge=0)
    truncated: bool = False
    data: Optional[Dict[str, Any]] = None
    error_kind: Optional[str] = None
    retryable: bool = False


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - ok：是否成功
    - content：回注给 LLM 的内容（JSON 字符串）
    - error_kind：错误分类（validation/not_found/path_resolution/permission/disabled/timeout/unknown...）
    - message：一句话说明
    - details：结构化结果
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    ok: bool
    content: str
    error_kind: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: ToolResultPayload, *, message: Optional[str] = None) -> "ToolResult":
        obj = payload.model_dump(exclude_none=True)
        return cls(
            ok=payload.ok,
            content=json.dumps(obj, ensure_ascii=False),
            error_kind=payload.error_kind,
            message=message,
            details=obj,
        )

    @classmethod
    def ok_payload(
        cls,
        *,
        output: str = "",
        data: Optional[Dict[str, Any]] = None,
        duration_ms: int = 0,
        truncated: bool = False,
    ) -> "ToolResult":
        """便捷构造：成功结果。"""

        return cls.from_payload(
            ToolResultPayload(ok=True, output=output, duration_ms=duration_ms, truncated=truncated, data=data)
        )

    @classmethod
    def error_payload(
        cls,
        *,
        error_kind: str,
        error: str,
        data: Optional[Dict[str, Any]] = None,
        duration_ms: int = 0,
        retryable: bool = False,
    ) -> "ToolResult":
        """便捷构造：失败结果（错误信息放入 error）。"""

        return cls.from_payload(
            ToolResultPayload(
                ok=False,
                error=error,
                duration_ms=duration_ms,
                data=data,
                error_kind=error_kind,
                retryable=retryable,
            ),
            message=error,
        )


def _placeholder_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def render_display_template(template: str, args: Mapping[str, Any] | None) -> str:
    """
    替换 `{{{ argName }}}` 占位符。

    规则：
    - 纯字面量替换，不做表达式求值；
    - 参数缺失（或为 None）渲染为空串，不抛异常；
    - 非字符串参数以 JSON 形式渲染。
    """

    values = args or {}
    return _PLACEHOLDER_RE.sub(lambda m: _placeholder_value(values.get(m.group(1))), template or "")


def descriptor_to_openai_tool(descriptor: ToolDescriptor) -> Dict[str, Any]:
    """
    将 `ToolDescriptor` 映射为 OpenAI chat.completions 的 tools[] entry。

    返回形状：
    {"type": "function", "function": {"name": ..., "description": ..., "parameters": {...}}}
    """

    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": descriptor.function_schema(),
        },
    }


def render_system_message_description(descriptor: ToolDescriptor) -> str:
    """
    渲染系统消息中的工具说明（```tool 代码块格式）。

    示例：
        To view ..., use the view_subdirectory tool. ...
        ```tool
        TOOL_NAME: view_subdirectory
        BEGIN_ARG: directory_path
        path/to/subdirectory
        END_ARG
        ```
    """

    desc = descriptor.system_message_description
    prefix = desc.prefix if desc is not None else descriptor.description
    lines: List[str] = [prefix, "```tool", f"TOOL_NAME: {descriptor.name}"]
    for name, value in (desc.example_args if desc is not None else ()):
        lines.extend([f"BEGIN_ARG: {name}", value, "END_ARG"])
    lines.append("```")
    return "\n".join(lines)


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """
    解析 function.arguments（JSON 字符串或 dict）为 dict。

    异常：
    - ValueError：不是合法 JSON，或根节点不是 object
    """

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return copy.deepcopy(dict(raw))
    text = str(raw).strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid tool arguments JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("tool arguments must be a JSON object")
    return parsed
