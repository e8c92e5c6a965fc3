"""
ToolRegistry：工具注册表（名称 → 描述符 + handler + 能力）。

生命周期：
1) 进程启动时注册全部工具（重复注册立即失败）；
2) `seal()` 之后注册表只读，可被多个并发 turn 共享读取；
3) 编排器只接受已 seal 的注册表。

本模块还提供：
- ToolExecutionContext：handler 执行时注入的依赖（workspace、外部 provider、输出上限、脱敏值）
- 基础策略解析（人工配置优先）与“对 Agent 可见的工具列表”
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from tool_runtime.core.errors import RegistryError, UnknownToolError
from tool_runtime.safety.policy import (
    RELAXED_PATH_POLICY,
    PolicyTable,
    ToolPolicy,
    coerce_policy,
    is_looser,
    resolve_base_policy,
)
from tool_runtime.tools.capabilities import ToolCapabilities, capabilities_for
from tool_runtime.tools.protocol import ToolDescriptor, ToolResult, descriptor_to_openai_tool
from tool_runtime.tools.providers import CodebaseSearchProvider, UrlFetcher, WebSearchProvider
from tool_runtime.workspace.base import Workspace

logger = logging.getLogger(__name__)


def _redact_text(text: str, values: Sequence[str]) -> str:
    out = text
    for v in values:
        if not isinstance(v, str):
            continue
        vv = v.strip()
        if len(vv) < 4:
            continue
        out = out.replace(vv, "<redacted>")
    return out


def sanitize_for_event(obj: Any, *, redaction_values: Sequence[str] = ()) -> Any:
    """
    将任意参数/事实转换为“可落盘且不泄露 secrets”的 JSON 值。

    规则：
    - 字符串字段 best-effort 替换已知 secret values 为 `<redacted>`
    - 带 `to_dict()` 的对象（如 ResolvedPath）按 dict 落盘
    - 其它非 JSON 值落为 `str(obj)`
    """

    if isinstance(obj, str):
        return _redact_text(obj, redaction_values)
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, Mapping):
        return {str(k): sanitize_for_event(v, redaction_values=redaction_values) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_event(x, redaction_values=redaction_values) for x in obj]
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return sanitize_for_event(to_dict(), redaction_values=redaction_values)
    if hasattr(obj, "value") and isinstance(getattr(obj, "value"), str):
        return getattr(obj, "value")
    return str(obj)


@dataclass
class ToolExecutionContext:
    """
    Tool 执行上下文（编排器注入）。

    字段：
    - workspace：路径解析/包含判定/diff 的来源
    - codebase_search / url_fetcher / web_search：可选外部 provider；缺失时相应工具 fail-closed
    - glob_max_results：file_glob_search 最多返回条数
    - tree_max_entries / tree_max_depth：目录树输出上限
    - redaction_values：事件与输出中需要脱敏的值
    """

    workspace: Workspace
    codebase_search: Optional[CodebaseSearchProvider] = None
    url_fetcher: Optional[UrlFetcher] = None
    web_search: Optional[WebSearchProvider] = None
    glob_max_results: int = 100
    tree_max_entries: int = 200
    tree_max_depth: int = 3
    redaction_values: Sequence[str] = field(default_factory=tuple)

    def redact_text(self, text: str) -> str:
        if not text:
            return text
        return _redact_text(text, self.redaction_values)


@dataclass(frozen=True)
class ToolInvocation:
    """
    一次 handler 调用的输入。

    字段：
    - call_id / name：调用标识与工具名
    - args：原始参数（Agent 提供）
    - processed_args：preprocess 产出（plain 工具为空 dict）
    """

    call_id: str
    name: str
    args: Mapping[str, Any]
    processed_args: Mapping[str, Any]


ToolHandler = Callable[[ToolInvocation, ToolExecutionContext], Awaitable[ToolResult]]


@dataclass(frozen=True)
class RegisteredTool:
    descriptor: ToolDescriptor
    handler: ToolHandler
    capabilities: ToolCapabilities


class ToolRegistry:
    """
    工具注册表。

    参数：
    - policy_overrides：人工配置的工具策略（tools.policies）；优先于描述符默认值
    - path_policy_tables：按工具名指定路径决策表（tools.path_policy.per_tool）
    - default_path_policy：未单独指定时使用的路径决策表
    """

    def __init__(
        self,
        *,
        policy_overrides: Optional[Mapping[str, ToolPolicy | str]] = None,
        path_policy_tables: Optional[Mapping[str, PolicyTable]] = None,
        default_path_policy: PolicyTable = RELAXED_PATH_POLICY,
    ) -> None:
        self._lock = threading.Lock()
        self._tools: Dict[str, RegisteredTool] = {}
        self._sealed = False
        self._overrides: Dict[str, ToolPolicy] = {
            str(k): coerce_policy(v) for k, v in (policy_overrides or {}).items()
        }
        self._path_tables: Dict[str, PolicyTable] = dict(path_policy_tables or {})
        self._default_path_policy = default_path_policy

    @property
    def sealed(self) -> bool:
        return self._sealed

    def register(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        """
        注册工具。

        异常：
        - RegistryError(REGISTRY_SEALED)：seal 之后注册
        - RegistryError(REGISTRY_DUPLICATE)：同名工具已存在
        - RegistryError(REGISTRY_INVALID)：handler 不可调用
        """

        name = descriptor.name
        with self._lock:
            if self._sealed:
                raise RegistryError(
                    code="REGISTRY_SEALED",
                    message=f"Cannot register tool after seal: {name}",
                    details={"tool": name},
                )
            if name in self._tools:
                raise RegistryError(
                    code="REGISTRY_DUPLICATE",
                    message=f"Duplicate tool registration: {name}",
                    details={"tool": name},
                )
            if not callable(handler):
                raise RegistryError(
                    code="REGISTRY_INVALID",
                    message=f"Tool handler is not callable: {name}",
                    details={"tool": name},
                )
            table = self._path_tables.get(name, self._default_path_policy)
            self._tools[name] = RegisteredTool(
                descriptor=descriptor,
                handler=handler,
                capabilities=capabilities_for(descriptor, table=table),
            )

    def seal(self) -> None:
        """冻结注册表；之后只读。配置中引用了未注册工具名时记录 warning。"""

        with self._lock:
            if self._sealed:
                raise RegistryError(code="REGISTRY_SEALED", message="Registry is already sealed")
            for name in sorted(set(self._overrides) | set(self._path_tables)):
                if name not in self._tools:
                    logger.warning("tool policy configured for unregistered tool: %s", name)
            self._sealed = True
        logger.debug("tool registry sealed with %d tools", len(self._tools))

    def lookup(self, name: str) -> ToolDescriptor:
        """按名称查找描述符；不存在抛 UnknownToolError。"""

        return self.get(name).descriptor

    def get(self, name: str) -> RegisteredTool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def list_descriptors(self) -> List[ToolDescriptor]:
        """按注册顺序返回所有描述符。"""

        return [t.descriptor for t in self._tools.values()]

    def base_policy(self, name: str) -> ToolPolicy:
        """基础策略：tools.policies 优先，否则描述符默认值。"""

        descriptor = self.lookup(name)
        return resolve_base_policy(descriptor.default_policy, self._overrides.get(name))

    def path_policy_table(self, name: str) -> PolicyTable:
        return self._path_tables.get(name, self._default_path_policy)

    def visible_descriptors(self) -> List[ToolDescriptor]:
        """对 Agent 可见的工具：基础策略为 disabled 的工具不暴露。"""

        return [d for d in self.list_descriptors() if self.base_policy(d.name) != ToolPolicy.DISABLED]

    def function_tools(self) -> List[Dict[str, Any]]:
        """可见工具的 chat.completions tools[] 列表。"""

        return [descriptor_to_openai_tool(d) for d in self.visible_descriptors()]

    async def preprocess_args(self, name: str, raw_args: Mapping[str, Any], workspace: Workspace) -> Dict[str, Any]:
        return await self.get(name).capabilities.preprocess_args(raw_args, workspace)

    def evaluate_policy(self, name: str, raw_args: Mapping[str, Any], processed_args: Mapping[str, Any]) -> ToolPolicy:
        """
        计算有效策略。

        说明：
        - 有效策略只能比基础策略更严格，唯一例外是决策表允许的一级放宽
          （allowedWithPermission → allowedWithoutPermission）；
        - 能力实现若返回超出该范围的放宽，按基础策略处理并记录 error 日志。
        """

        tool = self.get(name)
        base = self.base_policy(name)
        effective = coerce_policy(tool.capabilities.evaluate_policy(base, raw_args, processed_args))
        if is_looser(effective, base):
            permitted = base == ToolPolicy.ALLOWED_WITH_PERMISSION and effective == ToolPolicy.ALLOWED_WITHOUT_PERMISSION
            if not permitted:
                logger.error("tool %s policy evaluation widened %s to %s; using base policy", name, base.value, effective.value)
                return base
        return effective
