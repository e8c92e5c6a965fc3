"""
工具能力（按 ToolKind 选择的固定方法集）。

每种 ToolKind 对应一个能力类，提供：
- preprocess_args：把原始参数转换为 processed args（可访问 workspace）
- evaluate_policy：(基础策略, 原始参数, processed args) → 有效策略（纯函数）

plain 工具没有动态事实，有效策略恒等于基础策略；
path_scoped 工具解析路径参数，再按决策表计算有效策略。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

from tool_runtime.core.errors import PathResolutionError
from tool_runtime.safety.policy import (
    RELAXED_PATH_POLICY,
    PolicyTable,
    ToolPolicy,
    WorkspaceFacts,
    coerce_policy,
    evaluate_tool_policy,
)
from tool_runtime.tools.protocol import ToolDescriptor, ToolKind
from tool_runtime.workspace.base import Workspace
from tool_runtime.workspace.paths import ResolvedPath, resolve_input_path

RESOLVED_PATH_KEY = "resolved_path"


class ToolCapabilities(Protocol):
    """能力协议（编排器只通过该协议与具体工具种类交互）。"""

    kind: ToolKind

    async def preprocess_args(self, raw_args: Mapping[str, Any], workspace: Workspace) -> Dict[str, Any]:
        ...

    def evaluate_policy(
        self,
        base_policy: ToolPolicy,
        raw_args: Mapping[str, Any],
        processed_args: Mapping[str, Any],
    ) -> ToolPolicy:
        ...


@dataclass(frozen=True)
class PlainCapabilities:
    """无路径参数的工具：preprocess 恒等，策略恒等。"""

    kind: ToolKind = ToolKind.PLAIN

    async def preprocess_args(self, raw_args: Mapping[str, Any], workspace: Workspace) -> Dict[str, Any]:
        return {}

    def evaluate_policy(
        self,
        base_policy: ToolPolicy,
        raw_args: Mapping[str, Any],
        processed_args: Mapping[str, Any],
    ) -> ToolPolicy:
        return coerce_policy(base_policy)


def resolved_path_of(processed_args: Mapping[str, Any]) -> ResolvedPath:
    """
    从 processed args 中取出路径事实。

    异常：
    - PathResolutionError：缺失或类型不符（视为解析失败，而非崩溃）
    """

    resolved = processed_args.get(RESOLVED_PATH_KEY) if isinstance(processed_args, Mapping) else None
    if not isinstance(resolved, ResolvedPath):
        raise PathResolutionError(f"preprocess output is missing a resolved path ({RESOLVED_PATH_KEY!r})")
    return resolved


@dataclass(frozen=True)
class PathScopedCapabilities:
    """
    单路径参数工具。

    字段：
    - path_argument：哪个参数是路径
    - table：路径策略决策表（relaxed/strict，由配置选择）
    """

    path_argument: str
    table: PolicyTable = RELAXED_PATH_POLICY
    kind: ToolKind = ToolKind.PATH_SCOPED

    async def preprocess_args(self, raw_args: Mapping[str, Any], workspace: Workspace) -> Dict[str, Any]:
        value = raw_args.get(self.path_argument)
        if not isinstance(value, str):
            raise PathResolutionError(f"Missing path argument: {self.path_argument}")
        return {RESOLVED_PATH_KEY: await resolve_input_path(workspace, value)}

    def evaluate_policy(
        self,
        base_policy: ToolPolicy,
        raw_args: Mapping[str, Any],
        processed_args: Mapping[str, Any],
    ) -> ToolPolicy:
        resolved = resolved_path_of(processed_args)
        return evaluate_tool_policy(
            base_policy,
            WorkspaceFacts(is_within_workspace=resolved.is_within_workspace),
            table=self.table,
        )


def capabilities_for(descriptor: ToolDescriptor, *, table: PolicyTable = RELAXED_PATH_POLICY) -> ToolCapabilities:
    """按描述符的 kind 选择能力实现（穷举 ToolKind）。"""

    if descriptor.kind == ToolKind.PLAIN:
        return PlainCapabilities()
    if descriptor.kind == ToolKind.PATH_SCOPED:
        if descriptor.path_argument is None:
            raise ValueError(f"{descriptor.name}: path_scoped tools must declare path_argument")
        return PathScopedCapabilities(path_argument=descriptor.path_argument, table=table)
    raise ValueError(f"unsupported tool kind: {descriptor.kind!r}")
