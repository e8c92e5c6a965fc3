"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）；内置默认配置总是最底层。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 策略值与决策表名称在加载期校验（未知值 fail-fast）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field

from tool_runtime.config.defaults import load_default_config_dict
from tool_runtime.safety.approvals import ApprovalDecision
from tool_runtime.safety.policy import PolicyTable, ToolPolicy, get_policy_table

PathPolicyName = Literal["relaxed", "strict"]


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 整体覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class WorkspaceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    roots: List[str] = Field(default_factory=lambda: ["."], min_length=1)


class PathPolicyConfig(BaseModel):
    """
    路径策略配置。

    字段：
    - table：默认决策表（relaxed | strict）
    - per_tool：按工具名覆盖决策表
    """

    model_config = ConfigDict(extra="forbid")

    table: PathPolicyName = "relaxed"
    per_tool: Dict[str, PathPolicyName] = Field(default_factory=dict)

    def default_table(self) -> PolicyTable:
        return get_policy_table(self.table)

    def tables_by_tool(self) -> Dict[str, PolicyTable]:
        return {name: get_policy_table(t) for name, t in self.per_tool.items()}


class FetchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    timeout_sec: float = Field(default=20.0, gt=0)
    max_bytes: int = Field(default=256 * 1024, ge=1)


class ToolsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    policies: Dict[str, ToolPolicy] = Field(default_factory=dict)
    path_policy: PathPolicyConfig = Field(default_factory=PathPolicyConfig)
    glob_max_results: int = Field(default=100, ge=1)
    tree_max_entries: int = Field(default=200, ge=1)
    tree_max_depth: int = Field(default=3, ge=1)
    fetch: FetchConfig = Field(default_factory=FetchConfig)


class ApprovalRuleConfig(BaseModel):
    """一条程序化审批规则（见 `tool_runtime.safety.rule_approvals.ApprovalRule`）。"""

    model_config = ConfigDict(extra="forbid")

    tool: Optional[str] = None
    within_workspace: Optional[bool] = None
    path_prefixes: List[str] = Field(default_factory=list)
    decision: ApprovalDecision = ApprovalDecision.DENIED


class ApprovalsConfig(BaseModel):
    """
    审批配置。

    说明：
    - `timeout_ms` 限制“等待人类审批”的最长时间，超时按拒绝处理；None 表示无限等待。
    - `rules` 非空且调用方未注入 provider 时，使用规则审批；未命中规则时取 `default_decision`。
    """

    model_config = ConfigDict(extra="forbid")

    timeout_ms: Optional[int] = Field(default=None, ge=1)
    rules: List[ApprovalRuleConfig] = Field(default_factory=list)
    default_decision: ApprovalDecision = ApprovalDecision.DENIED


class EventsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jsonl_path: Optional[str] = None


class ToolRuntimeConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)

    def resolve_workspace_roots(self, base_dir: Path) -> List[Path]:
        """把 workspace.roots 解析为绝对路径（相对路径相对于 base_dir）。"""

        out: List[Path] = []
        for raw in self.workspace.roots:
            p = Path(raw).expanduser()
            if not p.is_absolute():
                p = Path(base_dir) / p
            out.append(p.resolve())
        return out


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: Sequence[Dict[str, Any]], *, include_defaults: bool = True) -> ToolRuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `ToolRuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以内置默认配置作为最底层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return ToolRuntimeConfig.model_validate(merged)


def load_config(config_paths: Sequence[Path | str], *, include_defaults: bool = True) -> ToolRuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `ToolRuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: List[Dict[str, Any]] = [_load_yaml_file(Path(p)) for p in config_paths]
    return load_config_dicts(overlays, include_defaults=include_defaults)
