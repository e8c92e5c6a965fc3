"""
Policy Evaluator（disabled / allowedWithPermission / allowedWithoutPermission）。

说明：
- 有效策略 = f(基础策略, 动态事实)；f 是纯函数，重复调用结果一致。
- “基础策略被动态事实放宽/收紧”的规则以数据（决策表）表达，而不是散落的条件分支，
  这样单调性可以在构造期被机械校验。
- 放宽只有一种：workspace 内的路径可以把 allowedWithPermission 放宽一级为 allowedWithoutPermission；
  workspace 外的路径至少收紧到 allowedWithPermission；disabled 永远保持 disabled。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class ToolPolicy(str, Enum):
    """工具策略三值枚举（与权限提示 UI 交换的 wire 值）。"""

    DISABLED = "disabled"
    ALLOWED_WITHOUT_PERMISSION = "allowedWithoutPermission"
    ALLOWED_WITH_PERMISSION = "allowedWithPermission"


# 摩擦等级：数值越大越严格。
_FRICTION: Dict[ToolPolicy, int] = {
    ToolPolicy.ALLOWED_WITHOUT_PERMISSION: 0,
    ToolPolicy.ALLOWED_WITH_PERMISSION: 1,
    ToolPolicy.DISABLED: 2,
}


def coerce_policy(value: Any) -> ToolPolicy:
    """把字符串/枚举统一为 `ToolPolicy`；未知值抛 ValueError。"""

    if isinstance(value, ToolPolicy):
        return value
    raw = str(value or "").strip()
    for p in ToolPolicy:
        if raw == p.value:
            return p
    raise ValueError(f"invalid tool policy: {value!r}; expected one of {[p.value for p in ToolPolicy]}")


def friction(policy: ToolPolicy) -> int:
    """返回策略的摩擦等级（0=免审批，1=需审批，2=禁用）。"""

    return _FRICTION[coerce_policy(policy)]


def is_looser(a: ToolPolicy, b: ToolPolicy) -> bool:
    """a 是否比 b 更宽松。"""

    return friction(a) < friction(b)


def stricter_of(a: ToolPolicy, b: ToolPolicy) -> ToolPolicy:
    """返回两者中更严格的策略。"""

    return a if friction(a) >= friction(b) else b


@dataclass(frozen=True)
class WorkspaceFacts:
    """路径类工具的动态事实（由 preprocess 阶段产出）。"""

    is_within_workspace: bool


PolicyKey = Tuple[ToolPolicy, bool]


@dataclass(frozen=True)
class PolicyTable:
    """
    路径策略决策表：(基础策略, is_within_workspace) → 有效策略。

    构造期校验（违反任一条即 ValueError）：
    - 表必须完整覆盖 3×2 个键；
    - disabled 在任何事实下都保持 disabled；
    - workspace 外：有效策略至少为 allowedWithPermission，且从不比 workspace 内更宽松；
    - workspace 内：只允许把 allowedWithPermission 放宽一级；其余基础策略不得放宽。
    """

    name: str
    rows: Mapping[PolicyKey, ToolPolicy] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: Dict[PolicyKey, ToolPolicy] = {}
        for (base, within), effective in dict(self.rows).items():
            normalized[(coerce_policy(base), bool(within))] = coerce_policy(effective)

        missing = [(b.value, w) for b in ToolPolicy for w in (True, False) if (b, w) not in normalized]
        if missing:
            raise ValueError(f"policy table {self.name!r} is incomplete; missing rows: {missing}")

        for base in ToolPolicy:
            inside = normalized[(base, True)]
            outside = normalized[(base, False)]
            if base == ToolPolicy.DISABLED and (inside != ToolPolicy.DISABLED or outside != ToolPolicy.DISABLED):
                raise ValueError(f"policy table {self.name!r} must keep disabled as disabled")
            if friction(outside) < friction(ToolPolicy.ALLOWED_WITH_PERMISSION):
                raise ValueError(f"policy table {self.name!r} must require permission outside the workspace ({base.value})")
            if is_looser(outside, inside):
                raise ValueError(f"policy table {self.name!r} is not monotone for {base.value}")
            if is_looser(inside, base):
                relaxes_one_level = (
                    base == ToolPolicy.ALLOWED_WITH_PERMISSION and inside == ToolPolicy.ALLOWED_WITHOUT_PERMISSION
                )
                if not relaxes_one_level:
                    raise ValueError(f"policy table {self.name!r} relaxes {base.value} beyond one level")

        object.__setattr__(self, "rows", MappingProxyType(normalized))

    def lookup(self, base: ToolPolicy, *, is_within_workspace: bool) -> ToolPolicy:
        return self.rows[(coerce_policy(base), bool(is_within_workspace))]

    def to_jsonable(self) -> Dict[str, Dict[str, str]]:
        """导出为 {base: {"within": ..., "outside": ...}}（CLI/诊断用）。"""

        out: Dict[str, Dict[str, str]] = {}
        for base in ToolPolicy:
            out[base.value] = {
                "within": self.rows[(base, True)].value,
                "outside": self.rows[(base, False)].value,
            }
        return out


RELAXED_PATH_POLICY = PolicyTable(
    name="relaxed",
    rows={
        (ToolPolicy.DISABLED, True): ToolPolicy.DISABLED,
        (ToolPolicy.DISABLED, False): ToolPolicy.DISABLED,
        (ToolPolicy.ALLOWED_WITHOUT_PERMISSION, True): ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
        (ToolPolicy.ALLOWED_WITHOUT_PERMISSION, False): ToolPolicy.ALLOWED_WITH_PERMISSION,
        (ToolPolicy.ALLOWED_WITH_PERMISSION, True): ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
        (ToolPolicy.ALLOWED_WITH_PERMISSION, False): ToolPolicy.ALLOWED_WITH_PERMISSION,
    },
)

# workspace 内不放宽：只保留“workspace 外收紧”的半边规则。
STRICT_PATH_POLICY = PolicyTable(
    name="strict",
    rows={
        (ToolPolicy.DISABLED, True): ToolPolicy.DISABLED,
        (ToolPolicy.DISABLED, False): ToolPolicy.DISABLED,
        (ToolPolicy.ALLOWED_WITHOUT_PERMISSION, True): ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
        (ToolPolicy.ALLOWED_WITHOUT_PERMISSION, False): ToolPolicy.ALLOWED_WITH_PERMISSION,
        (ToolPolicy.ALLOWED_WITH_PERMISSION, True): ToolPolicy.ALLOWED_WITH_PERMISSION,
        (ToolPolicy.ALLOWED_WITH_PERMISSION, False): ToolPolicy.ALLOWED_WITH_PERMISSION,
    },
)

PATH_POLICY_TABLES: Mapping[str, PolicyTable] = MappingProxyType(
    {RELAXED_PATH_POLICY.name: RELAXED_PATH_POLICY, STRICT_PATH_POLICY.name: STRICT_PATH_POLICY}
)


def get_policy_table(name: str) -> PolicyTable:
    """按名称获取决策表（relaxed|strict）；未知名称抛 ValueError。"""

    key = str(name or "").strip().lower()
    table = PATH_POLICY_TABLES.get(key)
    if table is None:
        raise ValueError(f"unknown path policy table: {name!r}; expected one of {sorted(PATH_POLICY_TABLES)}")
    return table


def evaluate_tool_policy(
    base_policy: ToolPolicy,
    facts: Optional[WorkspaceFacts] = None,
    *,
    table: PolicyTable = RELAXED_PATH_POLICY,
) -> ToolPolicy:
    """
    计算有效策略（纯函数）。

    参数：
    - base_policy：基础策略（人工配置优先，否则为描述符默认值）
    - facts：动态事实；None 表示无动态覆盖（恒等映射）
    - table：路径策略决策表

    返回：
    - 有效策略
    """

    base = coerce_policy(base_policy)
    if facts is None:
        return base
    return table.lookup(base, is_within_workspace=facts.is_within_workspace)


def resolve_base_policy(default_policy: ToolPolicy, configured: Optional[ToolPolicy] = None) -> ToolPolicy:
    """基础策略：人工配置（tools.policies）优先，否则取描述符默认值。"""

    if configured is not None:
        return coerce_policy(configured)
    return coerce_policy(default_policy)
