"""
Safety（Policy + Approvals）模块。

- policy：ToolPolicy 与路径策略决策表（纯函数）
- approvals：审批协议（权限提示 UI 的适配层）
- approval_hub：进程内审批中枢（外部 approve/reject 事件 → asyncio Future）
- rule_approvals：程序化规则审批（按工具、路径事实匹配；默认 fail-closed）
"""

from __future__ import annotations

from tool_runtime.safety.approval_hub import ApprovalHub
from tool_runtime.safety.approvals import (
    ApprovalDecision,
    ApprovalPathFacts,
    ApprovalProvider,
    ApprovalRequest,
    build_approval_request,
    compute_approval_key,
)
from tool_runtime.safety.policy import (
    PATH_POLICY_TABLES,
    RELAXED_PATH_POLICY,
    STRICT_PATH_POLICY,
    PolicyTable,
    ToolPolicy,
    WorkspaceFacts,
    evaluate_tool_policy,
)
from tool_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider

__all__ = [
    "ApprovalDecision",
    "ApprovalHub",
    "ApprovalPathFacts",
    "ApprovalProvider",
    "ApprovalRequest",
    "ApprovalRule",
    "PATH_POLICY_TABLES",
    "PolicyTable",
    "RELAXED_PATH_POLICY",
    "RuleBasedApprovalProvider",
    "STRICT_PATH_POLICY",
    "ToolPolicy",
    "WorkspaceFacts",
    "build_approval_request",
    "compute_approval_key",
    "evaluate_tool_policy",
]
