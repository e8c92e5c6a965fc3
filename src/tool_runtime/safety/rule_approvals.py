"""
程序化审批规则（无人值守场景的 ApprovalProvider）。

规则按顺序匹配，首个命中者给出决策；全部未命中时返回 default（默认 DENIED）。
一条规则可以同时约束：
- tool：工具名（None 表示任意工具）
- within_workspace：路径事实中的 is_within_workspace
- path_prefixes：resolved_path 必须位于其中某个目录之下（按路径分量比较，`/tmp` 不匹配 `/tmpx`）
- condition：自定义谓词；抛异常视为不命中

带路径约束的规则不会命中没有路径事实的请求。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from tool_runtime.safety.approvals import ApprovalDecision, ApprovalProvider, ApprovalRequest

logger = logging.getLogger(__name__)


ApprovalCondition = Callable[[ApprovalRequest], bool]


def _is_under(path: str, prefix: str) -> bool:
    norm_path = os.path.normpath(path)
    norm_prefix = os.path.normpath(prefix)
    try:
        return os.path.commonpath([norm_path, norm_prefix]) == norm_prefix
    except ValueError:
        return False


@dataclass(frozen=True)
class ApprovalRule:
    tool: Optional[str] = None
    within_workspace: Optional[bool] = None
    path_prefixes: Tuple[str, ...] = ()
    condition: Optional[ApprovalCondition] = None
    decision: ApprovalDecision = ApprovalDecision.DENIED

    def matches(self, request: ApprovalRequest) -> bool:
        if self.tool is not None and self.tool.strip() != request.tool.strip():
            return False

        if self.within_workspace is not None or self.path_prefixes:
            facts = request.path_facts()
            if facts is None:
                return False
            if self.within_workspace is not None and facts.is_within_workspace != self.within_workspace:
                return False
            if self.path_prefixes and not any(_is_under(facts.resolved_path, p) for p in self.path_prefixes):
                return False

        if self.condition is None:
            return True
        try:
            return bool(self.condition(request))
        except Exception:
            logger.debug("approval rule condition raised for %s (%s)", request.call_id, request.tool, exc_info=True)
            return False


class RuleBasedApprovalProvider(ApprovalProvider):
    """
    按规则表直接给出决策（不等待人类）。

    参数：
    - rules：按顺序匹配
    - default：未命中时的决策
    """

    def __init__(
        self,
        *,
        rules: Sequence[ApprovalRule],
        default: ApprovalDecision = ApprovalDecision.DENIED,
    ) -> None:
        self._rules: List[ApprovalRule] = list(rules or [])
        self._default = ApprovalDecision(default)

    @property
    def rules(self) -> Tuple[ApprovalRule, ...]:
        return tuple(self._rules)

    async def request_approval(self, *, request: ApprovalRequest, timeout_ms: Optional[int] = None) -> ApprovalDecision:  # type: ignore[override]
        for index, rule in enumerate(self._rules):
            if rule.matches(request):
                logger.info(
                    "approval rule #%d decided %s for %s (%s)", index, rule.decision.value, request.call_id, request.tool
                )
                return rule.decision
        logger.info("no approval rule matched %s (%s); default %s", request.call_id, request.tool, self._default.value)
        return self._default
