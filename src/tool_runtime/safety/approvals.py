"""
权限提示（审批）的数据模型与 Provider 协议。

有效策略为 allowedWithPermission 的调用在进入 calling 之前，会由编排器构造一个
`ApprovalRequest` 交给 `ApprovalProvider`。请求里带着已脱敏的参数、路径解析结果
（resolved_path / is_within_workspace）与 pending 阶段的展示文案，UI 与程序化规则都只读这些事实。
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from tool_runtime.safety.policy import ToolPolicy


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


@dataclass(frozen=True)
class ApprovalPathFacts:
    """请求中携带的路径事实（仅 path_scoped 工具有）。"""

    resolved_path: str
    is_within_workspace: bool
    display_path: str = ""


class ApprovalRequest(BaseModel):
    """
    一次待审批的工具调用。

    字段：
    - approval_key：tool + 审计表示的 canonical sha256（同一目标路径的重复请求得到同一个 key）
    - call_id / tool：对应的调用
    - summary：pending 阶段展示文案（已脱敏）
    - effective_policy：触发审批的有效策略
    - details：`arguments` / `processed_arguments` / `display_title`
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    approval_key: str
    call_id: str
    tool: str
    summary: str
    effective_policy: ToolPolicy = ToolPolicy.ALLOWED_WITH_PERMISSION
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def arguments(self) -> Mapping[str, Any]:
        raw = self.details.get("arguments")
        return raw if isinstance(raw, Mapping) else {}

    def path_facts(self) -> Optional[ApprovalPathFacts]:
        """
        读取 processed_arguments 中的路径解析结果。

        返回：
        - 非 path_scoped 工具或结构不完整时返回 None
        """

        processed = self.details.get("processed_arguments")
        if not isinstance(processed, Mapping):
            return None
        resolved = processed.get("resolved_path")
        if not isinstance(resolved, Mapping):
            return None
        path = resolved.get("resolved_path")
        within = resolved.get("is_within_workspace")
        if not isinstance(path, str) or not isinstance(within, bool):
            return None
        return ApprovalPathFacts(
            resolved_path=path,
            is_within_workspace=within,
            display_path=str(resolved.get("display_path") or path),
        )


@runtime_checkable
class ApprovalProvider(Protocol):
    """权限提示的适配层：UI、进程内 hub 或程序化规则。"""

    async def request_approval(
        self,
        *,
        request: ApprovalRequest,
        timeout_ms: Optional[int] = None,
    ) -> ApprovalDecision:
        """
        返回对该调用的决策。

        `timeout_ms` 为 None 表示由实现决定等待策略；编排器自身也会按配置限时，超时按拒绝处理。
        抛出的异常同样按拒绝处理。
        """

        ...


def compute_approval_key(*, tool: str, request: Dict[str, Any]) -> str:
    """canonical JSON（sort_keys、紧凑分隔符）的 sha256。"""

    canonical = {"tool": tool, "request": request}
    raw = json.dumps(canonical, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_approval_request(
    *,
    call_id: str,
    tool: str,
    summary: str,
    display_title: str,
    arguments: Mapping[str, Any],
    processed_arguments: Mapping[str, Any],
    effective_policy: ToolPolicy = ToolPolicy.ALLOWED_WITH_PERMISSION,
) -> ApprovalRequest:
    """
    由一次调用的（已脱敏）参数构造审批请求。

    参数：
    - arguments / processed_arguments：已经过 sanitize 的映射
    - summary：已渲染并脱敏的 pending 文案

    说明：
    - 有路径解析结果时，approval_key 只取决于 tool 与规范化后的路径，
      因此 `src`、`./src` 与其绝对形式得到相同的 key；否则取决于完整参数。
    """

    details: Dict[str, Any] = {
        "arguments": dict(arguments),
        "processed_arguments": dict(processed_arguments),
        "display_title": display_title,
    }
    request = ApprovalRequest(
        approval_key="",
        call_id=call_id,
        tool=tool,
        summary=summary,
        effective_policy=effective_policy,
        details=details,
    )
    facts = request.path_facts()
    key_source: Dict[str, Any]
    if facts is not None:
        key_source = {"resolved_path": facts.resolved_path}
    else:
        key_source = {"arguments": details["arguments"]}
    return request.model_copy(update={"approval_key": compute_approval_key(tool=tool, request=key_source)})
