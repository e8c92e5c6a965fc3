"""
运行时装配（配置 → workspace / registry / tracker / orchestrator）。

说明：
- 注册表在这里完成注册并 seal；调用方拿到的是只读注册表；
- 事件日志：配置了 `events.jsonl_path` 时写 JSONL，否则写内存；
- 审批：未注入 provider 且配置了 `approvals.rules` 时使用规则审批。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from tool_runtime.config.loader import ToolRuntimeConfig
from tool_runtime.core.orchestrator import ToolCallOrchestrator
from tool_runtime.core.tool_calls import ToolCallTracker
from tool_runtime.safety.approvals import ApprovalProvider
from tool_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider
from tool_runtime.state.emitter import EventEmitter, EventHook
from tool_runtime.state.event_log import EventLog, InMemoryEventLog
from tool_runtime.state.jsonl_log import JsonlEventLog
from tool_runtime.tools.builtin import register_builtin_tools
from tool_runtime.tools.providers import CodebaseSearchProvider, HttpxUrlFetcher, UrlFetcher, WebSearchProvider
from tool_runtime.tools.registry import ToolExecutionContext, ToolRegistry, sanitize_for_event
from tool_runtime.workspace.base import Workspace
from tool_runtime.workspace.local import LocalWorkspace

logger = logging.getLogger(__name__)


@dataclass
class ToolRuntime:
    """装配结果。"""

    config: ToolRuntimeConfig
    workspace: Workspace
    registry: ToolRegistry
    tracker: ToolCallTracker
    orchestrator: ToolCallOrchestrator
    event_log: EventLog
    ctx: ToolExecutionContext


def build_registry(config: ToolRuntimeConfig) -> ToolRegistry:
    """按配置创建注册表、注册内置工具并 seal。"""

    registry = ToolRegistry(
        policy_overrides=config.tools.policies,
        path_policy_tables=config.tools.path_policy.tables_by_tool(),
        default_path_policy=config.tools.path_policy.default_table(),
    )
    register_builtin_tools(registry)
    registry.seal()
    return registry


def build_rule_approvals(config: ToolRuntimeConfig, *, base_dir: Path) -> RuleBasedApprovalProvider:
    """
    把 `approvals.rules` 转为规则审批 Provider。

    说明：
    - path_prefixes 支持 `~`；相对路径相对于 base_dir，并与 resolved_path 一样做规范化。
    """

    rules = []
    for item in config.approvals.rules:
        prefixes = []
        for raw in item.path_prefixes:
            p = Path(raw).expanduser()
            if not p.is_absolute():
                p = Path(base_dir) / p
            prefixes.append(str(p.resolve()))
        rules.append(
            ApprovalRule(
                tool=item.tool,
                within_workspace=item.within_workspace,
                path_prefixes=tuple(prefixes),
                decision=item.decision,
            )
        )
    return RuleBasedApprovalProvider(rules=rules, default=config.approvals.default_decision)


def build_runtime(
    config: ToolRuntimeConfig,
    *,
    base_dir: Path,
    session_id: str = "default",
    workspace: Optional[Workspace] = None,
    approval_provider: Optional[ApprovalProvider] = None,
    codebase_search: Optional[CodebaseSearchProvider] = None,
    web_search: Optional[WebSearchProvider] = None,
    url_fetcher: Optional[UrlFetcher] = None,
    event_log: Optional[EventLog] = None,
    hooks: Sequence[EventHook] = (),
    redaction_values: Sequence[str] = (),
) -> ToolRuntime:
    """
    装配一个会话级运行时。

    参数：
    - config：已校验的配置
    - base_dir：解析相对 workspace root / 事件日志路径的基准目录
    - workspace：可选；默认按 `workspace.roots` 创建 LocalWorkspace
    - approval_provider：可选；缺失时使用 `approvals.rules`（若有），否则需要审批的调用一律按拒绝处理
    - codebase_search / web_search / url_fetcher：可选 provider；url_fetcher 缺失且 `tools.fetch.enabled` 时使用 HttpxUrlFetcher
    - event_log / hooks：事件出口
    - redaction_values：需要在事件/输出中脱敏的值
    """

    ws = workspace or LocalWorkspace(config.resolve_workspace_roots(base_dir))

    if approval_provider is None and config.approvals.rules:
        approval_provider = build_rule_approvals(config, base_dir=base_dir)

    if event_log is None:
        if config.events.jsonl_path:
            path = Path(config.events.jsonl_path).expanduser()
            if not path.is_absolute():
                path = Path(base_dir) / path
            event_log = JsonlEventLog(path)
        else:
            event_log = InMemoryEventLog()

    fetch_cfg = config.tools.fetch
    if url_fetcher is None and fetch_cfg.enabled:
        url_fetcher = HttpxUrlFetcher(timeout_sec=fetch_cfg.timeout_sec, max_bytes=fetch_cfg.max_bytes)

    values = tuple(redaction_values)
    ctx = ToolExecutionContext(
        workspace=ws,
        codebase_search=codebase_search,
        url_fetcher=url_fetcher,
        web_search=web_search,
        glob_max_results=config.tools.glob_max_results,
        tree_max_entries=config.tools.tree_max_entries,
        tree_max_depth=config.tools.tree_max_depth,
        redaction_values=values,
    )
    registry = build_registry(config)
    tracker = ToolCallTracker(
        session_id=session_id,
        emitter=EventEmitter(log=event_log, hooks=tuple(hooks)),
        sanitize=lambda args: sanitize_for_event(args, redaction_values=values),
    )
    orchestrator = ToolCallOrchestrator(
        registry=registry,
        tracker=tracker,
        ctx=ctx,
        approval_provider=approval_provider,
        approval_timeout_ms=config.approvals.timeout_ms,
    )
    logger.debug("tool runtime ready: session=%s tools=%d", session_id, len(registry.list_descriptors()))
    return ToolRuntime(
        config=config,
        workspace=ws,
        registry=registry,
        tracker=tracker,
        orchestrator=orchestrator,
        event_log=event_log,
        ctx=ctx,
    )
