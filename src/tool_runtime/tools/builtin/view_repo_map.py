"""内置工具：view_repo_map（按 root 渲染仓库结构图）。"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List

from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.builtin._fs import collect_tree, render_tree
from tool_runtime.tools.protocol import (
    BUILT_IN_GROUP_NAME,
    DisplayTemplates,
    SystemMessageDescription,
    ToolDescriptor,
    ToolResult,
)
from tool_runtime.tools.registry import ToolExecutionContext, ToolInvocation
from tool_runtime.workspace.base import maybe_await

VIEW_REPO_MAP_DESCRIPTOR = ToolDescriptor(
    name="view_repo_map",
    display_title="查看仓库结构图",
    description="View the repository map",
    parameters={"type": "object", "properties": {}},
    display=DisplayTemplates(
        pending="查看仓库结构图",
        in_progress="正在获取仓库结构图",
        completed="已查看仓库结构图",
    ),
    readonly=True,
    is_instant=True,
    default_policy=ToolPolicy.ALLOWED_WITH_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    icon="MapIcon",
    system_message_description=SystemMessageDescription(
        prefix=(
            "To view the repository map, use the view_repo_map tool. "
            "This will provide a visual representation of the project's structure and organization."
        ),
    ),
)


async def view_repo_map(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    start = time.monotonic()
    roots = [str(r) for r in (await maybe_await(ctx.workspace.get_workspace_roots()) or [])]
    sections: List[str] = []
    data: List[Dict[str, Any]] = []
    any_truncated = False
    for root in roots:
        entries, truncated = await asyncio.to_thread(
            collect_tree, Path(root), max_depth=ctx.tree_max_depth, max_entries=ctx.tree_max_entries
        )
        any_truncated = any_truncated or truncated
        body = render_tree(entries)
        if truncated:
            body += f"\n... (more than {ctx.tree_max_entries} entries)"
        sections.append(f"{root}/\n{body}" if body else f"{root}/")
        data.append({"root": root, "entries": [e.to_dict() for e in entries], "truncated": truncated})

    return ToolResult.ok_payload(
        output="\n\n".join(sections) + "\n",
        truncated=any_truncated,
        duration_ms=int((time.monotonic() - start) * 1000),
        data={"roots": data},
    )
