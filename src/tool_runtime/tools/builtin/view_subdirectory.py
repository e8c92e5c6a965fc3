"""
内置工具：view_subdirectory（path_scoped）。

说明：
- 路径由 preprocess 阶段解析（multi-root / `..` / symlink / file URI）；
- workspace 外的目录也能查看，但策略至少为 allowedWithPermission（由决策表保证）。
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from tool_runtime.core.errors import PathResolutionError
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.builtin._fs import collect_tree, render_tree
from tool_runtime.tools.capabilities import resolved_path_of
from tool_runtime.tools.protocol import (
    BUILT_IN_GROUP_NAME,
    DisplayTemplates,
    SystemMessageDescription,
    ToolDescriptor,
    ToolKind,
    ToolResult,
)
from tool_runtime.tools.registry import ToolExecutionContext, ToolInvocation


class _ViewSubdirectoryArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    directory_path: str


VIEW_SUBDIRECTORY_DESCRIPTOR = ToolDescriptor(
    name="view_subdirectory",
    display_title="查看子目录",
    description="View the contents of a subdirectory",
    parameters={
        "type": "object",
        "required": ["directory_path"],
        "properties": {
            "directory_path": {
                "type": "string",
                "description": "The path of the subdirectory to view, relative to the root of the workspace",
            },
        },
    },
    display=DisplayTemplates(
        pending='查看 "{{{ directory_path }}}" 的结构图',
        in_progress='正在获取 "{{{ directory_path }}}" 的结构图',
        completed='已查看 "{{{ directory_path }}}" 的结构图',
    ),
    readonly=True,
    is_instant=True,
    default_policy=ToolPolicy.ALLOWED_WITH_PERMISSION,
    kind=ToolKind.PATH_SCOPED,
    path_argument="directory_path",
    group=BUILT_IN_GROUP_NAME,
    icon="FolderOpenIcon",
    system_message_description=SystemMessageDescription(
        prefix=(
            "To view a map of a specific folder within the project, you can use the view_subdirectory tool. "
            "This will provide a visual representation of the folder's structure and organization."
        ),
        example_args=(("directory_path", "path/to/subdirectory"),),
    ),
)


async def view_subdirectory(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    """
    输出子目录结构图。

    返回：
    - ok=true：output 为缩进树；data.entries 为结构化条目
    - ok=false：error_kind 为 validation/path_resolution/not_found
    """

    start = time.monotonic()
    try:
        args = _ViewSubdirectoryArgs.model_validate(dict(call.args))
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", error=str(e))
    try:
        resolved = resolved_path_of(call.processed_args)
    except PathResolutionError as e:
        return ToolResult.error_payload(error_kind="path_resolution", error=e.message)

    root = Path(resolved.resolved_path)
    if not root.exists():
        return ToolResult.error_payload(
            error_kind="not_found",
            error=f"Directory not found: {args.directory_path}",
            data={"directory_path": args.directory_path},
        )
    if not root.is_dir():
        return ToolResult.error_payload(
            error_kind="validation",
            error=f"Not a directory: {args.directory_path}",
            data={"directory_path": args.directory_path},
        )

    entries, truncated = await asyncio.to_thread(
        collect_tree, root, max_depth=ctx.tree_max_depth, max_entries=ctx.tree_max_entries
    )
    lines = [f"Absolute path: {root}", render_tree(entries)]
    if truncated:
        lines.append(f"More than {ctx.tree_max_entries} entries found")
    return ToolResult.ok_payload(
        output="\n".join(x for x in lines if x) + "\n",
        truncated=truncated,
        duration_ms=int((time.monotonic() - start) * 1000),
        data={
            "directory_path": resolved.display_path,
            "resolved_path": resolved.resolved_path,
            "is_within_workspace": resolved.is_within_workspace,
            "entries": [e.to_dict() for e in entries],
        },
    )
