"""
内置工具：file_glob_search。

说明：
- 在所有 workspace root 下递归查找；`**` 支持跨目录匹配；
- 跳过构建/缓存/VCS 目录与常见密钥文件；
- 结果条数受 `tools.glob_max_results` 限制，超出时标记 truncated。
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.builtin._fs import glob_files
from tool_runtime.tools.protocol import (
    BUILT_IN_GROUP_NAME,
    DisplayTemplates,
    SystemMessageDescription,
    ToolDescriptor,
    ToolResult,
)
from tool_runtime.tools.registry import ToolExecutionContext, ToolInvocation
from tool_runtime.workspace.base import maybe_await


class _GlobArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(min_length=1)


FILE_GLOB_SEARCH_DESCRIPTOR = ToolDescriptor(
    name="file_glob_search",
    display_title="Glob 文件搜索",
    description=(
        "Search for files recursively in the project using glob patterns. Supports ** for recursive directory search. "
        "Will not show many build, cache, secrets dirs/files (can use ls tool instead). "
        "Output may be truncated; use targeted patterns"
    ),
    parameters={
        "type": "object",
        "required": ["pattern"],
        "properties": {
            "pattern": {"type": "string", "description": "Glob pattern for file path matching"},
        },
    },
    display=DisplayTemplates(
        pending='搜索类似 "{{{ pattern }}}" 的文件',
        in_progress='正在搜索类似 "{{{ pattern }}}" 的文件',
        completed='已搜索过类似 "{{{ pattern }}}" 的文件',
    ),
    readonly=True,
    is_instant=True,
    default_policy=ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    icon="MagnifyingGlassIcon",
    system_message_description=SystemMessageDescription(
        prefix="To return a list of files based on a glob search pattern, use the file_glob_search tool",
        example_args=(("pattern", "*.py"),),
    ),
)


async def file_glob_search(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    start = time.monotonic()
    try:
        args = _GlobArgs.model_validate(dict(call.args))
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", error=str(e))
    pattern = args.pattern.strip()
    if not pattern:
        return ToolResult.error_payload(error_kind="validation", error="pattern must not be empty after trim")

    roots = [str(r) for r in (await maybe_await(ctx.workspace.get_workspace_roots()) or [])]
    multi_root = len(roots) > 1
    results: List[str] = []
    truncated = False
    for root in roots:
        remaining = ctx.glob_max_results - len(results)
        if remaining <= 0:
            truncated = True
            break
        found, cut = await asyncio.to_thread(glob_files, Path(root), pattern, max_results=remaining)
        results.extend(os.path.join(root, rel) if multi_root else rel for rel in found)
        truncated = truncated or cut

    if not results:
        output = f"No files found matching pattern: {pattern}\n"
    else:
        output = "\n".join(results) + "\n"
        if truncated:
            output += f"Results truncated to {ctx.glob_max_results} files; use a more targeted pattern\n"
    return ToolResult.ok_payload(
        output=output,
        truncated=truncated,
        duration_ms=int((time.monotonic() - start) * 1000),
        data={"pattern": pattern, "files": results},
    )
