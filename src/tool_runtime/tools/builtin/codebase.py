"""
内置工具：codebase（语义检索代码库）。

注意：
- 默认 fail-closed：未注入 CodebaseSearchProvider 时返回 disabled。
"""

from __future__ import annotations

import time
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.protocol import (
    BUILT_IN_GROUP_NAME,
    DisplayTemplates,
    SystemMessageDescription,
    ToolDescriptor,
    ToolResult,
)
from tool_runtime.tools.registry import ToolExecutionContext, ToolInvocation
from tool_runtime.workspace.base import maybe_await


class _CodebaseArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1)


CODEBASE_DESCRIPTOR = ToolDescriptor(
    name="codebase",
    display_title="代码库搜索",
    description=(
        "Use this tool to semantically search through the codebase and retrieve relevant code snippets based on a "
        "natural language query. This helps find relevant code context for understanding or working with the codebase."
    ),
    parameters={
        "type": "object",
        "required": ["query"],
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "Natural language description of what you're looking for in the codebase "
                    "(e.g., 'authentication logic', 'database connection setup', 'error handling')"
                ),
            },
        },
    },
    display=DisplayTemplates(
        pending="想要在代码库中搜索：{{{ query }}}",
        in_progress="正在代码库中搜索：{{{ query }}}",
        completed="已在代码库中搜索过：{{{ query }}}",
    ),
    readonly=True,
    is_instant=False,
    default_policy=ToolPolicy.ALLOWED_WITH_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    system_message_description=SystemMessageDescription(
        prefix=(
            "To search the codebase, use the codebase tool with a natural language query. "
            "For example, to find authentication logic, you might respond with:"
        ),
        example_args=(("query", "How is user authentication handled in this codebase?"),),
    ),
)


async def codebase(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    start = time.monotonic()
    try:
        args = _CodebaseArgs.model_validate(dict(call.args))
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", error=str(e))

    provider = ctx.codebase_search
    if provider is None:
        return ToolResult.error_payload(
            error_kind="disabled",
            error="codebase search is disabled (no provider configured)",
            data={"disabled": True},
        )

    results = await maybe_await(provider.search(args.query.strip()))
    snippets: List[Dict[str, Any]] = []
    for it in list(results or []):
        if not isinstance(it, dict):
            continue
        snippets.append(
            {
                "path": str(it.get("path", "") or ""),
                "snippet": ctx.redact_text(str(it.get("snippet", "") or "")),
                "score": it.get("score"),
            }
        )

    lines = [f"{s['path']}\n{s['snippet']}" for s in snippets]
    return ToolResult.ok_payload(
        output="\n\n".join(lines) if lines else "No relevant code found.",
        duration_ms=int((time.monotonic() - start) * 1000),
        data={"query": args.query, "results": snippets},
    )
