"""
内置工具：search_web。

注意：
- 本工具默认 fail-closed：未配置 provider 时返回 disabled。
- 离线回归必须使用 fake provider（不得依赖外网）。
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


class _SearchWebArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1)


SEARCH_WEB_DESCRIPTOR = ToolDescriptor(
    name="search_web",
    display_title="搜索网页",
    description=(
        "Performs a web search, returning top results. Use this tool sparingly - only for questions that require "
        "specialized, external, and/or up-to-date knowledge. Common programming questions do not require web search."
    ),
    parameters={
        "type": "object",
        "required": ["query"],
        "properties": {
            "query": {"type": "string", "description": "The natural language search query"},
        },
    },
    display=DisplayTemplates(
        pending='搜索网页内容："{{{ query }}}"',
        in_progress='正在搜索网页内容："{{{ query }}}"',
        completed='已搜索过网页内容："{{{ query }}}"',
    ),
    readonly=True,
    default_policy=ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    icon="GlobeAltIcon",
    system_message_description=SystemMessageDescription(
        prefix=(
            "To search the web, use the search_web tool with a natural language query. "
            "For example, to search for the current weather, you would respond with:"
        ),
        example_args=(("query", "What is the current weather in San Francisco?"),),
    ),
)


async def search_web(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    """
    执行联网搜索（需注入 provider）。

    约定：
    - ctx.web_search 需要提供 `search(query) -> list[dict]`（同步或异步）
    """

    start = time.monotonic()
    try:
        args = _SearchWebArgs.model_validate(dict(call.args))
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", error=str(e))

    query = args.query.strip()
    if not query:
        return ToolResult.error_payload(error_kind="validation", error="query must not be empty after trim")

    provider = ctx.web_search
    if provider is None:
        return ToolResult.error_payload(
            error_kind="disabled",
            error="search_web is disabled (no provider configured)",
            data={"disabled": True},
        )

    results = await maybe_await(provider.search(query))
    safe_results: List[Dict[str, Any]] = []
    for it in list(results or []):
        if not isinstance(it, dict):
            continue
        safe_results.append(
            {
                "title": str(it.get("title", "") or ""),
                "url": str(it.get("url", "") or ""),
                "snippet": str(it.get("snippet", "") or ""),
            }
        )

    output = "\n\n".join(f"{r['title']}\n{r['url']}\n{r['snippet']}" for r in safe_results)
    return ToolResult.ok_payload(
        output=output or "No results found.",
        duration_ms=int((time.monotonic() - start) * 1000),
        data={"query": query, "results": safe_results},
    )
