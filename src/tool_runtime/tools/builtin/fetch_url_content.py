"""内置工具：fetch_url_content（只接受 http/https URL）。"""

from __future__ import annotations

import time
from urllib.parse import urlparse

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


class _FetchArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1)


FETCH_URL_CONTENT_DESCRIPTOR = ToolDescriptor(
    name="fetch_url_content",
    display_title="读取 URL",
    description="Can be used to view the contents of a website using a URL. Do NOT use this for files.",
    parameters={
        "type": "object",
        "required": ["url"],
        "properties": {
            "url": {"type": "string", "description": "The URL to read"},
        },
    },
    display=DisplayTemplates(
        pending="获取 {{{ url }}}",
        in_progress="正在获取 {{{ url }}}",
        completed="已获取 {{{ url }}}",
    ),
    readonly=True,
    is_instant=True,
    default_policy=ToolPolicy.ALLOWED_WITH_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    icon="GlobeAltIcon",
    system_message_description=SystemMessageDescription(
        prefix=(
            "To fetch the content of a URL, use the fetch_url_content tool. "
            "For example, to read the contents of a webpage, you might respond with:"
        ),
        example_args=(("url", "https://example.com"),),
    ),
)


async def fetch_url_content(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    start = time.monotonic()
    try:
        args = _FetchArgs.model_validate(dict(call.args))
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", error=str(e))

    url = args.url.strip()
    scheme = urlparse(url).scheme.lower()
    if scheme not in ("http", "https"):
        # 本地文件请使用 view_subdirectory 等路径类工具（受路径策略约束）
        return ToolResult.error_payload(
            error_kind="validation",
            error=f"Only http(s) URLs are supported, got: {url}",
            data={"url": url},
        )

    fetcher = ctx.url_fetcher
    if fetcher is None:
        return ToolResult.error_payload(
            error_kind="disabled",
            error="fetch_url_content is disabled (no fetcher configured)",
            data={"disabled": True},
        )

    fetched = await maybe_await(fetcher.fetch(url))
    duration_ms = int((time.monotonic() - start) * 1000)
    data = {"url": fetched.url, "status_code": fetched.status_code, "content_type": fetched.content_type}
    if fetched.status_code >= 400:
        return ToolResult.error_payload(
            error_kind="http_error",
            error=f"HTTP {fetched.status_code} fetching {fetched.url}",
            data=data,
            duration_ms=duration_ms,
            retryable=fetched.status_code >= 500,
        )
    return ToolResult.ok_payload(
        output=ctx.redact_text(fetched.text),
        truncated=fetched.truncated,
        duration_ms=duration_ms,
        data=data,
    )
