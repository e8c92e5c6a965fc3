"""内置工具：view_diff（工作区相对最近一次提交的 git diff）。"""

from __future__ import annotations

import asyncio
import subprocess
import time

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

VIEW_DIFF_DESCRIPTOR = ToolDescriptor(
    name="view_diff",
    display_title="查看差异",
    description="View the current diff of working changes",
    parameters={"type": "object", "properties": {}},
    display=DisplayTemplates(
        pending="查看 Git diff",
        in_progress="正在获取 Git diff",
        completed="已查看 Git diff",
    ),
    readonly=True,
    is_instant=True,
    default_policy=ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
    group=BUILT_IN_GROUP_NAME,
    icon="CodeBracketIcon",
    system_message_description=SystemMessageDescription(
        prefix=(
            "To view the current git diff, use the view_diff tool. "
            "This will show you the changes made in the working directory compared to the last commit."
        ),
    ),
)


async def view_diff(call: ToolInvocation, ctx: ToolExecutionContext) -> ToolResult:
    """
    返回 git diff。

    说明：
    - git 超时映射为 TimeoutError（调用转入 errored，error_kind=timeout）；
    - git 不可用时返回 unavailable 错误结果。
    """

    start = time.monotonic()
    try:
        diff = await maybe_await(await asyncio.to_thread(ctx.workspace.get_diff))
    except subprocess.TimeoutExpired as e:
        raise TimeoutError(f"git diff timed out after {e.timeout}s") from e
    except OSError as e:
        return ToolResult.error_payload(error_kind="unavailable", error=str(e))

    text = ctx.redact_text(str(diff or ""))
    return ToolResult.ok_payload(
        output=text if text.strip() else "No changes in the working tree.\n",
        duration_ms=int((time.monotonic() - start) * 1000),
        data={"has_changes": bool(text.strip())},
    )
