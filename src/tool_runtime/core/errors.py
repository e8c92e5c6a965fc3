"""
错误分类（异常类型）。

说明：
- 所有异常都带英文 `code/message/details`，便于事件落盘与程序化处理。
- 面向 Agent 的工具失败以 `ToolResult.error_kind` 回注；异常只用于模块间传递“错误层级”语义。
- `InvalidTransitionError` 属于集成缺陷信号（逻辑 bug），任何情况下都不得被静默吞掉。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class ToolRuntimeError(Exception):
    """SDK 错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（可用于 CLI 输出与启动校验报告）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(ToolRuntimeError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """用户输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class PathResolutionError(FrameworkError):
    """
    路径无法解析/归一化（或 preprocess 输出缺少路径事实）。

    处理口径：对应调用转入 `errored`，并以失败结果回注给 Agent。
    """

    def __init__(self, message: str, *, path: str | None = None, details: Dict[str, Any] | None = None) -> None:
        merged = dict(details or {})
        if path is not None:
            merged.setdefault("path", path)
        super().__init__(code="PATH_RESOLUTION_FAILED", message=message, details=merged)


class UnknownToolError(FrameworkError):
    """Agent 引用了注册表中不存在的工具名（只对该次调用致命，turn 继续）。"""

    def __init__(self, name: str) -> None:
        super().__init__(code="UNKNOWN_TOOL", message=f"Unknown tool: {name}", details={"tool": name})
        self.tool_name = name


class InvalidTransitionError(FrameworkError):
    """生命周期状态机收到非法迁移（集成缺陷，不是用户可见错误）。"""

    def __init__(self, *, call_id: str, current: str, target: str) -> None:
        super().__init__(
            code="INVALID_TRANSITION",
            message=f"Invalid tool call transition {current} -> {target} (call_id={call_id})",
            details={"call_id": call_id, "from": current, "to": target},
        )


class PolicyViolationError(FrameworkError):
    """执行边界的策略复核失败（结构上不可达，但执行前仍做一次双重检查）。"""

    def __init__(self, message: str, *, call_id: str, tool: str, policy: str) -> None:
        super().__init__(
            code="POLICY_VIOLATION",
            message=message,
            details={"call_id": call_id, "tool": tool, "policy": policy},
        )


class RegistryError(FrameworkError):
    """注册表启动期错误（重复注册、seal 之后注册、描述符非法）。"""
