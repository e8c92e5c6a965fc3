"""
Workspace 协议（IDE/工作区抽象，由宿主提供）。

约束：
- 方法可以是同步的，也可以返回 awaitable；调用方统一经 `maybe_await` 消费。
- `is_path_within_workspace` 必须无副作用；传入的路径已经是规范化（canonical）形式。
- `canonicalize` 无法 stat/归一化时抛 OSError（由路径解析层转换为 PathResolutionError）。
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Protocol, Sequence, TypeVar, Union, runtime_checkable

T = TypeVar("T")

MaybeAwaitable = Union[T, Awaitable[T]]


async def maybe_await(value: Any) -> Any:
    """若 value 是 awaitable 则 await，否则原样返回。"""

    if inspect.isawaitable(value):
        return await value
    return value


@runtime_checkable
class Workspace(Protocol):
    """路径解析与内置工具依赖的最小工作区接口。"""

    def get_workspace_roots(self) -> MaybeAwaitable[Sequence[str]]:
        """返回 workspace root 列表（绝对路径；可以有多个 root）。"""

        ...

    def canonicalize(self, path: str) -> MaybeAwaitable[str]:
        """把绝对路径归一化为规范形式（消除 `..`、跟随 symlink）。"""

        ...

    def path_exists(self, path: str) -> MaybeAwaitable[bool]:
        ...

    def is_path_within_workspace(self, resolved_path: str) -> MaybeAwaitable[bool]:
        """规范化路径是否位于任一 root 之下（含 root 本身）。"""

        ...

    def get_diff(self) -> MaybeAwaitable[str]:
        """返回当前工作区相对最近一次提交的 diff 文本。"""

        ...
