"""
EventLog 协议与内存实现（InMemoryEventLog）。

设计目标：
- 生命周期事件不硬绑本地文件系统；测试与嵌入式场景直接用内存实现。
- 接口极简：append + 按序迭代 + 定位符。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Protocol, runtime_checkable

from tool_runtime.core.contracts import ToolCallEvent


@runtime_checkable
class EventLog(Protocol):
    """
    事件日志协议（最小集合）。

    约束：
    - `append` MUST 返回 0-based index。
    - `iter_events` MUST 按写入顺序返回事件。
    """

    def append(self, event: ToolCallEvent) -> int:
        """追加一条事件并返回其 index（0-based）。"""

        ...

    def iter_events(self, *, call_id: Optional[str] = None) -> Iterator[ToolCallEvent]:
        """按写入顺序迭代事件（可选按 call_id 过滤）。"""

        ...

    def locator(self) -> str:
        """返回稳定的定位符字符串（路径或 URI）。"""

        ...


@dataclass
class InMemoryEventLog:
    """
    内存事件日志。

    约束：
    - append/iter_events 线程安全（锁保护 + copy-on-iter）。
    """

    locator_str: str = "events://in-memory"
    _events: List[ToolCallEvent] = field(default_factory=list, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def locator(self) -> str:
        return str(self.locator_str or "events://in-memory")

    def append(self, event: ToolCallEvent) -> int:
        with self._lock:
            idx = len(self._events)
            self._events.append(event)
            return idx

    def iter_events(self, *, call_id: Optional[str] = None) -> Iterator[ToolCallEvent]:
        """返回快照迭代器（可选按 call_id 过滤）。"""

        with self._lock:
            snap = list(self._events)
        if call_id is None:
            return iter(snap)
        return (ev for ev in snap if ev.call_id == call_id)
