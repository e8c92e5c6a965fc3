"""
EventEmitter：事件落盘 + hooks 的统一出口。

顺序约定：
1) 先写入 EventLog（append-only）
2) 再调用 hooks（UI 订阅 / 可观测性）

日志写入失败（OSError，例如磁盘写满）与 hooks 失败都不中断生命周期迁移：
调用方拿到的快照已经是迁移之后的状态；丢失的事件以 error 记录，hooks 失败以 warning 记录。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from tool_runtime.core.contracts import ToolCallEvent
from tool_runtime.state.event_log import EventLog

logger = logging.getLogger(__name__)

EventHook = Callable[[ToolCallEvent], None]


@dataclass(frozen=True)
class EventEmitter:
    """
    字段：
    - log：事件日志（可选；None 时只调用 hooks）
    - hooks：订阅者回调（不得修改事件对象）
    """

    log: Optional[EventLog] = None
    hooks: Sequence[EventHook] = ()

    def emit(self, ev: ToolCallEvent) -> None:
        if self.log is not None:
            try:
                self.log.append(ev)
            except OSError:
                logger.error(
                    "event log write failed; %s for call_id=%s not persisted", ev.type, ev.call_id, exc_info=True
                )
        for h in self.hooks or ():
            try:
                h(ev)
            except Exception:
                logger.warning("event hook failed for %s (call_id=%s)", ev.type, ev.call_id, exc_info=True)
