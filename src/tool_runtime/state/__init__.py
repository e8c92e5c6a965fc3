"""事件日志（append-only）：JSONL 文件实现与内存实现。"""

from __future__ import annotations

from tool_runtime.state.emitter import EventEmitter
from tool_runtime.state.event_log import EventLog, InMemoryEventLog
from tool_runtime.state.jsonl_log import JsonlEventLog

__all__ = ["EventEmitter", "EventLog", "InMemoryEventLog", "JsonlEventLog"]
