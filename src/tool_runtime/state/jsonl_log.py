"""
JSONL 事件日志（append-only，按 call_id 建索引）。

文件格式：每行一条 `ToolCallEvent` JSON，以 `\\n` 结尾。

打开时会扫描已有文件：
- 为每个 call_id 记录其事件的字节偏移，`iter_events(call_id=...)` 直接 seek 读取；
- 最后一行缺少换行（写入过程中进程退出）时截掉该行并记录 warning；
- 中间出现无法解析的完整行时抛出异常（文件损坏不自动修复）。

写入：flush + fsync 之后才返回 index。
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

from tool_runtime.core.contracts import ToolCallEvent

logger = logging.getLogger(__name__)


class JsonlEventLog:
    """
    工具调用事件的 JSONL 日志。

    参数：
    - path：日志文件路径（例如 `.tool_runtime/events.jsonl`）；父目录不存在时创建
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._offsets: Dict[str, List[int]] = {}
        self._count = 0
        self._size = 0
        self._recover()
        self._fh: Optional[BinaryIO] = self.path.open("ab")

    def _recover(self) -> None:
        if not self.path.exists():
            return
        offset = 0
        torn_at: Optional[int] = None
        with self.path.open("rb") as f:
            for raw in f:
                if not raw.endswith(b"\n"):
                    torn_at = offset
                    break
                if raw.strip():
                    self._index(ToolCallEvent.model_validate_json(raw), offset)
                offset += len(raw)
        if torn_at is not None:
            logger.warning("truncating torn trailing event in %s at byte %d", self.path, torn_at)
            with self.path.open("r+b") as f:
                f.truncate(torn_at)
        self._size = offset

    def _index(self, event: ToolCallEvent, offset: int) -> None:
        if event.call_id is not None:
            self._offsets.setdefault(event.call_id, []).append(offset)
        self._count += 1

    def locator(self) -> str:
        try:
            return str(self.path.resolve())
        except OSError:
            return str(self.path)

    def append(self, event: ToolCallEvent) -> int:
        """追加一条事件并落盘；返回 0-based 序号。"""

        data = (event.to_json() + "\n").encode("utf-8")
        with self._lock:
            if self._fh is None or self._fh.closed:
                self._fh = self.path.open("ab")
            offset = self._size
            self._fh.write(data)
            self._fh.flush()
            os.fsync(self._fh.fileno())
            self._size += len(data)
            index = self._count
            self._index(event, offset)
        return index

    def call_ids(self) -> List[str]:
        """日志中出现过的 call_id（按首次出现顺序）。"""

        with self._lock:
            return list(self._offsets)

    def iter_events(self, *, call_id: Optional[str] = None, turn_id: Optional[str] = None) -> Iterator[ToolCallEvent]:
        """
        按写入顺序迭代事件。

        参数：
        - call_id：只返回该调用的事件（按索引 seek，不扫描整个文件）
        - turn_id：只返回该 turn 的事件
        """

        with self._lock:
            if self._fh is not None and not self._fh.closed:
                self._fh.flush()
            offsets = list(self._offsets.get(call_id, ())) if call_id is not None else None
        if not self.path.exists():
            return iter(())

        def _by_offsets(positions: List[int]) -> Iterator[ToolCallEvent]:
            with self.path.open("rb") as f:
                for pos in positions:
                    f.seek(pos)
                    ev = ToolCallEvent.model_validate_json(f.readline())
                    if turn_id is None or ev.turn_id == turn_id:
                        yield ev

        def _scan() -> Iterator[ToolCallEvent]:
            with self.path.open("rb") as f:
                for raw in f:
                    if not raw.strip():
                        continue
                    ev = ToolCallEvent.model_validate_json(raw)
                    if turn_id is None or ev.turn_id == turn_id:
                        yield ev

        if offsets is not None:
            return _by_offsets(offsets)
        return _scan()

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def close(self) -> None:
        with self._lock:
            if self._fh is None:
                return
            try:
                self._fh.close()
            finally:
                self._fh = None

    def __enter__(self) -> "JsonlEventLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()
