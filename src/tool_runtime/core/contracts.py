"""
核心契约（事件结构）。

说明：
- 生命周期的每一次状态迁移都会产出一条 `ToolCallEvent`，写入 EventLog（见 `tool_runtime.state`）。
- 事件被视为不可变；sink/hook 不得修改事件对象。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_rfc3339() -> str:
    """返回当前 UTC 时间的 RFC3339 字符串（以 Z 结尾）。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ToolCallEvent(BaseModel):
    """
    ToolCallEvent：工具调用事件流条目。

    字段：
    - type：事件类型（tool_call_generated / tool_call_status_changed / approval_requested / ...）
    - timestamp：RFC3339 时间字符串
    - session_id：会话标识
    - turn_id/call_id：可选；用于关联 turn 与单次调用
    - payload：JSON object（dict），承载事件专用字段
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    timestamp: str = Field(description="RFC3339 时间字符串；wire key 固定为 timestamp。")
    session_id: str
    turn_id: Optional[str] = None
    call_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw_json: str) -> "ToolCallEvent":
        """从 JSON 字符串反序列化为 `ToolCallEvent`。"""

        return cls.model_validate_json(raw_json)
