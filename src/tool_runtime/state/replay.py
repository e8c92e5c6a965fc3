"""
事件回放：从事件流重建每个调用的生命周期快照。

用途：
- 进程重启后恢复 UI（哪些调用已完成、哪些仍在等待审批）；
- 审计：核对某个调用是否真的经过了权限提示。

回放同样受 `ALLOWED_TRANSITIONS` 约束；事件流中出现非法迁移说明日志被改写过，直接抛出
`InvalidTransitionError`。执行结果本身不在事件中，回放得到的快照 `result` 恒为 None。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping

from tool_runtime.core.contracts import ToolCallEvent
from tool_runtime.core.errors import InvalidTransitionError
from tool_runtime.core.tool_calls import ALLOWED_TRANSITIONS, ToolCallError, ToolCallState, ToolCallStatus
from tool_runtime.safety.policy import ToolPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplayedCalls:
    """
    回放结果。

    字段：
    - states：call_id → 快照（按 generated 事件的顺序）
    """

    states: Mapping[str, ToolCallState]

    def interrupted(self) -> List[ToolCallState]:
        """没有走到终态的调用（日志写到一半进程就退出了）。"""

        return [s for s in self.states.values() if not s.is_terminal]

    def for_turn(self, turn_id: str) -> List[ToolCallState]:
        return [s for s in self.states.values() if s.turn_id == turn_id]


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return MappingProxyType(dict(value)) if isinstance(value, Mapping) else MappingProxyType({})


def _apply_status_change(state: ToolCallState, ev: ToolCallEvent) -> ToolCallState:
    target = ToolCallStatus(ev.payload["to"])
    if target not in ALLOWED_TRANSITIONS[state.status]:
        raise InvalidTransitionError(call_id=state.call_id, current=state.status.value, target=target.value)

    changes: Dict[str, Any] = {}
    if target == ToolCallStatus.CALLING and ev.payload.get("approved") is True:
        changes["passed_permission_gate"] = True
    elif target == ToolCallStatus.CANCELED:
        changes["cancel_reason"] = ev.payload.get("reason")
    elif target == ToolCallStatus.ERRORED:
        err = ev.payload.get("error")
        if isinstance(err, Mapping):
            changes["error"] = ToolCallError(
                kind=str(err.get("kind") or "unknown"),
                message=str(err.get("message") or ""),
                details=dict(err.get("details") or {}),
            )
    return replace(state, status=target, history=state.history + (target,), **changes)


def replay_tool_calls(events: Iterable[ToolCallEvent]) -> ReplayedCalls:
    """
    按顺序回放事件。

    参数：
    - events：通常来自 `EventLog.iter_events()`

    异常：
    - InvalidTransitionError：事件流包含状态机不允许的迁移
    """

    states: Dict[str, ToolCallState] = {}
    for ev in events:
        call_id = ev.call_id
        if call_id is None:
            continue

        if ev.type == "tool_call_generated":
            states[call_id] = ToolCallState(
                call_id=call_id,
                tool_name=str(ev.payload.get("tool") or ""),
                turn_id=ev.turn_id or "",
                generation=0,
                status=ToolCallStatus.GENERATED,
                raw_arguments=_as_mapping(ev.payload.get("arguments")),
                history=(ToolCallStatus.GENERATED,),
            )
            continue

        state = states.get(call_id)
        if state is None:
            logger.warning("event %s for unknown call %s skipped during replay", ev.type, call_id)
            continue

        if ev.type == "tool_call_policy_evaluated":
            states[call_id] = replace(
                state,
                effective_policy=ToolPolicy(ev.payload["effective_policy"]),
                processed_arguments=_as_mapping(ev.payload.get("processed_arguments")),
            )
        elif ev.type == "tool_call_status_changed":
            states[call_id] = _apply_status_change(state, ev)
    return ReplayedCalls(states=MappingProxyType(states))
