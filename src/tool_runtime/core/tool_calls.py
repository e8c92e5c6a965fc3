"""
Tool Call 生命周期追踪器（状态机 + 集合查询）。

状态：
    generated ──► pendingPermission ──► calling ──► done
        │                │                 │
        │                └──► canceled     └──► errored
        ├──► calling（免审批）
        └──► errored（未知工具 / 路径解析失败 / disabled）
    任意非终态 ──► canceled（显式取消 / turn 丢弃 / 会话销毁）

约束：
- 终态（done / errored / canceled）不可再迁移：尝试即 `InvalidTransitionError`；
- 每次迁移在同一把锁内完成（读方只会看到不可变快照，不会看到“半更新”的调用）；
- effective_policy 只计算一次；进入 calling 之后不可再写；
- 取消之后才到达的执行结果会被丢弃（按 call_id + generation 判定）。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from tool_runtime.core.contracts import ToolCallEvent, now_rfc3339
from tool_runtime.core.errors import InvalidTransitionError, PolicyViolationError, UserError
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.state.emitter import EventEmitter
from tool_runtime.tools.protocol import ToolResult
from tool_runtime.tools.registry import sanitize_for_event

logger = logging.getLogger(__name__)


class ToolCallStatus(str, Enum):
    GENERATED = "generated"
    PENDING_PERMISSION = "pendingPermission"
    CALLING = "calling"
    DONE = "done"
    ERRORED = "errored"
    CANCELED = "canceled"


TERMINAL_STATUSES: FrozenSet[ToolCallStatus] = frozenset(
    {ToolCallStatus.DONE, ToolCallStatus.ERRORED, ToolCallStatus.CANCELED}
)
ACTIVE_STATUSES: FrozenSet[ToolCallStatus] = frozenset({ToolCallStatus.PENDING_PERMISSION, ToolCallStatus.CALLING})

ALLOWED_TRANSITIONS: Mapping[ToolCallStatus, FrozenSet[ToolCallStatus]] = MappingProxyType(
    {
        ToolCallStatus.GENERATED: frozenset(
            {ToolCallStatus.PENDING_PERMISSION, ToolCallStatus.CALLING, ToolCallStatus.ERRORED, ToolCallStatus.CANCELED}
        ),
        ToolCallStatus.PENDING_PERMISSION: frozenset({ToolCallStatus.CALLING, ToolCallStatus.CANCELED}),
        ToolCallStatus.CALLING: frozenset({ToolCallStatus.DONE, ToolCallStatus.ERRORED, ToolCallStatus.CANCELED}),
        ToolCallStatus.DONE: frozenset(),
        ToolCallStatus.ERRORED: frozenset(),
        ToolCallStatus.CANCELED: frozenset(),
    }
)


@dataclass(frozen=True)
class ToolCallError:
    """附着在 errored 调用上的错误（kind 与 ToolResult.error_kind 同口径）。"""

    kind: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True)
class ToolCallState:
    """
    单次调用的不可变快照。

    字段：
    - call_id / tool_name / turn_id：标识
    - generation：创建时所属 turn 的代号（用于丢弃过期结果）
    - status：当前状态
    - raw_arguments / processed_arguments：只读映射（一经写入不可修改）
    - effective_policy：有效策略（只计算一次）
    - passed_permission_gate：是否经过 pendingPermission 并获得显式批准
    - result / error / cancel_reason：终态附带信息
    - history：经历过的状态序列
    """

    call_id: str
    tool_name: str
    turn_id: str
    generation: int
    status: ToolCallStatus
    raw_arguments: Mapping[str, Any]
    processed_arguments: Optional[Mapping[str, Any]] = None
    effective_policy: Optional[ToolPolicy] = None
    passed_permission_gate: bool = False
    result: Optional[ToolResult] = None
    error: Optional[ToolCallError] = None
    cancel_reason: Optional[str] = None
    history: Tuple[ToolCallStatus, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _payload_value(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    return obj


class ToolCallTracker:
    """
    生命周期追踪器（会话级共享状态；编排器写、UI/selector 读）。

    参数：
    - session_id：事件中的会话标识
    - emitter：可选；每次迁移产出一条 ToolCallEvent
    - sanitize：可选；事件中 arguments 的脱敏函数（默认 `sanitize_for_event`，不做值替换）
    """

    def __init__(
        self,
        *,
        session_id: str = "default",
        emitter: Optional[EventEmitter] = None,
        sanitize: Optional[Callable[[Mapping[str, Any]], Any]] = None,
    ) -> None:
        self._session_id = session_id
        self._emitter = emitter
        self._sanitize = sanitize
        self._lock = threading.RLock()
        self._calls: Dict[str, ToolCallState] = {}
        self._turn_generation: Dict[str, int] = {}

    # ---- 写入 ----

    def create(self, *, call_id: str, tool_name: str, turn_id: str, raw_arguments: Mapping[str, Any]) -> ToolCallState:
        """登记一次新调用（状态 generated）。同一会话内 call_id 必须唯一。"""

        with self._lock:
            if call_id in self._calls:
                raise UserError(f"Duplicate tool call id: {call_id}", code="DUPLICATE_CALL_ID", details={"call_id": call_id})
            state = ToolCallState(
                call_id=call_id,
                tool_name=tool_name,
                turn_id=turn_id,
                generation=self._turn_generation.setdefault(turn_id, 0),
                status=ToolCallStatus.GENERATED,
                raw_arguments=MappingProxyType(dict(raw_arguments)),
                history=(ToolCallStatus.GENERATED,),
            )
            self._calls[call_id] = state
            self._emit(
                "tool_call_generated",
                state,
                {"tool": tool_name, "arguments": self._sanitized(raw_arguments)},
            )
        logger.debug("tool call generated: %s (%s)", call_id, tool_name)
        return state

    def record_policy(
        self,
        call_id: str,
        *,
        processed_arguments: Mapping[str, Any],
        effective_policy: ToolPolicy,
    ) -> ToolCallState:
        """写入 processed args 与有效策略（仅 generated 状态、仅一次）。"""

        with self._lock:
            state = self._require(call_id)
            if state.status != ToolCallStatus.GENERATED or state.effective_policy is not None:
                raise InvalidTransitionError(call_id=call_id, current=state.status.value, target="record_policy")
            new = replace(
                state,
                processed_arguments=MappingProxyType(dict(processed_arguments)),
                effective_policy=ToolPolicy(effective_policy),
            )
            self._calls[call_id] = new
            self._emit(
                "tool_call_policy_evaluated",
                new,
                {"effective_policy": new.effective_policy.value, "processed_arguments": self._sanitized(processed_arguments)},
            )
        return new

    def request_permission(self, call_id: str) -> ToolCallState:
        """generated → pendingPermission（有效策略必须为 allowedWithPermission）。"""

        with self._lock:
            state = self._require(call_id)
            if state.effective_policy != ToolPolicy.ALLOWED_WITH_PERMISSION:
                raise InvalidTransitionError(
                    call_id=call_id, current=state.status.value, target=ToolCallStatus.PENDING_PERMISSION.value
                )
            return self._transition(state, ToolCallStatus.PENDING_PERMISSION, event_payload={})

    def start(self, call_id: str) -> ToolCallState:
        """generated → calling（仅 allowedWithoutPermission；其它策略抛 PolicyViolationError）。"""

        with self._lock:
            state = self._require(call_id)
            self._check_transition(state, ToolCallStatus.CALLING)
            if state.status != ToolCallStatus.GENERATED:
                raise InvalidTransitionError(call_id=call_id, current=state.status.value, target="start")
            if state.effective_policy != ToolPolicy.ALLOWED_WITHOUT_PERMISSION:
                policy = state.effective_policy.value if state.effective_policy is not None else "unevaluated"
                raise PolicyViolationError(
                    f"Tool call {call_id} cannot start without approval under policy {policy}",
                    call_id=call_id,
                    tool=state.tool_name,
                    policy=policy,
                )
            return self._transition(state, ToolCallStatus.CALLING, event_payload={"approved": False})

    def approve(self, call_id: str) -> ToolCallState:
        """pendingPermission → calling（显式批准）。"""

        with self._lock:
            state = self._require(call_id)
            if state.status != ToolCallStatus.PENDING_PERMISSION:
                raise InvalidTransitionError(call_id=call_id, current=state.status.value, target="approve")
            return self._transition(
                state,
                ToolCallStatus.CALLING,
                changes={"passed_permission_gate": True},
                event_payload={"approved": True},
            )

    def reject(self, call_id: str, *, reason: str = "rejected") -> ToolCallState:
        """pendingPermission → canceled（拒绝被记录为 cancel_reason）。"""

        with self._lock:
            state = self._require(call_id)
            if state.status != ToolCallStatus.PENDING_PERMISSION:
                raise InvalidTransitionError(call_id=call_id, current=state.status.value, target="reject")
            new = self._transition(
                state,
                ToolCallStatus.CANCELED,
                changes={"cancel_reason": reason},
                event_payload={"rejected": True, "reason": reason},
            )
        logger.info("tool call rejected: %s (%s): %s", call_id, new.tool_name, reason)
        return new

    def complete(self, call_id: str, result: ToolResult) -> ToolCallState:
        """calling → done。"""

        with self._lock:
            state = self._require(call_id)
            return self._transition(
                state,
                ToolCallStatus.DONE,
                changes={"result": result},
                event_payload={"ok": result.ok},
            )

    def fail(self, call_id: str, error: ToolCallError, *, result: Optional[ToolResult] = None) -> ToolCallState:
        """generated | calling → errored（错误附着在调用上，不在本层重试）。"""

        with self._lock:
            state = self._require(call_id)
            new = self._transition(
                state,
                ToolCallStatus.ERRORED,
                changes={"error": error, "result": result},
                event_payload={"error": error.to_dict()},
            )
        logger.info("tool call errored: %s (%s): %s", call_id, new.tool_name, error.message)
        return new

    def cancel(self, call_id: str, *, reason: str = "canceled") -> ToolCallState:
        """任意非终态 → canceled。"""

        with self._lock:
            state = self._require(call_id)
            return self._transition(
                state,
                ToolCallStatus.CANCELED,
                changes={"cancel_reason": reason},
                event_payload={"reason": reason},
            )

    def cancel_turn(self, turn_id: str, *, reason: str = "turn canceled") -> List[str]:
        """
        取消某个 turn 的全部非终态调用，并推进该 turn 的 generation（之后到达的结果视为过期）。

        返回：
        - 被取消的 call_id 列表
        """

        canceled: List[str] = []
        with self._lock:
            self._turn_generation[turn_id] = self._turn_generation.get(turn_id, 0) + 1
            for state in list(self._calls.values()):
                if state.turn_id == turn_id and not state.is_terminal:
                    self.cancel(state.call_id, reason=reason)
                    canceled.append(state.call_id)
        if canceled:
            logger.info("turn %s canceled; %d calls canceled", turn_id, len(canceled))
        return canceled

    def discard_turn(self, turn_id: str, *, reason: str = "turn discarded") -> List[str]:
        """取消并移除某个 turn 的全部调用记录（对话被改写时使用）。"""

        with self._lock:
            self.cancel_turn(turn_id, reason=reason)
            removed = [cid for cid, s in self._calls.items() if s.turn_id == turn_id]
            for cid in removed:
                del self._calls[cid]
        return removed

    def is_current(self, call_id: str, generation: int) -> bool:
        """结果是否仍可应用：调用存在、未终结、generation 未被推进。"""

        with self._lock:
            state = self._calls.get(call_id)
            if state is None or state.is_terminal:
                return False
            return generation == state.generation == self._turn_generation.get(state.turn_id, 0)

    def apply_result(self, call_id: str, generation: int, result: ToolResult) -> Optional[ToolCallState]:
        """
        应用执行结果（带过期保护）。

        返回：
        - 新快照；若结果已过期（调用已取消/已终结/turn 已推进）返回 None 且不做任何迁移
        """

        with self._lock:
            if not self.is_current(call_id, generation):
                logger.debug("discarding stale result for %s (generation=%s)", call_id, generation)
                return None
            return self.complete(call_id, result)

    def apply_failure(
        self,
        call_id: str,
        generation: int,
        error: ToolCallError,
        *,
        result: Optional[ToolResult] = None,
    ) -> Optional[ToolCallState]:
        """应用执行失败（带过期保护；语义同 apply_result）。"""

        with self._lock:
            if not self.is_current(call_id, generation):
                logger.debug("discarding stale failure for %s (generation=%s)", call_id, generation)
                return None
            return self.fail(call_id, error, result=result)

    # ---- 查询 ----

    def get(self, call_id: str) -> ToolCallState:
        """返回快照；未知 call_id 抛 KeyError。"""

        with self._lock:
            return self._calls[call_id]

    def all(self) -> List[ToolCallState]:
        with self._lock:
            return list(self._calls.values())

    def for_turn(self, turn_id: str) -> List[ToolCallState]:
        with self._lock:
            return [s for s in self._calls.values() if s.turn_id == turn_id]

    def by_status(self, *statuses: ToolCallStatus | str) -> List[ToolCallState]:
        """返回状态属于 statuses 的全部调用（按创建顺序）。"""

        wanted = {ToolCallStatus(s) for s in statuses}
        with self._lock:
            return [s for s in self._calls.values() if s.status in wanted]

    def pending_permission(self) -> List[ToolCallState]:
        return self.by_status(ToolCallStatus.PENDING_PERMISSION)

    def calling(self) -> List[ToolCallState]:
        return self.by_status(ToolCallStatus.CALLING)

    def has_active_calls(self) -> bool:
        """是否存在 pendingPermission 或 calling 的调用（UI 据此隐藏快捷操作）。"""

        return bool(self.by_status(*ACTIVE_STATUSES))

    # ---- 内部 ----

    def _require(self, call_id: str) -> ToolCallState:
        state = self._calls.get(call_id)
        if state is None:
            raise KeyError(call_id)
        return state

    def _check_transition(self, state: ToolCallState, target: ToolCallStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[state.status]:
            raise InvalidTransitionError(call_id=state.call_id, current=state.status.value, target=target.value)

    def _transition(
        self,
        state: ToolCallState,
        target: ToolCallStatus,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        event_payload: Optional[Mapping[str, Any]] = None,
    ) -> ToolCallState:
        self._check_transition(state, target)
        new = replace(state, status=target, history=state.history + (target,), **dict(changes or {}))
        self._calls[state.call_id] = new
        payload: Dict[str, Any] = {
            "tool": new.tool_name,
            "from": state.status.value,
            "to": target.value,
            "effective_policy": _payload_value(new.effective_policy),
        }
        payload.update(event_payload or {})
        self._emit("tool_call_status_changed", new, payload)
        logger.debug("tool call %s: %s -> %s", state.call_id, state.status.value, target.value)
        return new

    def _sanitized(self, args: Mapping[str, Any]) -> Any:
        if self._sanitize is None:
            return sanitize_for_event(args)
        return self._sanitize(args)

    def _emit(self, type_: str, state: ToolCallState, payload: Dict[str, Any]) -> None:
        if self._emitter is None:
            return
        self._emitter.emit(
            ToolCallEvent(
                type=type_,
                timestamp=now_rfc3339(),
                session_id=self._session_id,
                turn_id=state.turn_id,
                call_id=state.call_id,
                payload=payload,
            )
        )


def assert_executable(state: ToolCallState) -> None:
    """
    执行边界的策略复核（在调用 handler 之前立即执行）。

    异常：
    - PolicyViolationError：状态不是 calling、有效策略为 disabled/未计算，
      或 allowedWithPermission 的调用未经过显式批准
    """

    policy = state.effective_policy
    label = policy.value if policy is not None else "unevaluated"
    if state.status != ToolCallStatus.CALLING:
        raise PolicyViolationError(
            f"Tool call {state.call_id} is not in calling state ({state.status.value})",
            call_id=state.call_id,
            tool=state.tool_name,
            policy=label,
        )
    if policy is None or policy == ToolPolicy.DISABLED:
        raise PolicyViolationError(
            f"Tool call {state.call_id} attempted to execute under policy {label}",
            call_id=state.call_id,
            tool=state.tool_name,
            policy=label,
        )
    if policy == ToolPolicy.ALLOWED_WITH_PERMISSION and (
        not state.passed_permission_gate or ToolCallStatus.PENDING_PERMISSION not in state.history
    ):
        raise PolicyViolationError(
            f"Tool call {state.call_id} requires approval before execution",
            call_id=state.call_id,
            tool=state.tool_name,
            policy=label,
        )


def summarize_statuses(states: Sequence[ToolCallState]) -> Dict[str, int]:
    """按状态计数（CLI/诊断用）。"""

    out: Dict[str, int] = {s.value: 0 for s in ToolCallStatus}
    for st in states:
        out[st.status.value] += 1
    return out
