from __future__ import annotations

from dataclasses import replace
from typing import List

import pytest

from tool_runtime.core.contracts import ToolCallEvent
from tool_runtime.core.errors import InvalidTransitionError, PolicyViolationError, UserError
from tool_runtime.core.tool_calls import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    ToolCallError,
    ToolCallStatus,
    ToolCallTracker,
    assert_executable,
    summarize_statuses,
)
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.state.emitter import EventEmitter
from tool_runtime.state.event_log import InMemoryEventLog
from tool_runtime.tools.protocol import ToolResult

AWP = ToolPolicy.ALLOWED_WITH_PERMISSION
AWOP = ToolPolicy.ALLOWED_WITHOUT_PERMISSION


def _tracker() -> ToolCallTracker:
    return ToolCallTracker(session_id="s1")


def _new(tr: ToolCallTracker, call_id: str = "c1", *, policy: ToolPolicy | None = None, turn_id: str = "t1") -> None:
    tr.create(call_id=call_id, tool_name="echo", turn_id=turn_id, raw_arguments={"x": "1"})
    if policy is not None:
        tr.record_policy(call_id, processed_arguments={}, effective_policy=policy)


def _drive_to(tr: ToolCallTracker, status: ToolCallStatus, call_id: str = "c1") -> None:
    """把调用推进到指定状态（经由合法路径）。"""

    if status == ToolCallStatus.GENERATED:
        _new(tr, call_id)
        return
    if status == ToolCallStatus.PENDING_PERMISSION:
        _new(tr, call_id, policy=AWP)
        tr.request_permission(call_id)
        return
    if status == ToolCallStatus.CALLING:
        _new(tr, call_id, policy=AWOP)
        tr.start(call_id)
        return
    if status == ToolCallStatus.DONE:
        _drive_to(tr, ToolCallStatus.CALLING, call_id)
        tr.complete(call_id, ToolResult.ok_payload(output="x"))
        return
    if status == ToolCallStatus.ERRORED:
        _new(tr, call_id)
        tr.fail(call_id, ToolCallError(kind="not_found", message="nope"))
        return
    _new(tr, call_id)
    tr.cancel(call_id, reason="test")


def test_happy_path_without_permission() -> None:
    tr = _tracker()
    _new(tr, policy=AWOP)
    tr.start("c1")
    st = tr.complete("c1", ToolResult.ok_payload(output="hi"))

    assert st.status == ToolCallStatus.DONE
    assert st.history == (ToolCallStatus.GENERATED, ToolCallStatus.CALLING, ToolCallStatus.DONE)
    assert st.passed_permission_gate is False
    assert st.result is not None and st.result.ok


def test_permission_path_records_gate() -> None:
    tr = _tracker()
    _new(tr, policy=AWP)
    tr.request_permission("c1")
    st = tr.approve("c1")

    assert st.status == ToolCallStatus.CALLING
    assert st.passed_permission_gate is True
    assert_executable(st)


def test_reject_records_reason_and_is_not_calling() -> None:
    tr = _tracker()
    _new(tr, policy=AWP)
    tr.request_permission("c1")
    st = tr.reject("c1", reason="denied by user")

    assert st.status == ToolCallStatus.CANCELED
    assert st.cancel_reason == "denied by user"
    assert tr.calling() == []


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value), ids=lambda s: s.value)
@pytest.mark.parametrize("target", list(ToolCallStatus), ids=lambda s: s.value)
def test_terminal_states_are_final(terminal: ToolCallStatus, target: ToolCallStatus) -> None:
    tr = _tracker()
    _drive_to(tr, terminal)
    before = tr.get("c1")

    with pytest.raises(InvalidTransitionError):
        if target == ToolCallStatus.CALLING:
            tr.start("c1")
        elif target == ToolCallStatus.PENDING_PERMISSION:
            tr.request_permission("c1")
        elif target == ToolCallStatus.DONE:
            tr.complete("c1", ToolResult.ok_payload())
        elif target == ToolCallStatus.ERRORED:
            tr.fail("c1", ToolCallError(kind="unknown", message="late"))
        elif target == ToolCallStatus.CANCELED:
            tr.cancel("c1")
        else:
            tr.approve("c1")
    assert tr.get("c1") == before


def test_transition_table_has_no_exits_from_terminal() -> None:
    for status in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_start_refuses_permission_and_disabled_policies() -> None:
    tr = _tracker()
    _new(tr, "a", policy=AWP)
    _new(tr, "b", policy=ToolPolicy.DISABLED)
    _new(tr, "c")

    for cid in ("a", "b", "c"):
        with pytest.raises(PolicyViolationError):
            tr.start(cid)
        assert tr.get(cid).status == ToolCallStatus.GENERATED


def test_request_permission_requires_permission_policy() -> None:
    tr = _tracker()
    _new(tr, policy=AWOP)
    with pytest.raises(InvalidTransitionError):
        tr.request_permission("c1")


def test_policy_is_recorded_once() -> None:
    tr = _tracker()
    _new(tr, policy=AWOP)
    with pytest.raises(InvalidTransitionError):
        tr.record_policy("c1", processed_arguments={}, effective_policy=AWP)
    assert tr.get("c1").effective_policy == AWOP


def test_policy_cannot_be_recorded_after_calling() -> None:
    tr = _tracker()
    _drive_to(tr, ToolCallStatus.CALLING)
    with pytest.raises(InvalidTransitionError):
        tr.record_policy("c1", processed_arguments={}, effective_policy=AWP)


def test_arguments_are_read_only_snapshots() -> None:
    tr = _tracker()
    raw = {"x": "1"}
    tr.create(call_id="c1", tool_name="echo", turn_id="t1", raw_arguments=raw)
    raw["x"] = "2"
    st = tr.get("c1")
    assert st.raw_arguments["x"] == "1"
    with pytest.raises(TypeError):
        st.raw_arguments["x"] = "3"  # type: ignore[index]


def test_duplicate_call_id_rejected() -> None:
    tr = _tracker()
    _new(tr)
    with pytest.raises(UserError) as ei:
        _new(tr)
    assert ei.value.code == "DUPLICATE_CALL_ID"


def test_unknown_call_id_raises_key_error() -> None:
    with pytest.raises(KeyError):
        _tracker().get("missing")


def test_queries_and_active_flag() -> None:
    tr = _tracker()
    assert tr.has_active_calls() is False

    _drive_to(tr, ToolCallStatus.PENDING_PERMISSION, "p")
    _drive_to(tr, ToolCallStatus.CALLING, "c")
    _drive_to(tr, ToolCallStatus.DONE, "d")

    assert [s.call_id for s in tr.pending_permission()] == ["p"]
    assert [s.call_id for s in tr.calling()] == ["c"]
    assert [s.call_id for s in tr.by_status("done", ToolCallStatus.CALLING)] == ["c", "d"]
    assert tr.has_active_calls() is True
    assert summarize_statuses(tr.all())["calling"] == 1

    tr.cancel("p")
    tr.complete("c", ToolResult.ok_payload())
    assert tr.has_active_calls() is False


def test_cancel_turn_discards_late_results() -> None:
    tr = _tracker()
    _drive_to(tr, ToolCallStatus.CALLING, "c1")
    generation = tr.get("c1").generation

    assert tr.cancel_turn("t1") == ["c1"]
    assert tr.apply_result("c1", generation, ToolResult.ok_payload(output="late")) is None
    assert tr.apply_failure("c1", generation, ToolCallError(kind="unknown", message="late")) is None

    st = tr.get("c1")
    assert st.status == ToolCallStatus.CANCELED
    assert st.result is None


def test_new_calls_after_cancel_turn_use_next_generation() -> None:
    tr = _tracker()
    _drive_to(tr, ToolCallStatus.CALLING, "old")
    old_gen = tr.get("old").generation
    tr.cancel_turn("t1")

    _new(tr, "new", policy=AWOP)
    tr.start("new")
    new_gen = tr.get("new").generation
    assert new_gen == old_gen + 1
    assert tr.is_current("new", old_gen) is False
    assert tr.apply_result("new", new_gen, ToolResult.ok_payload()) is not None


def test_cancel_turn_leaves_other_turns_alone() -> None:
    tr = _tracker()
    _new(tr, "a", turn_id="t1")
    _new(tr, "b", turn_id="t2")
    tr.cancel_turn("t1")
    assert tr.get("a").status == ToolCallStatus.CANCELED
    assert tr.get("b").status == ToolCallStatus.GENERATED


def test_discard_turn_removes_records() -> None:
    tr = _tracker()
    _new(tr, "a", turn_id="t1")
    _new(tr, "b", turn_id="t2")
    assert tr.discard_turn("t1") == ["a"]
    assert [s.call_id for s in tr.all()] == ["b"]
    assert tr.for_turn("t1") == []


def test_assert_executable_catches_bypass() -> None:
    tr = _tracker()
    _drive_to(tr, ToolCallStatus.PENDING_PERMISSION)
    with pytest.raises(PolicyViolationError):
        assert_executable(tr.get("c1"))

    tr2 = _tracker()
    _drive_to(tr2, ToolCallStatus.CALLING)
    state = tr2.get("c1")
    assert_executable(state)

    with pytest.raises(PolicyViolationError):
        assert_executable(replace(state, effective_policy=AWP))
    with pytest.raises(PolicyViolationError):
        assert_executable(replace(state, effective_policy=ToolPolicy.DISABLED))
    with pytest.raises(PolicyViolationError):
        assert_executable(replace(state, effective_policy=None))


def test_every_transition_emits_an_event() -> None:
    log = InMemoryEventLog()
    seen: List[ToolCallEvent] = []
    tr = ToolCallTracker(session_id="s1", emitter=EventEmitter(log=log, hooks=[seen.append]))

    _drive_to(tr, ToolCallStatus.DONE)
    types = [e.type for e in log.iter_events(call_id="c1")]
    assert types == [
        "tool_call_generated",
        "tool_call_policy_evaluated",
        "tool_call_status_changed",
        "tool_call_status_changed",
    ]
    changes = [(e.payload["from"], e.payload["to"]) for e in log.iter_events() if e.type == "tool_call_status_changed"]
    assert changes == [("generated", "calling"), ("calling", "done")]
    assert len(seen) == 4
    assert all(e.session_id == "s1" and e.turn_id == "t1" for e in seen)


def test_event_arguments_are_sanitized() -> None:
    log = InMemoryEventLog()
    tr = ToolCallTracker(
        emitter=EventEmitter(log=log),
        sanitize=lambda args: {k: "<redacted>" for k in args},
    )
    tr.create(call_id="c1", tool_name="echo", turn_id="t1", raw_arguments={"token": "secret"})
    ev = next(iter(log.iter_events()))
    assert ev.payload["arguments"] == {"token": "<redacted>"}


class _BrokenLog:
    def append(self, event: ToolCallEvent) -> int:
        raise OSError(28, "No space left on device")

    def iter_events(self, *, call_id=None):  # type: ignore[no-untyped-def]
        return iter(())

    def locator(self) -> str:
        return "events://broken"


def test_log_write_failure_keeps_transition_consistent() -> None:
    tr = ToolCallTracker(session_id="s1", emitter=EventEmitter(log=_BrokenLog()))  # type: ignore[arg-type]

    _drive_to(tr, ToolCallStatus.CALLING)
    assert tr.get("c1").status == ToolCallStatus.CALLING
    done = tr.apply_result("c1", 0, ToolResult.ok_payload(output="x"))

    assert done is not None
    assert done.status == ToolCallStatus.DONE
    assert tr.has_active_calls() is False
