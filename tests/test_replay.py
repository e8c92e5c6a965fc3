from __future__ import annotations

from pathlib import Path

import pytest

from tool_runtime.core.contracts import ToolCallEvent
from tool_runtime.core.errors import InvalidTransitionError
from tool_runtime.core.tool_calls import ToolCallError, ToolCallStatus, ToolCallTracker
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.state.emitter import EventEmitter
from tool_runtime.state.event_log import InMemoryEventLog
from tool_runtime.state.jsonl_log import JsonlEventLog
from tool_runtime.state.replay import replay_tool_calls
from tool_runtime.tools.protocol import ToolResult


def _record_session(tr: ToolCallTracker) -> None:
    tr.create(call_id="c1", tool_name="view_subdirectory", turn_id="t1", raw_arguments={"directory_path": "/etc"})
    tr.record_policy("c1", processed_arguments={"directory_path": "/etc"}, effective_policy=ToolPolicy.ALLOWED_WITH_PERMISSION)
    tr.request_permission("c1")
    tr.approve("c1")
    tr.complete("c1", ToolResult.ok_payload(output="etc/"))

    tr.create(call_id="c2", tool_name="doesNotExist", turn_id="t1", raw_arguments={})
    tr.fail("c2", ToolCallError(kind="not_found", message="Unknown tool", details={"code": "UNKNOWN_TOOL"}))

    tr.create(call_id="c3", tool_name="view_subdirectory", turn_id="t1", raw_arguments={"directory_path": "../.."})
    tr.record_policy("c3", processed_arguments={}, effective_policy=ToolPolicy.ALLOWED_WITH_PERMISSION)
    tr.request_permission("c3")
    tr.reject("c3", reason="denied by user")

    tr.create(call_id="c4", tool_name="view_diff", turn_id="t2", raw_arguments={})
    tr.record_policy("c4", processed_arguments={}, effective_policy=ToolPolicy.ALLOWED_WITHOUT_PERMISSION)
    tr.start("c4")


def test_replay_from_jsonl_matches_live_tracker(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path) as log:
        tracker = ToolCallTracker(session_id="s1", emitter=EventEmitter(log=log))
        _record_session(tracker)

    with JsonlEventLog(path) as log:
        replayed = replay_tool_calls(log.iter_events())

    assert list(replayed.states) == ["c1", "c2", "c3", "c4"]
    for live in tracker.all():
        got = replayed.states[live.call_id]
        assert got.status == live.status
        assert got.history == live.history
        assert got.effective_policy == live.effective_policy
        assert got.passed_permission_gate == live.passed_permission_gate
        assert got.cancel_reason == live.cancel_reason

    assert replayed.states["c1"].passed_permission_gate is True
    assert replayed.states["c2"].error == ToolCallError(kind="not_found", message="Unknown tool", details={"code": "UNKNOWN_TOOL"})
    assert [s.call_id for s in replayed.interrupted()] == ["c4"]
    assert [s.call_id for s in replayed.for_turn("t2")] == ["c4"]


def test_replay_single_turn_from_in_memory_log() -> None:
    log = InMemoryEventLog()
    _record_session(ToolCallTracker(emitter=EventEmitter(log=log)))

    replayed = replay_tool_calls(e for e in log.iter_events() if e.turn_id == "t2")
    assert list(replayed.states) == ["c4"]
    assert replayed.states["c4"].status == ToolCallStatus.CALLING


def _event(type_: str, payload: dict) -> ToolCallEvent:
    return ToolCallEvent(type=type_, timestamp="2026-01-01T00:00:00Z", session_id="s1", turn_id="t1", call_id="c1", payload=payload)


def test_replay_rejects_illegal_transition() -> None:
    events = [
        _event("tool_call_generated", {"tool": "view_diff", "arguments": {}}),
        _event("tool_call_status_changed", {"tool": "view_diff", "from": "generated", "to": "done"}),
    ]
    with pytest.raises(InvalidTransitionError):
        replay_tool_calls(events)


def test_replay_skips_events_of_unknown_calls() -> None:
    events = [_event("tool_call_status_changed", {"tool": "view_diff", "from": "calling", "to": "done"})]
    assert dict(replay_tool_calls(events).states) == {}
