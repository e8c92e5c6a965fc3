from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

import pytest

from tool_runtime.core.contracts import ToolCallEvent
from tool_runtime.state.emitter import EventEmitter
from tool_runtime.state.event_log import EventLog, InMemoryEventLog
from tool_runtime.state.jsonl_log import JsonlEventLog


def _ev(call_id: str, type_: str = "tool_call_generated") -> ToolCallEvent:
    return ToolCallEvent(
        type=type_,
        timestamp="2026-01-01T00:00:00Z",
        session_id="s1",
        turn_id="t1",
        call_id=call_id,
        payload={"tool": "view_diff"},
    )


def test_in_memory_log_appends_and_filters() -> None:
    log = InMemoryEventLog()
    assert isinstance(log, EventLog)
    assert log.append(_ev("a")) == 0
    assert log.append(_ev("b")) == 1
    assert [e.call_id for e in log.iter_events()] == ["a", "b"]
    assert [e.call_id for e in log.iter_events(call_id="b")] == ["b"]
    assert log.locator() == "events://in-memory"


def test_jsonl_log_persists_one_event_per_line(tmp_path: Path) -> None:
    path = tmp_path / "events" / "events.jsonl"
    with JsonlEventLog(path) as log:
        assert log.append(_ev("a")) == 0
        assert log.append(_ev("b", "tool_call_status_changed")) == 1

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["type"] == "tool_call_status_changed"


def test_jsonl_log_continues_index_after_reopen(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path) as log:
        log.append(_ev("a"))
    with JsonlEventLog(path) as log:
        assert log.append(_ev("b")) == 1
        assert [e.call_id for e in log.iter_events()] == ["a", "b"]
        assert [e.call_id for e in log.iter_events(call_id="a")] == ["a"]


def test_event_json_round_trip_keeps_payload() -> None:
    ev = _ev("a")
    assert ToolCallEvent.from_json(ev.to_json()) == ev


def test_hook_failure_does_not_break_emit(caplog: pytest.LogCaptureFixture) -> None:
    seen: List[str] = []

    def _bad(ev: ToolCallEvent) -> None:
        raise RuntimeError("hook down")

    log = InMemoryEventLog()
    emitter = EventEmitter(log=log, hooks=[_bad, lambda ev: seen.append(ev.call_id or "")])
    with caplog.at_level(logging.WARNING, logger="tool_runtime.state.emitter"):
        emitter.emit(_ev("a"))

    assert [e.call_id for e in log.iter_events()] == ["a"]
    assert seen == ["a"]
    assert any("event hook failed" in r.getMessage() for r in caplog.records)


def test_jsonl_log_indexes_events_by_call(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path) as log:
        log.append(_ev("a"))
        log.append(_ev("b"))
        log.append(_ev("a", "tool_call_status_changed"))
        assert log.call_ids() == ["a", "b"]
        assert [e.type for e in log.iter_events(call_id="a")] == ["tool_call_generated", "tool_call_status_changed"]
        assert list(log.iter_events(call_id="missing")) == []

    with JsonlEventLog(path) as log:
        assert len(log) == 3
        assert log.call_ids() == ["a", "b"]
        assert [e.type for e in log.iter_events(call_id="a")][-1] == "tool_call_status_changed"
        assert list(log.iter_events(turn_id="other")) == []


def test_jsonl_log_truncates_torn_trailing_line(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path) as log:
        log.append(_ev("a"))
    with path.open("ab") as f:
        f.write(b'{"type": "tool_call_gen')

    with caplog.at_level(logging.WARNING, logger="tool_runtime.state.jsonl_log"):
        with JsonlEventLog(path) as log:
            assert len(log) == 1
            assert log.append(_ev("b")) == 1
            assert [e.call_id for e in log.iter_events(call_id="b")] == ["b"]

    assert any("torn trailing event" in r.getMessage() for r in caplog.records)
    assert [json.loads(line)["call_id"] for line in path.read_text(encoding="utf-8").splitlines()] == ["a", "b"]


def test_jsonl_log_refuses_corrupt_complete_line(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text(_ev("a").to_json() + "\nnot json\n" + _ev("b").to_json() + "\n", encoding="utf-8")
    with pytest.raises(ValueError):
        JsonlEventLog(path)


class _FullDisk:
    def append(self, event: ToolCallEvent) -> int:
        raise OSError(28, "No space left on device")

    def iter_events(self, *, call_id=None):  # type: ignore[no-untyped-def]
        return iter(())

    def locator(self) -> str:
        return "events://full"


def test_log_write_failure_does_not_break_emit(caplog: pytest.LogCaptureFixture) -> None:
    seen: List[str] = []
    emitter = EventEmitter(log=_FullDisk(), hooks=[lambda ev: seen.append(ev.type)])  # type: ignore[arg-type]

    with caplog.at_level(logging.ERROR, logger="tool_runtime.state.emitter"):
        emitter.emit(_ev("a"))

    assert seen == ["tool_call_generated"]
    assert any("event log write failed" in r.getMessage() for r in caplog.records)
