from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from tool_runtime.cli.main import EXIT_CONFIG, EXIT_EVENTS, EXIT_TOOL, main
from tool_runtime.core.tool_calls import ToolCallTracker
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.state.emitter import EventEmitter
from tool_runtime.state.jsonl_log import JsonlEventLog


def _run(capsys: pytest.CaptureFixture[str], argv: List[str]) -> tuple:
    code = main(argv)
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


def test_tools_list(capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["tools", "list"])
    assert code == 0
    tools: Dict[str, Any] = {t["name"]: t for t in obj["tools"]}
    assert len(tools) == 7
    assert tools["view_subdirectory"]["kind"] == "path_scoped"
    assert tools["view_subdirectory"]["path_policy_table"] == "relaxed"
    assert tools["view_diff"]["base_policy"] == "allowedWithoutPermission"


def test_tools_schema_hides_disabled_tools(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    overlay = tmp_path / "overlay.yaml"
    overlay.write_text("tools:\n  policies:\n    search_web: disabled\n", encoding="utf-8")

    code, obj = _run(capsys, ["tools", "schema", "--config", str(overlay)])
    assert code == 0
    names = [t["function"]["name"] for t in obj["tools"]]
    assert "search_web" not in names
    assert "view_subdirectory" in names


def test_tools_schema_system_message(capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["tools", "schema", "--format", "system-message"])
    assert code == 0
    assert "TOOL_NAME: file_glob_search" in obj["text"]


def test_policy_explain_inside_and_outside(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    ws = tmp_path / "ws"
    (ws / "src").mkdir(parents=True)

    code, obj = _run(
        capsys,
        ["policy", "explain", "--tool", "view_subdirectory", "--args", '{"directory_path": "src"}', "--workspace-root", str(ws)],
    )
    assert code == 0
    assert obj["effective_policy"] == "allowedWithoutPermission"
    assert obj["processed_arguments"]["resolved_path"]["is_within_workspace"] is True

    code, obj = _run(
        capsys,
        ["policy", "explain", "--tool", "view_subdirectory", "--args", json.dumps({"directory_path": str(tmp_path)}), "--workspace-root", str(ws)],
    )
    assert code == 0
    assert obj["effective_policy"] == "allowedWithPermission"


def test_policy_explain_unknown_tool(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["policy", "explain", "--tool", "nope", "--workspace-root", str(tmp_path)])
    assert code == EXIT_TOOL
    assert obj["issues"][0]["code"] == "UNKNOWN_TOOL"


def test_policy_explain_bad_args_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["policy", "explain", "--tool", "view_diff", "--args", "{oops", "--workspace-root", str(tmp_path)])
    assert code == EXIT_TOOL
    assert obj["issues"][0]["code"] == "CLI_ARGS_INVALID"


def test_invalid_config_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    overlay = tmp_path / "bad.yaml"
    overlay.write_text("tools:\n  policies:\n    view_diff: sometimes\n", encoding="utf-8")
    code, obj = _run(capsys, ["tools", "list", "--config", str(overlay)])
    assert code == EXIT_CONFIG
    assert obj["issues"][0]["code"] == "CLI_CONFIG_INVALID"

    code, obj = _run(capsys, ["tools", "list", "--config", str(tmp_path / "missing.yaml")])
    assert code == EXIT_CONFIG
    assert obj["issues"][0]["code"] == "CLI_CONFIG_NOT_FOUND"


def test_policy_table(capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["policy", "table", "--name", "strict"])
    assert code == 0
    assert list(obj["tables"]) == ["strict"]
    assert obj["tables"]["strict"]["allowedWithPermission"]["within"] == "allowedWithPermission"


def test_argparse_error_returns_two(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["tools"]) == 2
    capsys.readouterr()


def test_events_replay(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path) as log:
        tracker = ToolCallTracker(session_id="s1", emitter=EventEmitter(log=log))
        tracker.create(call_id="c1", tool_name="view_diff", turn_id="t1", raw_arguments={})
        tracker.record_policy("c1", processed_arguments={}, effective_policy=ToolPolicy.ALLOWED_WITHOUT_PERMISSION)
        tracker.start("c1")
        tracker.create(call_id="c2", tool_name="view_diff", turn_id="t2", raw_arguments={})
        tracker.cancel("c2", reason="turn canceled")

    code, obj = _run(capsys, ["events", "replay", "--path", str(path)])
    assert code == 0
    assert [c["status"] for c in obj["calls"]] == ["calling", "canceled"]
    assert obj["calls"][0]["history"] == ["generated", "calling"]
    assert obj["calls"][1]["cancel_reason"] == "turn canceled"
    assert obj["interrupted"] == ["c1"]

    code, obj = _run(capsys, ["events", "replay", "--path", str(path), "--turn", "t2"])
    assert [c["call_id"] for c in obj["calls"]] == ["c2"]
    assert obj["interrupted"] == []


def test_events_replay_failures(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, obj = _run(capsys, ["events", "replay", "--path", str(tmp_path / "missing.jsonl")])
    assert code == EXIT_EVENTS
    assert obj["issues"][0]["code"] == "CLI_EVENTS_NOT_FOUND"

    bad = tmp_path / "bad.jsonl"
    bad.write_text("not json\n", encoding="utf-8")
    code, obj = _run(capsys, ["events", "replay", "--path", str(bad)])
    assert code == EXIT_EVENTS
    assert obj["issues"][0]["code"] == "CLI_EVENTS_INVALID"
