from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from tool_runtime.bootstrap import build_registry, build_runtime
from tool_runtime.config.defaults import load_default_config_dict
from tool_runtime.config.loader import load_config, load_config_dicts
from tool_runtime.core.orchestrator import RawToolCall
from tool_runtime.core.tool_calls import ToolCallStatus
from tool_runtime.safety.approvals import ApprovalDecision
from tool_runtime.safety.policy import RELAXED_PATH_POLICY, STRICT_PATH_POLICY, ToolPolicy
from tool_runtime.state.event_log import InMemoryEventLog
from tool_runtime.state.jsonl_log import JsonlEventLog


def test_embedded_defaults_validate() -> None:
    raw = load_default_config_dict()
    assert raw["config_version"] == 1

    cfg = load_config([])
    assert cfg.workspace.roots == ["."]
    assert cfg.tools.policies == {}
    assert cfg.tools.path_policy.default_table() is RELAXED_PATH_POLICY
    assert cfg.tools.glob_max_results == 100
    assert cfg.approvals.timeout_ms is None
    assert cfg.events.jsonl_path is None


def test_overlays_merge_in_order(tmp_path: Path) -> None:
    first = tmp_path / "a.yaml"
    first.write_text(
        "\n".join(
            [
                "tools:",
                "  policies:",
                "    view_diff: disabled",
                "  glob_max_results: 10",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    second = tmp_path / "b.yaml"
    second.write_text(
        "\n".join(
            [
                "tools:",
                "  policies:",
                "    fetch_url_content: allowedWithoutPermission",
                "  path_policy:",
                "    table: strict",
                "approvals:",
                "  timeout_ms: 5000",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    cfg = load_config([first, second])
    assert cfg.tools.policies == {
        "view_diff": ToolPolicy.DISABLED,
        "fetch_url_content": ToolPolicy.ALLOWED_WITHOUT_PERMISSION,
    }
    assert cfg.tools.glob_max_results == 10
    assert cfg.tools.tree_max_entries == 200
    assert cfg.tools.path_policy.default_table() is STRICT_PATH_POLICY
    assert cfg.approvals.timeout_ms == 5000


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"tools": {"polices": {}}}])


def test_unknown_policy_value_fails_fast() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"tools": {"policies": {"view_diff": "sometimes"}}}])


def test_unknown_path_table_fails_fast() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"tools": {"path_policy": {"table": "lenient"}}}])


def test_missing_file_and_non_mapping_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "missing.yaml"])
    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])


def test_empty_overlay_file_is_ignored(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]).tools.glob_max_results == 100


def test_workspace_roots_resolve_against_base_dir(tmp_path: Path) -> None:
    cfg = load_config_dicts([{"workspace": {"roots": [".", "sub", str(tmp_path / "abs")]}}])
    roots = cfg.resolve_workspace_roots(tmp_path)
    assert roots == [tmp_path.resolve(), (tmp_path / "sub").resolve(), (tmp_path / "abs").resolve()]


def test_registry_from_config_applies_overrides_and_tables() -> None:
    cfg = load_config_dicts(
        [
            {
                "tools": {
                    "policies": {"view_repo_map": "disabled"},
                    "path_policy": {"per_tool": {"view_subdirectory": "strict"}},
                }
            }
        ]
    )
    registry = build_registry(cfg)
    assert registry.sealed is True
    assert registry.base_policy("view_repo_map") == ToolPolicy.DISABLED
    assert "view_repo_map" not in [d.name for d in registry.visible_descriptors()]
    assert registry.path_policy_table("view_subdirectory") is STRICT_PATH_POLICY


def test_build_runtime_event_log_selection(tmp_path: Path) -> None:
    (tmp_path / "ws").mkdir()
    cfg = load_config_dicts([{"workspace": {"roots": ["ws"]}, "tools": {"fetch": {"enabled": False}}}])
    rt = build_runtime(cfg, base_dir=tmp_path)
    assert isinstance(rt.event_log, InMemoryEventLog)
    assert rt.ctx.url_fetcher is None
    assert list(rt.workspace.get_workspace_roots()) == [str((tmp_path / "ws").resolve())]

    cfg2 = load_config_dicts([{"events": {"jsonl_path": "logs/events.jsonl"}}])
    rt2 = build_runtime(cfg2, base_dir=tmp_path, session_id="s9")
    assert isinstance(rt2.event_log, JsonlEventLog)
    assert rt2.event_log.path == tmp_path / "logs" / "events.jsonl"
    assert rt2.ctx.url_fetcher is not None
    rt2.event_log.close()


def test_approval_rules_validate_and_drive_runtime(tmp_path: Path) -> None:
    (tmp_path / "ws").mkdir()
    (tmp_path / "shared" / "docs").mkdir(parents=True)
    (tmp_path / "private").mkdir()

    with pytest.raises(ValidationError):
        load_config_dicts([{"approvals": {"rules": [{"decision": "maybe"}]}}])

    cfg = load_config_dicts(
        [
            {
                "workspace": {"roots": ["ws"]},
                "tools": {"fetch": {"enabled": False}},
                "approvals": {
                    "rules": [
                        {
                            "tool": "view_subdirectory",
                            "within_workspace": False,
                            "path_prefixes": ["shared"],
                            "decision": "approved",
                        }
                    ]
                },
            }
        ]
    )
    assert cfg.approvals.default_decision == ApprovalDecision.DENIED

    rt = build_runtime(cfg, base_dir=tmp_path)
    calls = [
        RawToolCall("c1", "view_subdirectory", {"directory_path": str(tmp_path / "shared" / "docs")}),
        RawToolCall("c2", "view_subdirectory", {"directory_path": str(tmp_path / "private")}),
    ]
    approved, denied = asyncio.run(rt.orchestrator.run_turn("t1", calls))

    assert approved.status == ToolCallStatus.DONE
    assert approved.passed_permission_gate is True
    assert denied.status == ToolCallStatus.CANCELED
    assert denied.cancel_reason == "denied by user"
