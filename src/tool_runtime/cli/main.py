"""
Tool Runtime CLI（tools/policy/events）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- stdout 输出机器可读 JSON；失败时也输出 JSON（含 issues）
- 不执行任何工具：只做描述、schema 导出、策略解释与事件日志回放

exit code：
- 0：成功
- 2：参数错误（argparse）
- 10：配置加载/校验失败
- 11：工具或参数错误（未知工具、参数 JSON 非法、路径解析失败）
- 12：事件日志无法读取（文件不存在、内容损坏、迁移非法）
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from tool_runtime.bootstrap import build_registry
from tool_runtime.config.loader import ToolRuntimeConfig, load_config
from tool_runtime.core.errors import (
    FrameworkError,
    FrameworkIssue,
    InvalidTransitionError,
    PathResolutionError,
    UnknownToolError,
)
from tool_runtime.core.tool_calls import ToolCallState
from tool_runtime.safety.policy import PATH_POLICY_TABLES, get_policy_table
from tool_runtime.state.jsonl_log import JsonlEventLog
from tool_runtime.state.replay import replay_tool_calls
from tool_runtime.tools.protocol import parse_tool_arguments, render_system_message_description
from tool_runtime.tools.registry import ToolRegistry, sanitize_for_event
from tool_runtime.workspace.local import LocalWorkspace

EXIT_OK = 0
EXIT_CONFIG = 10
EXIT_TOOL = 11
EXIT_EVENTS = 12


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """将 dict 输出为 JSON 到 stdout（末尾包含换行）。"""

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _issue_payload(issue: FrameworkIssue) -> Dict[str, Any]:
    return {"ok": False, "issues": [{"code": issue.code, "message": issue.message, "details": sanitize_for_event(issue.details)}]}


def _load_effective_config(args: argparse.Namespace) -> Tuple[Optional[ToolRuntimeConfig], Optional[FrameworkIssue]]:
    """加载默认配置 + overlays；失败时返回 issue（不抛异常）。"""

    try:
        return load_config([Path(p) for p in args.config]), None
    except FileNotFoundError as exc:
        return None, FrameworkIssue(code="CLI_CONFIG_NOT_FOUND", message="Config file is not found.", details={"reason": str(exc)})
    except ValidationError as exc:
        return None, FrameworkIssue(code="CLI_CONFIG_INVALID", message="Config is invalid.", details={"reason": str(exc)})
    except ValueError as exc:
        return None, FrameworkIssue(code="CLI_CONFIG_INVALID", message="Config is invalid.", details={"reason": str(exc)})


def _workspace_roots(args: argparse.Namespace, config: ToolRuntimeConfig) -> List[Path]:
    if args.workspace_root:
        return [Path(p).expanduser().resolve() for p in args.workspace_root]
    return config.resolve_workspace_roots(Path.cwd())


def _describe_tools(registry: ToolRegistry) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for d in registry.list_descriptors():
        base = registry.base_policy(d.name)
        out.append(
            {
                "name": d.name,
                "display_title": d.display_title,
                "kind": d.kind.value,
                "readonly": d.readonly,
                "is_instant": d.is_instant,
                "group": d.group,
                "default_policy": d.default_policy.value,
                "base_policy": base.value,
                "path_policy_table": registry.path_policy_table(d.name).name if d.path_argument else None,
            }
        )
    return out


def _handle_tools_list(args: argparse.Namespace) -> int:
    config, issue = _load_effective_config(args)
    if issue is not None or config is None:
        _dump_json_to_stdout(_issue_payload(issue), pretty=args.pretty)  # type: ignore[arg-type]
        return EXIT_CONFIG
    registry = build_registry(config)
    _dump_json_to_stdout({"ok": True, "tools": _describe_tools(registry)}, pretty=args.pretty)
    return EXIT_OK


def _handle_tools_schema(args: argparse.Namespace) -> int:
    config, issue = _load_effective_config(args)
    if issue is not None or config is None:
        _dump_json_to_stdout(_issue_payload(issue), pretty=args.pretty)  # type: ignore[arg-type]
        return EXIT_CONFIG
    registry = build_registry(config)
    if args.format == "system-message":
        text = "\n\n".join(render_system_message_description(d) for d in registry.visible_descriptors())
        _dump_json_to_stdout({"ok": True, "format": "system-message", "text": text}, pretty=args.pretty)
    else:
        _dump_json_to_stdout({"ok": True, "format": "openai", "tools": registry.function_tools()}, pretty=args.pretty)
    return EXIT_OK


async def _explain(registry: ToolRegistry, workspace: LocalWorkspace, tool: str, raw_args: Dict[str, Any]) -> Dict[str, Any]:
    descriptor = registry.lookup(tool)
    processed = await registry.preprocess_args(tool, raw_args, workspace)
    effective = registry.evaluate_policy(tool, raw_args, processed)
    return {
        "ok": True,
        "tool": tool,
        "kind": descriptor.kind.value,
        "default_policy": descriptor.default_policy.value,
        "base_policy": registry.base_policy(tool).value,
        "path_policy_table": registry.path_policy_table(tool).name if descriptor.path_argument else None,
        "processed_arguments": sanitize_for_event(processed),
        "effective_policy": effective.value,
        "summary": descriptor.render_display("pending", raw_args),
    }


def _handle_policy_explain(args: argparse.Namespace) -> int:
    config, issue = _load_effective_config(args)
    if issue is not None or config is None:
        _dump_json_to_stdout(_issue_payload(issue), pretty=args.pretty)  # type: ignore[arg-type]
        return EXIT_CONFIG

    try:
        raw_args = parse_tool_arguments(args.args)
    except ValueError as exc:
        _dump_json_to_stdout(
            _issue_payload(FrameworkIssue(code="CLI_ARGS_INVALID", message="Tool arguments are invalid.", details={"reason": str(exc)})),
            pretty=args.pretty,
        )
        return EXIT_TOOL

    registry = build_registry(config)
    workspace = LocalWorkspace(_workspace_roots(args, config))
    try:
        payload = asyncio.run(_explain(registry, workspace, args.tool, raw_args))
    except (UnknownToolError, PathResolutionError) as exc:
        _dump_json_to_stdout(_issue_payload(exc.to_issue()), pretty=args.pretty)
        return EXIT_TOOL
    except FrameworkError as exc:
        _dump_json_to_stdout(_issue_payload(exc.to_issue()), pretty=args.pretty)
        return EXIT_CONFIG
    payload["workspace_roots"] = workspace.get_workspace_roots()
    _dump_json_to_stdout(payload, pretty=args.pretty)
    return EXIT_OK


def _handle_policy_table(args: argparse.Namespace) -> int:
    names = [args.name] if args.name else sorted(PATH_POLICY_TABLES)
    tables = {n: get_policy_table(n).to_jsonable() for n in names}
    _dump_json_to_stdout({"ok": True, "tables": tables}, pretty=args.pretty)
    return EXIT_OK


def _replayed_call(state: ToolCallState) -> Dict[str, Any]:
    return {
        "call_id": state.call_id,
        "tool": state.tool_name,
        "turn_id": state.turn_id,
        "status": state.status.value,
        "history": [s.value for s in state.history],
        "effective_policy": state.effective_policy.value if state.effective_policy is not None else None,
        "passed_permission_gate": state.passed_permission_gate,
        "cancel_reason": state.cancel_reason,
        "error": state.error.to_dict() if state.error is not None else None,
    }


def _handle_events_replay(args: argparse.Namespace) -> int:
    path = Path(args.path).expanduser()
    if not path.is_file():
        issue = FrameworkIssue(code="CLI_EVENTS_NOT_FOUND", message="Event log is not found.", details={"path": str(path)})
        _dump_json_to_stdout(_issue_payload(issue), pretty=args.pretty)
        return EXIT_EVENTS

    try:
        with JsonlEventLog(path) as log:
            replayed = replay_tool_calls(log.iter_events(turn_id=args.turn))
    except InvalidTransitionError as exc:
        _dump_json_to_stdout(_issue_payload(exc.to_issue()), pretty=args.pretty)
        return EXIT_EVENTS
    except (KeyError, ValueError) as exc:
        issue = FrameworkIssue(code="CLI_EVENTS_INVALID", message="Event log is corrupt.", details={"reason": str(exc)})
        _dump_json_to_stdout(_issue_payload(issue), pretty=args.pretty)
        return EXIT_EVENTS

    _dump_json_to_stdout(
        {
            "ok": True,
            "calls": [_replayed_call(s) for s in replayed.states.values()],
            "interrupted": [s.call_id for s in replayed.interrupted()],
        },
        pretty=args.pretty,
    )
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog="tool-runtime",
        description="Tool Runtime SDK CLI（tools/policy/events）。",
    )
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    tools = root_sub.add_parser("tools", help="Tool descriptor commands")
    tools_sub = tools.add_subparsers(dest="tools_cmd", required=True)

    tools_list = tools_sub.add_parser("list", help="List registered tools with their base policy")
    _add_common_flags(tools_list)

    tools_schema = tools_sub.add_parser("schema", help="Export the function-calling tool list (visible tools only)")
    _add_common_flags(tools_schema)
    tools_schema.add_argument(
        "--format",
        choices=["openai", "system-message"],
        default="openai",
        help="Output format (default: openai).",
    )

    policy = root_sub.add_parser("policy", help="Policy commands")
    policy_sub = policy.add_subparsers(dest="policy_cmd", required=True)

    explain = policy_sub.add_parser("explain", help="Preprocess arguments and evaluate the effective policy (no execution)")
    _add_common_flags(explain)
    explain.add_argument("--tool", required=True, help="Tool name.")
    explain.add_argument("--args", default="{}", help="Tool arguments as a JSON object.")
    explain.add_argument(
        "--workspace-root",
        action="append",
        default=[],
        help="Workspace root directory (repeatable; default: workspace.roots from config).",
    )

    table = policy_sub.add_parser("table", help="Show path policy decision tables")
    table.add_argument("--name", choices=sorted(PATH_POLICY_TABLES), default=None, help="Table name.")
    table.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    events = root_sub.add_parser("events", help="Event log commands")
    events_sub = events.add_subparsers(dest="events_cmd", required=True)

    replay = events_sub.add_parser("replay", help="Rebuild tool call lifecycles from a JSONL event log")
    replay.add_argument("--path", required=True, help="JSONL event log path (a torn trailing line is truncated).")
    replay.add_argument("--turn", default=None, help="Only replay calls of this turn.")
    replay.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        code = getattr(exc, "code", 2)
        if code is None:
            return 2
        return int(code)

    if args.command == "tools":
        if args.tools_cmd == "list":
            return _handle_tools_list(args)
        if args.tools_cmd == "schema":
            return _handle_tools_schema(args)
    if args.command == "policy":
        if args.policy_cmd == "explain":
            return _handle_policy_explain(args)
        if args.policy_cmd == "table":
            return _handle_policy_table(args)
    if args.command == "events" and args.events_cmd == "replay":
        return _handle_events_replay(args)
    parser.print_usage()
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
