"""
Path Resolver：把用户/模型提供的路径解析为规范化绝对路径，并判定是否位于 workspace 内。

支持的输入形式：
- `file://` URI
- `~` / `~/...`（home 展开）
- 绝对路径
- 相对路径：按 root 顺序尝试，首个存在的匹配胜出；都不存在时落到第一个 root

安全边界：
- 包含关系只在规范形式（消除 `..`、跟随 symlink 之后）上判定，字面量看起来像相对路径并不代表在 workspace 内。
- 底层无法 stat/归一化时抛 `PathResolutionError`，不吞掉。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import unquote, urlparse

from tool_runtime.core.errors import PathResolutionError
from tool_runtime.workspace.base import Workspace, maybe_await


@dataclass(frozen=True)
class ResolvedPath:
    """
    路径解析结果。

    字段：
    - resolved_path：规范化绝对路径
    - is_within_workspace：是否为任一 workspace root 的后代（或 root 本身）
    - uri：`file://` 形式
    - display_path：展示用路径（相对输入保持原样，其它为规范路径）
    - is_absolute：原始输入是否为绝对形式（含 URI 与 `~`）
    """

    resolved_path: str
    is_within_workspace: bool
    uri: str
    display_path: str
    is_absolute: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolved_path": self.resolved_path,
            "is_within_workspace": self.is_within_workspace,
            "uri": self.uri,
            "display_path": self.display_path,
            "is_absolute": self.is_absolute,
        }


def _file_uri_to_path(uri: str) -> str:
    parsed = urlparse(uri)
    if parsed.netloc and parsed.netloc != "localhost":
        raise PathResolutionError(f"Remote file URI is not supported: {uri}", path=uri)
    return unquote(parsed.path)


def _expand_home(path: str) -> str:
    if path == "~" or path.startswith("~/"):
        return os.path.expanduser(path)
    return path


async def _canonicalize(workspace: Workspace, path: str, *, original: str) -> str:
    try:
        canonical = await maybe_await(workspace.canonicalize(path))
    except (OSError, ValueError) as e:
        raise PathResolutionError(f"Cannot resolve path {original!r}: {e}", path=original) from e
    if not isinstance(canonical, str) or not os.path.isabs(canonical):
        raise PathResolutionError(f"Workspace returned an invalid canonical path for {original!r}", path=original)
    return canonical


async def resolve_input_path(workspace: Workspace, input_path: str) -> ResolvedPath:
    """
    解析路径并判定 workspace 包含关系。

    参数：
    - workspace：Workspace 实现（提供 roots / canonicalize / 包含判定）
    - input_path：原始路径字符串

    返回：
    - ResolvedPath

    异常：
    - PathResolutionError：空路径、无 root 可解析相对路径、底层无法归一化
    """

    if not isinstance(input_path, str):
        raise PathResolutionError(f"Path must be a string, got {type(input_path).__name__}")
    trimmed = input_path.strip()
    if not trimmed:
        raise PathResolutionError("Path is empty", path=input_path)

    if trimmed.startswith("file://"):
        candidate = _file_uri_to_path(trimmed)
        is_absolute = True
    else:
        candidate = _expand_home(trimmed)
        is_absolute = os.path.isabs(candidate)

    if is_absolute:
        resolved = await _canonicalize(workspace, candidate, original=trimmed)
        display = resolved
    else:
        roots: List[str] = [str(r) for r in (await maybe_await(workspace.get_workspace_roots()) or [])]
        if not roots:
            raise PathResolutionError(f"Cannot resolve relative path {trimmed!r}: no workspace roots", path=trimmed)
        resolved = ""
        for root in roots:
            joined = await _canonicalize(workspace, os.path.join(root, candidate), original=trimmed)
            if await maybe_await(workspace.path_exists(joined)):
                resolved = joined
                break
        if not resolved:
            resolved = await _canonicalize(workspace, os.path.join(roots[0], candidate), original=trimmed)
        display = trimmed

    within = bool(await maybe_await(workspace.is_path_within_workspace(resolved)))
    return ResolvedPath(
        resolved_path=resolved,
        is_within_workspace=within,
        uri=Path(resolved).as_uri(),
        display_path=display,
        is_absolute=is_absolute,
    )
