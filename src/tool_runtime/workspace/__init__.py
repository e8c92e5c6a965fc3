"""Workspace（IDE 抽象）与路径解析。"""

from __future__ import annotations

from tool_runtime.workspace.base import Workspace
from tool_runtime.workspace.local import LocalWorkspace
from tool_runtime.workspace.paths import ResolvedPath, resolve_input_path

__all__ = ["LocalWorkspace", "ResolvedPath", "Workspace", "resolve_input_path"]
