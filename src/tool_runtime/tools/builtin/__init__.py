"""
内置工具（builtin tools）。

本包提供 7 个只读工具：
- 代码库/工作区：codebase、file_glob_search、view_diff、view_repo_map、view_subdirectory
- 网络：fetch_url_content、search_web

其中 view_subdirectory 为 path_scoped 工具，其余为 plain 工具。
"""

from __future__ import annotations

from tool_runtime.tools.builtin.codebase import CODEBASE_DESCRIPTOR, codebase
from tool_runtime.tools.builtin.fetch_url_content import FETCH_URL_CONTENT_DESCRIPTOR, fetch_url_content
from tool_runtime.tools.builtin.file_glob_search import FILE_GLOB_SEARCH_DESCRIPTOR, file_glob_search
from tool_runtime.tools.builtin.search_web import SEARCH_WEB_DESCRIPTOR, search_web
from tool_runtime.tools.builtin.view_diff import VIEW_DIFF_DESCRIPTOR, view_diff
from tool_runtime.tools.builtin.view_repo_map import VIEW_REPO_MAP_DESCRIPTOR, view_repo_map
from tool_runtime.tools.builtin.view_subdirectory import VIEW_SUBDIRECTORY_DESCRIPTOR, view_subdirectory
from tool_runtime.tools.registry import ToolRegistry

__all__ = ["BUILTIN_TOOL_ENTRIES", "register_builtin_tools"]

BUILTIN_TOOL_ENTRIES = [
    (CODEBASE_DESCRIPTOR, codebase),
    (FETCH_URL_CONTENT_DESCRIPTOR, fetch_url_content),
    (FILE_GLOB_SEARCH_DESCRIPTOR, file_glob_search),
    (SEARCH_WEB_DESCRIPTOR, search_web),
    (VIEW_DIFF_DESCRIPTOR, view_diff),
    (VIEW_REPO_MAP_DESCRIPTOR, view_repo_map),
    (VIEW_SUBDIRECTORY_DESCRIPTOR, view_subdirectory),
]


def register_builtin_tools(registry: ToolRegistry) -> None:
    """把全部内置工具注册到 registry（不 seal，调用方可继续注册自定义工具）。"""

    for descriptor, handler in BUILTIN_TOOL_ENTRIES:
        registry.register(descriptor, handler)
