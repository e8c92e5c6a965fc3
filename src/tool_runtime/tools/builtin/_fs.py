"""
内置工具共享的文件系统遍历（目录树 / glob 匹配）。

说明：
- 构建产物、缓存、VCS 元数据与常见密钥文件一律跳过；
- 不跟随 symlink 目录递归（避免隐式越界与循环）。
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, List, Tuple

logger = logging.getLogger(__name__)

IGNORED_DIR_NAMES = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".idea",
        ".vscode",
        ".venv",
        "venv",
        "node_modules",
        "__pycache__",
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
        ".tox",
        ".cache",
        ".next",
        "dist",
        "build",
        "target",
        "coverage",
    }
)

SECRET_FILE_PATTERNS = (".env", ".env.*", "*.pem", "*.key", "*.p12", "*.pfx", "id_rsa", "id_rsa.*", "id_ed25519", "id_ed25519.*")


def is_ignored_name(name: str, *, is_dir: bool) -> bool:
    if is_dir:
        return name in IGNORED_DIR_NAMES
    return any(fnmatch.fnmatchcase(name, p) for p in SECRET_FILE_PATTERNS)


@dataclass(frozen=True)
class TreeEntry:
    rel_path: str
    type: str  # file|dir|symlink|other

    def to_dict(self) -> Dict[str, str]:
        return {"rel_path": self.rel_path, "type": self.type}


def _entry_type(path: Path) -> str:
    try:
        if path.is_symlink():
            return "symlink"
        if path.is_dir():
            return "dir"
        if path.is_file():
            return "file"
    except OSError:
        return "other"
    return "other"


def collect_tree(root: Path, *, max_depth: int, max_entries: int) -> Tuple[List[TreeEntry], bool]:
    """
    BFS 收集目录条目。

    参数：
    - root：起始目录（绝对路径）
    - max_depth：递归深度（>=1；1 表示只列出直接子项）
    - max_entries：最多收集条目数

    返回：
    - (按 rel_path 排序的条目, 是否因上限而截断)
    """

    out: List[TreeEntry] = []
    queue: Deque[Tuple[Path, int]] = deque([(root, 1)])
    truncated = False
    while queue and not truncated:
        current, depth = queue.popleft()
        try:
            children = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.debug("cannot list %s: %s", current, e)
            continue
        for child in children:
            typ = _entry_type(child)
            if is_ignored_name(child.name, is_dir=typ == "dir"):
                continue
            if len(out) >= max_entries:
                truncated = True
                break
            out.append(TreeEntry(rel_path=child.relative_to(root).as_posix(), type=typ))
            if typ == "dir" and depth < max_depth:
                queue.append((child, depth + 1))
    out.sort(key=lambda e: e.rel_path)
    return out, truncated


def render_tree(entries: List[TreeEntry]) -> str:
    """按层级缩进渲染（目录以 `/` 结尾，symlink 以 `@` 结尾）。"""

    lines: List[str] = []
    for e in entries:
        depth = e.rel_path.count("/")
        name = e.rel_path.rsplit("/", 1)[-1]
        suffix = {"dir": "/", "symlink": "@"}.get(e.type, "")
        lines.append(f"{'  ' * depth}{name}{suffix}")
    return "\n".join(lines)


def glob_matches(rel_path: str, pattern: str) -> bool:
    """
    glob 匹配（`*` 可跨目录，与 ripgrep --glob 口径一致；前导 `**/` 可匹配零层目录）。
    """

    pat = pattern.strip()
    if fnmatch.fnmatchcase(rel_path, pat):
        return True
    while pat.startswith("**/"):
        pat = pat[3:]
        if fnmatch.fnmatchcase(rel_path, pat):
            return True
    return False


def glob_files(root: Path, pattern: str, *, max_results: int) -> Tuple[List[str], bool]:
    """
    在 root 下递归查找匹配 pattern 的文件（相对 root 的 posix 路径）。

    返回：
    - (已排序的匹配列表, 是否截断)
    """

    matches: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not is_ignored_name(d, is_dir=True))
        base = Path(dirpath)
        for name in sorted(filenames):
            if is_ignored_name(name, is_dir=False):
                continue
            rel = (base / name).relative_to(root).as_posix()
            if glob_matches(rel, pattern):
                if len(matches) >= max_results:
                    return sorted(matches), True
                matches.append(rel)
    return sorted(matches), False
