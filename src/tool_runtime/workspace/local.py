"""
LocalWorkspace：基于本地文件系统的 Workspace 实现（多 root）。

说明：
- root 在构造时即解析为规范形式；包含关系始终在规范形式上判定。
- diff 通过 `git diff` 获取；非 git 目录的 root 会被跳过。
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Sequence

from tool_runtime.core.errors import UserError

logger = logging.getLogger(__name__)


class LocalWorkspace:
    """本地多 root 工作区。"""

    def __init__(self, roots: Iterable[Path | str], *, git_timeout_sec: float = 30.0) -> None:
        resolved: List[Path] = []
        for raw in roots:
            p = Path(raw).expanduser().resolve()
            if p not in resolved:
                resolved.append(p)
        if not resolved:
            raise UserError("LocalWorkspace 至少需要一个 root")
        self._roots = resolved
        self._git_timeout_sec = git_timeout_sec

    @property
    def roots(self) -> Sequence[Path]:
        return tuple(self._roots)

    def get_workspace_roots(self) -> Sequence[str]:
        return [str(r) for r in self._roots]

    def canonicalize(self, path: str) -> str:
        try:
            return str(Path(path).resolve(strict=False))
        except RuntimeError as e:
            # symlink 循环在部分 Python 版本上表现为 RuntimeError
            raise OSError(f"cannot canonicalize {path}: {e}") from e

    def path_exists(self, path: str) -> bool:
        return Path(path).exists()

    def is_path_within_workspace(self, resolved_path: str) -> bool:
        p = Path(resolved_path)
        return any(p == root or p.is_relative_to(root) for root in self._roots)

    def get_diff(self) -> str:
        chunks: List[str] = []
        for root in self._roots:
            try:
                proc = subprocess.run(
                    ["git", "--no-pager", "diff"],
                    cwd=str(root),
                    capture_output=True,
                    text=True,
                    timeout=self._git_timeout_sec,
                    check=False,
                )
            except FileNotFoundError as e:
                raise OSError("git executable not found") from e
            if proc.returncode != 0:
                logger.debug("git diff failed in %s: %s", root, proc.stderr.strip())
                continue
            if proc.stdout:
                chunks.append(proc.stdout)
        return "".join(chunks)
