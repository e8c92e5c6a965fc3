from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import List

import pytest

from tool_runtime.core.errors import PathResolutionError
from tool_runtime.workspace import LocalWorkspace, ResolvedPath, resolve_input_path


def _resolve(ws: object, path: str) -> ResolvedPath:
    return asyncio.run(resolve_input_path(ws, path))  # type: ignore[arg-type]


def _make_ws(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "index.ts").write_text("export {}\n", encoding="utf-8")
    return root


def test_relative_path_inside_workspace(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    res = _resolve(LocalWorkspace([root]), "src/index.ts")

    assert res.is_within_workspace is True
    assert res.resolved_path == str((root / "src" / "index.ts").resolve())
    assert res.display_path == "src/index.ts"
    assert res.is_absolute is False
    assert res.uri.startswith("file://")


def test_traversal_escape_is_outside(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    res = _resolve(LocalWorkspace([root]), "../../etc/passwd")

    assert res.is_within_workspace is False
    assert ".." not in Path(res.resolved_path).parts


def test_dotdot_that_stays_inside_is_within(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    res = _resolve(LocalWorkspace([root]), "src/../src/index.ts")
    assert res.is_within_workspace is True


def test_absolute_path_outside_workspace(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    res = _resolve(LocalWorkspace([root]), str(outside))

    assert res.is_within_workspace is False
    assert res.is_absolute is True
    assert res.display_path == str(outside.resolve())


def test_root_itself_is_within(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    assert _resolve(LocalWorkspace([root]), str(root)).is_within_workspace is True
    assert _resolve(LocalWorkspace([root]), ".").is_within_workspace is True


def test_sibling_with_common_prefix_is_outside(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    sibling = tmp_path / "ws-other"
    sibling.mkdir()
    assert _resolve(LocalWorkspace([root]), str(sibling)).is_within_workspace is False


def test_symlink_escaping_workspace_is_outside(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    secret = tmp_path / "secret"
    secret.mkdir()
    link = root / "link"
    try:
        os.symlink(secret, link)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    res = _resolve(LocalWorkspace([root]), "link")
    assert res.is_within_workspace is False
    assert res.resolved_path == str(secret.resolve())


def test_multi_root_first_existing_match_wins(tmp_path: Path) -> None:
    a = tmp_path / "a"
    b = tmp_path / "b"
    a.mkdir()
    (b / "pkg").mkdir(parents=True)
    ws = LocalWorkspace([a, b])

    res = _resolve(ws, "pkg")
    assert res.resolved_path == str((b / "pkg").resolve())
    assert res.is_within_workspace is True


def test_multi_root_missing_path_falls_back_to_first_root(tmp_path: Path) -> None:
    a = tmp_path / "a"
    b = tmp_path / "b"
    a.mkdir()
    b.mkdir()
    res = _resolve(LocalWorkspace([a, b]), "not/there")
    assert res.resolved_path == str((a / "not" / "there").resolve())
    assert res.is_within_workspace is True


def test_file_uri_input(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    target = root / "src" / "index.ts"
    res = _resolve(LocalWorkspace([root]), target.resolve().as_uri())

    assert res.is_absolute is True
    assert res.is_within_workspace is True
    assert res.resolved_path == str(target.resolve())


def test_remote_file_uri_rejected(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    with pytest.raises(PathResolutionError):
        _resolve(LocalWorkspace([root]), "file://fileserver/share/x.txt")


def test_home_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = _make_ws(tmp_path)
    monkeypatch.setenv("HOME", str(root))
    res = _resolve(LocalWorkspace([root]), "~/src")
    assert res.resolved_path == str((root / "src").resolve())
    assert res.is_absolute is True
    assert res.is_within_workspace is True


@pytest.mark.parametrize("bad", ["", "   "])
def test_empty_path_fails(tmp_path: Path, bad: str) -> None:
    root = _make_ws(tmp_path)
    with pytest.raises(PathResolutionError):
        _resolve(LocalWorkspace([root]), bad)


class _BrokenWorkspace:
    """canonicalize 总是失败的 workspace（模拟无法 stat/归一化）。"""

    def get_workspace_roots(self) -> List[str]:
        return ["/ws"]

    def canonicalize(self, path: str) -> str:
        raise OSError("permission denied")

    def path_exists(self, path: str) -> bool:
        return False

    def is_path_within_workspace(self, resolved_path: str) -> bool:
        return True

    def get_diff(self) -> str:
        return ""


def test_canonicalize_failure_is_surfaced() -> None:
    with pytest.raises(PathResolutionError) as ei:
        _resolve(_BrokenWorkspace(), "/ws/a.txt")
    assert ei.value.code == "PATH_RESOLUTION_FAILED"
    assert ei.value.details["path"] == "/ws/a.txt"


class _AsyncWorkspace:
    """全部方法为 async 的 workspace（验证 sync-or-awaited 约定）。"""

    def __init__(self, root: Path) -> None:
        self._inner = LocalWorkspace([root])

    async def get_workspace_roots(self) -> List[str]:
        return list(self._inner.get_workspace_roots())

    async def canonicalize(self, path: str) -> str:
        return self._inner.canonicalize(path)

    async def path_exists(self, path: str) -> bool:
        return self._inner.path_exists(path)

    async def is_path_within_workspace(self, resolved_path: str) -> bool:
        return self._inner.is_path_within_workspace(resolved_path)

    async def get_diff(self) -> str:
        return ""


def test_async_workspace_methods_are_awaited(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    res = _resolve(_AsyncWorkspace(root), "src/index.ts")
    assert res.is_within_workspace is True


def test_resolution_is_idempotent(tmp_path: Path) -> None:
    root = _make_ws(tmp_path)
    ws = LocalWorkspace([root])
    assert _resolve(ws, "src/../src/index.ts") == _resolve(ws, "src/../src/index.ts")
