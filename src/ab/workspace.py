"""Filesystem workspace abstraction shared by the tools and the plan executor."""

from __future__ import annotations

import fnmatch
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Sequence

__all__ = [
    "Workspace",
    "WorkspaceError",
    "WorkspaceResolver",
    "single_workspace",
    "workspace_per_id",
]

_IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build"})


class WorkspaceError(OSError):
    """Raised when a workspace path is invalid or cannot be accessed."""


class Workspace:
    """Directory-rooted view of an application's files using relative POSIX paths."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def __repr__(self) -> str:
        return f"Workspace({self.root.as_posix()!r})"

    def resolve(self, path: str) -> Path:
        """Return the absolute location of ``path``, refusing to leave the root."""
        relative = path.replace("\\", "/").lstrip("/")
        if not relative:
            raise WorkspaceError(f"Empty path is not a file in the workspace: {path!r}")
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise WorkspaceError(f"Path escapes the workspace: {path}")
        return candidate

    def relative(self, absolute: Path) -> str:
        return absolute.resolve().relative_to(self.root).as_posix()

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def read_text(self, path: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise WorkspaceError(f"File not found: {path}")
        return target.read_text(encoding="utf-8")

    def read_bytes(self, path: str) -> bytes:
        target = self.resolve(path)
        if not target.is_file():
            raise WorkspaceError(f"File not found: {path}")
        return target.read_bytes()

    def write_text(self, path: str, content: str) -> Path:
        """Write ``content`` to ``path``, creating parent directories as needed."""
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def iter_files(self, pattern: str = "**/*", *, ignore: Sequence[str] = ()) -> Iterator[str]:
        """Yield workspace-relative files matching ``pattern`` in sorted order."""
        if not self.root.exists():
            return
        for candidate in sorted(self.root.rglob("*")):
            if not candidate.is_file():
                continue
            relative = self.relative(candidate)
            parts = PurePosixPath(relative).parts
            if any(part in _IGNORED_DIRS for part in parts[:-1]):
                continue
            if any(fnmatch.fnmatch(relative, skip) for skip in ignore):
                continue
            if _glob_match(relative, pattern):
                yield relative


def _glob_match(path: str, pattern: str) -> bool:
    # "src/**/*" should also match files directly under src/
    if fnmatch.fnmatch(path, pattern):
        return True
    if "**/" in pattern:
        return fnmatch.fnmatch(path, pattern.replace("**/", ""))
    return False


WorkspaceResolver = Callable[[str], Workspace]


def single_workspace(root: Path | str) -> WorkspaceResolver:
    """Resolve every workspace identifier to the same directory."""
    workspace = Workspace(root)

    def _resolve(_: str) -> Workspace:
        return workspace

    return _resolve


def workspace_per_id(base: Path | str) -> WorkspaceResolver:
    """Resolve each workspace identifier to its own directory under ``base``."""
    base_path = Path(base)

    def _resolve(workspace_id: str) -> Workspace:
        name = workspace_id.strip().replace("/", "_").replace("\\", "_")
        if not name or name in {".", ".."}:
            raise WorkspaceError(f"Invalid workspace identifier: {workspace_id!r}")
        root = base_path / name
        root.mkdir(parents=True, exist_ok=True)
        return Workspace(root)

    return _resolve
