"""Filesystem path helpers for Codex session storage."""

from __future__ import annotations

import os


def codex_sessions_root(home_dir: str) -> str:
    """Return the directory where Codex stores its session files."""
    return os.path.join(home_dir, ".codex", "sessions")


def normalize_codex_path(path: str) -> str:
    """Return an absolute, cleaned, symlink-resolved form of path for comparison.

    Blank input gives "". Symlinks are resolved only when the whole path exists.
    """
    if not path.strip():
        return ""
    cleaned = os.path.abspath(os.path.normpath(path))
    try:
        cleaned = os.path.realpath(cleaned, strict=True)
    except OSError:
        pass
    return os.path.normpath(cleaned)


def read_dir_sorted_desc(path: str) -> list[os.DirEntry]:
    """List the entries of a directory sorted by name, highest first.

    Raises OSError when the directory cannot be read.
    """
    with os.scandir(path) as entries:
        return sorted(entries, key=lambda entry: entry.name, reverse=True)


def normalize_workspace_path(path: str, workspace_root: str) -> str:
    """Clean path and express it relative to workspace_root when it lies inside it."""
    if not path:
        return path
    cleaned = os.path.normpath(path)
    if not workspace_root or not os.path.isabs(cleaned):
        return cleaned
    root = os.path.normpath(workspace_root)
    try:
        relative = os.path.relpath(cleaned, root)
    except ValueError:
        return cleaned
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        return cleaned
    return relative