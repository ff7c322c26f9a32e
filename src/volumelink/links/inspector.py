"""Side-effect free classification of filesystem paths."""

from __future__ import annotations

import os
from pathlib import Path

from .models import PathState, StateKind


def classify(path: Path | str) -> PathState:
    """Classify ``path`` without following a final symlink.

    Args:
        path: Filesystem path to inspect.

    Returns:
        PathState: ``symlink`` with the literal link target, ``directory``,
        ``file``, or ``missing``. Dangling links are still reported as
        ``symlink``.
    """
    candidate = os.fspath(path)
    if not candidate:
        return PathState.missing()
    if os.path.islink(candidate):
        try:
            return PathState.symlink(os.readlink(candidate))
        except OSError:
            return PathState.symlink("")
    if os.path.isdir(candidate):
        return PathState.directory()
    if os.path.lexists(candidate):
        return PathState.file()
    return PathState.missing()


def is_reachable(path: Path | str) -> bool:
    """Return whether ``path`` exists once symlinks are followed."""
    return os.path.exists(os.fspath(path))


def is_empty_directory(path: Path | str) -> bool:
    """Return True for a real directory with no entries."""
    candidate = os.fspath(path)
    if os.path.islink(candidate) or not os.path.isdir(candidate):
        return False
    try:
        with os.scandir(candidate) as entries:
            return next(entries, None) is None
    except OSError:
        return False


def has_entries(path: Path | str) -> bool:
    """Return True when ``path`` resolves to a directory containing anything."""
    candidate = os.fspath(path)
    if not os.path.isdir(candidate):
        return False
    try:
        with os.scandir(candidate) as entries:
            return next(entries, None) is not None
    except OSError:
        return False


def describe(state: PathState) -> str:
    """Render a path state for humans."""
    if state.kind is StateKind.SYMLINK:
        return f"symlink -> {state.target}"
    if state.kind is StateKind.DIRECTORY:
        return "directory"
    if state.kind is StateKind.FILE:
        return "file"
    return "missing"


__all__ = ["classify", "is_reachable", "is_empty_directory", "has_entries", "describe"]
