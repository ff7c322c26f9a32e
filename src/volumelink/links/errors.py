"""Errors raised by the link reconciliation engine."""

from __future__ import annotations


class LinkError(Exception):
    """Base exception for reconciliation failures."""


class VolumeNotMountedError(LinkError):
    """Raised when the target volume is not mounted."""

    def __init__(self, mount_path: object | None = None) -> None:
        if mount_path is None:
            message = "Target volume is not mounted"
        else:
            message = f"Target volume is not mounted: {mount_path}"
        super().__init__(message)
        self.mount_path = mount_path


class PathIsRootOrEmptyError(LinkError):
    """Raised before any mutation when a path is empty or the filesystem root."""

    def __init__(self, path: object) -> None:
        super().__init__(f"Path is empty or root, refusing to operate: {path!r}")
        self.path = path


class _ReasonError(LinkError):
    prefix = "Operation failed"

    def __init__(self, reason: str) -> None:
        super().__init__(f"{self.prefix}: {reason}")
        self.reason = reason


class CopyFailedError(_ReasonError):
    """Raised when every copy tier fails."""

    prefix = "Failed to copy files"


class RemoveFailedError(_ReasonError):
    """Raised when a link or directory cannot be removed."""

    prefix = "Failed to remove files"


class SymlinkFailedError(_ReasonError):
    """Raised when a symlink or its drive target cannot be created."""

    prefix = "Failed to create symlink"


class BackupFailedError(_ReasonError):
    """Raised when unexpected content cannot be moved to a backup path."""

    prefix = "Failed to create backup"


class PlaceholderFailedError(_ReasonError):
    """Raised when the local placeholder directory cannot be created."""

    prefix = "Failed to create placeholder directory"


__all__ = [
    "LinkError",
    "VolumeNotMountedError",
    "PathIsRootOrEmptyError",
    "CopyFailedError",
    "RemoveFailedError",
    "SymlinkFailedError",
    "BackupFailedError",
    "PlaceholderFailedError",
]
