"""Drive discovery and inspection."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from volumelink.config import DriveSettings, WatchSettings

from .base import DriveDirectory, DriveError, VolumeStorage, format_bytes
from .linux import LinuxDriveDirectory, MountEntry, parse_mounts
from .macos import MacDriveDirectory


def locate_mount_path(drive: DriveSettings, directory: DriveDirectory) -> Optional[Path]:
    """Return where the configured drive is mounted right now, if anywhere."""
    if drive.id:
        # An id that does not resolve means the drive is gone, even if a stale
        # mount point directory is still lying around.
        return directory.resolve_mount_path(drive.id)
    if drive.path and os.path.isdir(os.path.expanduser(drive.path)):
        return Path(drive.path).expanduser()
    return None


def default_drive_directory(settings: WatchSettings | None = None) -> DriveDirectory:
    """Return the Drive Directory implementation for the running platform."""
    settings = settings or WatchSettings()
    if sys.platform == "darwin":
        root = Path(settings.volumes_root or "/Volumes")
        return MacDriveDirectory(volumes_root=root)
    return LinuxDriveDirectory(mounts_file=Path(settings.mounts_file))


__all__ = [
    "DriveDirectory",
    "DriveError",
    "VolumeStorage",
    "format_bytes",
    "LinuxDriveDirectory",
    "MacDriveDirectory",
    "MountEntry",
    "parse_mounts",
    "default_drive_directory",
    "locate_mount_path",
]
