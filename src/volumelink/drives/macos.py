"""Drive Directory backed by ``diskutil`` on macOS."""

from __future__ import annotations

import logging
import os
import plistlib
import subprocess
from pathlib import Path
from typing import Any, Optional

from volumelink.links.models import Drive
from volumelink.process import Runner, run_command

from .base import DriveDirectory, DriveError

LOGGER = logging.getLogger(__name__)


class MacDriveDirectory(DriveDirectory):
    """List volumes under ``/Volumes`` and describe them via ``diskutil info -plist``."""

    def __init__(self, *, volumes_root: Path = Path("/Volumes"), runner: Runner = subprocess.run) -> None:
        super().__init__(runner=runner)
        self._volumes_root = Path(volumes_root)

    def list_drives(self) -> list[Drive]:
        try:
            with os.scandir(self._volumes_root) as entries:
                names = sorted(entry.name for entry in entries if not entry.name.startswith("."))
        except OSError as exc:
            raise DriveError(f"Unable to list {self._volumes_root}: {exc}") from exc

        drives: list[Drive] = []
        for name in names:
            path = self._volumes_root / name
            # The boot volume appears as a symlink to "/".
            if path.is_symlink() and os.path.realpath(path) == "/":
                continue
            drive = self.drive_info(path)
            if drive is not None and (drive.is_external or drive.is_removable):
                drives.append(drive)
        return drives

    def drive_info(self, path: Path) -> Optional[Drive]:
        if not os.path.isdir(path) or os.path.realpath(path) == "/":
            return None
        info = self._diskutil_info(str(path))
        if info is None:
            if not os.path.ismount(path):
                return None
            return Drive(id=str(path), display_name=Path(path).name, mount_path=Path(path))
        if info.get("MountPoint") == "/":
            return None
        return _drive_from_info(info, fallback_path=Path(path))

    def resolve_mount_path(self, drive_id: str) -> Optional[Path]:
        if not drive_id:
            return None
        if drive_id.startswith("/"):
            # An unmounted volume can leave its directory behind under /Volumes.
            return Path(drive_id) if os.path.ismount(drive_id) else None
        info = self._diskutil_info(drive_id)
        if not info:
            return None
        mount_point = info.get("MountPoint")
        if mount_point and os.path.isdir(mount_point):
            return Path(mount_point)
        return None

    def _diskutil_info(self, target: str) -> Optional[dict[str, Any]]:
        output = run_command(["diskutil", "info", "-plist", target], runner=self._runner)
        if not output:
            return None
        try:
            data = plistlib.loads(output.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as exc:
            LOGGER.debug("Unreadable diskutil output for %s: %s", target, exc)
            return None
        return data if isinstance(data, dict) else None


def _drive_from_info(info: dict[str, Any], *, fallback_path: Path) -> Drive:
    mount_point = info.get("MountPoint") or str(fallback_path)
    removable = any(bool(info.get(key)) for key in ("Removable", "RemovableMedia", "Ejectable"))
    internal = info.get("Internal")
    return Drive(
        id=info.get("VolumeUUID") or mount_point,
        display_name=info.get("VolumeName") or Path(mount_point).name,
        mount_path=Path(mount_point),
        is_external=not internal if internal is not None else True,
        is_removable=removable,
    )


__all__ = ["MacDriveDirectory"]
