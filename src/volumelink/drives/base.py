"""Drive Directory contract shared by platform implementations."""

from __future__ import annotations

import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from volumelink.links.inspector import classify as classify_path
from volumelink.links.models import Drive, PathState
from volumelink.process import Runner, run_command


class DriveError(Exception):
    """Raised when drives cannot be enumerated."""


@dataclass(frozen=True, slots=True)
class VolumeStorage:
    """Capacity of a mounted volume, formatted for display."""

    total: str
    used: str
    available: str


def format_bytes(size: int) -> str:
    """Format ``size`` with binary units, e.g. ``1.5 GB``."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"  # pragma: no cover


class DriveDirectory(ABC):
    """Resolve drives to mount paths and inspect paths on them."""

    def __init__(self, *, runner: Runner = subprocess.run) -> None:
        self._runner = runner

    @abstractmethod
    def list_drives(self) -> list[Drive]:
        """Return connected external or removable drives.

        Raises:
            DriveError: If the platform query fails.
        """

    @abstractmethod
    def drive_info(self, path: Path) -> Optional[Drive]:
        """Return the drive mounted at ``path``, or ``None`` if it is not a usable volume."""

    @abstractmethod
    def resolve_mount_path(self, drive_id: str) -> Optional[Path]:
        """Return the current mount path for ``drive_id``, or ``None`` when detached."""

    def classify(self, path: Path) -> PathState:
        """Classify ``path`` for status displays."""
        return classify_path(path)

    def storage_usage(self, path: Path) -> Optional[str]:
        """Return ``du -sh`` style usage for ``path`` (e.g. ``42G``)."""
        output = run_command(["du", "-sh", str(path)], timeout=120, runner=self._runner)
        if not output:
            return None
        first = output.split("\t", 1)[0].strip()
        return first or None

    def volume_storage(self, path: Path) -> Optional[VolumeStorage]:
        """Return total, used and available space of the volume holding ``path``."""
        try:
            usage = shutil.disk_usage(path)
        except OSError:
            return None
        return VolumeStorage(
            total=format_bytes(usage.total),
            used=format_bytes(usage.used),
            available=format_bytes(usage.free),
        )


__all__ = ["DriveDirectory", "DriveError", "VolumeStorage", "format_bytes"]
