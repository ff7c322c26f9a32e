"""Drive Directory backed by the Linux mount table."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from volumelink.links.models import Drive
from volumelink.process import Runner

from .base import DriveDirectory, DriveError

DEFAULT_MEDIA_ROOTS = ("/media", "/run/media", "/mnt")
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass(frozen=True, slots=True)
class MountEntry:
    """A row of ``/proc/mounts``."""

    device: str
    mount_path: str
    fs_type: str = ""


def decode_mount_field(value: str) -> str:
    """Decode the octal escapes (``\\040`` for space) used by the mount table."""
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), value)


def parse_mounts(text: str) -> list[MountEntry]:
    """Parse mount table text into entries, skipping malformed lines."""
    entries: list[MountEntry] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        entries.append(
            MountEntry(
                device=decode_mount_field(parts[0]),
                mount_path=decode_mount_field(parts[1]),
                fs_type=parts[2] if len(parts) > 2 else "",
            )
        )
    return entries


class LinuxDriveDirectory(DriveDirectory):
    """List removable volumes mounted under the usual media roots.

    Drives are identified by filesystem UUID when ``/dev/disk/by-uuid`` knows the
    device, and by their mount path otherwise.
    """

    def __init__(
        self,
        *,
        mounts_file: Path = Path("/proc/mounts"),
        media_roots: Iterable[str] = DEFAULT_MEDIA_ROOTS,
        by_uuid_dir: Path = Path("/dev/disk/by-uuid"),
        runner: Runner = subprocess.run,
    ) -> None:
        super().__init__(runner=runner)
        self._mounts_file = Path(mounts_file)
        self._media_roots = tuple(root.rstrip("/") for root in media_roots)
        self._by_uuid_dir = Path(by_uuid_dir)

    def list_drives(self) -> list[Drive]:
        try:
            entries = self.read_mounts()
        except OSError as exc:
            raise DriveError(f"Unable to read {self._mounts_file}: {exc}") from exc
        uuids = self._uuid_by_device()
        drives: list[Drive] = []
        seen: set[str] = set()
        for entry in entries:
            if not self._is_media_path(entry.mount_path) or entry.mount_path in seen:
                continue
            seen.add(entry.mount_path)
            drives.append(self._drive_for(entry, uuids))
        return drives

    def drive_info(self, path: Path) -> Optional[Drive]:
        candidate = os.path.normpath(os.fspath(path))
        if not os.path.isdir(candidate) or candidate == "/":
            return None
        try:
            entries = self.read_mounts()
        except OSError:
            return None
        for entry in reversed(entries):
            if entry.mount_path == candidate:
                return self._drive_for(entry, self._uuid_by_device())
        # A directory that is not a mount point would be written to on the
        # local disk once the volume goes away.
        return None

    def resolve_mount_path(self, drive_id: str) -> Optional[Path]:
        if not drive_id:
            return None
        try:
            entries = self.read_mounts()
        except OSError:
            return None
        if drive_id.startswith("/"):
            # Path ids only count while the mount table lists them; a stale
            # mount point directory survives the unmount.
            candidate = os.path.normpath(drive_id)
            for entry in entries:
                if entry.mount_path == candidate and os.path.isdir(candidate):
                    return Path(candidate)
            return None
        uuids = self._uuid_by_device()
        for entry in entries:
            if uuids.get(_real_device(entry.device)) == drive_id and os.path.isdir(entry.mount_path):
                return Path(entry.mount_path)
        return None

    def read_mounts(self) -> list[MountEntry]:
        """Return the current mount table."""
        return parse_mounts(self._mounts_file.read_text(encoding="utf-8", errors="replace"))

    def _is_media_path(self, mount_path: str) -> bool:
        if mount_path == "/" or mount_path.startswith(("/boot", "/home")):
            return False
        return any(mount_path.startswith(root + "/") for root in self._media_roots)

    def _drive_for(self, entry: MountEntry, uuids: dict[str, str]) -> Drive:
        drive_id = uuids.get(_real_device(entry.device), entry.mount_path)
        return Drive(
            id=drive_id,
            display_name=os.path.basename(entry.mount_path.rstrip("/")) or entry.mount_path,
            mount_path=Path(entry.mount_path),
            is_external=True,
            is_removable=True,
        )

    def _uuid_by_device(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        try:
            with os.scandir(self._by_uuid_dir) as entries:
                for entry in entries:
                    mapping[os.path.realpath(entry.path)] = entry.name
        except OSError:
            return {}
        return mapping


def _real_device(device: str) -> str:
    if device.startswith("/"):
        return os.path.realpath(device)
    return device


__all__ = ["LinuxDriveDirectory", "MountEntry", "parse_mounts", "decode_mount_field", "DEFAULT_MEDIA_ROOTS"]
