"""Mount event sources feeding the supervisor queue."""

from __future__ import annotations

import logging
import os
import queue
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from volumelink.config import WatchSettings
from volumelink.drives.linux import DEFAULT_MEDIA_ROOTS, parse_mounts

LOGGER = logging.getLogger(__name__)


class MountEventKind(str, Enum):
    MOUNTED = "mounted"
    UNMOUNTED = "unmounted"


@dataclass(frozen=True, slots=True)
class MountEvent:
    """A volume appearing at or disappearing from ``path``."""

    kind: MountEventKind
    path: Path


class MountEventSource(ABC):
    """Publish mount notifications onto a channel consumed by one loop.

    ``None`` on the channel asks the consumer to stop.
    """

    def __init__(self, channel: Optional[queue.Queue[Optional[MountEvent]]] = None) -> None:
        self.channel: queue.Queue[Optional[MountEvent]] = channel if channel is not None else queue.Queue()

    def on_mount(self, path: Path | str) -> None:
        LOGGER.debug("Volume mounted at %s", path)
        self.channel.put(MountEvent(MountEventKind.MOUNTED, Path(path)))

    def on_unmount(self, path: Path | str) -> None:
        LOGGER.debug("Volume unmounted from %s", path)
        self.channel.put(MountEvent(MountEventKind.UNMOUNTED, Path(path)))

    @abstractmethod
    def start(self) -> None:
        """Begin publishing events."""

    @abstractmethod
    def stop(self) -> None:
        """Stop publishing events and release resources."""


def mount_table_snapshot(
    mounts_file: Path = Path("/proc/mounts"),
    media_roots: tuple[str, ...] = DEFAULT_MEDIA_ROOTS,
) -> set[str]:
    """Return mount paths under ``media_roots`` listed in ``mounts_file``."""
    try:
        text = Path(mounts_file).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        LOGGER.warning("Unable to read %s: %s", mounts_file, exc)
        return set()
    roots = tuple(root.rstrip("/") + "/" for root in media_roots)
    return {entry.mount_path for entry in parse_mounts(text) if entry.mount_path.startswith(roots)}


class PollingMountMonitor(MountEventSource):
    """Diff successive snapshots of mounted paths on a background thread."""

    def __init__(
        self,
        snapshot: Callable[[], set[str]],
        *,
        interval: float = 2.0,
        channel: Optional[queue.Queue[Optional[MountEvent]]] = None,
    ) -> None:
        super().__init__(channel)
        self._snapshot = snapshot
        self._interval = max(0.1, interval)
        self._known: set[str] = set()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> list[MountEvent]:
        """Take a snapshot and publish the differences against the previous one."""
        current = set(self._snapshot())
        events: list[MountEvent] = []
        for path in sorted(self._known - current):
            events.append(MountEvent(MountEventKind.UNMOUNTED, Path(path)))
            self.on_unmount(path)
        for path in sorted(current - self._known):
            events.append(MountEvent(MountEventKind.MOUNTED, Path(path)))
            self.on_mount(path)
        self._known = current
        return events

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("PollingMountMonitor is already running.")
        self._known = set(self._snapshot())
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="volumelink-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.poll()


class WatchdogMountMonitor(MountEventSource):
    """Watch the direct children of a volumes root such as ``/Volumes``."""

    def __init__(
        self,
        volumes_root: Path = Path("/Volumes"),
        *,
        channel: Optional[queue.Queue[Optional[MountEvent]]] = None,
    ) -> None:
        super().__init__(channel)
        self._root = Path(volumes_root)
        self._observer: Optional[Observer] = None

    @property
    def volumes_root(self) -> Path:
        return self._root

    def start(self) -> None:
        if self._observer is not None:
            raise RuntimeError("WatchdogMountMonitor is already running.")
        self._observer = Observer()
        self._observer.schedule(_VolumeEventHandler(self), str(self._root), recursive=False)
        self._observer.start()

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class _VolumeEventHandler(FileSystemEventHandler):
    """Translate directory events under the volumes root into mount events."""

    def __init__(self, monitor: WatchdogMountMonitor) -> None:
        self._monitor = monitor

    def on_created(self, event: FileSystemEvent) -> None:
        path = self._volume_path(event.src_path)
        if path is not None and event.is_directory:
            self._monitor.on_mount(path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        # Deleted entries can no longer be stat'ed, so is_directory is unreliable.
        path = self._volume_path(event.src_path)
        if path is not None:
            self._monitor.on_unmount(path)

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - watchdog-specific
        source = self._volume_path(event.src_path)
        if source is not None:
            self._monitor.on_unmount(source)
        destination = self._volume_path(getattr(event, "dest_path", ""))
        if destination is not None and event.is_directory:
            self._monitor.on_mount(destination)

    def _volume_path(self, raw: str | bytes) -> Optional[Path]:
        if not raw:
            return None
        path = Path(os.fsdecode(raw))
        if path.parent != self._monitor.volumes_root or path.name.startswith("."):
            return None
        return path


def default_mount_monitor(
    settings: WatchSettings,
    *,
    channel: Optional[queue.Queue[Optional[MountEvent]]] = None,
) -> MountEventSource:
    """Return the mount event source selected by ``settings.monitor``."""
    kind = settings.monitor
    if kind == "auto":
        kind = "watchdog" if sys.platform == "darwin" else "poll"
    if kind == "watchdog":
        root = Path(settings.volumes_root or "/Volumes")
        return WatchdogMountMonitor(root, channel=channel)
    mounts_file = Path(settings.mounts_file)
    return PollingMountMonitor(
        lambda: mount_table_snapshot(mounts_file),
        interval=settings.poll_interval_seconds,
        channel=channel,
    )


__all__ = [
    "MountEvent",
    "MountEventKind",
    "MountEventSource",
    "PollingMountMonitor",
    "WatchdogMountMonitor",
    "default_mount_monitor",
    "mount_table_snapshot",
]
