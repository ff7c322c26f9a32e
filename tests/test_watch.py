"""Tests for mount monitors and the link watch service."""

import os
import shutil
import threading
from pathlib import Path, PurePosixPath
from typing import Optional

import pytest
from watchdog.events import DirCreatedEvent, DirDeletedEvent, FileCreatedEvent

from volumelink.config import DriveSettings, VolumeLinkConfig, WatchSettings
from volumelink.drives import DriveDirectory, LinuxDriveDirectory
from volumelink.links import (
    Drive,
    LinkError,
    ManagedLink,
    ReconcileOutcome,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    classify,
)
from volumelink.watch import (
    LinkWatchService,
    MountEvent,
    MountEventKind,
    MountEventSource,
    PollingMountMonitor,
    WatchdogMountMonitor,
    default_mount_monitor,
    mount_table_snapshot,
)
from volumelink.watch.monitors import _VolumeEventHandler
from volumelink.watch.service import WatchPassResult, _coalesce


class _IdleMonitor(MountEventSource):
    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class _FakeDrives(DriveDirectory):
    """Resolves a single drive id to whichever directory currently exists."""

    def __init__(self, ids: Optional[dict[str, Path]] = None) -> None:
        super().__init__()
        self.ids = ids or {}

    def list_drives(self) -> list[Drive]:
        return []

    def drive_info(self, path: Path) -> Optional[Drive]:
        return None

    def resolve_mount_path(self, drive_id: str) -> Optional[Path]:
        path = self.ids.get(drive_id)
        return path if path is not None and path.is_dir() else None


def _setup(tmp_path: Path, *, drive_id: Optional[str] = None) -> tuple[VolumeLinkConfig, ManagedLink, Path]:
    drive = tmp_path / "Volumes" / "Models"
    drive.mkdir(parents=True)
    link = ManagedLink(
        name="models",
        local_path=tmp_path / "home" / ".lmstudio" / "models",
        drive_subpath=PurePosixPath("models"),
    )
    config = VolumeLinkConfig(drive=DriveSettings(path=str(drive), id=drive_id), links=[link])
    return config, link, drive


def _service(config: VolumeLinkConfig, drives: Optional[DriveDirectory] = None) -> LinkWatchService:
    return LinkWatchService(config, drives=drives or _FakeDrives(), monitor=_IdleMonitor(), settle_override=0)


def test_polling_monitor_reports_differences() -> None:
    snapshots = iter([{"/media/a"}, {"/media/a", "/media/b"}, {"/media/b"}])
    monitor = PollingMountMonitor(lambda: next(snapshots))

    first = monitor.poll()
    second = monitor.poll()
    third = monitor.poll()

    assert first == [MountEvent(MountEventKind.MOUNTED, Path("/media/a"))]
    assert second == [MountEvent(MountEventKind.MOUNTED, Path("/media/b"))]
    assert third == [MountEvent(MountEventKind.UNMOUNTED, Path("/media/a"))]
    assert monitor.channel.qsize() == 3


def test_mount_table_snapshot_filters_media_roots(tmp_path: Path) -> None:
    mounts = tmp_path / "mounts"
    mounts.write_text("/dev/sda1 / ext4 rw 0 0\n/dev/sdb1 /media/me/Drive exfat rw 0 0\n", encoding="utf-8")

    assert mount_table_snapshot(mounts) == {"/media/me/Drive"}
    assert mount_table_snapshot(tmp_path / "absent") == set()


def test_default_monitor_follows_settings(tmp_path: Path) -> None:
    poll = default_mount_monitor(WatchSettings(monitor="poll"))
    watchdog = default_mount_monitor(WatchSettings(monitor="watchdog", volumes_root=str(tmp_path)))

    assert isinstance(poll, PollingMountMonitor)
    assert isinstance(watchdog, WatchdogMountMonitor)
    assert watchdog.volumes_root == tmp_path


def test_watchdog_handler_only_reports_direct_children(tmp_path: Path) -> None:
    monitor = WatchdogMountMonitor(tmp_path)
    handler = _VolumeEventHandler(monitor)

    handler.on_created(DirCreatedEvent(str(tmp_path / "Models")))
    handler.on_created(DirCreatedEvent(str(tmp_path / "Models" / "nested")))
    handler.on_created(DirCreatedEvent(str(tmp_path / ".Spotlight")))
    handler.on_created(FileCreatedEvent(str(tmp_path / "file.txt")))
    handler.on_deleted(DirDeletedEvent(str(tmp_path / "Models")))

    events = [monitor.channel.get_nowait() for _ in range(monitor.channel.qsize())]
    assert events == [
        MountEvent(MountEventKind.MOUNTED, tmp_path / "Models"),
        MountEvent(MountEventKind.UNMOUNTED, tmp_path / "Models"),
    ]


def test_coalesce_keeps_latest_event_per_path() -> None:
    mounted = MountEvent(MountEventKind.MOUNTED, Path("/Volumes/A"))
    unmounted = MountEvent(MountEventKind.UNMOUNTED, Path("/Volumes/A/"))
    other = MountEvent(MountEventKind.MOUNTED, Path("/Volumes/B"))

    assert _coalesce([mounted, other, unmounted]) == [other, unmounted]


def test_process_once_links_a_mounted_drive(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path)

    result = _service(config).process_once()

    assert result.trigger is ReconcileTrigger.STARTUP
    assert result.mount_path == drive
    assert not result.failures
    assert os.readlink(link.local_path) == str(drive / "models")


def test_events_for_other_volumes_are_ignored(tmp_path: Path) -> None:
    config, link, _ = _setup(tmp_path)

    result = _service(config).handle_event(MountEvent(MountEventKind.MOUNTED, tmp_path / "Volumes" / "Other"))

    assert result is None
    assert classify(link.local_path).kind is StateKind.MISSING


def test_unmount_event_leaves_a_placeholder(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path)
    service = _service(config)
    service.process_once()
    drive.rename(tmp_path / "Volumes" / "Away")

    result = service.handle_event(MountEvent(MountEventKind.UNMOUNTED, drive))

    assert result is not None
    assert result.trigger is ReconcileTrigger.UNMOUNT
    assert result.mount_path is None
    assert result.outcomes[0].action is ReconciliationAction.QUARANTINE_THEN_PLACEHOLDER
    assert classify(link.local_path).kind is StateKind.DIRECTORY


def test_drive_remounted_elsewhere_is_found_by_id(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path, drive_id="1234-ABCD")
    moved = tmp_path / "Volumes" / "Models 1"
    drive.rename(moved)
    service = _service(config, _FakeDrives({"1234-ABCD": moved}))

    result = service.handle_event(MountEvent(MountEventKind.MOUNTED, moved))

    assert result is not None
    assert result.mount_path == moved
    assert os.readlink(link.local_path) == str(moved / "models")


def test_watch_runs_startup_pass_then_reacts_to_events(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path)
    monitor = _IdleMonitor()
    service = LinkWatchService(config, drives=_FakeDrives(), monitor=monitor, settle_override=0)
    results = []

    def _callback(result) -> None:
        results.append(result)
        if len(results) == 1:
            drive.rename(tmp_path / "Volumes" / "Away")
            monitor.on_unmount(drive)
        else:
            service.stop()

    worker = threading.Thread(target=service.watch, args=(_callback,), daemon=True)
    worker.start()
    worker.join(timeout=10)

    assert not worker.is_alive()
    assert [result.trigger for result in results] == [ReconcileTrigger.STARTUP, ReconcileTrigger.UNMOUNT]
    assert classify(link.local_path).kind is StateKind.DIRECTORY


def test_unmount_ignores_a_leftover_mount_point(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path, drive_id="1234-ABCD")
    # Resolution still answers with the old path, as a stale lookup would.
    service = _service(config, _FakeDrives({"1234-ABCD": drive}))
    service.process_once()
    shutil.rmtree(drive / "models")

    result = service.handle_event(MountEvent(MountEventKind.UNMOUNTED, drive))

    assert result is not None
    assert result.mount_path is None
    assert classify(link.local_path).kind is StateKind.DIRECTORY
    assert not (drive / "models").exists()


def test_unmount_of_path_identified_drive_leaves_a_placeholder(tmp_path: Path) -> None:
    config, link, drive = _setup(tmp_path)
    config = config.model_copy(update={"drive": DriveSettings(path=str(drive), id=str(drive))})
    mounts = tmp_path / "mounts"
    mounts.write_text("/dev/sda1 / ext4 rw 0 0\n", encoding="utf-8")
    link.local_path.parent.mkdir(parents=True)
    os.symlink(drive / "models", link.local_path)
    service = _service(config, LinuxDriveDirectory(mounts_file=mounts))

    result = service.handle_event(MountEvent(MountEventKind.UNMOUNTED, drive))

    assert result is not None
    assert result.mount_path is None
    assert not result.failures
    assert classify(link.local_path).kind is StateKind.DIRECTORY
    assert not (drive / "models").exists()


def test_failed_passes_back_off_before_the_next_event(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config, link, drive = _setup(tmp_path)
    config = config.model_copy(
        update={"watch": WatchSettings(error_backoff_seconds=1.0, max_error_backoff_seconds=3.0)}
    )
    service = _service(config)
    failed = ReconcileOutcome(
        link=link,
        trigger=ReconcileTrigger.MOUNT,
        action=ReconciliationAction.LINK_DIRECTLY,
        before=classify(link.local_path),
        error=LinkError("copy failed"),
    )
    passes = iter(
        [
            WatchPassResult(ReconcileTrigger.MOUNT, drive, [failed]),
            WatchPassResult(ReconcileTrigger.MOUNT, drive, [failed]),
            WatchPassResult(ReconcileTrigger.MOUNT, drive, [failed]),
            WatchPassResult(ReconcileTrigger.MOUNT, drive, []),
            WatchPassResult(ReconcileTrigger.MOUNT, drive, [failed]),
        ]
    )
    monkeypatch.setattr(service, "handle_event", lambda event: next(passes))
    waits: list[float] = []

    def _wait(timeout: Optional[float] = None) -> bool:
        waits.append(timeout)
        return False

    monkeypatch.setattr(service._stop_event, "wait", _wait)
    delivered = []
    events = [MountEvent(MountEventKind.MOUNTED, drive)] * 5

    service._dispatch(events, delivered.append)

    assert len(delivered) == 5
    assert waits == [1.0, 2.0, 3.0, 1.0]
