"""Tests for link reconciliation against a drive that comes and goes."""

import os
import threading
import time
from pathlib import Path, PurePosixPath
from typing import Any

import pytest

from volumelink.links import (
    BulkCopier,
    CopyFailedError,
    LinkReconciler,
    ManagedLink,
    PathIsRootOrEmptyError,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    VolumeNotMountedError,
    backup_path_for,
    classify,
    ensure_safe_path,
)


def _link(tmp_path: Path, name: str = "models") -> ManagedLink:
    return ManagedLink(
        name=name,
        local_path=tmp_path / "home" / ".lmstudio" / name,
        drive_subpath=PurePosixPath(name),
    )


def _drive(tmp_path: Path) -> Path:
    drive = tmp_path / "Volumes" / "Models"
    drive.mkdir(parents=True)
    return drive


def _reconciler(**kwargs: Any) -> LinkReconciler:
    # In-process copies keep the tests independent of the host's rsync and cp.
    return LinkReconciler(copier=BulkCopier(which=lambda name: None), **kwargs)


def _fill(directory: Path, files: dict[str, str]) -> None:
    for relative, content in files.items():
        path = directory / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def test_fresh_drive_creates_link_and_target(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)

    outcome = _reconciler().reconcile(link, drive)

    assert outcome.action is ReconciliationAction.LINK_DIRECTLY
    assert outcome.after is not None and outcome.after.kind is StateKind.SYMLINK
    assert os.readlink(link.local_path) == str(drive / "models")
    assert (drive / "models").is_dir()


def test_second_pass_is_a_no_op(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    reconciler = _reconciler()
    reconciler.reconcile(link, drive)

    outcome = reconciler.reconcile(link, drive)

    assert outcome.action is ReconciliationAction.NO_OP
    assert outcome.before == outcome.after


def test_stale_symlink_is_repointed(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    old = tmp_path / "old-drive" / "models"
    old.mkdir(parents=True)
    link.local_path.parent.mkdir(parents=True)
    os.symlink(old, link.local_path)

    outcome = _reconciler().reconcile(link, drive)

    assert outcome.action is ReconciliationAction.LINK_DIRECTLY
    assert os.readlink(link.local_path) == str(drive / "models")
    assert old.is_dir()


def test_initialize_migrates_local_data(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    _fill(link.local_path, {"model.gguf": "weights", "sub/readme.md": "hello"})
    messages: list[str] = []

    outcomes = _reconciler().initialize([link], drive, progress=messages.append)

    assert outcomes[0].action is ReconciliationAction.MIGRATE_THEN_LINK
    assert link.local_path.is_symlink()
    assert (drive / "models" / "model.gguf").read_text(encoding="utf-8") == "weights"
    assert (link.local_path / "sub" / "readme.md").read_text(encoding="utf-8") == "hello"
    assert messages[0] == "Checking existing paths..."
    assert messages[-1] == "Initialization complete!"


def test_initialize_requires_a_mounted_drive(tmp_path: Path) -> None:
    with pytest.raises(VolumeNotMountedError):
        _reconciler().initialize([_link(tmp_path)], tmp_path / "Volumes" / "Absent")


def test_initialize_quarantines_when_drive_already_holds_data(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    _fill(link.local_path, {"local.txt": "local"})
    _fill(drive / "models", {"remote.txt": "remote"})

    outcome = _reconciler(clock=lambda: 1700000000).initialize([link], drive)[0]

    assert outcome.action is ReconciliationAction.QUARANTINE_THEN_LINK
    assert outcome.backup_path == link.local_path.with_name("models.backup.1700000000")
    assert (outcome.backup_path / "local.txt").read_text(encoding="utf-8") == "local"
    assert not (drive / "models" / "local.txt").exists()
    assert (link.local_path / "remote.txt").exists()


def test_copy_failure_loses_no_data(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    _fill(link.local_path, {"model.gguf": "weights"})

    def _fail(self: BulkCopier, source: Path, destination: Path) -> str:
        raise CopyFailedError("drive full")

    monkeypatch.setattr(BulkCopier, "copy_tree", _fail)

    with pytest.raises(CopyFailedError):
        _reconciler().initialize([link], drive)

    assert classify(link.local_path).kind is StateKind.DIRECTORY
    assert (link.local_path / "model.gguf").read_text(encoding="utf-8") == "weights"


def test_reconnect_quarantines_data_written_while_offline(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    reconciler = _reconciler(clock=lambda: 42)
    reconciler.reconcile(link, drive)
    _fill(drive / "models", {"on-drive.gguf": "drive"})

    # Drive disappears: the dangling link becomes an empty placeholder.
    detached = tmp_path / "Volumes" / "Models.detached"
    drive.rename(detached)
    unmount = reconciler.reconcile(link, None, trigger=ReconcileTrigger.UNMOUNT)
    assert unmount.action is ReconciliationAction.QUARANTINE_THEN_PLACEHOLDER
    assert classify(link.local_path).kind is StateKind.DIRECTORY

    # The application writes into the placeholder while the drive is away.
    _fill(link.local_path, {"offline.gguf": "local"})

    detached.rename(drive)
    mount = reconciler.reconcile(link, drive, trigger=ReconcileTrigger.MOUNT)

    assert mount.action is ReconciliationAction.QUARANTINE_THEN_LINK
    assert os.readlink(link.local_path) == str(drive / "models")
    assert mount.backup_path is not None
    assert (mount.backup_path / "offline.gguf").read_text(encoding="utf-8") == "local"
    assert (drive / "models" / "on-drive.gguf").exists()


def test_empty_placeholder_is_replaced_without_backup(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    link.local_path.mkdir(parents=True)

    outcome = _reconciler().reconcile(link, drive, trigger=ReconcileTrigger.MOUNT)

    assert outcome.action is ReconciliationAction.MIGRATE_THEN_LINK
    assert outcome.backup_path is None
    assert link.local_path.is_symlink()
    assert list(link.local_path.parent.iterdir()) == [link.local_path]


def test_dangling_link_heals_when_unmounted(tmp_path: Path) -> None:
    link = _link(tmp_path)
    link.local_path.parent.mkdir(parents=True)
    os.symlink(tmp_path / "Volumes" / "Gone" / "models", link.local_path)

    outcome = _reconciler().reconcile(link, None, trigger=ReconcileTrigger.UNMOUNT)

    assert outcome.action is ReconciliationAction.QUARANTINE_THEN_PLACEHOLDER
    assert link.local_path.is_dir() and not link.local_path.is_symlink()
    assert list(link.local_path.iterdir()) == []


def test_unmounted_real_directory_is_left_untouched(tmp_path: Path) -> None:
    link = _link(tmp_path)
    _fill(link.local_path, {"keep.txt": "keep"})

    outcome = _reconciler().reconcile(link, tmp_path / "not-mounted", trigger=ReconcileTrigger.UNMOUNT)

    assert outcome.action is ReconciliationAction.NO_OP
    assert (link.local_path / "keep.txt").exists()


def test_file_in_the_way_is_backed_up(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    link.local_path.parent.mkdir(parents=True)
    link.local_path.write_text("stray", encoding="utf-8")

    outcome = _reconciler(clock=lambda: 7).reconcile(link, drive)

    assert outcome.action is ReconciliationAction.QUARANTINE_THEN_LINK
    assert outcome.backup_path is not None
    assert outcome.backup_path.read_text(encoding="utf-8") == "stray"
    assert link.local_path.is_symlink()


def test_correct_link_with_missing_drive_directory_is_restored(tmp_path: Path) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    link.local_path.parent.mkdir(parents=True)
    os.symlink(drive / "models", link.local_path)

    outcome = _reconciler().reconcile(link, drive)

    assert outcome.action is ReconciliationAction.LINK_DIRECTLY
    assert (drive / "models").is_dir()


@pytest.mark.parametrize("path", ["", "   ", "/", "//"])
def test_root_or_empty_paths_are_refused(path: str) -> None:
    with pytest.raises(PathIsRootOrEmptyError):
        ensure_safe_path(path)


def test_root_mount_path_is_refused_before_any_mutation(tmp_path: Path) -> None:
    link = _link(tmp_path)
    _fill(link.local_path, {"keep.txt": "keep"})

    with pytest.raises(PathIsRootOrEmptyError):
        _reconciler().reconcile(link, Path("/"))

    assert (link.local_path / "keep.txt").exists()


def test_backup_name_skips_existing_names(tmp_path: Path) -> None:
    local = tmp_path / "models"
    (tmp_path / "models.backup.100").mkdir()
    (tmp_path / "models.backup.101").mkdir()

    assert backup_path_for(local, 100.9) == tmp_path / "models.backup.102"


def test_reconcile_all_captures_failures_per_link(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    good = _link(tmp_path, "hub")
    bad = ManagedLink(name="bad", local_path=Path("/"), drive_subpath=PurePosixPath("bad"))

    outcomes = _reconciler().reconcile_all([good, bad], drive)

    assert outcomes[0].ok and good.local_path.is_symlink()
    assert isinstance(outcomes[1].error, PathIsRootOrEmptyError)


def test_concurrent_passes_on_one_link_are_serialized(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    link = _link(tmp_path)
    drive = _drive(tmp_path)
    _fill(link.local_path, {"model.gguf": "weights"})
    active = 0
    overlap = False
    guard = threading.Lock()
    original = BulkCopier.copy_tree

    def _slow_copy(self: BulkCopier, source: Path, destination: Path) -> str:
        nonlocal active, overlap
        with guard:
            active += 1
            overlap = overlap or active > 1
        time.sleep(0.05)
        try:
            return original(self, source, destination)
        finally:
            with guard:
                active -= 1

    monkeypatch.setattr(BulkCopier, "copy_tree", _slow_copy)
    reconciler = _reconciler()
    results: list[Any] = []

    def _run() -> None:
        results.append(reconciler.reconcile(link, drive, trigger=ReconcileTrigger.INITIALIZE))

    threads = [threading.Thread(target=_run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not overlap
    actions = sorted(outcome.action.value for outcome in results)
    assert actions == ["migrate_then_link", "no_op"]
    assert (link.local_path / "model.gguf").exists()
