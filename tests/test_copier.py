"""Tests for the tiered bulk copy strategy."""

import subprocess
from pathlib import Path
from typing import Any

import pytest

from volumelink.links import BulkCopier, CopyFailedError


def _source(tmp_path: Path) -> Path:
    source = tmp_path / "source"
    (source / "nested").mkdir(parents=True)
    (source / "weights.bin").write_bytes(b"\x00" * 16)
    (source / "nested" / "config.json").write_text("{}", encoding="utf-8")
    return source


class _RecordingRunner:
    def __init__(self, returncodes: dict[str, int]) -> None:
        self.returncodes = returncodes
        self.commands: list[list[str]] = []

    def __call__(self, command: list[str], **_: Any) -> subprocess.CompletedProcess:
        self.commands.append(command)
        code = self.returncodes.get(Path(command[0]).name, 0)
        return subprocess.CompletedProcess(command, code, stdout="boom" if code else "")


def test_rsync_is_preferred(tmp_path: Path) -> None:
    runner = _RecordingRunner({})
    copier = BulkCopier(which=lambda name: f"/usr/bin/{name}", runner=runner)

    tier = copier.copy_tree(_source(tmp_path), tmp_path / "dest")

    assert tier == "rsync"
    assert runner.commands == [["/usr/bin/rsync", "-a", f"{tmp_path / 'source'}/", f"{tmp_path / 'dest'}/"]]


def test_falls_back_to_cp_when_rsync_fails(tmp_path: Path) -> None:
    runner = _RecordingRunner({"rsync": 23})
    copier = BulkCopier(which=lambda name: f"/usr/bin/{name}", runner=runner)

    tier = copier.copy_tree(_source(tmp_path), tmp_path / "dest")

    assert tier == "cp"
    assert [Path(command[0]).name for command in runner.commands] == ["rsync", "cp"]
    assert runner.commands[1][-2:] == [f"{tmp_path / 'source'}/.", f"{tmp_path / 'dest'}/"]


def test_in_process_copy_when_no_tools_exist(tmp_path: Path) -> None:
    runner = _RecordingRunner({})
    copier = BulkCopier(which=lambda name: None, runner=runner)
    destination = tmp_path / "dest"
    destination.mkdir()
    (destination / "already-there.txt").write_text("keep", encoding="utf-8")

    tier = copier.copy_tree(_source(tmp_path), destination)

    assert tier == "python"
    assert runner.commands == []
    assert (destination / "weights.bin").read_bytes() == b"\x00" * 16
    assert (destination / "nested" / "config.json").exists()
    assert (destination / "already-there.txt").read_text(encoding="utf-8") == "keep"


def test_real_tools_copy_the_tree(tmp_path: Path) -> None:
    copier = BulkCopier()

    copier.copy_tree(_source(tmp_path), tmp_path / "dest")

    assert (tmp_path / "dest" / "nested" / "config.json").read_text(encoding="utf-8") == "{}"


def test_all_tiers_failing_raises_with_last_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = _RecordingRunner({"rsync": 1, "cp": 1})
    copier = BulkCopier(which=lambda name: f"/usr/bin/{name}", runner=runner)

    def _broken_copytree(*_: Any, **__: Any) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("volumelink.links.copier.shutil.copytree", _broken_copytree)

    with pytest.raises(CopyFailedError) as excinfo:
        copier.copy_tree(_source(tmp_path), tmp_path / "dest")

    assert "disk full" in str(excinfo.value)
    assert excinfo.value.reason == "disk full"


def test_missing_source_is_a_copy_failure(tmp_path: Path) -> None:
    with pytest.raises(CopyFailedError):
        BulkCopier(which=lambda name: None).copy_tree(tmp_path / "absent", tmp_path / "dest")
