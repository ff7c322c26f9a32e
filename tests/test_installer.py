"""Tests for systemd and launchd service installation."""

import plistlib
import subprocess
from pathlib import Path
from typing import Any

import pytest

from volumelink.service import LaunchdInstaller, ServiceError, SystemdUserInstaller


class _RecordingRunner:
    def __init__(self, stdout: str = "") -> None:
        self.stdout = stdout
        self.commands: list[list[str]] = []

    def __call__(self, command: list[str], **_: Any) -> subprocess.CompletedProcess:
        self.commands.append(command)
        return subprocess.CompletedProcess(command, 0, stdout=self.stdout)


def _systemd(tmp_path: Path, **kwargs: Any) -> SystemdUserInstaller:
    env = {
        "HOME": str(tmp_path / "home"),
        "XDG_CONFIG_HOME": str(tmp_path / "config"),
        "XDG_STATE_HOME": str(tmp_path / "state"),
    }
    return SystemdUserInstaller(env=env, **kwargs)


def test_systemd_paths_follow_xdg(tmp_path: Path) -> None:
    installer = _systemd(tmp_path, manage=False)

    assert installer.service_path == tmp_path / "config" / "systemd" / "user" / "volumelink.service"
    assert installer.timer_path == tmp_path / "config" / "systemd" / "user" / "volumelink.timer"
    assert installer.script_path == tmp_path / "state" / "volumelink" / "volumelink-reconcile.sh"


def test_systemd_install_writes_units_and_enables_timer(tmp_path: Path) -> None:
    runner = _RecordingRunner(stdout="active\n")
    installer = _systemd(tmp_path, runner=runner, interval_seconds=120)

    written = installer.install("#!/bin/sh\nexit 0\n")

    assert written == [installer.script_path, installer.service_path, installer.timer_path]
    assert installer.script_path.stat().st_mode & 0o111
    assert f'ExecStart=/bin/sh "{installer.script_path}"' in installer.service_path.read_text(encoding="utf-8")
    assert "OnUnitActiveSec=120" in installer.timer_path.read_text(encoding="utf-8")
    assert ["systemctl", "--user", "enable", "--now", "volumelink.timer"] in runner.commands
    assert installer.status() == {"Installed": True, "Active": True}


def test_systemd_unmanaged_install_runs_no_commands(tmp_path: Path) -> None:
    runner = _RecordingRunner()
    installer = _systemd(tmp_path, runner=runner, manage=False)

    installer.install("#!/bin/sh\n")

    assert runner.commands == []
    assert installer.status() == {"Installed": True}


def test_systemd_uninstall_removes_files(tmp_path: Path) -> None:
    installer = _systemd(tmp_path, runner=_RecordingRunner(), manage=False)
    installer.install("#!/bin/sh\n")

    removed = installer.uninstall()

    assert set(removed) == {installer.script_path, installer.service_path, installer.timer_path}
    assert not installer.is_installed()
    assert installer.uninstall() == []


def test_systemd_quotes_odd_script_paths(tmp_path: Path) -> None:
    installer = _systemd(tmp_path, script_path=tmp_path / 'my "100%" dir' / "run.sh", manage=False)

    assert 'my \\"100%%\\" dir' in installer.render_service()


def test_launchd_plist_contents(tmp_path: Path) -> None:
    installer = LaunchdInstaller(
        agents_dir=tmp_path / "LaunchAgents",
        script_path=tmp_path / "support" / "run.sh",
        log_path=tmp_path / "unattended.log",
        interval_seconds=600,
        uid=501,
        manage=False,
    )

    agent = plistlib.loads(installer.render_plist())

    assert agent["Label"] == "io.volumelink.reconcile"
    assert agent["ProgramArguments"] == ["/bin/sh", str(tmp_path / "support" / "run.sh")]
    assert agent["WatchPaths"] == ["/Volumes"]
    assert agent["StartInterval"] == 600
    assert agent["RunAtLoad"] is True
    assert agent["StandardErrorPath"] == str(tmp_path / "unattended.log")


def test_launchd_install_bootstraps_agent(tmp_path: Path) -> None:
    runner = _RecordingRunner()
    installer = LaunchdInstaller(
        agents_dir=tmp_path / "LaunchAgents",
        script_path=tmp_path / "support" / "run.sh",
        uid=501,
        runner=runner,
    )

    written = installer.install("#!/bin/sh\n")

    assert installer.plist_path in written
    assert runner.commands == [
        ["launchctl", "bootout", "gui/501/io.volumelink.reconcile"],
        ["launchctl", "bootstrap", "gui/501", str(installer.plist_path)],
    ]
    assert installer.status() == {"Installed": True, "Loaded": True}


def test_unwritable_destination_raises_service_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    installer = _systemd(tmp_path, script_path=blocker / "run.sh", manage=False)

    with pytest.raises(ServiceError):
        installer.install("#!/bin/sh\n")
