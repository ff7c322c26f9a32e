"""Install the unattended script as a systemd user unit or a launchd agent."""

from __future__ import annotations

import logging
import os
import plistlib
import subprocess
import sys
import textwrap
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional

from volumelink.config import VolumeLinkConfig
from volumelink.process import Runner, run_command

from .exceptions import ServiceError
from .script import DEFAULT_SCRIPT_NAME, write_script

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "volumelink"
LAUNCHD_LABEL = "io.volumelink.reconcile"


class ServiceInstaller(ABC):
    """Register the unattended script with the operating system."""

    def __init__(self, *, runner: Runner = subprocess.run, manage: bool = True) -> None:
        self._runner = runner
        self._manage = manage

    @property
    @abstractmethod
    def script_path(self) -> Path:
        """Location the script is installed to."""

    @abstractmethod
    def install(self, script_text: str) -> list[Path]:
        """Write the script and service definitions, then activate them.

        Returns:
            list[Path]: Files written.

        Raises:
            ServiceError: If a file cannot be written.
        """

    @abstractmethod
    def uninstall(self) -> list[Path]:
        """Deactivate the service and remove its files, returning the removed paths."""

    @abstractmethod
    def is_installed(self) -> bool:
        """Return whether the service definition is present."""

    @abstractmethod
    def status(self) -> dict[str, bool]:
        """Return a small status map such as ``{"Installed": True, "Active": False}``."""

    def _run(self, *args: str) -> Optional[str]:
        if not self._manage:
            return None
        output = run_command(list(args), runner=self._runner)
        if output is None:
            LOGGER.warning("Command failed: %s", " ".join(args))
        return output


def _write(path: Path, text: str) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ServiceError(f"Failed to write {path}: {exc}") from exc
    return path


def _remove(paths: list[Path]) -> list[Path]:
    removed: list[Path] = []
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise ServiceError(f"Failed to remove {path}: {exc}") from exc
        removed.append(path)
    return removed


class SystemdUserInstaller(ServiceInstaller):
    """Oneshot user service plus a timer that re-runs it periodically."""

    def __init__(
        self,
        *,
        env: Mapping[str, str] | None = None,
        script_path: Optional[Path] = None,
        interval_seconds: int = 300,
        runner: Runner = subprocess.run,
        manage: bool = True,
    ) -> None:
        super().__init__(runner=runner, manage=manage)
        env = env if env is not None else os.environ
        home = Path(env.get("HOME") or Path.home())
        config_home = Path(env["XDG_CONFIG_HOME"]) if env.get("XDG_CONFIG_HOME") else home / ".config"
        state_home = Path(env["XDG_STATE_HOME"]) if env.get("XDG_STATE_HOME") else home / ".local" / "state"
        self._unit_dir = config_home / "systemd" / "user"
        self._script_path = Path(script_path).expanduser() if script_path else state_home / SERVICE_NAME / DEFAULT_SCRIPT_NAME
        self._interval = max(60, int(interval_seconds))

    @property
    def script_path(self) -> Path:
        return self._script_path

    @property
    def service_path(self) -> Path:
        return self._unit_dir / f"{SERVICE_NAME}.service"

    @property
    def timer_path(self) -> Path:
        return self._unit_dir / f"{SERVICE_NAME}.timer"

    def render_service(self) -> str:
        return textwrap.dedent(
            f"""\
            [Unit]
            Description=volumelink - keep managed links in line with the drive
            After=local-fs.target

            [Service]
            Type=oneshot
            ExecStart=/bin/sh {_systemd_quote(str(self._script_path))}

            [Install]
            WantedBy=default.target
            """
        )

    def render_timer(self) -> str:
        return textwrap.dedent(
            f"""\
            [Unit]
            Description=Periodic volumelink reconciliation

            [Timer]
            OnStartupSec=30
            OnUnitActiveSec={self._interval}
            Unit={SERVICE_NAME}.service

            [Install]
            WantedBy=timers.target
            """
        )

    def install(self, script_text: str) -> list[Path]:
        written = [
            write_script(self._script_path, script_text),
            _write(self.service_path, self.render_service()),
            _write(self.timer_path, self.render_timer()),
        ]
        self._run("systemctl", "--user", "daemon-reload")
        self._run("systemctl", "--user", "enable", f"{SERVICE_NAME}.service")
        self._run("systemctl", "--user", "enable", "--now", f"{SERVICE_NAME}.timer")
        self._run("systemctl", "--user", "start", f"{SERVICE_NAME}.service")
        return written

    def uninstall(self) -> list[Path]:
        self._run("systemctl", "--user", "disable", "--now", f"{SERVICE_NAME}.timer")
        self._run("systemctl", "--user", "disable", f"{SERVICE_NAME}.service")
        removed = _remove([self.timer_path, self.service_path, self._script_path])
        self._run("systemctl", "--user", "daemon-reload")
        return removed

    def is_installed(self) -> bool:
        return self.service_path.exists()

    def status(self) -> dict[str, bool]:
        installed = self.is_installed()
        state: dict[str, bool] = {"Installed": installed}
        if installed and self._manage:
            output = run_command(
                ["systemctl", "--user", "is-active", f"{SERVICE_NAME}.timer"], runner=self._runner
            )
            state["Active"] = (output or "").strip() == "active"
        return state


class LaunchdInstaller(ServiceInstaller):
    """LaunchAgent that runs the script at login, on ``/Volumes`` changes and periodically."""

    def __init__(
        self,
        *,
        agents_dir: Optional[Path] = None,
        script_path: Optional[Path] = None,
        interval_seconds: int = 300,
        watch_paths: tuple[str, ...] = ("/Volumes",),
        log_path: Optional[Path] = None,
        label: str = LAUNCHD_LABEL,
        uid: Optional[int] = None,
        runner: Runner = subprocess.run,
        manage: bool = True,
    ) -> None:
        super().__init__(runner=runner, manage=manage)
        self._agents_dir = Path(agents_dir or Path("~/Library/LaunchAgents")).expanduser()
        default_script = Path("~/Library/Application Support/volumelink").expanduser() / DEFAULT_SCRIPT_NAME
        self._script_path = Path(script_path).expanduser() if script_path else default_script
        self._interval = max(60, int(interval_seconds))
        self._watch_paths = watch_paths
        self._log_path = Path(log_path).expanduser() if log_path else None
        self._label = label
        self._uid = uid if uid is not None else os.getuid()

    @property
    def script_path(self) -> Path:
        return self._script_path

    @property
    def plist_path(self) -> Path:
        return self._agents_dir / f"{self._label}.plist"

    def render_plist(self) -> bytes:
        agent: dict[str, object] = {
            "Label": self._label,
            "ProgramArguments": ["/bin/sh", str(self._script_path)],
            "RunAtLoad": True,
            "WatchPaths": list(self._watch_paths),
            "StartInterval": self._interval,
        }
        if self._log_path is not None:
            agent["StandardErrorPath"] = str(self._log_path)
        return plistlib.dumps(agent)

    def install(self, script_text: str) -> list[Path]:
        written = [write_script(self._script_path, script_text)]
        try:
            self._agents_dir.mkdir(parents=True, exist_ok=True)
            self.plist_path.write_bytes(self.render_plist())
        except OSError as exc:
            raise ServiceError(f"Failed to write {self.plist_path}: {exc}") from exc
        written.append(self.plist_path)
        # bootout first so a reinstall picks up the new definition.
        self._run("launchctl", "bootout", f"gui/{self._uid}/{self._label}")
        self._run("launchctl", "bootstrap", f"gui/{self._uid}", str(self.plist_path))
        return written

    def uninstall(self) -> list[Path]:
        self._run("launchctl", "bootout", f"gui/{self._uid}/{self._label}")
        return _remove([self.plist_path, self._script_path])

    def is_installed(self) -> bool:
        return self.plist_path.exists()

    def status(self) -> dict[str, bool]:
        installed = self.is_installed()
        state: dict[str, bool] = {"Installed": installed}
        if installed and self._manage:
            output = run_command(
                ["launchctl", "print", f"gui/{self._uid}/{self._label}"], runner=self._runner
            )
            state["Loaded"] = output is not None
        return state


def default_installer(config: VolumeLinkConfig, *, manage: bool = True) -> ServiceInstaller:
    """Return the installer for the running platform, honoring ``config.service``."""
    settings = config.service
    script_path = Path(settings.script_path).expanduser() if settings.script_path else None
    if sys.platform == "darwin":
        return LaunchdInstaller(
            script_path=script_path,
            interval_seconds=settings.interval_seconds,
            log_path=Path(settings.log_path).expanduser(),
            manage=manage,
        )
    return SystemdUserInstaller(
        script_path=script_path,
        interval_seconds=settings.interval_seconds,
        manage=manage,
    )


def _systemd_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("%", "%%")
    return f'"{escaped}"'


__all__ = [
    "LaunchdInstaller",
    "ServiceInstaller",
    "SystemdUserInstaller",
    "default_installer",
    "LAUNCHD_LABEL",
    "SERVICE_NAME",
]
