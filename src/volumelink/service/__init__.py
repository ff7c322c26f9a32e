"""Unattended script generation and OS service installation."""

from .exceptions import ServiceError
from .installer import (
    LaunchdInstaller,
    ServiceInstaller,
    SystemdUserInstaller,
    default_installer,
)
from .script import (
    DEFAULT_SCRIPT_NAME,
    MOUNT_PROBES,
    ScriptParameters,
    render_script,
    resolve_mount_probe,
    write_script,
)

__all__ = [
    "ServiceError",
    "ServiceInstaller",
    "SystemdUserInstaller",
    "LaunchdInstaller",
    "default_installer",
    "DEFAULT_SCRIPT_NAME",
    "MOUNT_PROBES",
    "ScriptParameters",
    "render_script",
    "resolve_mount_probe",
    "write_script",
]
