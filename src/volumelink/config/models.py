"""Configuration models describing volumelink settings."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from volumelink.links.models import ManagedLink


class VolumeLinkBaseModel(BaseModel):
    """Shared configuration for volumelink Pydantic models."""

    model_config = ConfigDict(extra="forbid")


def default_links() -> list[ManagedLink]:
    """Return the LM Studio directories managed out of the box."""
    base = Path("~/.lmstudio").expanduser()
    return [
        ManagedLink(name="models", local_path=base / "models", drive_subpath=PurePosixPath("models")),
        ManagedLink(name="hub", local_path=base / "hub", drive_subpath=PurePosixPath("hub")),
    ]


class DriveSettings(VolumeLinkBaseModel):
    """The removable drive the links are relocated onto.

    Attributes:
        path: Mount path recorded when the drive was configured.
        id: Identifier that survives remounts (filesystem UUID where available).
        name: Display name of the volume.
    """

    path: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.path or self.id)


class TransferSettings(VolumeLinkBaseModel):
    """Options for migrating local data onto the drive.

    Attributes:
        rsync_candidates: rsync executables tried in order.
        cp_candidates: cp executables tried in order.
        timeout_seconds: Optional subprocess timeout; 0 disables it.
    """

    rsync_candidates: List[str] = Field(
        default_factory=lambda: ["rsync", "/usr/bin/rsync", "/opt/homebrew/bin/rsync"]
    )
    cp_candidates: List[str] = Field(default_factory=lambda: ["cp", "/bin/cp"])
    timeout_seconds: float = 0


class WatchSettings(VolumeLinkBaseModel):
    """Supervisor loop behavior.

    Attributes:
        monitor: Mount event source; ``auto`` picks one for the platform.
        volumes_root: Directory watched by the watchdog monitor.
        mounts_file: Mount table read by the polling monitor.
        poll_interval_seconds: Interval between polling snapshots.
        settle_seconds: Delay between an event and reconciliation.
        error_backoff_seconds: Initial delay after a failed pass.
        max_error_backoff_seconds: Upper bound for the failure backoff.
    """

    monitor: Literal["auto", "poll", "watchdog"] = "auto"
    volumes_root: Optional[str] = None
    mounts_file: str = "/proc/mounts"
    poll_interval_seconds: float = 2.0
    settle_seconds: float = 2.0
    error_backoff_seconds: float = 1.0
    max_error_backoff_seconds: float = 60.0


class ServiceSettings(VolumeLinkBaseModel):
    """Unattended script and OS service options.

    Attributes:
        script_path: Where the generated script is written.
        log_path: Log written by the generated script.
        mount_probe: Extra check the script uses to confirm the drive is mounted.
        max_log_bytes: Size after which the script rotates its log.
        interval_seconds: Period of the backstop run scheduled by the service.
    """

    script_path: Optional[str] = None
    log_path: str = "~/.volumelink/unattended.log"
    mount_probe: Literal["auto", "directory", "diskutil", "mountpoint"] = "auto"
    max_log_bytes: int = 1_048_576
    interval_seconds: int = 300


class OfflineSettings(VolumeLinkBaseModel):
    """Local copies of drive models kept for use while the drive is away.

    Attributes:
        cache_path: Directory receiving ``publisher/repo`` copies.
        models_subpath: Directory on the drive holding the model tree.
    """

    cache_path: str = "~/.lmstudio/offline-models"
    models_subpath: str = "models"


class LoggingSettings(VolumeLinkBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        path: Log file written by the long-lived process.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    path: str = "~/.volumelink/volumelink.log"
    max_size_mb: float = 1
    backup_count: int = 3


class VolumeLinkConfig(VolumeLinkBaseModel):
    """Top-level configuration struct for volumelink.

    Attributes:
        drive: Configured target drive.
        initialized: Whether first-time setup completed.
        links: Managed links kept on the drive.
        transfer: Copy tier settings used by migrations.
        watch: Supervisor loop settings.
        service: Unattended script and service settings.
        offline: Offline model cache settings.
        logging: Logging configuration.
    """

    drive: DriveSettings = Field(default_factory=DriveSettings)
    initialized: bool = False
    links: List[ManagedLink] = Field(default_factory=default_links)
    transfer: TransferSettings = Field(default_factory=TransferSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    offline: OfflineSettings = Field(default_factory=OfflineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _unique_links(self) -> "VolumeLinkConfig":
        names = [link.name for link in self.links]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate link names: {', '.join(duplicates)}")
        paths = [str(link.local_path) for link in self.links]
        if len(set(paths)) != len(paths):
            raise ValueError("each managed link needs its own local_path")
        return self


__all__ = [
    "VolumeLinkBaseModel",
    "DriveSettings",
    "TransferSettings",
    "WatchSettings",
    "ServiceSettings",
    "OfflineSettings",
    "LoggingSettings",
    "VolumeLinkConfig",
    "default_links",
]
