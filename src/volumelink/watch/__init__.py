"""Mount monitoring and the long-lived supervisor."""

from .monitors import (
    MountEvent,
    MountEventKind,
    MountEventSource,
    PollingMountMonitor,
    WatchdogMountMonitor,
    default_mount_monitor,
    mount_table_snapshot,
)
from .service import LinkWatchService, WatchPassResult

__all__ = [
    "MountEvent",
    "MountEventKind",
    "MountEventSource",
    "PollingMountMonitor",
    "WatchdogMountMonitor",
    "default_mount_monitor",
    "mount_table_snapshot",
    "LinkWatchService",
    "WatchPassResult",
]
