"""Supervisor that reconciles managed links whenever the drive comes or goes."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from volumelink.config import VolumeLinkConfig
from volumelink.drives import DriveDirectory, DriveError, locate_mount_path
from volumelink.links import (
    BulkCopier,
    LinkError,
    LinkReconciler,
    ReconcileOutcome,
    ReconcileTrigger,
)
from volumelink.links.reconciler import ProgressHandler

from .monitors import MountEvent, MountEventKind, MountEventSource, default_mount_monitor

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class WatchPassResult:
    """Outcome of one reconciliation pass run by the supervisor.

    Attributes:
        trigger: What started the pass.
        mount_path: Mount path of the drive during the pass, ``None`` when detached.
        outcomes: Per-link outcomes in configuration order.
        event: Mount event that triggered the pass, if any.
    """

    trigger: ReconcileTrigger
    mount_path: Optional[Path]
    outcomes: list[ReconcileOutcome] = field(default_factory=list)
    event: Optional[MountEvent] = None

    @property
    def failures(self) -> list[ReconcileOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class LinkWatchService:
    """Long-lived loop consuming mount events and reconciling every managed link."""

    def __init__(
        self,
        config: VolumeLinkConfig,
        *,
        drives: DriveDirectory,
        reconciler: Optional[LinkReconciler] = None,
        monitor: Optional[MountEventSource] = None,
        settle_override: Optional[float] = None,
        progress: Optional[ProgressHandler] = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            config: Loaded configuration; ``drive`` and ``links`` must be set.
            drives: Drive Directory used to locate the drive.
            reconciler: Reconciler shared with other callers in this process.
            monitor: Mount event source; defaults to the one chosen by ``config.watch``.
            settle_override: Seconds to wait after an event before reconciling.
            progress: Optional callback receiving reconciler progress messages.
        """
        self._config = config
        self._drives = drives
        self._reconciler = reconciler or LinkReconciler(
            copier=BulkCopier(
                rsync_candidates=config.transfer.rsync_candidates,
                cp_candidates=config.transfer.cp_candidates,
                timeout_seconds=config.transfer.timeout_seconds or None,
            )
        )
        self._monitor = monitor or default_mount_monitor(config.watch)
        self._queue = self._monitor.channel
        self._stop_event = threading.Event()
        self._progress = progress
        settings = config.watch
        settle = settle_override if settle_override is not None else settings.settle_seconds
        self._settle_seconds = max(0.0, settle)
        self._initial_backoff = max(0.1, settings.error_backoff_seconds)
        self._max_backoff = max(self._initial_backoff, settings.max_error_backoff_seconds)
        self._backoff = self._initial_backoff
        self._running = False
        self._last_mount: Optional[Path] = None

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def current_mount_path(self) -> Optional[Path]:
        """Return where the configured drive is mounted right now, if anywhere."""
        return locate_mount_path(self._config.drive, self._drives)

    def process_once(self, trigger: ReconcileTrigger = ReconcileTrigger.STARTUP) -> WatchPassResult:
        """Reconcile every link against the drive's current status."""
        mount_path = self.current_mount_path()
        return self._reconcile(trigger, mount_path, event=None)

    def handle_event(self, event: MountEvent) -> Optional[WatchPassResult]:
        """Reconcile in response to ``event`` when it concerns the configured drive.

        Returns:
            Optional[WatchPassResult]: ``None`` when the event is about another volume.
        """
        if not self._is_relevant(event):
            LOGGER.debug("Ignoring %s event for %s", event.kind.value, event.path)
            return None
        mount_path = self.current_mount_path()
        if event.kind is MountEventKind.MOUNTED:
            if mount_path is None:
                LOGGER.warning("Drive announced at %s but cannot be resolved yet", event.path)
            return self._reconcile(ReconcileTrigger.MOUNT, mount_path, event=event)
        if mount_path is not None and _normalize(mount_path) == _normalize(event.path):
            # The volume just left this path; whatever still answers there is
            # a leftover directory on the local disk.
            LOGGER.info("Ignoring stale mount point %s after unmount", event.path)
            mount_path = None
        return self._reconcile(ReconcileTrigger.UNMOUNT, mount_path, event=event)

    def watch(self, callback: Callable[[WatchPassResult], None]) -> None:
        """Run a startup pass, then reconcile on every relevant mount event until stopped.

        Args:
            callback: Callable invoked with each completed pass.
        """
        if self._running:
            raise RuntimeError("LinkWatchService is already running.")
        self._running = True
        self._stop_event.clear()
        self._monitor.start()
        try:
            callback(self.process_once(ReconcileTrigger.STARTUP))
            self._run_loop(callback)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the monitor and unblock the processing loop."""
        self._stop_event.set()
        if self._running:
            self._monitor.stop()
            self._running = False
        self._queue.put(None)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run_loop(self, callback: Callable[[WatchPassResult], None]) -> None:
        while not self._stop_event.is_set():
            event = self._queue.get()
            if event is None:
                break
            # Give the volume time to become readable, then coalesce whatever
            # else arrived meanwhile so a flapping drive yields one pass.
            if self._stop_event.wait(self._settle_seconds):
                break
            batch = [event]
            while True:
                try:
                    queued = self._queue.get_nowait()
                except queue.Empty:
                    break
                if queued is None:
                    self._stop_event.set()
                    break
                batch.append(queued)
            self._dispatch(_coalesce(batch), callback)

    def _dispatch(self, events: list[MountEvent], callback: Callable[[WatchPassResult], None]) -> None:
        for event in events:
            try:
                result = self.handle_event(event)
            except (DriveError, LinkError, OSError) as exc:
                LOGGER.error("Reconciliation after %s of %s failed: %s", event.kind.value, event.path, exc)
                if self._stop_event.wait(self._backoff):
                    return
                self._backoff = min(self._backoff * 2, self._max_backoff)
                continue
            if result is None:
                continue
            callback(result)
            if not result.failures:
                self._backoff = self._initial_backoff
                continue
            LOGGER.warning("%d link(s) failed; backing off for %.1fs", len(result.failures), self._backoff)
            if self._stop_event.wait(self._backoff):
                return
            self._backoff = min(self._backoff * 2, self._max_backoff)

    def _reconcile(
        self,
        trigger: ReconcileTrigger,
        mount_path: Optional[Path],
        *,
        event: Optional[MountEvent],
    ) -> WatchPassResult:
        started = time.monotonic()
        outcomes = self._reconciler.reconcile_all(
            self._config.links,
            mount_path,
            trigger=trigger,
            progress=self._progress,
        )
        if mount_path is not None:
            self._last_mount = mount_path
        result = WatchPassResult(trigger=trigger, mount_path=mount_path, outcomes=outcomes, event=event)
        LOGGER.info(
            "%s pass over %d link(s) finished in %.2fs with %d failure(s)",
            trigger.value,
            len(outcomes),
            time.monotonic() - started,
            len(result.failures),
        )
        return result

    def _is_relevant(self, event: MountEvent) -> bool:
        candidates = {path for path in (self._configured_path(), self._last_mount) if path is not None}
        if _normalize(event.path) in {_normalize(path) for path in candidates}:
            return True
        if event.kind is MountEventKind.MOUNTED and self._config.drive.id:
            resolved = self._drives.resolve_mount_path(self._config.drive.id)
            return resolved is not None and _normalize(resolved) == _normalize(event.path)
        return False

    def _configured_path(self) -> Optional[Path]:
        path = self._config.drive.path
        return Path(path).expanduser() if path else None


def _normalize(path: Path) -> str:
    return os.path.normpath(os.fspath(path))


def _coalesce(events: list[MountEvent]) -> list[MountEvent]:
    """Keep only the latest event per path, preserving arrival order."""
    latest: dict[str, MountEvent] = {}
    for event in events:
        key = _normalize(event.path)
        latest.pop(key, None)
        latest[key] = event
    return list(latest.values())


__all__ = ["LinkWatchService", "WatchPassResult"]
