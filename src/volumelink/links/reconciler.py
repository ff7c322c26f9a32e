"""Volume-aware link reconciliation."""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Sequence

from .copier import BulkCopier
from .decisions import Decision, decide
from .errors import (
    BackupFailedError,
    LinkError,
    PathIsRootOrEmptyError,
    PlaceholderFailedError,
    RemoveFailedError,
    SymlinkFailedError,
    VolumeNotMountedError,
)
from .inspector import classify, has_entries, is_empty_directory, is_reachable
from .models import (
    LinkFacts,
    ManagedLink,
    ReconcileOutcome,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    Step,
)

LOGGER = logging.getLogger(__name__)

ProgressHandler = Callable[[str], None]

BACKUP_MARKER = ".backup."


def ensure_safe_path(path: Path | str | None) -> None:
    """Reject empty and root paths.

    Raises:
        PathIsRootOrEmptyError: If ``path`` is empty, whitespace, or ``/``.
    """
    raw = "" if path is None else os.fspath(path)
    trimmed = raw.strip()
    if not trimmed or trimmed.rstrip("/") == "":
        raise PathIsRootOrEmptyError(raw)


def backup_path_for(local_path: Path, timestamp: float, *, exists: Callable[[Path], bool] | None = None) -> Path:
    """Return ``<local_path>.backup.<ts>``, bumping ``ts`` until the name is free."""
    probe = exists or (lambda candidate: os.path.lexists(candidate))
    stamp = int(timestamp)
    candidate = local_path.with_name(f"{local_path.name}{BACKUP_MARKER}{stamp}")
    while probe(candidate):
        stamp += 1
        candidate = local_path.with_name(f"{local_path.name}{BACKUP_MARKER}{stamp}")
    return candidate


class LinkLockArena:
    """Hands out one lock per managed link, keyed by its local path."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, link: ManagedLink) -> Iterator[None]:
        key = os.fspath(link.local_path)
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class LinkReconciler:
    """Compute and apply the reconciliation decision for managed links."""

    def __init__(
        self,
        *,
        copier: Optional[BulkCopier] = None,
        locks: Optional[LinkLockArena] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the reconciler.

        Args:
            copier: Copy strategy used by migrations.
            locks: Lock arena; pass a shared instance to serialize across reconcilers.
            clock: Source of unix timestamps for backup names.
        """
        self._copier = copier or BulkCopier()
        self._locks = locks or LinkLockArena()
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def plan(
        self,
        link: ManagedLink,
        mount_path: Optional[Path],
        *,
        trigger: ReconcileTrigger = ReconcileTrigger.MOUNT,
    ) -> Decision:
        """Return the decision for ``link`` without touching the filesystem."""
        ensure_safe_path(link.local_path)
        return decide(self.gather_facts(link, mount_path), trigger)

    def gather_facts(self, link: ManagedLink, mount_path: Optional[Path]) -> LinkFacts:
        """Inspect the local path and drive target of ``link``."""
        state = classify(link.local_path)
        mounted = mount_path is not None and Path(mount_path).is_dir()
        target = link.expected_target(Path(mount_path)) if mounted else None
        return LinkFacts(
            mounted=mounted,
            kind=state.kind,
            link_matches=(
                state.kind is StateKind.SYMLINK
                and target is not None
                and _same_target(state.target, target)
            ),
            reachable=state.kind is StateKind.SYMLINK and is_reachable(link.local_path),
            local_empty=state.kind is StateKind.DIRECTORY and is_empty_directory(link.local_path),
            target_populated=target is not None and has_entries(target),
        )

    def reconcile(
        self,
        link: ManagedLink,
        mount_path: Optional[Path],
        *,
        trigger: ReconcileTrigger = ReconcileTrigger.MOUNT,
        progress: Optional[ProgressHandler] = None,
    ) -> ReconcileOutcome:
        """Bring one managed link in line with the drive's mount status.

        Args:
            link: Managed link to reconcile.
            mount_path: Current mount path of the drive, or ``None`` when detached.
            trigger: What started the pass.
            progress: Optional callback receiving human-readable progress.

        Returns:
            ReconcileOutcome: Action taken and resulting path state.

        Raises:
            PathIsRootOrEmptyError: If the local path or mount path is unsafe.
            LinkError: If a filesystem step fails; later steps are skipped.
        """
        outcome = self._run(link, mount_path, trigger, progress)
        if outcome.error is not None:
            raise outcome.error
        return outcome

    def reconcile_all(
        self,
        links: Sequence[ManagedLink],
        mount_path: Optional[Path],
        *,
        trigger: ReconcileTrigger = ReconcileTrigger.MOUNT,
        progress: Optional[ProgressHandler] = None,
    ) -> list[ReconcileOutcome]:
        """Reconcile every link concurrently, capturing failures per link.

        Returns:
            list[ReconcileOutcome]: Outcomes in the order of ``links``.
        """
        if not links:
            return []
        with ThreadPoolExecutor(max_workers=len(links), thread_name_prefix="volumelink") as pool:
            futures = [
                pool.submit(self._reconcile_captured, link, mount_path, trigger, progress)
                for link in links
            ]
            return [future.result() for future in futures]

    def initialize(
        self,
        links: Iterable[ManagedLink],
        mount_path: Path,
        *,
        progress: Optional[ProgressHandler] = None,
    ) -> list[ReconcileOutcome]:
        """Perform first-time setup, migrating existing local data onto the drive.

        Raises:
            VolumeNotMountedError: If ``mount_path`` does not exist.
            LinkError: On the first failing link; remaining links are not touched.
        """
        ensure_safe_path(mount_path)
        link_list = list(links)
        for link in link_list:
            ensure_safe_path(link.local_path)
        if not Path(mount_path).is_dir():
            raise VolumeNotMountedError(mount_path)

        if progress is not None:
            progress("Checking existing paths...")
        outcomes = [
            self.reconcile(link, Path(mount_path), trigger=ReconcileTrigger.INITIALIZE, progress=progress)
            for link in link_list
        ]
        if progress is not None:
            progress("Initialization complete!")
        return outcomes

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run(
        self,
        link: ManagedLink,
        mount_path: Optional[Path],
        trigger: ReconcileTrigger,
        progress: Optional[ProgressHandler],
    ) -> ReconcileOutcome:
        """Apply the decision for ``link``, recording step failures on the outcome."""
        ensure_safe_path(link.local_path)
        if mount_path is not None:
            ensure_safe_path(mount_path)
            mount_path = Path(mount_path)

        with self._locks.hold(link):
            before = classify(link.local_path)
            facts = self.gather_facts(link, mount_path)
            decision = decide(facts, trigger)
            target = link.expected_target(mount_path) if facts.mounted and mount_path else None

            outcome = ReconcileOutcome(
                link=link,
                trigger=trigger,
                action=decision.action,
                before=before,
            )

            def emit(message: str) -> None:
                outcome.messages.append(message)
                LOGGER.info("[%s] %s", link.name, message)
                if progress is not None:
                    progress(message)

            emit(
                decision.message(
                    name=link.name,
                    local=str(link.local_path),
                    target=str(target) if target is not None else "",
                )
            )

            try:
                for step in decision.steps:
                    self._apply(step, link, target, outcome, emit)
            except LinkError as exc:
                outcome.error = exc
                LOGGER.error(
                    "[%s] %s stopped at rule %s: %s",
                    link.name,
                    decision.action.value,
                    decision.rule.rule_id,
                    exc,
                )

            outcome.after = classify(link.local_path)
            return outcome

    def _reconcile_captured(
        self,
        link: ManagedLink,
        mount_path: Optional[Path],
        trigger: ReconcileTrigger,
        progress: Optional[ProgressHandler],
    ) -> ReconcileOutcome:
        try:
            return self._run(link, mount_path, trigger, progress)
        except LinkError as exc:
            LOGGER.error("[%s] refused to reconcile: %s", link.name, exc)
            current = classify(link.local_path)
            return ReconcileOutcome(
                link=link,
                trigger=trigger,
                action=ReconciliationAction.NO_OP,
                before=current,
                after=current,
                messages=[str(exc)],
                error=exc,
            )

    def _apply(
        self,
        step: Step,
        link: ManagedLink,
        target: Optional[Path],
        outcome: ReconcileOutcome,
        emit: ProgressHandler,
    ) -> None:
        local = link.local_path
        if step is Step.BACKUP:
            outcome.backup_path = self._backup(local)
            emit(f"Moved {link.name} content to {outcome.backup_path}")
        elif step is Step.REMOVE_LINK:
            self._remove_link(local)
        elif step is Step.ENSURE_TARGET:
            self._ensure_target(_require(target))
        elif step is Step.COPY_TREE:
            emit(f"Copying {link.name} to {target}...")
            self._copier.copy_tree(local, _require(target))
        elif step is Step.REMOVE_TREE:
            emit(f"Removing original {link.name} directory...")
            self._remove_tree(local)
        elif step is Step.CREATE_LINK:
            self._create_link(local, _require(target))
            emit(f"Linked {local} -> {target}")
        elif step is Step.CREATE_PLACEHOLDER:
            self._create_placeholder(local)
            emit(f"Created empty placeholder directory at {local}")
        else:  # pragma: no cover - exhaustive over Step
            raise ValueError(f"Unknown step {step}")

    def _backup(self, local: Path) -> Path:
        ensure_safe_path(local)
        destination = backup_path_for(local, self._clock())
        try:
            os.rename(local, destination)
        except OSError as exc:
            raise BackupFailedError(str(exc)) from exc
        return destination

    def _remove_link(self, local: Path) -> None:
        ensure_safe_path(local)
        if not local.is_symlink():
            raise RemoveFailedError(f"{local} is no longer a symlink")
        try:
            local.unlink()
        except OSError as exc:
            raise RemoveFailedError(str(exc)) from exc

    def _ensure_target(self, target: Path) -> None:
        ensure_safe_path(target)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SymlinkFailedError(f"cannot create drive directory {target}: {exc}") from exc

    def _remove_tree(self, local: Path) -> None:
        ensure_safe_path(local)
        if local.is_symlink() or not local.is_dir():
            raise RemoveFailedError(f"{local} is no longer a real directory")
        try:
            shutil.rmtree(local)
        except OSError as exc:
            raise RemoveFailedError(str(exc)) from exc

    def _create_link(self, local: Path, target: Path) -> None:
        ensure_safe_path(local)
        try:
            local.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(os.fspath(target), local, target_is_directory=True)
        except OSError as exc:
            raise SymlinkFailedError(str(exc)) from exc

    def _create_placeholder(self, local: Path) -> None:
        ensure_safe_path(local)
        try:
            local.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PlaceholderFailedError(str(exc)) from exc


def _same_target(actual: Optional[str], expected: Path) -> bool:
    if actual is None:
        return False
    return actual.rstrip("/") == os.fspath(expected).rstrip("/")


def _require(target: Optional[Path]) -> Path:
    if target is None:
        raise VolumeNotMountedError()
    return target


__all__ = [
    "LinkReconciler",
    "LinkLockArena",
    "ProgressHandler",
    "backup_path_for",
    "ensure_safe_path",
]
