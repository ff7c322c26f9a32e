"""Tiered directory copy used when migrating local data onto the drive."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import CopyFailedError

LOGGER = logging.getLogger(__name__)

DEFAULT_RSYNC_CANDIDATES = ("rsync", "/usr/bin/rsync", "/opt/homebrew/bin/rsync")
DEFAULT_CP_CANDIDATES = ("cp", "/bin/cp")


class BulkCopier:
    """Copy directory contents using rsync, then cp, then an in-process copy.

    Each tier runs at most once and the first success wins. The contents of
    ``source`` are merged into ``destination``; nothing already present on
    the destination side is deleted.
    """

    def __init__(
        self,
        *,
        rsync_candidates: Sequence[str] = DEFAULT_RSYNC_CANDIDATES,
        cp_candidates: Sequence[str] = DEFAULT_CP_CANDIDATES,
        timeout_seconds: Optional[float] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._rsync_candidates = tuple(rsync_candidates)
        self._cp_candidates = tuple(cp_candidates)
        self._timeout = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self._which = which
        self._runner = runner

    def copy_tree(self, source: Path, destination: Path) -> str:
        """Copy the tree below ``source`` into ``destination``.

        Args:
            source: Directory whose contents should be copied.
            destination: Directory receiving the contents; created if absent.

        Returns:
            str: Name of the tier that succeeded (``rsync``, ``cp`` or ``python``).

        Raises:
            CopyFailedError: If every tier failed; carries the last error text.
        """
        source = Path(source)
        destination = Path(destination)
        if not source.is_dir():
            raise CopyFailedError(f"source is not a directory: {source}")

        last_error = "no copy method available"
        for name, tier in (
            ("rsync", self._copy_with_rsync),
            ("cp", self._copy_with_cp),
            ("python", self._copy_in_process),
        ):
            error = tier(source, destination)
            if error is None:
                LOGGER.info("Copied %s to %s using %s", source, destination, name)
                return name
            LOGGER.debug("Copy tier %s failed for %s: %s", name, source, error)
            last_error = error

        raise CopyFailedError(last_error)

    # Tiers return None on success and the error text otherwise.

    def _copy_with_rsync(self, source: Path, destination: Path) -> Optional[str]:
        executable = self._find(self._rsync_candidates)
        if executable is None:
            return "rsync not found"
        return self._run(
            [executable, "-a", f"{source}/", f"{destination}/"],
            destination,
        )

    def _copy_with_cp(self, source: Path, destination: Path) -> Optional[str]:
        executable = self._find(self._cp_candidates)
        if executable is None:
            return "cp not found"
        return self._run([executable, "-R", f"{source}/.", f"{destination}/"], destination)

    def _copy_in_process(self, source: Path, destination: Path) -> Optional[str]:
        try:
            shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            return str(exc)
        return None

    def _find(self, candidates: Sequence[str]) -> Optional[str]:
        for candidate in candidates:
            resolved = self._which(candidate)
            if resolved:
                return resolved
        return None

    def _run(self, command: list[str], destination: Path) -> Optional[str]:
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return str(exc)
        try:
            completed = self._runner(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            return str(exc)
        if completed.returncode != 0:
            output = (completed.stdout or "").strip()
            return output or f"{command[0]} exited with status {completed.returncode}"
        return None


__all__ = ["BulkCopier", "DEFAULT_RSYNC_CANDIDATES", "DEFAULT_CP_CANDIDATES"]
