"""Offline model cache kept on the local disk.

Models on the drive live under ``<mount>/models/<publisher>/<repo>``. Any of
them can be copied to ``~/.lmstudio/offline-models/<publisher>/<repo>`` so it
stays usable once the drive is unplugged, and removed again later.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from volumelink.drives import DriveDirectory
from volumelink.links import BulkCopier, CopyFailedError
from volumelink.links.reconciler import ProgressHandler

from .exceptions import OfflineModelError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class OfflineModel:
    """A ``publisher/repo`` model directory found on the drive or in the cache.

    Attributes:
        publisher: Top-level directory below the models root.
        name: Repository directory below the publisher.
        size: ``du -sh`` style size, ``None`` when not measured.
        synced: Whether a local copy exists in the offline cache.
    """

    publisher: str
    name: str
    size: Optional[str] = None
    synced: bool = False

    @property
    def relative_path(self) -> str:
        return f"{self.publisher}/{self.name}"


def split_model_path(relative_path: str) -> tuple[str, str]:
    """Split ``publisher/repo`` into its parts.

    Raises:
        OfflineModelError: If the value is not exactly two plain path segments.
    """
    parts = PurePosixPath(relative_path.strip().strip("/")).parts
    if len(parts) != 2 or any(part in (".", "..") or part.startswith(".") for part in parts):
        raise OfflineModelError(f"Expected a model as publisher/repo, got: {relative_path!r}")
    return parts[0], parts[1]


class OfflineModelCache:
    """Copy selected drive models to a local cache and remove them again."""

    def __init__(
        self,
        cache_root: Path,
        *,
        drives: DriveDirectory,
        copier: Optional[BulkCopier] = None,
        models_subpath: str = "models",
    ) -> None:
        self._cache_root = Path(cache_root).expanduser()
        self._drives = drives
        self._copier = copier or BulkCopier()
        self._models_subpath = PurePosixPath(models_subpath)

    @property
    def cache_root(self) -> Path:
        return self._cache_root

    def models_root(self, mount_path: Path) -> Path:
        """Return the model tree on the drive mounted at ``mount_path``."""
        return Path(mount_path) / self._models_subpath

    def list_models(self, mount_path: Path, *, with_sizes: bool = True) -> list[OfflineModel]:
        """Return every ``publisher/repo`` directory on the drive, sorted case-insensitively.

        Args:
            mount_path: Where the drive is mounted.
            with_sizes: Measure each model with ``du``; this can be slow on large trees.
        """
        models = []
        for publisher, name, path in _model_dirs(self.models_root(mount_path)):
            size = self._drives.storage_usage(path) if with_sizes else None
            models.append(
                OfflineModel(
                    publisher=publisher,
                    name=name,
                    size=size,
                    synced=os.path.isdir(self._cache_root / publisher / name),
                )
            )
        return sorted(models, key=_sort_key)

    def cached_models(self, *, with_sizes: bool = False) -> list[OfflineModel]:
        """Return the models present in the local cache."""
        models = [
            OfflineModel(
                publisher=publisher,
                name=name,
                size=self._drives.storage_usage(path) if with_sizes else None,
                synced=True,
            )
            for publisher, name, path in _model_dirs(self._cache_root)
        ]
        return sorted(models, key=_sort_key)

    def sync(self, relative_path: str, mount_path: Path, *, progress: Optional[ProgressHandler] = None) -> Path:
        """Copy one model from the drive into the cache, replacing any older copy.

        Returns:
            Path: Location of the cached copy.

        Raises:
            OfflineModelError: If the model is missing on the drive or the copy fails.
        """
        publisher, name = split_model_path(relative_path)
        source = self.models_root(mount_path) / publisher / name
        if not source.is_dir():
            raise OfflineModelError(f"Model not found on the drive: {publisher}/{name}")
        destination = self._cache_root / publisher / name

        _notify(progress, f"Copying {name} to offline cache...")
        if os.path.lexists(destination):
            self._remove(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            tier = self._copier.copy_tree(source, destination)
        except (CopyFailedError, OSError) as exc:
            # A half-copied model would be reported as synced.
            if os.path.lexists(destination):
                self._remove(destination)
            raise OfflineModelError(f"Could not copy {publisher}/{name}: {exc}") from exc
        LOGGER.info("Cached %s/%s at %s using %s", publisher, name, destination, tier)
        return destination

    def unsync(self, relative_path: str, *, progress: Optional[ProgressHandler] = None) -> bool:
        """Remove one model from the cache.

        Returns:
            bool: ``False`` when the model was not cached.
        """
        publisher, name = split_model_path(relative_path)
        destination = self._cache_root / publisher / name
        if not os.path.lexists(destination):
            return False
        _notify(progress, f"Removing {name} from offline cache...")
        self._remove(destination)
        publisher_dir = destination.parent
        try:
            if not any(publisher_dir.iterdir()):
                publisher_dir.rmdir()
        except OSError as exc:
            LOGGER.debug("Leaving %s in place: %s", publisher_dir, exc)
        LOGGER.info("Removed %s/%s from the offline cache", publisher, name)
        return True

    def _remove(self, path: Path) -> None:
        try:
            if path.is_symlink() or not path.is_dir():
                path.unlink()
            else:
                shutil.rmtree(path)
        except OSError as exc:
            raise OfflineModelError(f"Could not remove {path}: {exc}") from exc


def _model_dirs(root: Path) -> Iterator[tuple[str, str, Path]]:
    try:
        with os.scandir(root) as entries:
            publishers = list(entries)
    except OSError:
        return
    for publisher in publishers:
        if publisher.name.startswith(".") or not publisher.is_dir():
            continue
        try:
            with os.scandir(publisher.path) as entries:
                repos = list(entries)
        except OSError as exc:
            LOGGER.debug("Skipping unreadable publisher %s: %s", publisher.path, exc)
            continue
        for repo in repos:
            if repo.name.startswith(".") or not repo.is_dir():
                continue
            yield publisher.name, repo.name, Path(repo.path)


def _sort_key(model: OfflineModel) -> tuple[str, str]:
    return model.publisher.casefold(), model.name.casefold()


def _notify(progress: Optional[ProgressHandler], message: str) -> None:
    LOGGER.debug(message)
    if progress is not None:
        progress(message)


__all__ = ["OfflineModel", "OfflineModelCache", "split_model_path"]
