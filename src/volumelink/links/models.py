"""Data models shared by the link reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class StateKind(str, Enum):
    """On-disk kinds a managed local path can be in."""

    SYMLINK = "symlink"
    DIRECTORY = "directory"
    FILE = "file"
    MISSING = "missing"


class ReconciliationAction(str, Enum):
    """Decision output for one managed link and mount status."""

    LINK_DIRECTLY = "link_directly"
    MIGRATE_THEN_LINK = "migrate_then_link"
    QUARANTINE_THEN_LINK = "quarantine_then_link"
    QUARANTINE_THEN_PLACEHOLDER = "quarantine_then_placeholder"
    NO_OP = "no_op"


class ReconcileTrigger(str, Enum):
    """What caused a reconciliation pass."""

    INITIALIZE = "initialize"
    MOUNT = "mount"
    UNMOUNT = "unmount"
    STARTUP = "startup"
    UNATTENDED = "unattended"


class Step(str, Enum):
    """Filesystem mutations a decision may perform, in the order listed by a rule."""

    BACKUP = "backup"
    REMOVE_LINK = "remove_link"
    ENSURE_TARGET = "ensure_target"
    COPY_TREE = "copy_tree"
    REMOVE_TREE = "remove_tree"
    CREATE_LINK = "create_link"
    CREATE_PLACEHOLDER = "create_placeholder"


class PathState(BaseModel):
    """Classification of a filesystem path.

    Attributes:
        kind: Which of symlink, directory, file, or missing the path is.
        target: Literal link target when ``kind`` is ``symlink``.
    """

    model_config = ConfigDict(frozen=True)

    kind: StateKind
    target: Optional[str] = None

    @classmethod
    def symlink(cls, target: str) -> "PathState":
        return cls(kind=StateKind.SYMLINK, target=target)

    @classmethod
    def directory(cls) -> "PathState":
        return cls(kind=StateKind.DIRECTORY)

    @classmethod
    def file(cls) -> "PathState":
        return cls(kind=StateKind.FILE)

    @classmethod
    def missing(cls) -> "PathState":
        return cls(kind=StateKind.MISSING)


class ManagedLink(BaseModel):
    """One local directory relocated onto the drive.

    Attributes:
        name: Short identifier used in progress messages and logs.
        local_path: Path the consuming application reads and writes.
        drive_subpath: Location of the data relative to the drive's mount path.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    local_path: Path
    drive_subpath: PurePosixPath

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("link name must not be empty")
        return value

    @field_validator("local_path")
    @classmethod
    def _expand_local_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("drive_subpath")
    @classmethod
    def _validate_subpath(cls, value: PurePosixPath) -> PurePosixPath:
        if value.is_absolute():
            raise ValueError("drive_subpath must be relative to the drive mount path")
        if ".." in value.parts:
            raise ValueError("drive_subpath must not contain '..'")
        if not value.parts:
            raise ValueError("drive_subpath must not be empty")
        return value

    def expected_target(self, mount_path: Path) -> Path:
        """Return where the link should point for the given mount path."""
        return Path(mount_path) / self.drive_subpath


class Drive(BaseModel):
    """Removable drive metadata.

    Attributes:
        id: Identifier that stays stable across mount cycles.
        display_name: Human-readable volume name.
        mount_path: Current mount location, ``None`` while detached.
        is_external: Whether the drive is attached externally.
        is_removable: Whether the media is removable.
    """

    id: str
    display_name: str
    mount_path: Optional[Path] = None
    is_external: bool = True
    is_removable: bool = True

    @property
    def is_mounted(self) -> bool:
        return self.mount_path is not None


@dataclass(frozen=True, slots=True)
class LinkFacts:
    """Facts about a managed link that the decision table reads.

    Attributes:
        mounted: Whether the drive is currently attached.
        kind: Current on-disk kind of the local path.
        link_matches: Symlink target equals the expected drive target.
        reachable: Symlink target resolves to an existing path.
        local_empty: Local path is a directory with no entries.
        target_populated: Drive target exists and has entries.
    """

    mounted: bool
    kind: StateKind
    link_matches: bool = False
    reachable: bool = False
    local_empty: bool = False
    target_populated: bool = False


@dataclass(slots=True)
class ReconcileOutcome:
    """Result of one reconciliation pass over a managed link.

    Attributes:
        link: The managed link that was reconciled.
        trigger: What started the pass.
        action: Action chosen by the decision table.
        before: Path state observed before any mutation.
        after: Path state observed once the pass finished or stopped.
        messages: Progress messages emitted during the pass.
        backup_path: Backup created by a quarantine step, if any.
        error: Failure that stopped the pass, if any.
    """

    link: ManagedLink
    trigger: ReconcileTrigger
    action: ReconciliationAction
    before: PathState
    after: Optional[PathState] = None
    messages: list[str] = field(default_factory=list)
    backup_path: Optional[Path] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


__all__ = [
    "StateKind",
    "ReconciliationAction",
    "ReconcileTrigger",
    "Step",
    "PathState",
    "ManagedLink",
    "Drive",
    "LinkFacts",
    "ReconcileOutcome",
]
