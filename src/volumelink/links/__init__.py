"""Link reconciliation engine."""

from .copier import BulkCopier
from .decisions import DECISION_TABLE, Decision, DecisionRule, decide, rules_for
from .errors import (
    BackupFailedError,
    CopyFailedError,
    LinkError,
    PathIsRootOrEmptyError,
    PlaceholderFailedError,
    RemoveFailedError,
    SymlinkFailedError,
    VolumeNotMountedError,
)
from .inspector import classify, describe, is_reachable
from .models import (
    Drive,
    LinkFacts,
    ManagedLink,
    PathState,
    ReconcileOutcome,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    Step,
)
from .reconciler import LinkLockArena, LinkReconciler, backup_path_for, ensure_safe_path

__all__ = [
    "BulkCopier",
    "DECISION_TABLE",
    "Decision",
    "DecisionRule",
    "decide",
    "rules_for",
    "LinkError",
    "VolumeNotMountedError",
    "PathIsRootOrEmptyError",
    "CopyFailedError",
    "RemoveFailedError",
    "SymlinkFailedError",
    "BackupFailedError",
    "PlaceholderFailedError",
    "classify",
    "describe",
    "is_reachable",
    "Drive",
    "LinkFacts",
    "ManagedLink",
    "PathState",
    "ReconcileOutcome",
    "ReconcileTrigger",
    "ReconciliationAction",
    "StateKind",
    "Step",
    "LinkLockArena",
    "LinkReconciler",
    "backup_path_for",
    "ensure_safe_path",
]
