"""Declarative decision table shared by the reconciler and the script emitter.

Every reconciliation, whether it runs inside ``volumelink`` or inside the
generated unattended script, is driven by :data:`DECISION_TABLE`. Rules are
evaluated in order and the first rule whose conditions all hold wins. A
condition left as ``None`` matches any value.

Message templates may reference ``{name}``, ``{local}`` and ``{target}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import LinkFacts, ReconcileTrigger, ReconciliationAction, StateKind, Step

ALL_TRIGGERS = frozenset(ReconcileTrigger)

_MIGRATE_STEPS = (Step.ENSURE_TARGET, Step.COPY_TREE, Step.REMOVE_TREE, Step.CREATE_LINK)
_QUARANTINE_STEPS = (Step.BACKUP, Step.ENSURE_TARGET, Step.CREATE_LINK)


@dataclass(frozen=True)
class DecisionRule:
    """One row of the decision table.

    Attributes:
        rule_id: Stable identifier used in logs and the generated script.
        mounted: Required drive mount status.
        kind: Required on-disk kind of the local path.
        action: Action reported when the rule applies.
        steps: Ordered filesystem mutations performed by the rule.
        message: Progress message template.
        link_matches: Required value of ``LinkFacts.link_matches``.
        reachable: Required value of ``LinkFacts.reachable``.
        local_empty: Required value of ``LinkFacts.local_empty``.
        target_populated: Required value of ``LinkFacts.target_populated``.
        triggers: Triggers for which the rule is eligible.
    """

    rule_id: str
    mounted: bool
    kind: Optional[StateKind]
    action: ReconciliationAction
    steps: tuple[Step, ...]
    message: str
    link_matches: Optional[bool] = None
    reachable: Optional[bool] = None
    local_empty: Optional[bool] = None
    target_populated: Optional[bool] = None
    triggers: frozenset[ReconcileTrigger] = ALL_TRIGGERS

    def conditions(self) -> list[tuple[str, object]]:
        """Return the non-wildcard conditions as ``(fact, value)`` pairs."""
        pairs: list[tuple[str, object]] = [("mounted", self.mounted)]
        if self.kind is not None:
            pairs.append(("kind", self.kind))
        for fact in ("link_matches", "reachable", "local_empty", "target_populated"):
            value = getattr(self, fact)
            if value is not None:
                pairs.append((fact, value))
        return pairs

    def matches(self, facts: LinkFacts, trigger: ReconcileTrigger) -> bool:
        if trigger not in self.triggers:
            return False
        return all(getattr(facts, fact) == value for fact, value in self.conditions())


DECISION_TABLE: tuple[DecisionRule, ...] = (
    # Drive mounted.
    DecisionRule(
        rule_id="linked",
        mounted=True,
        kind=StateKind.SYMLINK,
        link_matches=True,
        reachable=True,
        action=ReconciliationAction.NO_OP,
        steps=(),
        message="{name} already linked to {target}",
    ),
    DecisionRule(
        rule_id="restore-target",
        mounted=True,
        kind=StateKind.SYMLINK,
        link_matches=True,
        reachable=False,
        action=ReconciliationAction.LINK_DIRECTLY,
        steps=(Step.ENSURE_TARGET,),
        message="{name} link is correct but {target} is missing on the drive, recreating it",
    ),
    DecisionRule(
        rule_id="repoint",
        mounted=True,
        kind=StateKind.SYMLINK,
        link_matches=False,
        action=ReconciliationAction.LINK_DIRECTLY,
        steps=(Step.REMOVE_LINK, Step.ENSURE_TARGET, Step.CREATE_LINK),
        message="Updating {name} symlink to {target}",
    ),
    DecisionRule(
        rule_id="migrate-empty",
        mounted=True,
        kind=StateKind.DIRECTORY,
        local_empty=True,
        action=ReconciliationAction.MIGRATE_THEN_LINK,
        steps=_MIGRATE_STEPS,
        message="Replacing empty {name} directory with a link to {target}",
    ),
    DecisionRule(
        rule_id="migrate",
        mounted=True,
        kind=StateKind.DIRECTORY,
        target_populated=False,
        action=ReconciliationAction.MIGRATE_THEN_LINK,
        steps=_MIGRATE_STEPS,
        message="Copying {name} to external drive at {target}",
        triggers=frozenset({ReconcileTrigger.INITIALIZE}),
    ),
    DecisionRule(
        rule_id="quarantine-directory",
        mounted=True,
        kind=StateKind.DIRECTORY,
        action=ReconciliationAction.QUARANTINE_THEN_LINK,
        steps=_QUARANTINE_STEPS,
        message="Warning: {name} holds local data, backing it up before linking to {target}",
    ),
    DecisionRule(
        rule_id="quarantine-file",
        mounted=True,
        kind=StateKind.FILE,
        action=ReconciliationAction.QUARANTINE_THEN_LINK,
        steps=_QUARANTINE_STEPS,
        message="Warning: {name} path is a file, backing it up before linking to {target}",
    ),
    DecisionRule(
        rule_id="create",
        mounted=True,
        kind=StateKind.MISSING,
        action=ReconciliationAction.LINK_DIRECTLY,
        steps=(Step.ENSURE_TARGET, Step.CREATE_LINK),
        message="Creating symlink for {name} to {target}",
    ),
    # Drive not mounted.
    DecisionRule(
        rule_id="placeholder",
        mounted=False,
        kind=StateKind.SYMLINK,
        reachable=False,
        action=ReconciliationAction.QUARANTINE_THEN_PLACEHOLDER,
        steps=(Step.REMOVE_LINK, Step.CREATE_PLACEHOLDER),
        message="Drive is gone, replacing dangling {name} link with an empty directory",
    ),
    DecisionRule(
        rule_id="still-reachable",
        mounted=False,
        kind=StateKind.SYMLINK,
        reachable=True,
        action=ReconciliationAction.NO_OP,
        steps=(),
        message="{name} link still resolves, leaving it in place",
    ),
    DecisionRule(
        rule_id="offline",
        mounted=False,
        kind=None,
        action=ReconciliationAction.NO_OP,
        steps=(),
        message="Drive not mounted, leaving {name} untouched",
    ),
)


@dataclass(frozen=True)
class Decision:
    """The rule chosen for a set of facts."""

    rule: DecisionRule
    facts: LinkFacts

    @property
    def action(self) -> ReconciliationAction:
        return self.rule.action

    @property
    def steps(self) -> tuple[Step, ...]:
        return self.rule.steps

    def message(self, *, name: str, local: str, target: str) -> str:
        return self.rule.message.format(name=name, local=local, target=target)


def decide(facts: LinkFacts, trigger: ReconcileTrigger) -> Decision:
    """Return the first rule of the table matching ``facts`` under ``trigger``.

    Raises:
        LookupError: If no rule matches; the table is complete, so this
            indicates a programming error.
    """
    for rule in DECISION_TABLE:
        if rule.matches(facts, trigger):
            return Decision(rule=rule, facts=facts)
    raise LookupError(f"No reconciliation rule matches {facts} for trigger {trigger.value}")


def rules_for(trigger: ReconcileTrigger) -> tuple[DecisionRule, ...]:
    """Return the rules eligible under ``trigger``, in evaluation order."""
    return tuple(rule for rule in DECISION_TABLE if trigger in rule.triggers)


def _validate_table(table: tuple[DecisionRule, ...]) -> None:
    seen: set[str] = set()
    for rule in table:
        if rule.rule_id in seen:
            raise ValueError(f"duplicate rule id {rule.rule_id}")
        seen.add(rule.rule_id)
        steps = list(rule.steps)
        if Step.REMOVE_TREE in steps:
            if Step.COPY_TREE not in steps or steps.index(Step.COPY_TREE) > steps.index(Step.REMOVE_TREE):
                raise ValueError(f"rule {rule.rule_id} removes a tree without copying it first")
            if rule.kind is not StateKind.DIRECTORY:
                raise ValueError(f"rule {rule.rule_id} removes a tree that is not a directory")
        if Step.REMOVE_LINK in steps and rule.kind is not StateKind.SYMLINK:
            raise ValueError(f"rule {rule.rule_id} removes a link from a non-symlink")
        if Step.CREATE_LINK in steps and rule.kind in (StateKind.DIRECTORY, StateKind.FILE):
            preserved = Step.BACKUP in steps or Step.REMOVE_TREE in steps
            if not preserved:
                raise ValueError(f"rule {rule.rule_id} links over existing content")
        if rule.mounted is False and any(
            step in steps for step in (Step.ENSURE_TARGET, Step.COPY_TREE, Step.CREATE_LINK)
        ):
            raise ValueError(f"rule {rule.rule_id} touches the drive while it is not mounted")


_validate_table(DECISION_TABLE)


__all__ = ["ALL_TRIGGERS", "DECISION_TABLE", "Decision", "DecisionRule", "decide", "rules_for"]
