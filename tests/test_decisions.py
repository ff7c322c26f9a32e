"""Tests for the reconciliation decision table."""

import itertools

import pytest

from volumelink.links import (
    DECISION_TABLE,
    LinkFacts,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    Step,
    decide,
    rules_for,
)


def _all_facts():
    for mounted, kind, link_matches, reachable, local_empty, target_populated in itertools.product(
        (True, False), StateKind, (True, False), (True, False), (True, False), (True, False)
    ):
        yield LinkFacts(
            mounted=mounted,
            kind=kind,
            link_matches=link_matches,
            reachable=reachable,
            local_empty=local_empty,
            target_populated=target_populated,
        )


@pytest.mark.parametrize("trigger", list(ReconcileTrigger))
def test_table_covers_every_combination(trigger: ReconcileTrigger) -> None:
    for facts in _all_facts():
        decision = decide(facts, trigger)
        assert decision.rule in DECISION_TABLE


def test_unmounted_decisions_never_touch_the_drive() -> None:
    drive_steps = {Step.ENSURE_TARGET, Step.COPY_TREE, Step.CREATE_LINK}
    for facts in _all_facts():
        if facts.mounted:
            continue
        for trigger in ReconcileTrigger:
            assert not drive_steps & set(decide(facts, trigger).steps)


def test_correct_link_is_a_no_op() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.SYMLINK, link_matches=True, reachable=True)

    assert decide(facts, ReconcileTrigger.MOUNT).action is ReconciliationAction.NO_OP


def test_stale_link_is_repointed() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.SYMLINK, link_matches=False, reachable=True)

    decision = decide(facts, ReconcileTrigger.MOUNT)

    assert decision.action is ReconciliationAction.LINK_DIRECTLY
    assert decision.steps == (Step.REMOVE_LINK, Step.ENSURE_TARGET, Step.CREATE_LINK)


def test_missing_path_links_directly() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.MISSING)

    decision = decide(facts, ReconcileTrigger.STARTUP)

    assert decision.action is ReconciliationAction.LINK_DIRECTLY
    assert decision.rule.rule_id == "create"


def test_initialize_migrates_onto_an_empty_drive() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.DIRECTORY, target_populated=False)

    decision = decide(facts, ReconcileTrigger.INITIALIZE)

    assert decision.action is ReconciliationAction.MIGRATE_THEN_LINK
    assert decision.steps.index(Step.COPY_TREE) < decision.steps.index(Step.REMOVE_TREE)


def test_initialize_quarantines_when_drive_already_has_data() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.DIRECTORY, target_populated=True)

    decision = decide(facts, ReconcileTrigger.INITIALIZE)

    assert decision.action is ReconciliationAction.QUARANTINE_THEN_LINK
    assert decision.steps[0] is Step.BACKUP


@pytest.mark.parametrize("trigger", [ReconcileTrigger.MOUNT, ReconcileTrigger.UNATTENDED, ReconcileTrigger.STARTUP])
def test_event_triggers_quarantine_local_data(trigger: ReconcileTrigger) -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.DIRECTORY, target_populated=False)

    assert decide(facts, trigger).action is ReconciliationAction.QUARANTINE_THEN_LINK


def test_empty_local_directory_is_always_migrated() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.DIRECTORY, local_empty=True, target_populated=True)

    for trigger in ReconcileTrigger:
        assert decide(facts, trigger).action is ReconciliationAction.MIGRATE_THEN_LINK


def test_dangling_link_becomes_placeholder_when_unmounted() -> None:
    facts = LinkFacts(mounted=False, kind=StateKind.SYMLINK, reachable=False)

    decision = decide(facts, ReconcileTrigger.UNMOUNT)

    assert decision.action is ReconciliationAction.QUARANTINE_THEN_PLACEHOLDER
    assert decision.steps == (Step.REMOVE_LINK, Step.CREATE_PLACEHOLDER)


@pytest.mark.parametrize("kind", [StateKind.DIRECTORY, StateKind.FILE, StateKind.MISSING])
def test_unmounted_non_links_are_left_alone(kind: StateKind) -> None:
    facts = LinkFacts(mounted=False, kind=kind)

    assert decide(facts, ReconcileTrigger.UNMOUNT).action is ReconciliationAction.NO_OP


def test_unattended_rules_exclude_initialize_only_migration() -> None:
    rule_ids = [rule.rule_id for rule in rules_for(ReconcileTrigger.UNATTENDED)]

    assert "migrate" not in rule_ids
    assert rule_ids[0] == "linked"
    assert rule_ids[-1] == "offline"


def test_message_templates_render() -> None:
    facts = LinkFacts(mounted=True, kind=StateKind.MISSING)

    message = decide(facts, ReconcileTrigger.MOUNT).message(name="models", local="/l", target="/t/models")

    assert message == "Creating symlink for models to /t/models"
