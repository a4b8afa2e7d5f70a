from __future__ import annotations

import itertools

import allure
import pytest

from task_tracker.models import TaskStatus
from task_tracker.workflow import (
    STANDARD_TRANSITIONS,
    STANDARD_WORKFLOW,
    VERIFICATION_WORKFLOW,
    get_workflow,
)

pytestmark = [
    allure.epic("Workflow"),
    allure.feature("Status Transitions"),
]


@pytest.mark.parametrize("workflow", [STANDARD_WORKFLOW, VERIFICATION_WORKFLOW])
def test_transition_closure_matches_table(workflow) -> None:
    statuses = workflow.statuses()
    for source, target in itertools.product(statuses, statuses):
        result = workflow.can_transition(source, target)
        expected = source != target and target in workflow.transitions[source]
        assert result.valid is expected, (source, target)
        assert result.from_status == source
        assert result.to_status == target
        if not expected:
            assert result.reason


def test_standard_table_is_canonical() -> None:
    assert STANDARD_TRANSITIONS == {
        TaskStatus.PENDING: (TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.ARCHIVED),
        TaskStatus.IN_PROGRESS: (
            TaskStatus.PENDING,
            TaskStatus.COMPLETED,
            TaskStatus.BLOCKED,
            TaskStatus.ARCHIVED,
        ),
        TaskStatus.BLOCKED: (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED),
        TaskStatus.COMPLETED: (TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED),
        TaskStatus.ARCHIVED: (),
    }
    assert TaskStatus.VERIFICATION not in STANDARD_WORKFLOW.statuses()


def test_self_transition_has_distinct_reason() -> None:
    result = STANDARD_WORKFLOW.can_transition(TaskStatus.PENDING, TaskStatus.PENDING)

    assert result.valid is False
    assert result.reason == "Task is already in 'pending' status"


def test_rejection_names_pair_and_allowed_set() -> None:
    result = STANDARD_WORKFLOW.can_transition(TaskStatus.PENDING, TaskStatus.COMPLETED)

    assert result.reason == (
        "Cannot transition from 'pending' to 'completed'. "
        "Allowed: in_progress, blocked, archived"
    )


def test_archived_is_terminal() -> None:
    result = STANDARD_WORKFLOW.can_transition(TaskStatus.ARCHIVED, TaskStatus.PENDING)

    assert STANDARD_WORKFLOW.allowed_transitions(TaskStatus.ARCHIVED) == ()
    assert result.reason is not None
    assert result.reason.endswith("Allowed: none")


def test_verification_workflow_inserts_review_stage() -> None:
    assert VERIFICATION_WORKFLOW.can_transition(
        TaskStatus.IN_PROGRESS,
        TaskStatus.VERIFICATION,
    ).valid
    assert VERIFICATION_WORKFLOW.can_transition(
        TaskStatus.VERIFICATION,
        TaskStatus.COMPLETED,
    ).valid
    assert VERIFICATION_WORKFLOW.can_transition(
        TaskStatus.VERIFICATION,
        TaskStatus.IN_PROGRESS,
    ).valid
    assert not VERIFICATION_WORKFLOW.can_transition(
        TaskStatus.PENDING,
        TaskStatus.VERIFICATION,
    ).valid


def test_get_workflow_resolves_names() -> None:
    assert get_workflow("standard") is STANDARD_WORKFLOW
    assert get_workflow(" Verification ") is VERIFICATION_WORKFLOW
    with pytest.raises(ValueError, match="Unknown workflow"):
        get_workflow("kanban")


def test_describe_returns_plain_strings() -> None:
    table = STANDARD_WORKFLOW.describe()

    assert table["completed"] == ["in_progress", "archived"]
    assert table["archived"] == []
