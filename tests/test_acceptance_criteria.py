from __future__ import annotations

import allure
import pytest

from task_tracker.errors import NotFoundError, ValidationError
from task_tracker.models import EVIDENCE_MAX_CHARS, TaskCreate

pytestmark = [
    allure.epic("Task Tracking"),
    allure.feature("Acceptance Criteria"),
]


def test_criteria_are_created_unverified(service) -> None:
    task = service.create_task(
        TaskCreate(title="login", acceptance_criteria=["form renders", "token stored"]),
    )

    assert [item.description for item in task.acceptance_criteria] == [
        "form renders",
        "token stored",
    ]
    assert all(not item.verified for item in task.acceptance_criteria)
    assert len({item.criterion_id for item in task.acceptance_criteria}) == 2

    status = service.verification_status(task.task_id)
    assert status.has_criteria is True
    assert (status.verified, status.total, status.all_verified) == (0, 2, False)


def test_verify_criterion_records_agent_and_evidence(service) -> None:
    task = service.create_task(TaskCreate(title="login", acceptance_criteria=["a", "b"]))
    first, second = task.acceptance_criteria

    result = service.verify_criterion(task.task_id, first.criterion_id, "agent-a", "ran tests")

    assert result.criterion.verified is True
    assert result.criterion.verified_by == "agent-a"
    assert result.criterion.evidence == "ran tests"
    assert result.criterion.verified_at is not None
    assert (result.verified, result.total, result.all_verified) == (1, 2, False)
    assert result.task.version == 2

    result = service.verify_criterion(task.task_id, second.criterion_id, "agent-b")
    assert result.all_verified is True
    assert service.verification_status(task.task_id).all_verified is True


def test_verify_is_idempotent(service) -> None:
    task = service.create_task(TaskCreate(title="login", acceptance_criteria=["a"]))
    criterion_id = task.acceptance_criteria[0].criterion_id

    service.verify_criterion(task.task_id, criterion_id, "agent-a", "first")
    again = service.verify_criterion(task.task_id, criterion_id, "agent-b", "second")

    assert again.task.version == 2
    assert again.criterion.verified_by == "agent-a"
    assert again.criterion.evidence == "first"


def test_verify_errors(service) -> None:
    bare = service.create_task(TaskCreate(title="bare"))
    with pytest.raises(ValidationError, match="Task has no acceptance criteria defined"):
        service.verify_criterion(bare.task_id, "any", "agent-a")

    task = service.create_task(TaskCreate(title="login", acceptance_criteria=["a"]))
    with pytest.raises(NotFoundError, match="Criterion not found: nope"):
        service.verify_criterion(task.task_id, "nope", "agent-a")

    criterion_id = task.acceptance_criteria[0].criterion_id
    with pytest.raises(ValidationError, match="Evidence exceeds"):
        service.verify_criterion(
            task.task_id,
            criterion_id,
            "agent-a",
            "x" * (EVIDENCE_MAX_CHARS + 1),
        )


def test_task_without_criteria_reports_no_criteria(service) -> None:
    task = service.create_task(TaskCreate(title="plain"))

    status = service.verification_status(task.task_id)

    assert status.has_criteria is False
    assert status.total == 0
    assert status.criteria == []
