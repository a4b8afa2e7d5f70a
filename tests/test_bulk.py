from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

import allure
import pytest
from sqlalchemy import event

from task_tracker.errors import StorageError, ValidationError
from task_tracker.models import TaskCreate, TaskStatus, TaskUpdate
from task_tracker.services import TaskService

pytestmark = [
    allure.epic("Task Tracking"),
    allure.feature("Bulk Operations"),
]


@contextmanager
def fail_on_statement(engine, prefix: str, occurrence: int) -> Iterator[None]:
    """Raise a driver error on the ``occurrence``-th statement starting with ``prefix``."""

    seen = 0

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        nonlocal seen
        if statement.lstrip().upper().startswith(prefix):
            seen += 1
            if seen == occurrence:
                raise sqlite3.OperationalError("injected failure")

    event.listen(engine, "before_cursor_execute", before_cursor_execute)
    try:
        yield
    finally:
        event.remove(engine, "before_cursor_execute", before_cursor_execute)


def test_bulk_create_returns_tasks_in_input_order(service) -> None:
    tasks = service.create_tasks_bulk(
        [TaskCreate(title="one"), TaskCreate(title="two"), TaskCreate(title="three")],
    )

    assert [task.title for task in tasks] == ["one", "two", "three"]
    assert all(task.version == 1 and task.status == TaskStatus.PENDING for task in tasks)
    assert service.count_tasks() == 3


def test_bulk_create_is_all_or_nothing(repository, service) -> None:
    payloads = [TaskCreate(title=f"task {index}") for index in range(3)]

    with fail_on_statement(repository.engine, "INSERT INTO TASKS", 2), pytest.raises(StorageError):
        service.create_tasks_bulk(payloads)

    assert service.count_tasks() == 0


def test_bulk_create_validates_every_item_first(service) -> None:
    with pytest.raises(ValidationError, match="Title must be"):
        service.create_tasks_bulk([TaskCreate(title="ok"), TaskCreate(title="")])

    assert service.count_tasks() == 0


def test_bulk_size_is_bounded(repository, planning) -> None:
    service = TaskService(repository, planning, bulk_max_items=2)

    with pytest.raises(ValidationError, match="Bulk create limited to 2 tasks"):
        service.create_tasks_bulk([TaskCreate(title=str(index)) for index in range(3)])
    with pytest.raises(ValidationError, match="Bulk transition limited to 2 tasks"):
        service.transition_tasks_bulk(["a", "b", "c"], TaskStatus.ARCHIVED)


def test_empty_bulk_input_is_a_no_op(service) -> None:
    task = service.create_task(TaskCreate(title="untouched"))

    assert service.create_tasks_bulk([]) == []
    assert service.update_tasks_bulk([], TaskUpdate(assignee="dana")) == []
    empty = service.transition_tasks_bulk([], TaskStatus.ARCHIVED)

    assert empty.updated == []
    assert empty.failed == []
    assert service.count_tasks() == 1
    assert service.get_task(task.task_id).version == 1


def test_bulk_update_applies_fields_and_skips_missing(service) -> None:
    first, second = service.create_tasks_bulk([TaskCreate(title="a"), TaskCreate(title="b")])

    updated = service.update_tasks_bulk(
        [first.task_id, "ghost", second.task_id],
        TaskUpdate(assignee="dana", tags=["backend"]),
    )

    assert [task.task_id for task in updated] == [first.task_id, second.task_id]
    assert all(task.assignee == "dana" and task.version == 2 for task in updated)
    assert all(task.tags == ["backend"] for task in updated)


def test_bulk_update_is_all_or_nothing(repository, service) -> None:
    tasks = service.create_tasks_bulk([TaskCreate(title=str(index)) for index in range(3)])
    ids = [task.task_id for task in tasks]

    with fail_on_statement(repository.engine, "UPDATE TASKS", 2), pytest.raises(StorageError):
        service.update_tasks_bulk(ids, TaskUpdate(assignee="dana"))

    for task in service.repository.get_tasks(ids):
        assert task.assignee is None
        assert task.version == 1


def test_bulk_update_rejects_status_and_empty_changes(service) -> None:
    task = service.create_task(TaskCreate(title="a"))

    with pytest.raises(ValidationError, match="use bulk transition"):
        service.update_tasks_bulk([task.task_id], TaskUpdate(status=TaskStatus.ARCHIVED))
    with pytest.raises(ValidationError, match="No fields to update"):
        service.update_tasks_bulk([task.task_id], TaskUpdate())


def test_bulk_update_rejects_parent_cycle(service) -> None:
    root = service.create_task(TaskCreate(title="root"))
    child = service.create_task(TaskCreate(title="child", parent_id=root.task_id))

    with pytest.raises(ValidationError, match="Circular parent reference detected"):
        service.update_tasks_bulk([root.task_id], TaskUpdate(parent_id=child.task_id))
    assert service.get_task(root.task_id).parent_id is None


def test_strict_bulk_transition_rolls_back(service) -> None:
    first = service.create_task(TaskCreate(title="a"))
    archived = service.create_task(TaskCreate(title="b"))
    third = service.create_task(TaskCreate(title="c"))
    service.transition_task(archived.task_id, TaskStatus.ARCHIVED)

    with pytest.raises(ValidationError, match="from 'archived' to 'in_progress'"):
        service.transition_tasks_bulk(
            [first.task_id, archived.task_id, third.task_id],
            TaskStatus.IN_PROGRESS,
        )

    assert service.get_task(first.task_id).status == TaskStatus.PENDING
    assert service.get_task(third.task_id).status == TaskStatus.PENDING


def test_skip_invalid_bulk_transition_reports_failures(service) -> None:
    first = service.create_task(TaskCreate(title="a"))
    archived = service.create_task(TaskCreate(title="b"))
    service.transition_task(archived.task_id, TaskStatus.ARCHIVED)

    result = service.transition_tasks_bulk(
        [first.task_id, archived.task_id, "ghost"],
        TaskStatus.IN_PROGRESS,
        skip_invalid=True,
    )

    assert [task.task_id for task in result.updated] == [first.task_id]
    assert result.updated[0].status == TaskStatus.IN_PROGRESS
    assert result.updated[0].version == 2
    assert [failure.task_id for failure in result.failed] == [archived.task_id, "ghost"]
    assert "Cannot transition from 'archived'" in result.failed[0].reason
    assert result.failed[1].reason == "Task not found: ghost"
