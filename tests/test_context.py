from __future__ import annotations

import allure
import pytest

from task_tracker.context import deep_merge, ensure_context_size
from task_tracker.errors import NotFoundError, ValidationError
from task_tracker.models import TaskCreate, TaskUpdate

pytestmark = [
    allure.epic("Task Tracking"),
    allure.feature("Context & JSON Fields"),
]


def test_deep_merge_recurses_into_mappings() -> None:
    target = {"a": {"x": 1, "y": 2}, "list": [1, 2], "keep": True}
    source = {"a": {"y": 3, "z": 4}, "list": [3], "new": "value"}

    merged = deep_merge(target, source)

    assert merged == {
        "a": {"x": 1, "y": 3, "z": 4},
        "list": [3],
        "keep": True,
        "new": "value",
    }
    assert target["a"] == {"x": 1, "y": 2}


def test_deep_merge_replaces_scalars_with_mappings() -> None:
    assert deep_merge({"a": 1}, {"a": {"b": 2}}) == {"a": {"b": 2}}
    assert deep_merge({"a": {"b": 2}}, {"a": None}) == {"a": None}


def test_ensure_context_size_reports_limit() -> None:
    ensure_context_size({"note": "x" * 100}, max_bytes=200)

    with pytest.raises(ValidationError, match="Context exceeds 1KB limit"):
        ensure_context_size({"note": "x" * 2_000}, max_bytes=1_024)


def test_set_and_get_context(service) -> None:
    task = service.create_task(TaskCreate(title="ctx", context={"seed": 1}))

    updated = service.set_context(task.task_id, {"plan": ["a", "b"]})

    assert updated.version == 2
    assert service.get_context(task.task_id) == {"plan": ["a", "b"]}


def test_merge_context_keeps_existing_keys(service) -> None:
    task = service.create_task(TaskCreate(title="ctx", context={"files": {"a.py": "new"}}))

    merged = service.merge_context(task.task_id, {"files": {"b.py": "edited"}, "step": 2})

    assert merged.context == {"files": {"a.py": "new", "b.py": "edited"}, "step": 2}
    assert merged.version == 2


def test_context_limit_applies_to_every_write_path(service) -> None:
    big = {"blob": "x" * 70_000}
    with pytest.raises(ValidationError, match="Context exceeds 64KB limit"):
        service.create_task(TaskCreate(title="big", context=big))

    task = service.create_task(TaskCreate(title="ctx", context={"blob": "x" * 40_000}))
    with pytest.raises(ValidationError, match="Context exceeds 64KB limit"):
        service.set_context(task.task_id, big)
    with pytest.raises(ValidationError, match="Context exceeds 64KB limit"):
        service.update_task(task.task_id, TaskUpdate(context=big))
    with pytest.raises(ValidationError, match="Merged context exceeds 64KB limit"):
        service.merge_context(task.task_id, {"more": "y" * 40_000})

    assert service.get_task(task.task_id).version == 1


def test_context_of_missing_task(service) -> None:
    with pytest.raises(NotFoundError):
        service.get_context("ghost")
    with pytest.raises(NotFoundError):
        service.merge_context("ghost", {"a": 1})


def test_non_object_json_fields_are_rejected_before_storage(service) -> None:
    with pytest.raises(ValidationError, match="Context must be a JSON object"):
        service.create_task(TaskCreate(title="bad", context=[1, 2]))
    with pytest.raises(ValidationError, match="Metadata must be a JSON object"):
        service.create_task(TaskCreate(title="bad", metadata="text"))
    with pytest.raises(ValidationError, match="Tags must be a list of strings"):
        service.create_task(TaskCreate(title="bad", tags="urgent"))

    task = service.create_task(TaskCreate(title="ok"))
    with pytest.raises(ValidationError, match="Context must be a JSON object"):
        service.update_task(task.task_id, TaskUpdate(context=[1, 2]))
    with pytest.raises(ValidationError, match="Metadata must be a JSON object"):
        service.update_task(task.task_id, TaskUpdate(metadata=[1]))
    with pytest.raises(ValidationError, match="Context must be a JSON object"):
        service.set_context(task.task_id, ["a"])
    with pytest.raises(ValidationError, match="Context must be a JSON object"):
        service.merge_context(task.task_id, ["a"])

    assert [item.task_id for item in service.list_tasks()] == [task.task_id]
    assert service.get_task(task.task_id).version == 1
