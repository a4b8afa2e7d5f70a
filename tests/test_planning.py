from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from task_tracker.errors import NotFoundError, ValidationError
from task_tracker.models import (
    ProjectCreate,
    ProjectUpdate,
    SprintCreate,
    SprintStatus,
    SprintUpdate,
    TaskCreate,
    TaskListQuery,
    TaskStatus,
    TaskUpdate,
)

pytestmark = [
    allure.epic("Planning"),
    allure.feature("Projects & Sprints"),
]


def test_project_crud(projects) -> None:
    project = projects.create_project(ProjectCreate(name="api", path="/work/api"))

    assert projects.get_project(project.project_id).name == "api"
    renamed = projects.update_project(project.project_id, ProjectUpdate(name="backend"))
    assert renamed.name == "backend"
    assert projects.count_projects() == 1

    projects.delete_project(project.project_id)
    with pytest.raises(NotFoundError, match="Project not found"):
        projects.get_project(project.project_id)


def test_duplicate_project_path_is_rejected(projects) -> None:
    projects.create_project(ProjectCreate(name="api", path="/work/api"))

    with pytest.raises(ValidationError, match='Project with path "/work/api" already exists'):
        projects.create_project(ProjectCreate(name="other", path="/work/api"))


def test_projects_are_listed_by_name(projects) -> None:
    for name in ("zeta", "alpha", "mid"):
        projects.create_project(ProjectCreate(name=name))

    assert [item.name for item in projects.list_projects()] == ["alpha", "mid", "zeta"]
    assert [item.name for item in projects.list_projects(limit=1, offset=1)] == ["mid"]
    with pytest.raises(ValidationError, match="limit must be between 1 and 100"):
        projects.list_projects(limit=101)


def test_select_project_by_enclosing_path(projects) -> None:
    outer = projects.create_project(ProjectCreate(name="mono", path="/work/mono"))
    inner = projects.create_project(ProjectCreate(name="svc", path="/work/mono/services/svc"))

    assert projects.select_project_by_path("/work/mono/services/svc/src").project_id == (
        inner.project_id
    )
    assert projects.select_project_by_path("/work/mono/docs").project_id == outer.project_id
    assert projects.current_project().project_id == outer.project_id
    assert projects.find_project_for_directory("/work/monorepo") is None

    projects.clear_current_project()
    assert projects.current_project() is None


def test_session_project_scopes_tasks(projects, service) -> None:
    first = projects.create_project(ProjectCreate(name="first"))
    second = projects.create_project(ProjectCreate(name="second"))

    projects.select_project(first.project_id)
    in_first = service.create_task(TaskCreate(title="first task"))
    explicit = service.create_task(TaskCreate(title="second task", project_id=second.project_id))

    assert in_first.project_id == first.project_id
    assert [task.title for task in service.list_tasks()] == ["first task"]
    assert service.count_tasks() == 1

    projects.select_project(second.project_id)
    assert [task.task_id for task in service.list_tasks()] == [explicit.task_id]

    projects.clear_current_project()
    assert service.count_tasks() == 2


def test_delete_project_unassigns_tasks_and_clears_selection(projects, service) -> None:
    project = projects.create_project(ProjectCreate(name="gone"))
    projects.select_project(project.project_id)
    task = service.create_task(TaskCreate(title="kept"))

    projects.delete_project(project.project_id)

    assert projects.current_project() is None
    kept = service.get_task(task.task_id)
    assert kept.project_id is None
    assert kept.version == 2


def test_unknown_project_reference_is_not_found(service) -> None:
    with pytest.raises(NotFoundError, match="Project not found: ghost"):
        service.create_task(TaskCreate(title="t", project_id="ghost"))


def test_sprint_lifecycle(sprints, service) -> None:
    sprint = sprints.create_sprint(SprintCreate(name="S1"))
    assert sprint.status == SprintStatus.PLANNING

    task = service.create_task(TaskCreate(title="t", sprint_id=sprint.sprint_id))
    other = service.create_task(TaskCreate(title="u"))
    service.update_task(other.task_id, TaskUpdate(sprint_id=sprint.sprint_id))
    service.transition_task(other.task_id, TaskStatus.IN_PROGRESS)

    summary = sprints.sprint_with_tasks(sprint.sprint_id)
    assert [item.task_id for item in summary.tasks] == [task.task_id, other.task_id]
    assert summary.counts == {"pending": 1, "in_progress": 1}

    sprints.delete_sprint(sprint.sprint_id)
    assert service.get_task(task.task_id).sprint_id is None
    assert service.get_task(task.task_id).version == 2
    with pytest.raises(NotFoundError, match="Sprint not found"):
        sprints.get_sprint(sprint.sprint_id)


def test_only_one_sprint_is_active(sprints) -> None:
    first = sprints.create_sprint(SprintCreate(name="S1"))
    second = sprints.create_sprint(SprintCreate(name="S2"))

    sprints.activate_sprint(first.sprint_id)
    sprints.activate_sprint(second.sprint_id)

    assert sprints.active_sprint().sprint_id == second.sprint_id
    assert sprints.get_sprint(first.sprint_id).status == SprintStatus.PLANNING
    with pytest.raises(NotFoundError):
        sprints.activate_sprint("ghost")


def test_sprint_dates_are_validated(sprints) -> None:
    start = datetime(2026, 10, 1, tzinfo=UTC)
    end = datetime(2026, 10, 14, tzinfo=UTC)

    with pytest.raises(ValidationError, match="end_at must not be before start_at"):
        sprints.create_sprint(SprintCreate(name="bad", start_at=end, end_at=start))

    sprint = sprints.create_sprint(SprintCreate(name="ok", start_at=start, end_at=end))
    assert sprint.start_at == start
    with pytest.raises(ValidationError, match="end_at must not be before start_at"):
        sprints.update_sprint(
            sprint.sprint_id,
            SprintUpdate(end_at=datetime(2026, 9, 1, tzinfo=UTC)),
        )


def test_sprints_follow_session_project(projects, sprints) -> None:
    project = projects.create_project(ProjectCreate(name="p"))
    unscoped = sprints.create_sprint(SprintCreate(name="global"))
    projects.select_project(project.project_id)
    scoped = sprints.create_sprint(SprintCreate(name="scoped"))

    assert scoped.project_id == project.project_id
    assert [item.sprint_id for item in sprints.list_sprints()] == [scoped.sprint_id]

    projects.clear_current_project()
    listed = {item.sprint_id for item in sprints.list_sprints()}
    assert listed == {unscoped.sprint_id, scoped.sprint_id}

    sprints.update_sprint(unscoped.sprint_id, SprintUpdate(status=SprintStatus.ARCHIVED))
    assert [item.sprint_id for item in sprints.list_sprints()] == [scoped.sprint_id]
    assert len(sprints.list_sprints(include_archived=True)) == 2


def test_archived_tasks_are_hidden_unless_requested(service) -> None:
    task = service.create_task(TaskCreate(title="old"))
    service.transition_task(task.task_id, TaskStatus.ARCHIVED)

    assert service.list_tasks() == []
    assert [item.task_id for item in service.list_tasks(TaskListQuery(include_archived=True))] == [
        task.task_id
    ]


def test_activating_through_update_keeps_one_active_sprint(sprints) -> None:
    first = sprints.create_sprint(SprintCreate(name="S1"))
    second = sprints.create_sprint(SprintCreate(name="S2"))
    sprints.activate_sprint(first.sprint_id)

    updated = sprints.update_sprint(
        second.sprint_id,
        SprintUpdate(name="S2b", status=SprintStatus.ACTIVE),
    )

    assert updated.name == "S2b"
    assert updated.status == SprintStatus.ACTIVE
    assert sprints.active_sprint().sprint_id == second.sprint_id
    assert sprints.get_sprint(first.sprint_id).status == SprintStatus.PLANNING
