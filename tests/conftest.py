"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from task_tracker.models import SessionContext
from task_tracker.planning import ProjectService, SprintService
from task_tracker.planning_repository import PlanningRepository
from task_tracker.repository import TaskRepository
from task_tracker.services import TaskService
from task_tracker.workflow import STANDARD_WORKFLOW


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tracker.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(db_path)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def planning(db_path: Path, repository: TaskRepository) -> Iterator[PlanningRepository]:
    repo = PlanningRepository(db_path)
    yield repo
    repo.close()


@pytest.fixture()
def session() -> SessionContext:
    return SessionContext()


@pytest.fixture()
def service(
    repository: TaskRepository,
    planning: PlanningRepository,
    session: SessionContext,
) -> TaskService:
    return TaskService(repository, planning, workflow=STANDARD_WORKFLOW, session=session)


@pytest.fixture()
def projects(planning: PlanningRepository, session: SessionContext) -> ProjectService:
    return ProjectService(planning, session=session)


@pytest.fixture()
def sprints(
    planning: PlanningRepository,
    repository: TaskRepository,
    session: SessionContext,
) -> SprintService:
    return SprintService(planning, repository, session=session)
