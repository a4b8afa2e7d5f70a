"""Sprint and project services with explicit session project selection."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace

from task_tracker.errors import NotFoundError, ValidationError
from task_tracker.models import (
    ProjectCreate,
    ProjectUpdate,
    ProjectView,
    SessionContext,
    SprintCreate,
    SprintStatus,
    SprintUpdate,
    SprintView,
    SprintWithTasks,
    TaskListQuery,
)
from task_tracker.planning_repository import PlanningRepository
from task_tracker.repository import TaskRepository

logger = logging.getLogger(__name__)

PROJECT_LIST_MAX_LIMIT = 100


class ProjectService:
    """Project CRUD plus current-project selection on a ``SessionContext``."""

    def __init__(self, repository: PlanningRepository, *, session: SessionContext) -> None:
        self.repository = repository
        self.session = session

    def create_project(self, payload: ProjectCreate) -> ProjectView:
        payload.validate()
        if payload.path:
            self._ensure_path_free(payload.path)
        project = self.repository.create_project(str(uuid.uuid4()), payload)
        logger.info("Project created: %s (%s)", project.project_id, project.name)
        return project

    def get_project(self, project_id: str) -> ProjectView:
        project = self.repository.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def update_project(self, project_id: str, update: ProjectUpdate) -> ProjectView:
        update.validate()
        existing = self.get_project(project_id)
        changes = update.changes()
        new_path = changes.get("path")
        if new_path and new_path != existing.path:
            self._ensure_path_free(new_path)
        if not changes:
            return existing
        project = self.repository.update_project(project_id, changes)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def delete_project(self, project_id: str) -> None:
        self.get_project(project_id)
        if self.session.current_project_id == project_id:
            self.session.current_project_id = None
        if not self.repository.delete_project(project_id):
            raise NotFoundError("Project", project_id)

    def list_projects(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ProjectView]:
        if limit is not None and not 1 <= limit <= PROJECT_LIST_MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {PROJECT_LIST_MAX_LIMIT}")
        if offset is not None and offset < 0:
            raise ValidationError("offset must be >= 0")
        return self.repository.list_projects(limit=limit, offset=offset)

    def count_projects(self) -> int:
        return self.repository.count_projects()

    def find_project_for_directory(self, directory: str) -> ProjectView | None:
        """Exact path match first, then the closest enclosing project path."""

        exact = self.repository.get_project_by_path(directory)
        if exact is not None:
            return exact
        return self.repository.find_project_by_path_prefix(directory)

    def select_project(self, project_id: str) -> ProjectView:
        project = self.get_project(project_id)
        self.session.current_project_id = project.project_id
        return project

    def select_project_by_path(self, directory: str) -> ProjectView | None:
        project = self.find_project_for_directory(directory)
        if project is not None:
            self.session.current_project_id = project.project_id
        return project

    def current_project(self) -> ProjectView | None:
        if self.session.current_project_id is None:
            return None
        return self.repository.get_project(self.session.current_project_id)

    def clear_current_project(self) -> None:
        self.session.current_project_id = None

    def _ensure_path_free(self, path: str) -> None:
        existing = self.repository.get_project_by_path(path)
        if existing is not None:
            raise ValidationError(f'Project with path "{path}" already exists: {existing.name}')


class SprintService:
    """Sprint CRUD, single active sprint and per-sprint task summaries."""

    def __init__(
        self,
        repository: PlanningRepository,
        tasks: TaskRepository,
        *,
        session: SessionContext,
    ) -> None:
        self.repository = repository
        self.tasks = tasks
        self.session = session

    def create_sprint(self, payload: SprintCreate) -> SprintView:
        payload.validate()
        if payload.project_id is None:
            payload = replace(payload, project_id=self.session.current_project_id)
        project_id = payload.project_id
        if project_id is not None and self.repository.get_project(project_id) is None:
            raise NotFoundError("Project", project_id)
        sprint = self.repository.create_sprint(str(uuid.uuid4()), payload)
        logger.info("Sprint created: %s (%s)", sprint.sprint_id, sprint.name)
        return sprint

    def get_sprint(self, sprint_id: str) -> SprintView:
        sprint = self.repository.get_sprint(sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    def update_sprint(self, sprint_id: str, update: SprintUpdate) -> SprintView:
        update.validate()
        existing = self.get_sprint(sprint_id)
        changes = update.changes()
        start_at = changes.get("start_at", existing.start_at)
        end_at = changes.get("end_at", existing.end_at)
        if start_at is not None and end_at is not None and end_at < start_at:
            raise ValidationError("Sprint end_at must not be before start_at")
        project_id = changes.get("project_id")
        if project_id is not None and self.repository.get_project(project_id) is None:
            raise NotFoundError("Project", project_id)
        if changes.get("status") == SprintStatus.ACTIVE:
            changes.pop("status")
            if changes:
                self.repository.update_sprint(sprint_id, changes)
            return self.activate_sprint(sprint_id)
        if not changes:
            return existing
        sprint = self.repository.update_sprint(sprint_id, changes)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    def delete_sprint(self, sprint_id: str) -> None:
        """Delete a sprint; its tasks are kept without a sprint."""

        if not self.repository.delete_sprint(sprint_id):
            raise NotFoundError("Sprint", sprint_id)

    def list_sprints(self, *, include_archived: bool = False) -> list[SprintView]:
        return self.repository.list_sprints(
            include_archived=include_archived,
            project_id=self.session.current_project_id,
        )

    def active_sprint(self) -> SprintView | None:
        return self.repository.active_sprint()

    def activate_sprint(self, sprint_id: str) -> SprintView:
        """Make this the single active sprint."""

        sprint = self.repository.activate_sprint(sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    def sprint_with_tasks(self, sprint_id: str) -> SprintWithTasks:
        sprint = self.get_sprint(sprint_id)
        tasks = self.tasks.list_tasks(
            TaskListQuery(sprint_id=sprint_id, include_archived=True, sort=("created_at",)),
        )
        return SprintWithTasks(
            sprint=sprint,
            tasks=tasks,
            counts=self.repository.sprint_task_counts(sprint_id),
        )
