"""Controllers for task tracker CLI commands."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from task_tracker.config import PROJECT_ID_ENV, Settings
from task_tracker.errors import NotFoundError, StorageError, ValidationError
from task_tracker.models import (
    UNSET,
    Priority,
    ProjectCreate,
    ProjectUpdate,
    ProjectView,
    SessionContext,
    SprintCreate,
    SprintStatus,
    SprintUpdate,
    TaskCreate,
    TaskListQuery,
    TaskStatus,
    TaskTreeNode,
    TaskType,
    TaskUpdate,
    TaskView,
)
from task_tracker.planning import ProjectService, SprintService
from task_tracker.planning_repository import PlanningRepository
from task_tracker.repository import TaskRepository
from task_tracker.services import TaskService
from task_tracker.storage.common import utc_now
from task_tracker.workflow import get_workflow


@dataclass(slots=True)
class DbInitCommand:
    """CLI input for schema initialization."""

    db_path: Path | None


@dataclass(slots=True)
class DbPathCommand:
    db_path: Path | None
    output_json: bool = False


@dataclass(slots=True)
class DbBackupCommand:
    """CLI input for database backup."""

    db_path: Path | None
    destination: Path | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task creation."""

    db_path: Path | None
    title: str
    description: str | None = None
    priority: str | None = None
    task_type: str | None = None
    parent_id: str | None = None
    sprint_id: str | None = None
    project_id: str | None = None
    tags: tuple[str, ...] = ()
    assignee: str | None = None
    estimate: int | None = None
    criteria: tuple[str, ...] = ()
    output_json: bool = False


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task."""

    db_path: Path | None
    task_id: str
    output_json: bool = False


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    statuses: tuple[str, ...] = ()
    priorities: tuple[str, ...] = ()
    task_types: tuple[str, ...] = ()
    parent_id: str | None = None
    sprint_id: str | None = None
    project_id: str | None = None
    assignee: str | None = None
    agent_id: str | None = None
    tags: tuple[str, ...] = ()
    sort: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    include_archived: bool = False
    output_json: bool = False


@dataclass(slots=True)
class TaskUpdateCommand:
    """CLI input for partial task update; ``None`` means untouched."""

    db_path: Path | None
    task_id: str
    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    parent_id: str | None = None
    clear_parent: bool = False
    sprint_id: str | None = None
    assignee: str | None = None
    tags: tuple[str, ...] | None = None
    estimate: int | None = None
    version: int | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskTransitionCommand:
    """CLI input for a single workflow transition."""

    db_path: Path | None
    task_id: str
    status: str
    output_json: bool = False


@dataclass(slots=True)
class TaskClaimCommand:
    """CLI input for claim/release."""

    db_path: Path | None
    task_id: str
    agent_id: str | None
    output_json: bool = False


@dataclass(slots=True)
class TaskDependencyCommand:
    """CLI input for dependency edge edits."""

    db_path: Path | None
    task_id: str
    depends_on_id: str
    output_json: bool = False


@dataclass(slots=True)
class TaskScopeCommand:
    """CLI input for derived task sets, optionally scoped to a project."""

    db_path: Path | None
    project_id: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskTreeCommand:
    """CLI input for hierarchy display; no task id means every root."""

    db_path: Path | None
    task_id: str | None
    max_depth: int | None = None
    project_id: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskContextCommand:
    """CLI input for context overwrite or deep merge."""

    db_path: Path | None
    task_id: str
    payload: str
    merge: bool = False
    output_json: bool = False


@dataclass(slots=True)
class TaskBulkCreateCommand:
    """CLI input for bulk creation from a JSON array file."""

    db_path: Path | None
    input_path: Path
    output_json: bool = False


@dataclass(slots=True)
class TaskBulkTransitionCommand:
    """CLI input for bulk transition."""

    db_path: Path | None
    task_ids: tuple[str, ...]
    status: str
    skip_invalid: bool = False
    output_json: bool = False


@dataclass(slots=True)
class TaskVerifyCommand:
    """CLI input for acceptance criterion verification."""

    db_path: Path | None
    task_id: str
    criterion_id: str
    agent_id: str | None
    evidence: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskStartCommand:
    """CLI input for create-and-claim."""

    db_path: Path | None
    title: str
    agent_id: str | None
    description: str | None = None
    priority: str | None = None
    project_id: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class TaskFinishCommand:
    """CLI input for completing a task with an optional summary."""

    db_path: Path | None
    task_id: str
    agent_id: str | None
    summary: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class WorkspaceCommand:
    """CLI input for the agent workspace snapshot."""

    db_path: Path | None
    agent_id: str | None
    project_id: str | None = None
    include_completed: bool = False
    output_json: bool = False


@dataclass(slots=True)
class SprintCreateCommand:
    """CLI input for sprint creation."""

    db_path: Path | None
    name: str
    project_id: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    output_json: bool = False


@dataclass(slots=True)
class SprintRefCommand:
    """CLI input for commands addressing one sprint."""

    db_path: Path | None
    sprint_id: str
    output_json: bool = False


@dataclass(slots=True)
class SprintUpdateCommand:
    """CLI input for sprint updates; ``None`` leaves a field unchanged."""

    db_path: Path | None
    sprint_id: str
    name: str | None = None
    status: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    output_json: bool = False


@dataclass(slots=True)
class SprintActiveCommand:
    db_path: Path | None
    output_json: bool = False


@dataclass(slots=True)
class SprintListCommand:
    """CLI input for sprint listing."""

    db_path: Path | None
    include_archived: bool = False
    project_id: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ProjectCreateCommand:
    """CLI input for project creation."""

    db_path: Path | None
    name: str
    path: str | None = None
    description: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ProjectRefCommand:
    """CLI input for commands addressing one project."""

    db_path: Path | None
    project_id: str
    output_json: bool = False


@dataclass(slots=True)
class ProjectUpdateCommand:
    """CLI input for project updates; ``none`` clears path or description."""

    db_path: Path | None
    project_id: str
    name: str | None = None
    path: str | None = None
    description: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ProjectSelectCommand:
    """CLI input for selecting a project by id or by directory."""

    db_path: Path | None
    project_id: str | None = None
    path: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ProjectLocateCommand:
    """CLI input for resolving the project that owns a directory."""

    db_path: Path | None
    cwd: str | None = None
    project_id: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ProjectListCommand:
    """CLI input for project listing."""

    db_path: Path | None
    limit: int | None = None
    offset: int | None = None
    output_json: bool = False


@dataclass(slots=True)
class Services:
    """Service set bound to one database and one session."""

    settings: Settings
    tasks: TaskService
    sprints: SprintService
    projects: ProjectService


class TrackerCliController:
    """Translates CLI commands into service calls and renders output lines."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _services(settings):
            pass
        return [f"Database ready: {settings.db_path}"]

    def show_db_path(self, command: DbPathCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        exists = settings.db_path.exists()
        if command.output_json:
            return [_to_json({"path": str(settings.db_path), "exists": exists})]
        return [f"Database: {settings.db_path}", f"Exists: {'yes' if exists else 'no'}"]

    def backup_db(self, command: DbBackupCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        if not settings.db_path.exists():
            raise StorageError(
                f"Database does not exist: {settings.db_path}. Run 'task-tracker db init' first.",
            )
        destination = command.destination or settings.db_path.with_name(
            f"{settings.db_path.name}.backup-{utc_now().strftime('%Y%m%dT%H%M%S')}",
        )
        with _services(settings) as services:
            services.tasks.repository.backup(destination)
        if command.output_json:
            return [_to_json({"source": str(settings.db_path), "destination": str(destination)})]
        return [f"Backup written: {destination}"]

    # Tasks

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        payload = TaskCreate(
            title=command.title,
            description=command.description,
            priority=_parse_enum(Priority, command.priority, "priority"),
            task_type=_parse_enum(TaskType, command.task_type, "task type"),
            parent_id=command.parent_id,
            sprint_id=command.sprint_id,
            project_id=command.project_id,
            tags=list(command.tags),
            assignee=command.assignee,
            estimate=command.estimate,
            acceptance_criteria=list(command.criteria),
        )
        with _services(_load_settings(command.db_path)) as services:
            task = services.tasks.create_task(payload)
        if command.output_json:
            return [_to_json(task)]
        return [f"Task created: {task.task_id}", *_task_lines(task)]

    def show_task(self, command: TaskRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            task = services.tasks.get_task(command.task_id)
            dependencies = services.tasks.dependencies_of(command.task_id)
        if command.output_json:
            return [_to_json({"task": task, "depends_on": dependencies})]
        lines = _task_lines(task)
        lines.append(f"Depends on: {', '.join(dependencies) or '-'}")
        for criterion in task.acceptance_criteria:
            mark = "x" if criterion.verified else " "
            lines.append(f"  [{mark}] {criterion.criterion_id} {criterion.description}")
        return lines

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        query = TaskListQuery(
            statuses=tuple(_parse_enum(TaskStatus, item, "status") for item in command.statuses),
            priorities=tuple(
                _parse_enum(Priority, item, "priority") for item in command.priorities
            ),
            task_types=tuple(
                _parse_enum(TaskType, item, "task type") for item in command.task_types
            ),
            parent_id=command.parent_id,
            sprint_id=command.sprint_id,
            project_id=command.project_id,
            assignee=command.assignee,
            agent_id=command.agent_id,
            tags=command.tags,
            sort=command.sort,
            limit=command.limit,
            offset=command.offset,
            include_archived=command.include_archived,
        )
        with _services(_load_settings(command.db_path)) as services:
            tasks = services.tasks.list_tasks(query)
        return _render_tasks(tasks, as_json=command.output_json)

    def update_task(self, command: TaskUpdateCommand) -> list[str]:
        update = TaskUpdate(version=command.version)
        if command.title is not None:
            update.title = command.title
        if command.description is not None:
            update.description = command.description
        if command.status is not None:
            update.status = _parse_enum(TaskStatus, command.status, "status")
        if command.priority is not None:
            update.priority = _parse_enum(Priority, command.priority, "priority")
        if command.clear_parent:
            update.parent_id = None
        elif command.parent_id is not None:
            update.parent_id = command.parent_id
        if command.sprint_id is not None:
            update.sprint_id = command.sprint_id
        if command.assignee is not None:
            update.assignee = command.assignee
        if command.tags is not None:
            update.tags = list(command.tags)
        if command.estimate is not None:
            update.estimate = command.estimate
        with _services(_load_settings(command.db_path)) as services:
            task = services.tasks.update_task(command.task_id, update)
        if command.output_json:
            return [_to_json(task)]
        return [f"Task updated: {task.task_id} version={task.version}"]

    def transition_task(self, command: TaskTransitionCommand) -> list[str]:
        to_status = _parse_enum(TaskStatus, command.status, "status")
        with _services(_load_settings(command.db_path)) as services:
            result = services.tasks.transition_task(command.task_id, to_status)
        if command.output_json:
            return [_to_json(result)]
        return [
            f"Task {result.task.task_id}: {result.transition.from_status.value} -> "
            f"{result.transition.to_status.value} version={result.task.version}",
        ]

    def available_transitions(self, command: TaskRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            available = services.tasks.available_transitions(command.task_id)
        if command.output_json:
            return [_to_json(available)]
        allowed = ", ".join(status.value for status in available.allowed) or "none"
        return [f"Current: {available.current.value}", f"Allowed: {allowed}"]

    def delete_task(self, command: TaskRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            services.tasks.delete_task(command.task_id)
        if command.output_json:
            return [_to_json({"deleted": command.task_id})]
        return [f"Task deleted: {command.task_id}"]

    def claim_task(self, command: TaskClaimCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        with _services(settings) as services:
            result = services.tasks.claim_task(command.task_id, agent_id)
        if command.output_json:
            return [_to_json(result)]
        return [result.message, *_task_lines(result.task)]

    def release_task(self, command: TaskClaimCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        with _services(settings) as services:
            result = services.tasks.release_task(command.task_id, agent_id)
        if command.output_json:
            return [_to_json(result)]
        return [result.message]

    def add_dependency(self, command: TaskDependencyCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            edge = services.tasks.add_dependency(command.task_id, command.depends_on_id)
        if command.output_json:
            return [_to_json(edge)]
        return [f"Dependency added: {edge.task_id} depends on {edge.depends_on_id}"]

    def remove_dependency(self, command: TaskDependencyCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            removed = services.tasks.remove_dependency(command.task_id, command.depends_on_id)
        if command.output_json:
            return [_to_json({"removed": removed})]
        if not removed:
            return [f"No dependency: {command.task_id} -> {command.depends_on_id}"]
        return [f"Dependency removed: {command.task_id} -> {command.depends_on_id}"]

    def dependencies(self, command: TaskRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            depends_on = services.tasks.dependencies_of(command.task_id)
            dependents = services.tasks.dependents_of(command.task_id)
        if command.output_json:
            return [_to_json({"depends_on": depends_on, "dependents": dependents})]
        return [
            f"Depends on: {', '.join(depends_on) or '-'}",
            f"Dependents: {', '.join(dependents) or '-'}",
        ]

    def blocked_tasks(self, command: TaskScopeCommand) -> list[str]:
        with _services(_load_settings(command.db_path), command.project_id) as services:
            tasks = services.tasks.blocked_tasks()
        return _render_tasks(tasks, as_json=command.output_json)

    def ready_tasks(self, command: TaskScopeCommand) -> list[str]:
        with _services(_load_settings(command.db_path), command.project_id) as services:
            tasks = services.tasks.ready_tasks()
        return _render_tasks(tasks, as_json=command.output_json)

    def tree(self, command: TaskTreeCommand) -> list[str]:
        with _services(_load_settings(command.db_path), command.project_id) as services:
            if command.task_id is not None:
                roots = [services.tasks.task_tree(command.task_id, command.max_depth)]
            else:
                roots = services.tasks.full_tree(command.max_depth)
        if command.output_json:
            return [_to_json(roots)]
        lines: list[str] = []
        for root in roots:
            lines.extend(_tree_lines(root, depth=0))
        return lines or ["No tasks."]

    def get_context(self, command: TaskRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            context = services.tasks.get_context(command.task_id)
        return [json.dumps(context, ensure_ascii=False, indent=None if command.output_json else 2)]

    def write_context(self, command: TaskContextCommand) -> list[str]:
        payload = _parse_json_object(command.payload, "context")
        with _services(_load_settings(command.db_path)) as services:
            if command.merge:
                task = services.tasks.merge_context(command.task_id, payload)
            else:
                task = services.tasks.set_context(command.task_id, payload)
        if command.output_json:
            return [_to_json(task)]
        return [f"Context saved: {task.task_id} version={task.version}"]

    def bulk_create(self, command: TaskBulkCreateCommand) -> list[str]:
        try:
            raw = json.loads(command.input_path.read_text("utf-8"))
        except json.JSONDecodeError as error:
            raise ValidationError(f"Invalid bulk create JSON: {error}") from error
        if not isinstance(raw, list):
            raise ValidationError("Bulk create input must be a JSON array of task objects")
        payloads = [_task_create_from_json(item) for item in raw]
        with _services(_load_settings(command.db_path)) as services:
            tasks = services.tasks.create_tasks_bulk(payloads)
        if command.output_json:
            return [_to_json(tasks)]
        return [f"Tasks created: {len(tasks)}", *(_task_line(task) for task in tasks)]

    def bulk_transition(self, command: TaskBulkTransitionCommand) -> list[str]:
        to_status = _parse_enum(TaskStatus, command.status, "status")
        with _services(_load_settings(command.db_path)) as services:
            result = services.tasks.transition_tasks_bulk(
                list(command.task_ids),
                to_status,
                skip_invalid=command.skip_invalid,
            )
        if command.output_json:
            return [_to_json(result)]
        lines = [f"Updated: {len(result.updated)} Failed: {len(result.failed)}"]
        lines.extend(_task_line(task) for task in result.updated)
        lines.extend(f"  failed {item.task_id}: {item.reason}" for item in result.failed)
        return lines

    def verify_criterion(self, command: TaskVerifyCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        with _services(settings) as services:
            result = services.tasks.verify_criterion(
                command.task_id,
                command.criterion_id,
                agent_id,
                command.evidence,
            )
        if command.output_json:
            return [_to_json(result)]
        return [
            f"Criterion verified: {result.criterion.criterion_id}",
            f"Progress: {result.verified}/{result.total} all_verified={result.all_verified}",
        ]

    def start_task(self, command: TaskStartCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        payload = TaskCreate(
            title=command.title,
            description=command.description,
            priority=_parse_enum(Priority, command.priority, "priority"),
            project_id=command.project_id,
        )
        with _services(settings) as services:
            task = services.tasks.start_task(payload, agent_id)
        if command.output_json:
            return [_to_json(task)]
        return [f"Task started: {task.task_id}", *_task_lines(task)]

    def finish_task(self, command: TaskFinishCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        with _services(settings) as services:
            task = services.tasks.finish_task(command.task_id, agent_id, command.summary)
        if command.output_json:
            return [_to_json(task)]
        return [f"Task finished: {task.task_id} version={task.version}"]

    def workspace(self, command: WorkspaceCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        agent_id = _resolve_agent(command.agent_id, settings)
        with _services(settings, command.project_id) as services:
            snapshot = services.tasks.workspace_context(
                agent_id,
                include_completed=command.include_completed,
            )
        if command.output_json:
            return [_to_json(snapshot)]
        project = snapshot.current_project
        lines = [
            f"Agent: {snapshot.agent_id}",
            f"Project: {project.name if project is not None else '-'}",
            f"My tasks: {len(snapshot.my_tasks)}",
            *(_task_line(task) for task in snapshot.my_tasks),
            f"Orphaned: {len(snapshot.orphaned_tasks)}",
            *(_task_line(task) for task in snapshot.orphaned_tasks),
            f"Pending: {len(snapshot.pending_tasks)}",
            *(_task_line(task) for task in snapshot.pending_tasks),
        ]
        if snapshot.recently_completed is not None:
            lines.append(f"Recently completed: {len(snapshot.recently_completed)}")
            lines.extend(_task_line(task) for task in snapshot.recently_completed)
        lines.extend(f"Suggested: {action}" for action in snapshot.suggested_actions)
        return lines

    # Sprints

    def create_sprint(self, command: SprintCreateCommand) -> list[str]:
        payload = SprintCreate(
            name=command.name,
            project_id=command.project_id,
            start_at=command.start_at,
            end_at=command.end_at,
        )
        with _services(_load_settings(command.db_path)) as services:
            sprint = services.sprints.create_sprint(payload)
        if command.output_json:
            return [_to_json(sprint)]
        return [f"Sprint created: {sprint.sprint_id} name={sprint.name}"]

    def list_sprints(self, command: SprintListCommand) -> list[str]:
        with _services(_load_settings(command.db_path), command.project_id) as services:
            sprints = services.sprints.list_sprints(include_archived=command.include_archived)
        if command.output_json:
            return [_to_json(sprints)]
        lines = [f"Sprints: {len(sprints)}"]
        lines.extend(
            f"  {sprint.sprint_id} [{sprint.status.value}] {sprint.name}" for sprint in sprints
        )
        return lines

    def show_sprint(self, command: SprintRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            summary = services.sprints.sprint_with_tasks(command.sprint_id)
        if command.output_json:
            return [_to_json(summary)]
        counts = " ".join(f"{status}={count}" for status, count in sorted(summary.counts.items()))
        return [
            f"Sprint: {summary.sprint.sprint_id}",
            f"Name: {summary.sprint.name}",
            f"Status: {summary.sprint.status.value}",
            f"Counts: {counts or '-'}",
            *(_task_line(task) for task in summary.tasks),
        ]

    def activate_sprint(self, command: SprintRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            sprint = services.sprints.activate_sprint(command.sprint_id)
        if command.output_json:
            return [_to_json(sprint)]
        return [f"Sprint activated: {sprint.sprint_id} name={sprint.name}"]

    def update_sprint(self, command: SprintUpdateCommand) -> list[str]:
        update = SprintUpdate()
        if command.name is not None:
            update.name = command.name
        if command.status is not None:
            update.status = _parse_enum(SprintStatus, command.status, "sprint status")
        if command.start_at is not None:
            update.start_at = command.start_at
        if command.end_at is not None:
            update.end_at = command.end_at
        with _services(_load_settings(command.db_path)) as services:
            sprint = services.sprints.update_sprint(command.sprint_id, update)
        if command.output_json:
            return [_to_json(sprint)]
        return [f"Sprint updated: {sprint.sprint_id} [{sprint.status.value}] name={sprint.name}"]

    def active_sprint(self, command: SprintActiveCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            sprint = services.sprints.active_sprint()
        if command.output_json:
            return [_to_json({"active": sprint})]
        if sprint is None:
            return ["Active sprint: -"]
        return [f"Active sprint: {sprint.sprint_id} name={sprint.name}"]

    def delete_sprint(self, command: SprintRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            services.sprints.delete_sprint(command.sprint_id)
        if command.output_json:
            return [_to_json({"deleted": command.sprint_id})]
        return [f"Sprint deleted: {command.sprint_id}"]

    # Projects

    def create_project(self, command: ProjectCreateCommand) -> list[str]:
        payload = ProjectCreate(
            name=command.name,
            path=command.path,
            description=command.description,
        )
        with _services(_load_settings(command.db_path)) as services:
            project = services.projects.create_project(payload)
        if command.output_json:
            return [_to_json(project)]
        return [f"Project created: {project.project_id} name={project.name}"]

    def list_projects(self, command: ProjectListCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            projects = services.projects.list_projects(
                limit=command.limit,
                offset=command.offset,
            )
        if command.output_json:
            return [_to_json(projects)]
        lines = [f"Projects: {len(projects)}"]
        lines.extend(
            f"  {project.project_id} {project.name} path={project.path or '-'}"
            for project in projects
        )
        return lines

    def show_project(self, command: ProjectRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            project = services.projects.get_project(command.project_id)
        if command.output_json:
            return [_to_json(project)]
        return _project_lines(project)

    def update_project(self, command: ProjectUpdateCommand) -> list[str]:
        update = ProjectUpdate()
        if command.name is not None:
            update.name = command.name
        if command.path is not None:
            update.path = None if command.path == "none" else command.path
        if command.description is not None:
            update.description = None if command.description == "none" else command.description
        with _services(_load_settings(command.db_path)) as services:
            project = services.projects.update_project(command.project_id, update)
        if command.output_json:
            return [_to_json(project)]
        return [f"Project updated: {project.project_id} name={project.name}"]

    def select_project(self, command: ProjectSelectCommand) -> list[str]:
        """Resolve a project and print the variable that keeps it selected."""

        if (command.project_id is None) == (command.path is None):
            raise ValidationError("Pass either a project id or --path")
        with _services(_load_settings(command.db_path)) as services:
            if command.project_id is not None:
                project = services.projects.select_project(command.project_id)
            else:
                project = services.projects.select_project_by_path(command.path)
                if project is None:
                    raise NotFoundError("Project for path", command.path)
        if command.output_json:
            return [_to_json({"project": project, "env": {PROJECT_ID_ENV: project.project_id}})]
        return [*_project_lines(project), f"export {PROJECT_ID_ENV}={project.project_id}"]

    def current_project(self, command: ProjectLocateCommand) -> list[str]:
        """Session project when one is set, otherwise the project owning ``cwd``."""

        source = "session"
        with _services(_load_settings(command.db_path), command.project_id) as services:
            project = services.projects.current_project()
            if project is None:
                source = "detected"
                project = services.projects.find_project_for_directory(
                    command.cwd or os.getcwd(),
                )
        if command.output_json:
            return [_to_json({"project": project, "source": source if project else None})]
        if project is None:
            return ["Current project: -"]
        return [*_project_lines(project), f"Source: {source}"]

    def detect_project(self, command: ProjectLocateCommand) -> list[str]:
        cwd = command.cwd or os.getcwd()
        with _services(_load_settings(command.db_path)) as services:
            project = services.projects.find_project_for_directory(cwd)
        if command.output_json:
            return [_to_json({"detected": project is not None, "project": project, "cwd": cwd})]
        if project is None:
            return [f"No project owns {cwd}"]
        return _project_lines(project)

    def delete_project(self, command: ProjectRefCommand) -> list[str]:
        with _services(_load_settings(command.db_path)) as services:
            services.projects.delete_project(command.project_id)
        if command.output_json:
            return [_to_json({"deleted": command.project_id})]
        return [f"Project deleted: {command.project_id}"]


def _load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _services(settings: Settings, project_id: str | None = None) -> Iterator[Services]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    planning = PlanningRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    session = SessionContext(current_project_id=project_id or settings.session.project_id)
    coordination = settings.coordination
    try:
        yield Services(
            settings=settings,
            tasks=TaskService(
                repository,
                planning,
                workflow=get_workflow(coordination.workflow),
                session=session,
                bulk_max_items=coordination.bulk_max_items,
                context_max_bytes=coordination.context_max_bytes,
                tree_max_depth=coordination.tree_max_depth,
            ),
            sprints=SprintService(planning, repository, session=session),
            projects=ProjectService(planning, session=session),
        )
    finally:
        planning.close()
        repository.close()


def _resolve_agent(agent_id: str | None, settings: Settings) -> str:
    resolved = agent_id or settings.session.agent_id
    if not resolved:
        raise ValidationError("Agent id is required: pass --agent or set TASK_TRACKER_AGENT_ID")
    return resolved


def _parse_enum(enum_cls: type[Enum], value: str | None, label: str) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(str(item.value) for item in enum_cls)
        raise ValidationError(f"Invalid {label}: {value!r}. Expected one of {allowed}.") from error


def _parse_json_object(raw: str, label: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValidationError(f"Invalid {label} JSON: {error}") from error
    if not isinstance(value, dict):
        raise ValidationError(f"{label.capitalize()} must be a JSON object")
    return value


def _task_create_from_json(item: Any) -> TaskCreate:
    if not isinstance(item, dict) or not isinstance(item.get("title"), str):
        raise ValidationError("Each bulk item must be an object with a string title")
    criteria = item.get("acceptance_criteria") or []
    if not isinstance(criteria, list) or not all(isinstance(text, str) for text in criteria):
        raise ValidationError("Acceptance criteria must be a list of strings")
    return TaskCreate(
        title=item["title"],
        description=item.get("description"),
        priority=_parse_enum(Priority, item.get("priority"), "priority"),
        task_type=_parse_enum(TaskType, item.get("task_type"), "task type"),
        parent_id=item.get("parent_id"),
        sprint_id=item.get("sprint_id"),
        project_id=item.get("project_id"),
        tags=item.get("tags") or [],
        assignee=item.get("assignee"),
        estimate=item.get("estimate"),
        context=item.get("context"),
        metadata=item.get("metadata"),
        acceptance_criteria=criteria,
    )


def _render_tasks(tasks: list[TaskView], *, as_json: bool) -> list[str]:
    if as_json:
        return [_to_json(tasks)]
    return [f"Tasks: {len(tasks)}", *(_task_line(task) for task in tasks)]


def _task_line(task: TaskView) -> str:
    priority = task.priority.value if task.priority is not None else "-"
    return (
        f"  {task.task_id} [{task.status.value}] {priority} v{task.version} "
        f"agent={task.agent_id or '-'} {task.title}"
    )


def _task_lines(task: TaskView) -> list[str]:
    return [
        f"Task: {task.task_id}",
        f"Title: {task.title}",
        f"Status: {task.status.value}",
        f"Priority: {task.priority.value if task.priority is not None else '-'}",
        f"Type: {task.task_type.value if task.task_type is not None else '-'}",
        f"Parent: {task.parent_id or '-'}",
        f"Agent: {task.agent_id or '-'}",
        f"Tags: {', '.join(task.tags) or '-'}",
        f"Version: {task.version}",
        f"Updated: {task.updated_at.isoformat()}",
    ]


def _project_lines(project: ProjectView) -> list[str]:
    return [
        f"Project: {project.project_id}",
        f"Name: {project.name}",
        f"Path: {project.path or '-'}",
        f"Description: {project.description or '-'}",
    ]


def _tree_lines(node: TaskTreeNode, *, depth: int) -> list[str]:
    task = node.task
    lines = [f"{'  ' * depth}- {task.title} [{task.status.value}] ({task.task_id})"]
    for child in node.children:
        lines.extend(_tree_lines(child, depth=depth + 1))
    return lines


def _to_json(value: Any) -> str:
    return json.dumps(_plain(value), ensure_ascii=False, sort_keys=True)


def _plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    if value is UNSET:
        return None
    return value

