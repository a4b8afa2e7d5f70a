"""CLI entrypoint for task-tracker."""

import logging
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import rich_click as click

from task_tracker import __version__
from task_tracker.controllers import (
    DbBackupCommand,
    DbInitCommand,
    DbPathCommand,
    ProjectCreateCommand,
    ProjectListCommand,
    ProjectLocateCommand,
    ProjectRefCommand,
    ProjectSelectCommand,
    ProjectUpdateCommand,
    SprintActiveCommand,
    SprintCreateCommand,
    SprintListCommand,
    SprintRefCommand,
    SprintUpdateCommand,
    TaskBulkCreateCommand,
    TaskBulkTransitionCommand,
    TaskClaimCommand,
    TaskContextCommand,
    TaskCreateCommand,
    TaskDependencyCommand,
    TaskFinishCommand,
    TaskListCommand,
    TaskRefCommand,
    TaskScopeCommand,
    TaskStartCommand,
    TaskTransitionCommand,
    TaskTreeCommand,
    TaskUpdateCommand,
    TaskVerifyCommand,
    TrackerCliController,
    WorkspaceCommand,
)
from task_tracker.errors import TrackerError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TrackerCliController()
_CommandT = TypeVar("_CommandT")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    default=False,
    help="Print machine-readable JSON instead of text.",
)
agent_option = click.option(
    "--agent",
    "agent_id",
    default=None,
    help="Acting agent id. Defaults to TASK_TRACKER_AGENT_ID.",
)
project_option = click.option(
    "--project-id",
    default=None,
    help="Scope to this project. Defaults to TASK_TRACKER_PROJECT_ID.",
)


class TrackerClickException(click.ClickException):
    """ClickException carrying the exit code of the underlying tracker error."""

    def __init__(self, message: str, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@click.group()
@click.version_option(version=__version__, prog_name="task-tracker")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to TASK_TRACKER_LOG_LEVEL or WARNING.",
)
def task_tracker(log_level: str | None) -> None:
    """Multi-agent task tracker CLI."""

    level = (log_level or os.getenv("TASK_TRACKER_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=logging.getLevelNamesMapping().get(level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@task_tracker.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@db_path_option
def db_init(db_path: Path | None) -> None:
    """Create or migrate the database schema."""

    _run(CONTROLLER.init_db, DbInitCommand(db_path=db_path))


@db.command("path")
@db_path_option
@json_option
def db_path_show(db_path: Path | None, output_json: bool) -> None:
    """Show the resolved database path and whether it exists."""

    _run(CONTROLLER.show_db_path, DbPathCommand(db_path=db_path, output_json=output_json))


@db.command("backup")
@db_path_option
@click.option(
    "--output",
    "-o",
    "destination",
    type=click.Path(path_type=Path),
    default=None,
    help="Backup file. Defaults to a timestamped copy next to the database.",
)
@json_option
def db_backup(db_path: Path | None, destination: Path | None, output_json: bool) -> None:
    """Write a consistent copy of the database."""

    _run(
        CONTROLLER.backup_db,
        DbBackupCommand(db_path=db_path, destination=destination, output_json=output_json),
    )


@task_tracker.group()
def task() -> None:
    """Task commands."""


@task.command("create")
@db_path_option
@click.argument("title")
@click.option("--description", "-d", default=None, help="Task description.")
@click.option("--priority", "-p", default=None, help="Priority: p0, p1, p2 or p3.")
@click.option("--type", "task_type", default=None, help="Task type, for example feature.")
@click.option("--parent-id", default=None, help="Parent task id.")
@click.option("--sprint-id", default=None, help="Sprint id.")
@click.option("--project-id", default=None, help="Project id.")
@click.option("--tag", "tags", multiple=True, help="Tag. Can be repeated.")
@click.option("--assignee", default=None, help="Free-text assignee.")
@click.option("--estimate", type=click.IntRange(min=1), default=None, help="Estimate.")
@click.option(
    "--criterion",
    "criteria",
    multiple=True,
    help="Acceptance criterion description. Can be repeated.",
)
@json_option
def task_create(  # noqa: PLR0913
    db_path: Path | None,
    title: str,
    description: str | None,
    priority: str | None,
    task_type: str | None,
    parent_id: str | None,
    sprint_id: str | None,
    project_id: str | None,
    tags: tuple[str, ...],
    assignee: str | None,
    estimate: int | None,
    criteria: tuple[str, ...],
    output_json: bool,
) -> None:
    """Create a task in pending status."""

    _run(
        CONTROLLER.create_task,
        TaskCreateCommand(
            db_path=db_path,
            title=title,
            description=description,
            priority=priority,
            task_type=task_type,
            parent_id=parent_id,
            sprint_id=sprint_id,
            project_id=project_id,
            tags=tags,
            assignee=assignee,
            estimate=estimate,
            criteria=criteria,
            output_json=output_json,
        ),
    )


@task.command("show")
@db_path_option
@click.argument("task_id")
@json_option
def task_show(db_path: Path | None, task_id: str, output_json: bool) -> None:
    """Show one task with its dependencies and criteria."""

    _run(
        CONTROLLER.show_task,
        TaskRefCommand(db_path=db_path, task_id=task_id, output_json=output_json),
    )


@task.command("list")
@db_path_option
@click.option("--status", "statuses", multiple=True, help="Status filter. Can be repeated.")
@click.option("--priority", "priorities", multiple=True, help="Priority filter.")
@click.option("--type", "task_types", multiple=True, help="Task type filter.")
@click.option("--parent-id", default=None, help="Only children of this task.")
@click.option("--sprint-id", default=None, help="Only tasks in this sprint.")
@project_option
@click.option("--assignee", default=None, help="Assignee filter.")
@click.option("--agent", "agent_id", default=None, help="Claiming agent filter.")
@click.option("--tag", "tags", multiple=True, help="Require tag. Can be repeated.")
@click.option(
    "--sort",
    multiple=True,
    help="Sort field, prefix with '-' for descending. Can be repeated.",
)
@click.option("--limit", type=click.IntRange(min=1, max=1000), default=None, help="Max rows.")
@click.option("--offset", type=click.IntRange(min=0), default=None, help="Rows to skip.")
@click.option(
    "--include-archived/--no-include-archived",
    default=False,
    show_default=True,
    help="Include archived tasks.",
)
@json_option
def task_list(  # noqa: PLR0913
    db_path: Path | None,
    statuses: tuple[str, ...],
    priorities: tuple[str, ...],
    task_types: tuple[str, ...],
    parent_id: str | None,
    sprint_id: str | None,
    project_id: str | None,
    assignee: str | None,
    agent_id: str | None,
    tags: tuple[str, ...],
    sort: tuple[str, ...],
    limit: int | None,
    offset: int | None,
    include_archived: bool,
    output_json: bool,
) -> None:
    """List tasks with filters, sorting and pagination."""

    _run(
        CONTROLLER.list_tasks,
        TaskListCommand(
            db_path=db_path,
            statuses=statuses,
            priorities=priorities,
            task_types=task_types,
            parent_id=parent_id,
            sprint_id=sprint_id,
            project_id=project_id,
            assignee=assignee,
            agent_id=agent_id,
            tags=tags,
            sort=sort,
            limit=limit,
            offset=offset,
            include_archived=include_archived,
            output_json=output_json,
        ),
    )


@task.command("update")
@db_path_option
@click.argument("task_id")
@click.option("--title", default=None, help="New title.")
@click.option("--description", "-d", default=None, help="New description.")
@click.option("--status", default=None, help="New status; must be a legal transition.")
@click.option("--priority", "-p", default=None, help="New priority.")
@click.option("--parent-id", default=None, help="New parent task id.")
@click.option("--clear-parent", is_flag=True, default=False, help="Detach from parent.")
@click.option("--sprint-id", default=None, help="New sprint id.")
@click.option("--assignee", default=None, help="New assignee.")
@click.option("--tag", "tags", multiple=True, help="Replace tags. Can be repeated.")
@click.option("--estimate", type=click.IntRange(min=1), default=None, help="New estimate.")
@click.option(
    "--version",
    "version",
    type=click.IntRange(min=1),
    default=None,
    help="Expected current version; the update fails with a conflict if it moved on.",
)
@json_option
def task_update(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    title: str | None,
    description: str | None,
    status: str | None,
    priority: str | None,
    parent_id: str | None,
    clear_parent: bool,
    sprint_id: str | None,
    assignee: str | None,
    tags: tuple[str, ...],
    estimate: int | None,
    version: int | None,
    output_json: bool,
) -> None:
    """Update task fields."""

    _run(
        CONTROLLER.update_task,
        TaskUpdateCommand(
            db_path=db_path,
            task_id=task_id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            parent_id=parent_id,
            clear_parent=clear_parent,
            sprint_id=sprint_id,
            assignee=assignee,
            tags=tags or None,
            estimate=estimate,
            version=version,
            output_json=output_json,
        ),
    )


@task.command("transition")
@db_path_option
@click.argument("task_id")
@click.argument("status")
@json_option
def task_transition(db_path: Path | None, task_id: str, status: str, output_json: bool) -> None:
    """Move a task to another workflow status."""

    _run(
        CONTROLLER.transition_task,
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            status=status,
            output_json=output_json,
        ),
    )


@task.command("transitions")
@db_path_option
@click.argument("task_id")
@json_option
def task_transitions(db_path: Path | None, task_id: str, output_json: bool) -> None:
    """Show statuses reachable from the task's current status."""

    _run(
        CONTROLLER.available_transitions,
        TaskRefCommand(db_path=db_path, task_id=task_id, output_json=output_json),
    )


@task.command("delete")
@db_path_option
@click.argument("task_id")
@json_option
def task_delete(db_path: Path | None, task_id: str, output_json: bool) -> None:
    """Delete a task; children are detached, not deleted."""

    _run(
        CONTROLLER.delete_task,
        TaskRefCommand(db_path=db_path, task_id=task_id, output_json=output_json),
    )


@task.command("claim")
@db_path_option
@click.argument("task_id")
@agent_option
@json_option
def task_claim(
    db_path: Path | None,
    task_id: str,
    agent_id: str | None,
    output_json: bool,
) -> None:
    """Claim a task for an agent and move it to in_progress."""

    _run(
        CONTROLLER.claim_task,
        TaskClaimCommand(
            db_path=db_path,
            task_id=task_id,
            agent_id=agent_id,
            output_json=output_json,
        ),
    )


@task.command("release")
@db_path_option
@click.argument("task_id")
@agent_option
@json_option
def task_release(
    db_path: Path | None,
    task_id: str,
    agent_id: str | None,
    output_json: bool,
) -> None:
    """Release an agent's claim; status is left as is."""

    _run(
        CONTROLLER.release_task,
        TaskClaimCommand(
            db_path=db_path,
            task_id=task_id,
            agent_id=agent_id,
            output_json=output_json,
        ),
    )


@task.command("depends")
@db_path_option
@click.argument("task_id")
@click.argument("depends_on_id")
@json_option
def task_depends(
    db_path: Path | None,
    task_id: str,
    depends_on_id: str,
    output_json: bool,
) -> None:
    """Record that TASK_ID depends on DEPENDS_ON_ID."""

    _run(
        CONTROLLER.add_dependency,
        TaskDependencyCommand(
            db_path=db_path,
            task_id=task_id,
            depends_on_id=depends_on_id,
            output_json=output_json,
        ),
    )


@task.command("undepends")
@db_path_option
@click.argument("task_id")
@click.argument("depends_on_id")
@json_option
def task_undepends(
    db_path: Path | None,
    task_id: str,
    depends_on_id: str,
    output_json: bool,
) -> None:
    """Remove the dependency of TASK_ID on DEPENDS_ON_ID."""

    _run(
        CONTROLLER.remove_dependency,
        TaskDependencyCommand(
            db_path=db_path,
            task_id=task_id,
            depends_on_id=depends_on_id,
            output_json=output_json,
        ),
    )


@task.command("deps")
@db_path_option
@click.argument("task_id")
@json_option
def task_deps(db_path: Path | None, task_id: str, output_json: bool) -> None:
    """Show prerequisites and dependents of a task."""

    _run(
        CONTROLLER.dependencies,
        TaskRefCommand(db_path=db_path, task_id=task_id, output_json=output_json),
    )


@task.command("blocked")
@db_path_option
@project_option
@json_option
def task_blocked(db_path: Path | None, project_id: str | None, output_json: bool) -> None:
    """List tasks waiting on unfinished prerequisites."""

    _run(
        CONTROLLER.blocked_tasks,
        TaskScopeCommand(db_path=db_path, project_id=project_id, output_json=output_json),
    )


@task.command("ready")
@db_path_option
@project_option
@json_option
def task_ready(db_path: Path | None, project_id: str | None, output_json: bool) -> None:
    """List pending tasks whose prerequisites are all finished."""

    _run(
        CONTROLLER.ready_tasks,
        TaskScopeCommand(db_path=db_path, project_id=project_id, output_json=output_json),
    )


@task.command("tree")
@db_path_option
@click.argument("task_id", required=False)
@click.option("--max-depth", type=click.IntRange(min=0), default=None, help="Levels to expand.")
@project_option
@json_option
def task_tree(
    db_path: Path | None,
    task_id: str | None,
    max_depth: int | None,
    project_id: str | None,
    output_json: bool,
) -> None:
    """Show the hierarchy below TASK_ID, or every root task."""

    _run(
        CONTROLLER.tree,
        TaskTreeCommand(
            db_path=db_path,
            task_id=task_id,
            max_depth=max_depth,
            project_id=project_id,
            output_json=output_json,
        ),
    )


@task.command("context-get")
@db_path_option
@click.argument("task_id")
@json_option
def task_context_get(db_path: Path | None, task_id: str, output_json: bool) -> None:
    """Print the task's context blob."""

    _run(
        CONTROLLER.get_context,
        TaskRefCommand(db_path=db_path, task_id=task_id, output_json=output_json),
    )


@task.command("context-set")
@db_path_option
@click.argument("task_id")
@click.argument("payload")
@json_option
def task_context_set(db_path: Path | None, task_id: str, payload: str, output_json: bool) -> None:
    """Replace the task's context with the JSON object PAYLOAD."""

    _run(
        CONTROLLER.write_context,
        TaskContextCommand(
            db_path=db_path,
            task_id=task_id,
            payload=payload,
            output_json=output_json,
        ),
    )


@task.command("context-merge")
@db_path_option
@click.argument("task_id")
@click.argument("payload")
@json_option
def task_context_merge(
    db_path: Path | None,
    task_id: str,
    payload: str,
    output_json: bool,
) -> None:
    """Deep-merge the JSON object PAYLOAD into the task's context."""

    _run(
        CONTROLLER.write_context,
        TaskContextCommand(
            db_path=db_path,
            task_id=task_id,
            payload=payload,
            merge=True,
            output_json=output_json,
        ),
    )


@task.command("bulk-create")
@db_path_option
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@json_option
def task_bulk_create(db_path: Path | None, input_path: Path, output_json: bool) -> None:
    """Create every task in a JSON array file, or none."""

    _run(
        CONTROLLER.bulk_create,
        TaskBulkCreateCommand(db_path=db_path, input_path=input_path, output_json=output_json),
    )


@task.command("bulk-transition")
@db_path_option
@click.argument("status")
@click.argument("task_ids", nargs=-1, required=True)
@click.option(
    "--skip-invalid/--strict",
    default=False,
    show_default=True,
    help="Skip tasks that cannot move instead of aborting the batch.",
)
@json_option
def task_bulk_transition(
    db_path: Path | None,
    status: str,
    task_ids: tuple[str, ...],
    skip_invalid: bool,
    output_json: bool,
) -> None:
    """Move TASK_IDS to STATUS in one transaction."""

    _run(
        CONTROLLER.bulk_transition,
        TaskBulkTransitionCommand(
            db_path=db_path,
            task_ids=task_ids,
            status=status,
            skip_invalid=skip_invalid,
            output_json=output_json,
        ),
    )


@task.command("verify")
@db_path_option
@click.argument("task_id")
@click.argument("criterion_id")
@agent_option
@click.option("--evidence", default=None, help="What proves the criterion holds.")
@json_option
def task_verify(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    criterion_id: str,
    agent_id: str | None,
    evidence: str | None,
    output_json: bool,
) -> None:
    """Mark one acceptance criterion as verified."""

    _run(
        CONTROLLER.verify_criterion,
        TaskVerifyCommand(
            db_path=db_path,
            task_id=task_id,
            criterion_id=criterion_id,
            agent_id=agent_id,
            evidence=evidence,
            output_json=output_json,
        ),
    )


@task.command("start")
@db_path_option
@click.argument("title")
@agent_option
@click.option("--description", "-d", default=None, help="Task description.")
@click.option("--priority", "-p", default=None, help="Priority: p0, p1, p2 or p3.")
@click.option("--project-id", default=None, help="Project id.")
@json_option
def task_start(  # noqa: PLR0913
    db_path: Path | None,
    title: str,
    agent_id: str | None,
    description: str | None,
    priority: str | None,
    project_id: str | None,
    output_json: bool,
) -> None:
    """Create a task already claimed and in progress."""

    _run(
        CONTROLLER.start_task,
        TaskStartCommand(
            db_path=db_path,
            title=title,
            agent_id=agent_id,
            description=description,
            priority=priority,
            project_id=project_id,
            output_json=output_json,
        ),
    )


@task.command("finish")
@db_path_option
@click.argument("task_id")
@agent_option
@click.option("--summary", default=None, help="Completion summary stored in context.")
@json_option
def task_finish(
    db_path: Path | None,
    task_id: str,
    agent_id: str | None,
    summary: str | None,
    output_json: bool,
) -> None:
    """Complete a task the agent is working on."""

    _run(
        CONTROLLER.finish_task,
        TaskFinishCommand(
            db_path=db_path,
            task_id=task_id,
            agent_id=agent_id,
            summary=summary,
            output_json=output_json,
        ),
    )


@task.command("workspace")
@db_path_option
@agent_option
@project_option
@click.option(
    "--include-completed/--no-include-completed",
    default=False,
    show_default=True,
    help="Also list tasks completed in the last 24 hours.",
)
@json_option
def task_workspace(
    db_path: Path | None,
    agent_id: str | None,
    project_id: str | None,
    include_completed: bool,
    output_json: bool,
) -> None:
    """Show claimed, orphaned and pending work for an agent."""

    _run(
        CONTROLLER.workspace,
        WorkspaceCommand(
            db_path=db_path,
            agent_id=agent_id,
            project_id=project_id,
            include_completed=include_completed,
            output_json=output_json,
        ),
    )


@task_tracker.group()
def sprint() -> None:
    """Sprint commands."""


@sprint.command("create")
@db_path_option
@click.argument("name")
@click.option("--project-id", default=None, help="Project id.")
@click.option("--start", "start_at", type=click.DateTime(), default=None, help="Start date.")
@click.option("--end", "end_at", type=click.DateTime(), default=None, help="End date.")
@json_option
def sprint_create(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    project_id: str | None,
    start_at: datetime | None,
    end_at: datetime | None,
    output_json: bool,
) -> None:
    """Create a sprint in planning status."""

    _run(
        CONTROLLER.create_sprint,
        SprintCreateCommand(
            db_path=db_path,
            name=name,
            project_id=project_id,
            start_at=start_at,
            end_at=end_at,
            output_json=output_json,
        ),
    )


@sprint.command("list")
@db_path_option
@project_option
@click.option(
    "--include-archived/--no-include-archived",
    default=False,
    show_default=True,
    help="Include archived sprints.",
)
@json_option
def sprint_list(
    db_path: Path | None,
    project_id: str | None,
    include_archived: bool,
    output_json: bool,
) -> None:
    """List sprints."""

    _run(
        CONTROLLER.list_sprints,
        SprintListCommand(
            db_path=db_path,
            include_archived=include_archived,
            project_id=project_id,
            output_json=output_json,
        ),
    )


@sprint.command("show")
@db_path_option
@click.argument("sprint_id")
@json_option
def sprint_show(db_path: Path | None, sprint_id: str, output_json: bool) -> None:
    """Show a sprint with its tasks and per-status counts."""

    _run(
        CONTROLLER.show_sprint,
        SprintRefCommand(db_path=db_path, sprint_id=sprint_id, output_json=output_json),
    )


@sprint.command("activate")
@db_path_option
@click.argument("sprint_id")
@json_option
def sprint_activate(db_path: Path | None, sprint_id: str, output_json: bool) -> None:
    """Make a sprint the single active sprint."""

    _run(
        CONTROLLER.activate_sprint,
        SprintRefCommand(db_path=db_path, sprint_id=sprint_id, output_json=output_json),
    )


@sprint.command("update")
@db_path_option
@click.argument("sprint_id")
@click.option("--name", "-n", default=None, help="New name.")
@click.option(
    "--status",
    "-s",
    default=None,
    help="New status: planning, active, completed or archived.",
)
@click.option("--start", "start_at", type=click.DateTime(), default=None, help="Start date.")
@click.option("--end", "end_at", type=click.DateTime(), default=None, help="End date.")
@json_option
def sprint_update(  # noqa: PLR0913
    db_path: Path | None,
    sprint_id: str,
    name: str | None,
    status: str | None,
    start_at: datetime | None,
    end_at: datetime | None,
    output_json: bool,
) -> None:
    """Update sprint fields. Setting status `active` deactivates the previous sprint."""

    _run(
        CONTROLLER.update_sprint,
        SprintUpdateCommand(
            db_path=db_path,
            sprint_id=sprint_id,
            name=name,
            status=status,
            start_at=start_at,
            end_at=end_at,
            output_json=output_json,
        ),
    )


@sprint.command("active")
@db_path_option
@json_option
def sprint_active(db_path: Path | None, output_json: bool) -> None:
    """Show the active sprint, if any."""

    _run(CONTROLLER.active_sprint, SprintActiveCommand(db_path=db_path, output_json=output_json))


@sprint.command("delete")
@db_path_option
@click.argument("sprint_id")
@json_option
def sprint_delete(db_path: Path | None, sprint_id: str, output_json: bool) -> None:
    """Delete a sprint; its tasks are kept."""

    _run(
        CONTROLLER.delete_sprint,
        SprintRefCommand(db_path=db_path, sprint_id=sprint_id, output_json=output_json),
    )


@task_tracker.group()
def project() -> None:
    """Project commands."""


@project.command("create")
@db_path_option
@click.argument("name")
@click.option("--path", default=None, help="Working directory owned by the project.")
@click.option("--description", "-d", default=None, help="Project description.")
@json_option
def project_create(
    db_path: Path | None,
    name: str,
    path: str | None,
    description: str | None,
    output_json: bool,
) -> None:
    """Create a project."""

    _run(
        CONTROLLER.create_project,
        ProjectCreateCommand(
            db_path=db_path,
            name=name,
            path=path,
            description=description,
            output_json=output_json,
        ),
    )


@project.command("list")
@db_path_option
@click.option("--limit", type=click.IntRange(min=1, max=100), default=None, help="Max rows.")
@click.option("--offset", type=click.IntRange(min=0), default=None, help="Rows to skip.")
@json_option
def project_list(
    db_path: Path | None,
    limit: int | None,
    offset: int | None,
    output_json: bool,
) -> None:
    """List projects by name."""

    _run(
        CONTROLLER.list_projects,
        ProjectListCommand(db_path=db_path, limit=limit, offset=offset, output_json=output_json),
    )


@project.command("show")
@db_path_option
@click.argument("project_id")
@json_option
def project_show(db_path: Path | None, project_id: str, output_json: bool) -> None:
    """Show a project."""

    _run(
        CONTROLLER.show_project,
        ProjectRefCommand(db_path=db_path, project_id=project_id, output_json=output_json),
    )


@project.command("update")
@db_path_option
@click.argument("project_id")
@click.option("--name", "-n", default=None, help="New name.")
@click.option("--path", default=None, help="New working directory; `none` clears it.")
@click.option("--description", "-d", default=None, help="New description; `none` clears it.")
@json_option
def project_update(  # noqa: PLR0913
    db_path: Path | None,
    project_id: str,
    name: str | None,
    path: str | None,
    description: str | None,
    output_json: bool,
) -> None:
    """Update project fields."""

    _run(
        CONTROLLER.update_project,
        ProjectUpdateCommand(
            db_path=db_path,
            project_id=project_id,
            name=name,
            path=path,
            description=description,
            output_json=output_json,
        ),
    )


@project.command("select")
@db_path_option
@click.argument("project_id", required=False)
@click.option("--path", default=None, help="Select the project owning this directory.")
@json_option
def project_select(
    db_path: Path | None,
    project_id: str | None,
    path: str | None,
    output_json: bool,
) -> None:
    """Resolve a project and print the `TASK_TRACKER_PROJECT_ID` export that selects it."""

    _run(
        CONTROLLER.select_project,
        ProjectSelectCommand(
            db_path=db_path,
            project_id=project_id,
            path=path,
            output_json=output_json,
        ),
    )


@project.command("current")
@db_path_option
@project_option
@click.option("--cwd", default=None, help="Directory for detection. Defaults to the cwd.")
@json_option
def project_current(
    db_path: Path | None,
    project_id: str | None,
    cwd: str | None,
    output_json: bool,
) -> None:
    """Show the selected project, falling back to detection from the directory."""

    _run(
        CONTROLLER.current_project,
        ProjectLocateCommand(
            db_path=db_path,
            cwd=cwd,
            project_id=project_id,
            output_json=output_json,
        ),
    )


@project.command("detect")
@db_path_option
@click.option("--cwd", default=None, help="Directory to match. Defaults to the cwd.")
@json_option
def project_detect(db_path: Path | None, cwd: str | None, output_json: bool) -> None:
    """Find the project whose path is, or encloses, a directory."""

    _run(
        CONTROLLER.detect_project,
        ProjectLocateCommand(db_path=db_path, cwd=cwd, output_json=output_json),
    )


@project.command("delete")
@db_path_option
@click.argument("project_id")
@json_option
def project_delete(db_path: Path | None, project_id: str, output_json: bool) -> None:
    """Delete a project; its tasks and sprints are kept."""

    _run(
        CONTROLLER.delete_project,
        ProjectRefCommand(db_path=db_path, project_id=project_id, output_json=output_json),
    )


def _run(handler: Callable[[_CommandT], list[str]], command: _CommandT) -> None:
    try:
        lines = handler(command)
    except TrackerError as error:
        raise TrackerClickException(error.message, int(error.exit_code)) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_tracker()
