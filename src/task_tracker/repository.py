"""Task and dependency persistence with version-checked conditional writes."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from task_tracker.dependencies import adjacency, would_create_dependency_cycle
from task_tracker.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    TrackerError,
    ValidationError,
)
from task_tracker.hierarchy import would_create_cycle
from task_tracker.models import (
    FINISHED_STATUSES,
    AcceptanceCriterion,
    BulkFailure,
    BulkTransitionResult,
    ClaimResult,
    DependencyView,
    Priority,
    TaskCreate,
    TaskListQuery,
    TaskStatus,
    TaskType,
    TaskView,
    TransitionResult,
)
from task_tracker.storage.alembic_runner import upgrade_head
from task_tracker.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_tracker.storage.tables import TaskDependencyRow, TaskRow

logger = logging.getLogger(__name__)

TransitionCheck = Callable[[TaskStatus, TaskStatus], TransitionResult]

SORTABLE_FIELDS = frozenset(
    {"created_at", "updated_at", "title", "status", "priority", "due_at", "version", "estimate"},
)
_JSON_COLUMNS = {
    "tags": "tags_json",
    "context": "context_json",
    "metadata": "metadata_json",
    "acceptance_criteria": "acceptance_criteria_json",
}
_FINISHED_VALUES = tuple(status.value for status in FINISHED_STATUSES)


class TaskRepository:
    """Task store facade backed by SQLModel + SQLite.

    Every task mutation is a single ``UPDATE ... SET version = version + 1``
    statement, optionally guarded by ``AND version = :expected``; zero
    affected rows is reported as NotFound or Conflict after a re-read.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def backup(self, destination: Path) -> Path:
        """Copy a consistent snapshot of the database, WAL included, to ``destination``."""

        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            connection = self.engine.raw_connection()
            try:
                with closing(sqlite3.connect(destination)) as target:
                    connection.driver_connection.backup(target)
            finally:
                connection.close()
        except (SQLAlchemyError, sqlite3.Error) as error:
            logger.exception("Backup of %s failed", self.db_path)
            raise StorageError(f"Backup failed: {error}") from error
        logger.info("Backed up %s to %s", self.db_path, destination)
        return destination

    # Reads

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
            return _to_task_view(row) if row is not None else None

    def get_tasks(self, task_ids: Sequence[str]) -> list[TaskView]:
        """Return existing tasks in the order of ``task_ids``."""

        if not task_ids:
            return []
        with Session(self.engine) as session:
            rows = session.exec(select(TaskRow).where(col(TaskRow.task_id).in_(task_ids))).all()
        by_id = {row.task_id: _to_task_view(row) for row in rows}
        return [by_id[task_id] for task_id in task_ids if task_id in by_id]

    def list_tasks(self, query: TaskListQuery) -> list[TaskView]:
        statement = _apply_filters(select(TaskRow), query)
        if query.sort:
            statement = statement.order_by(*_sort_clauses(query.sort))
        else:
            statement = statement.order_by(col(TaskRow.created_at).desc())
        if query.limit is not None:
            statement = statement.limit(query.limit)
        if query.offset is not None:
            statement = statement.offset(query.offset)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def count_tasks(self, query: TaskListQuery) -> int:
        statement = _apply_filters(select(func.count()).select_from(TaskRow), query)
        with Session(self.engine) as session:
            return int(session.exec(statement).one())

    def list_children(self, parent_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.parent_id == parent_id)
                .order_by(col(TaskRow.created_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_all_tasks(self, *, project_id: str | None = None) -> list[TaskView]:
        statement = select(TaskRow).order_by(col(TaskRow.created_at).asc())
        if project_id is not None:
            statement = statement.where(TaskRow.project_id == project_id)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    # Task writes

    def create_task(
        self,
        task_id: str,
        payload: TaskCreate,
        *,
        criteria: Sequence[AcceptanceCriterion] = (),
        status: TaskStatus = TaskStatus.PENDING,
        agent_id: str | None = None,
    ) -> TaskView:
        return self.create_tasks(
            [(task_id, payload, criteria)],
            status=status,
            agent_id=agent_id,
        )[0]

    def create_tasks(
        self,
        items: Sequence[tuple[str, TaskCreate, Sequence[AcceptanceCriterion]]],
        *,
        status: TaskStatus = TaskStatus.PENDING,
        agent_id: str | None = None,
    ) -> list[TaskView]:
        """Insert all tasks in one transaction, returning them in input order."""

        now = utc_now()
        with self._write_session() as session:
            rows: list[TaskRow] = []
            for task_id, payload, criteria in items:
                row = TaskRow(
                    task_id=task_id,
                    title=payload.title,
                    description=payload.description,
                    status=status.value,
                    priority=_enum_value(payload.priority),
                    task_type=_enum_value(payload.task_type),
                    parent_id=payload.parent_id,
                    sprint_id=payload.sprint_id,
                    project_id=payload.project_id,
                    due_at=to_db_datetime(payload.due_at),
                    tags_json=dump_json(list(payload.tags)) if payload.tags else None,
                    assignee=payload.assignee,
                    agent_id=agent_id,
                    estimate=payload.estimate,
                    context_json=dump_json(payload.context) if payload.context else None,
                    metadata_json=dump_json(payload.metadata) if payload.metadata else None,
                    acceptance_criteria_json=(
                        dump_json([criterion.to_json() for criterion in criteria])
                        if criteria
                        else None
                    ),
                    version=1,
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
                session.add(row)
                # One INSERT per item so a failing row aborts the whole batch.
                session.flush()
                rows.append(row)
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_task_view(row) for row in rows]

    def update_task(
        self,
        task_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
        expected_status: TaskStatus | None = None,
    ) -> TaskView:
        """Apply ``changes`` in one conditional write and return the new record.

        ``expected_status`` guards writes whose validity was checked against
        the status observed beforehand.

        When ``parent_id`` is among the changes, the ancestor walk runs inside
        the same transaction after the write, so a concurrent re-parent cannot
        slip a cycle past the check.
        """

        values = _to_column_values(changes)
        now = utc_now()
        with self._write_session() as session:
            statement = sa_update(TaskRow).where(col(TaskRow.task_id) == task_id)
            if expected_version is not None:
                statement = statement.where(col(TaskRow.version) == expected_version)
            if expected_status is not None:
                statement = statement.where(col(TaskRow.status) == expected_status.value)
            result = session.exec(
                statement.values(
                    **values,
                    version=TaskRow.version + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise self._missing_or_conflict(
                    session,
                    task_id,
                    expected_version=expected_version,
                    expected_status=expected_status,
                )

            new_parent = changes.get("parent_id")
            if new_parent is not None and _creates_parent_cycle(session, task_id, new_parent):
                session.rollback()
                raise ValidationError("Circular parent reference detected")

            session.commit()
            row = session.get(TaskRow, task_id, populate_existing=True)
            if row is None:
                raise NotFoundError("Task", task_id)
            return _to_task_view(row)

    def update_tasks(self, task_ids: Sequence[str], changes: dict[str, Any]) -> list[TaskView]:
        """Apply the same field set to every id in one transaction.

        Ids that do not exist are skipped. Returns updated records in input
        order.
        """

        values = _to_column_values(changes)
        now = utc_now()
        updated_ids: list[str] = []
        with self._write_session() as session:
            for task_id in dict.fromkeys(task_ids):
                result = session.exec(
                    sa_update(TaskRow)
                    .where(col(TaskRow.task_id) == task_id)
                    .values(
                        **values,
                        version=TaskRow.version + 1,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount == 1:
                    updated_ids.append(task_id)

            new_parent = changes.get("parent_id")
            if new_parent is not None:
                for task_id in updated_ids:
                    if _creates_parent_cycle(session, task_id, new_parent):
                        session.rollback()
                        raise ValidationError(
                            f"Circular parent reference detected for task {task_id}",
                        )
            session.commit()
        return self.get_tasks(updated_ids)

    def transition_tasks(
        self,
        task_ids: Sequence[str],
        to_status: TaskStatus,
        *,
        check: TransitionCheck,
        skip_invalid: bool = False,
    ) -> BulkTransitionResult:
        """Move every task to ``to_status`` inside a single transaction.

        Strict mode raises on the first failure and rolls the batch back.
        With ``skip_invalid`` the failures are collected and the valid moves
        are committed together.
        """

        outcome = BulkTransitionResult()
        moved: list[str] = []
        now = utc_now()
        with self._write_session() as session:
            for task_id in task_ids:
                try:
                    self._transition_in_session(session, task_id, to_status, check=check, now=now)
                except (NotFoundError, ValidationError, ConflictError) as error:
                    if not skip_invalid:
                        session.rollback()
                        raise
                    outcome.failed.append(BulkFailure(task_id=task_id, reason=error.message))
                    continue
                moved.append(task_id)
            session.commit()
        outcome.updated = self.get_tasks(moved)
        return outcome

    def claim_task(self, task_id: str, agent_id: str, *, check: TransitionCheck) -> ClaimResult:
        """Atomically set ``agent_id`` and move the task to in_progress."""

        while True:
            current = self.get_task(task_id)
            if current is None:
                raise NotFoundError("Task", task_id)
            if current.agent_id is not None:
                return _claim_contention(current, agent_id)

            if current.status != TaskStatus.IN_PROGRESS:
                transition = check(current.status, TaskStatus.IN_PROGRESS)
                if not transition.valid:
                    return ClaimResult(
                        success=False,
                        task=current,
                        message=f"Cannot claim task: {transition.reason}",
                    )

            now = utc_now()
            with self._write_session() as session:
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == task_id,
                        col(TaskRow.agent_id).is_(None),
                        col(TaskRow.status) == current.status.value,
                    )
                    .values(
                        agent_id=agent_id,
                        status=TaskStatus.IN_PROGRESS.value,
                        version=TaskRow.version + 1,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Claim race on task %s for %s, re-reading", task_id, agent_id)
                    continue
                session.commit()
                row = session.get(TaskRow, task_id, populate_existing=True)
                if row is None:
                    raise NotFoundError("Task", task_id)
                return ClaimResult(
                    success=True,
                    task=_to_task_view(row),
                    message="Task claimed and moved to in_progress",
                )

    def release_task(self, task_id: str, agent_id: str) -> ClaimResult:
        """Clear ``agent_id`` when held by ``agent_id``; status is untouched."""

        now = utc_now()
        with self._write_session() as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.agent_id) == agent_id,
                )
                .values(
                    agent_id=None,
                    version=TaskRow.version + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount == 1:
                session.commit()
                row = session.get(TaskRow, task_id, populate_existing=True)
                if row is not None:
                    return ClaimResult(
                        success=True,
                        task=_to_task_view(row),
                        message="Task released successfully",
                    )
            session.rollback()

        current = self.get_task(task_id)
        if current is None:
            raise NotFoundError("Task", task_id)
        if current.agent_id is None:
            return ClaimResult(success=False, task=current, message="Task is not claimed")
        return ClaimResult(
            success=False,
            task=current,
            message=f"Task is claimed by different agent: {current.agent_id}",
        )

    def delete_task(self, task_id: str) -> bool:
        """Hard delete; children are orphaned and edges touching the task removed."""

        now = utc_now()
        with self._write_session() as session:
            session.exec(
                sa_update(TaskRow)
                .where(col(TaskRow.parent_id) == task_id)
                .values(
                    parent_id=None,
                    version=TaskRow.version + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            session.exec(
                sa_delete(TaskDependencyRow).where(
                    (col(TaskDependencyRow.task_id) == task_id)
                    | (col(TaskDependencyRow.depends_on_id) == task_id),
                ),
            )
            result = session.exec(sa_delete(TaskRow).where(col(TaskRow.task_id) == task_id))
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # Dependencies

    def add_dependency(self, task_id: str, depends_on_id: str) -> DependencyView:
        """Insert an edge, then reject it inside the same transaction if it closes a cycle."""

        now = utc_now()
        with self._write_session() as session:
            session.add(
                TaskDependencyRow(task_id=task_id, depends_on_id=depends_on_id, created_at=now),
            )
            try:
                session.flush()
            except IntegrityError as error:
                session.rollback()
                if "FOREIGN KEY" in str(error.orig):
                    if session.get(TaskRow, task_id) is None:
                        raise NotFoundError("Task", task_id) from error
                    raise NotFoundError("Dependency task", depends_on_id) from error
                raise ValidationError("Dependency already exists") from error

            graph = adjacency(
                session.exec(
                    select(TaskDependencyRow.task_id, TaskDependencyRow.depends_on_id),
                ).all(),
            )
            if would_create_dependency_cycle(
                task_id,
                depends_on_id,
                lambda node: graph.get(node, ()),
            ):
                session.rollback()
                raise ValidationError("Circular dependency detected")
            session.commit()
        return DependencyView(task_id=task_id, depends_on_id=depends_on_id, created_at=now)

    def remove_dependency(self, task_id: str, depends_on_id: str) -> bool:
        with self._write_session() as session:
            result = session.exec(
                sa_delete(TaskDependencyRow).where(
                    col(TaskDependencyRow.task_id) == task_id,
                    col(TaskDependencyRow.depends_on_id) == depends_on_id,
                ),
            )
            session.commit()
            return result.rowcount > 0

    def has_dependency(self, task_id: str, depends_on_id: str) -> bool:
        with Session(self.engine) as session:
            return session.get(TaskDependencyRow, (task_id, depends_on_id)) is not None

    def dependencies_of(self, task_id: str) -> list[str]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(TaskDependencyRow.depends_on_id)
                    .where(TaskDependencyRow.task_id == task_id)
                    .order_by(col(TaskDependencyRow.created_at).asc()),
                ).all(),
            )

    def dependents_of(self, task_id: str) -> list[str]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(TaskDependencyRow.task_id)
                    .where(TaskDependencyRow.depends_on_id == task_id)
                    .order_by(col(TaskDependencyRow.created_at).asc()),
                ).all(),
            )

    def blocked_tasks(self, *, project_id: str | None = None) -> list[TaskView]:
        """Tasks with at least one prerequisite not yet completed or archived."""

        statement = select(TaskRow).where(col(TaskRow.task_id).in_(_unfinished_dependents()))
        if project_id is not None:
            statement = statement.where(TaskRow.project_id == project_id)
        with Session(self.engine) as session:
            rows = session.exec(statement.order_by(col(TaskRow.created_at).asc())).all()
        return [_to_task_view(row) for row in rows]

    def ready_tasks(self, *, project_id: str | None = None) -> list[TaskView]:
        """Pending tasks whose prerequisites are all completed or archived."""

        statement = select(TaskRow).where(
            TaskRow.status == TaskStatus.PENDING.value,
            col(TaskRow.task_id).not_in(_unfinished_dependents()),
        )
        if project_id is not None:
            statement = statement.where(TaskRow.project_id == project_id)
        with Session(self.engine) as session:
            rows = session.exec(statement.order_by(col(TaskRow.created_at).asc())).all()
        return [_to_task_view(row) for row in rows]

    # Internals

    @contextmanager
    def _write_session(self) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except (SQLAlchemyError, sqlite3.Error) as error:
            logger.exception("Storage write failed on %s", self.db_path)
            raise StorageError(f"Storage write failed: {error}") from error

    def _transition_in_session(
        self,
        session: Session,
        task_id: str,
        to_status: TaskStatus,
        *,
        check: TransitionCheck,
        now: datetime,
    ) -> None:
        row = session.get(TaskRow, task_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Task", task_id)
        observed = TaskStatus(row.status)
        transition = check(observed, to_status)
        if not transition.valid:
            raise ValidationError(transition.reason or "Invalid transition")
        result = session.exec(
            sa_update(TaskRow)
            .where(
                col(TaskRow.task_id) == task_id,
                col(TaskRow.status) == observed.value,
            )
            .values(
                status=to_status.value,
                version=TaskRow.version + 1,
                updated_at=to_db_datetime(now),
            ),
        )
        if result.rowcount != 1:
            raise self._missing_or_conflict(session, task_id, expected_status=observed)

    def _missing_or_conflict(
        self,
        session: Session,
        task_id: str,
        *,
        expected_version: int | None = None,
        expected_status: TaskStatus | None = None,
    ) -> TrackerError:
        row = session.get(TaskRow, task_id, populate_existing=True)
        if row is None:
            return NotFoundError("Task", task_id)
        if expected_version is not None and row.version != expected_version:
            logger.debug(
                "Version conflict on task %s: expected=%s actual=%s",
                task_id,
                expected_version,
                row.version,
            )
            return ConflictError.version_mismatch(expected=expected_version, actual=row.version)
        logger.debug(
            "Status changed under task %s: expected=%s actual=%s",
            task_id,
            expected_status,
            row.status,
        )
        return ConflictError(
            f"Task status changed concurrently from '{_enum_value(expected_status)}' "
            f"to '{row.status}'. Re-read the task and retry.",
        )


def _claim_contention(task: TaskView, agent_id: str) -> ClaimResult:
    if task.agent_id == agent_id:
        message = "Task already claimed by you"
    else:
        message = f"Task already claimed by agent: {task.agent_id}"
    return ClaimResult(success=False, task=task, message=message)


def _creates_parent_cycle(session: Session, task_id: str, new_parent_id: str) -> bool:
    parents = dict(session.exec(select(TaskRow.task_id, TaskRow.parent_id)).all())
    return would_create_cycle(task_id, new_parent_id, parents.get)


def _unfinished_dependents() -> Any:
    prerequisite = aliased(TaskRow)
    return (
        select(TaskDependencyRow.task_id)
        .join(prerequisite, col(prerequisite.task_id) == col(TaskDependencyRow.depends_on_id))
        .where(col(prerequisite.status).not_in(_FINISHED_VALUES))
        .distinct()
    )


def _apply_filters(statement: Any, query: TaskListQuery) -> Any:
    if not query.include_archived:
        statement = statement.where(TaskRow.status != TaskStatus.ARCHIVED.value)
    if query.statuses:
        statement = statement.where(
            col(TaskRow.status).in_([status.value for status in query.statuses]),
        )
    if query.priorities:
        statement = statement.where(
            col(TaskRow.priority).in_([priority.value for priority in query.priorities]),
        )
    if query.task_types:
        statement = statement.where(
            col(TaskRow.task_type).in_([task_type.value for task_type in query.task_types]),
        )
    if query.parent_id is not None:
        statement = statement.where(TaskRow.parent_id == query.parent_id)
    if query.sprint_id is not None:
        statement = statement.where(TaskRow.sprint_id == query.sprint_id)
    if query.project_id is not None:
        statement = statement.where(TaskRow.project_id == query.project_id)
    if query.assignee is not None:
        statement = statement.where(TaskRow.assignee == query.assignee)
    if query.agent_id is not None:
        statement = statement.where(TaskRow.agent_id == query.agent_id)
    for tag in query.tags:
        statement = statement.where(
            col(TaskRow.tags_json).contains(dump_json(tag), autoescape=True),
        )
    return statement


def _sort_clauses(sort: Sequence[str]) -> list[Any]:
    clauses: list[Any] = []
    for key in sort:
        descending = key.startswith("-")
        name = key[1:] if descending else key
        if name not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Unsupported sort field: {name!r}. "
                f"Expected one of {', '.join(sorted(SORTABLE_FIELDS))}.",
            )
        column = col(getattr(TaskRow, name))
        clauses.append(column.desc() if descending else column.asc())
    return clauses


def _to_column_values(changes: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, value in changes.items():
        if name in _JSON_COLUMNS:
            if name == "acceptance_criteria":
                value = [criterion.to_json() for criterion in value]
            values[_JSON_COLUMNS[name]] = dump_json(value)
        elif name == "due_at":
            values[name] = to_db_datetime(value)
        else:
            values[name] = _enum_value(value)
    return values


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        priority=Priority(row.priority) if row.priority is not None else None,
        task_type=TaskType(row.task_type) if row.task_type is not None else None,
        parent_id=row.parent_id,
        sprint_id=row.sprint_id,
        project_id=row.project_id,
        due_at=to_utc_aware_datetime(row.due_at),
        tags=list(load_json(row.tags_json, [])),
        assignee=row.assignee,
        agent_id=row.agent_id,
        estimate=row.estimate,
        context=dict(load_json(row.context_json, {})),
        metadata=dict(load_json(row.metadata_json, {})),
        acceptance_criteria=[
            AcceptanceCriterion.from_json(item)
            for item in load_json(row.acceptance_criteria_json, [])
        ],
        version=row.version,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
