"""Sprint and project persistence."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from task_tracker.errors import StorageError, ValidationError
from task_tracker.models import (
    ProjectCreate,
    ProjectView,
    SprintCreate,
    SprintStatus,
    SprintView,
)
from task_tracker.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_tracker.storage.tables import ProjectRow, SprintRow, TaskRow

logger = logging.getLogger(__name__)


class PlanningRepository:
    """Sprint/project store sharing the task database file."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    # Projects

    def create_project(self, project_id: str, payload: ProjectCreate) -> ProjectView:
        now = utc_now()
        row = ProjectRow(
            project_id=project_id,
            name=payload.name,
            path=payload.path,
            description=payload.description,
            created_at=now,
            updated_at=now,
        )
        with self._write_session() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(
                    f'Project with path "{payload.path}" already exists',
                ) from error
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, project_id: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.get(ProjectRow, project_id)
            return _to_project_view(row) if row is not None else None

    def get_project_by_path(self, path: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.exec(select(ProjectRow).where(ProjectRow.path == path)).first()
            return _to_project_view(row) if row is not None else None

    def find_project_by_path_prefix(self, directory: str) -> ProjectView | None:
        """Return the project whose path is the longest ancestor of ``directory``."""

        with Session(self.engine) as session:
            rows = session.exec(select(ProjectRow).where(col(ProjectRow.path).is_not(None))).all()
        candidates = [row for row in rows if _is_within(directory, row.path or "")]
        if not candidates:
            return None
        best = max(candidates, key=lambda row: len(row.path or ""))
        return _to_project_view(best)

    def list_projects(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ProjectView]:
        statement = select(ProjectRow).order_by(col(ProjectRow.name).asc())
        if limit is not None:
            statement = statement.limit(limit)
        if offset is not None:
            statement = statement.offset(offset)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_project_view(row) for row in rows]

    def count_projects(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(ProjectRow)).one())

    def update_project(self, project_id: str, changes: dict[str, Any]) -> ProjectView | None:
        with self._write_session() as session:
            try:
                result = session.exec(
                    sa_update(ProjectRow)
                    .where(col(ProjectRow.project_id) == project_id)
                    .values(**changes, updated_at=to_db_datetime(utc_now())),
                )
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(
                    f'Project with path "{changes.get("path")}" already exists',
                ) from error
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> bool:
        """Delete the project; its tasks and sprints stay, unassigned."""

        now = to_db_datetime(utc_now())
        with self._write_session() as session:
            session.exec(
                sa_update(TaskRow)
                .where(col(TaskRow.project_id) == project_id)
                .values(project_id=None, version=TaskRow.version + 1, updated_at=now),
            )
            session.exec(
                sa_update(SprintRow)
                .where(col(SprintRow.project_id) == project_id)
                .values(project_id=None, updated_at=now),
            )
            result = session.exec(
                sa_delete(ProjectRow).where(col(ProjectRow.project_id) == project_id),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        logger.info("Project deleted: %s", project_id)
        return True

    # Sprints

    def create_sprint(self, sprint_id: str, payload: SprintCreate) -> SprintView:
        now = utc_now()
        row = SprintRow(
            sprint_id=sprint_id,
            name=payload.name,
            status=payload.status.value,
            project_id=payload.project_id,
            start_at=to_db_datetime(payload.start_at),
            end_at=to_db_datetime(payload.end_at),
            created_at=now,
            updated_at=now,
        )
        with self._write_session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_sprint_view(row)

    def get_sprint(self, sprint_id: str) -> SprintView | None:
        with Session(self.engine) as session:
            row = session.get(SprintRow, sprint_id)
            return _to_sprint_view(row) if row is not None else None

    def list_sprints(
        self,
        *,
        include_archived: bool = False,
        project_id: str | None = None,
    ) -> list[SprintView]:
        statement = select(SprintRow).order_by(col(SprintRow.created_at).desc())
        if not include_archived:
            statement = statement.where(SprintRow.status != SprintStatus.ARCHIVED.value)
        if project_id is not None:
            statement = statement.where(SprintRow.project_id == project_id)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_sprint_view(row) for row in rows]

    def active_sprint(self) -> SprintView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(SprintRow).where(SprintRow.status == SprintStatus.ACTIVE.value).limit(1),
            ).first()
            return _to_sprint_view(row) if row is not None else None

    def update_sprint(self, sprint_id: str, changes: dict[str, Any]) -> SprintView | None:
        values = {
            name: to_db_datetime(value) if name in {"start_at", "end_at"} else value
            for name, value in changes.items()
        }
        if "status" in values:
            values["status"] = SprintStatus(values["status"]).value
        with self._write_session() as session:
            result = session.exec(
                sa_update(SprintRow)
                .where(col(SprintRow.sprint_id) == sprint_id)
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        return self.get_sprint(sprint_id)

    def activate_sprint(self, sprint_id: str) -> SprintView | None:
        """Make ``sprint_id`` the only active sprint; the previous one returns to planning."""

        now = to_db_datetime(utc_now())
        with self._write_session() as session:
            session.exec(
                sa_update(SprintRow)
                .where(
                    col(SprintRow.status) == SprintStatus.ACTIVE.value,
                    col(SprintRow.sprint_id) != sprint_id,
                )
                .values(status=SprintStatus.PLANNING.value, updated_at=now),
            )
            result = session.exec(
                sa_update(SprintRow)
                .where(col(SprintRow.sprint_id) == sprint_id)
                .values(status=SprintStatus.ACTIVE.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        logger.info("Sprint activated: %s", sprint_id)
        return self.get_sprint(sprint_id)

    def delete_sprint(self, sprint_id: str) -> bool:
        """Delete the sprint; its tasks stay, unassigned."""

        now = to_db_datetime(utc_now())
        with self._write_session() as session:
            session.exec(
                sa_update(TaskRow)
                .where(col(TaskRow.sprint_id) == sprint_id)
                .values(sprint_id=None, version=TaskRow.version + 1, updated_at=now),
            )
            result = session.exec(
                sa_delete(SprintRow).where(col(SprintRow.sprint_id) == sprint_id),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        logger.info("Sprint deleted: %s", sprint_id)
        return True

    def sprint_task_counts(self, sprint_id: str) -> dict[str, int]:
        """Task count per status for one sprint, archived included."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow.status, func.count())
                .where(TaskRow.sprint_id == sprint_id)
                .group_by(TaskRow.status),
            ).all()
        return {str(status): int(count) for status, count in rows}

    @contextmanager
    def _write_session(self) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except (SQLAlchemyError, sqlite3.Error) as error:
            logger.exception("Storage write failed on %s", self.db_path)
            raise StorageError(f"Storage write failed: {error}") from error


def _is_within(directory: str, project_path: str) -> bool:
    if not project_path:
        return False
    base = project_path.rstrip("/") or "/"
    if directory == base or directory == project_path:
        return True
    prefix = base if base.endswith("/") else f"{base}/"
    return directory.startswith(prefix)


def _to_project_view(row: ProjectRow) -> ProjectView:
    return ProjectView(
        project_id=row.project_id,
        name=row.name,
        path=row.path,
        description=row.description,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_sprint_view(row: SprintRow) -> SprintView:
    return SprintView(
        sprint_id=row.sprint_id,
        name=row.name,
        status=SprintStatus(row.status),
        project_id=row.project_id,
        start_at=to_utc_aware_datetime(row.start_at),
        end_at=to_utc_aware_datetime(row.end_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
