"""SQLModel ORM tables for tracker storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlmodel import Field, SQLModel


class ProjectRow(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    project_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    path: str | None = Field(default=None, sa_column=Column(String, unique=True, nullable=True))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SprintRow(SQLModel, table=True):
    __tablename__ = "sprints"  # type: ignore[bad-override]

    sprint_id: str = Field(primary_key=True)
    name: str
    status: str = Field(index=True)
    project_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    start_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    end_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_status_created", "status", "created_at"),
    )

    task_id: str = Field(primary_key=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(index=True)
    priority: str | None = Field(default=None, index=True)
    task_type: str | None = Field(default=None, index=True)
    parent_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    sprint_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("sprints.sprint_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    project_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    due_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    tags_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    assignee: str | None = Field(default=None, index=True)
    agent_id: str | None = Field(default=None, index=True)
    estimate: int | None = None
    context_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    acceptance_criteria_json: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
    )
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default="1"))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskDependencyRow(SQLModel, table=True):
    __tablename__ = "task_dependencies"  # type: ignore[bad-override]

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    depends_on_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
