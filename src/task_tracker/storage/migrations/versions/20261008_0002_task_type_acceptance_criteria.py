"""Add task type and acceptance criteria columns to tasks."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261008_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("tasks", sa.Column("task_type", sa.String(), nullable=True))
    op.add_column("tasks", sa.Column("acceptance_criteria_json", sa.Text(), nullable=True))
    op.create_index("ix_tasks_task_type", "tasks", ["task_type"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_tasks_task_type", table_name="tasks")
    with op.batch_alter_table("tasks") as batch_op:
        batch_op.drop_column("acceptance_criteria_json")
        batch_op.drop_column("task_type")
