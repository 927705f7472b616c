"""Create production_tasks table.

One row per production request. State and current_stage are stored as
lowercase strings (non-native enums); artifacts and error are JSON
documents owned by the registry.

Indexes:
    - ix_production_tasks_state: dashboard/state filters
    - ix_production_tasks_state_created_at: FIFO pending-task polling

Revision ID: 001_create_production_tasks
Revises:
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_create_production_tasks"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create production_tasks with its indexes."""
    op.create_table(
        "production_tasks",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("topic", sa.Text(), nullable=False),
        sa.Column("target_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_stage", sa.String(32), nullable=True),
        sa.Column("artifacts", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_production_tasks_state", "production_tasks", ["state"])
    op.create_index(
        "ix_production_tasks_state_created_at",
        "production_tasks",
        ["state", "created_at"],
    )


def downgrade() -> None:
    """Drop production_tasks and its indexes."""
    op.drop_index("ix_production_tasks_state_created_at", table_name="production_tasks")
    op.drop_index("ix_production_tasks_state", table_name="production_tasks")
    op.drop_table("production_tasks")
