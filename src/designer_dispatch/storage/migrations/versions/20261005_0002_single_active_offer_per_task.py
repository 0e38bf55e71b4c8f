"""Enforce at most one pending or confirmed offer per task."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261005_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Keep the newest live offer per task, expire older duplicates.
    op.execute(
        sa.text(
            """
            WITH ranked AS (
                SELECT
                    assignment_id,
                    ROW_NUMBER() OVER (
                        PARTITION BY task_id
                        ORDER BY assigned_at DESC, assignment_id DESC
                    ) AS rn
                FROM task_assignments
                WHERE status IN ('pending', 'confirmed')
            )
            UPDATE task_assignments
            SET
                status = 'expired',
                expired_at = COALESCE(expired_at, CURRENT_TIMESTAMP)
            WHERE assignment_id IN (SELECT assignment_id FROM ranked WHERE rn > 1)
            """,
        ),
    )
    op.execute(
        sa.text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_task_assignments_single_active
            ON task_assignments (task_id)
            WHERE status IN ('pending', 'confirmed')
            """,
        ),
    )


def downgrade() -> None:
    op.execute(
        sa.text(
            "DROP INDEX IF EXISTS uq_task_assignments_single_active",
        ),
    )
