"""Initial dispatch schema: accounts, orders, tasks, offers and credit ledger."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("free_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("free_credits >= 0", name="ck_companies_free_credits"),
        sa.PrimaryKeyConstraint("company_id"),
    )
    op.create_index("ix_companies_name", "companies", ["name"], unique=False)

    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["companies.company_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"], unique=False)
    op.create_index("ix_users_display_name", "users", ["display_name"], unique=False)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_company_id", "users", ["company_id"], unique=False)

    op.create_table(
        "designer_availability",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("designer_id", sa.String(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(), nullable=False),
        sa.Column("end_time", sa.String(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["designer_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_designer_availability_designer_id",
        "designer_availability",
        ["designer_id"],
        unique=False,
    )
    op.create_index("ix_designer_availability_day", "designer_availability", ["day"], unique=False)
    op.create_index(
        "idx_designer_availability_designer_day",
        "designer_availability",
        ["designer_id", "day"],
        unique=False,
    )

    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("price_in_cents", sa.Integer(), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_ref", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("order_id"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
    op.create_index("ix_orders_priority", "orders", ["priority"], unique=False)
    op.create_index("ix_orders_is_paid", "orders", ["is_paid"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("assigned_to_id", sa.String(), nullable=True),
        sa.Column("current_assignment_id", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.order_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.user_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_order_id", "tasks", ["order_id"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index("ix_tasks_priority", "tasks", ["priority"], unique=False)
    op.create_index("ix_tasks_assigned_to_id", "tasks", ["assigned_to_id"], unique=False)
    op.create_index(
        "ix_tasks_current_assignment_id",
        "tasks",
        ["current_assignment_id"],
        unique=False,
    )
    op.create_index(
        "idx_tasks_pool",
        "tasks",
        ["status", "current_assignment_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "task_assignments",
        sa.Column("assignment_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("designer_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["designer_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("assignment_id"),
    )
    op.create_index("ix_task_assignments_task_id", "task_assignments", ["task_id"], unique=False)
    op.create_index(
        "ix_task_assignments_designer_id",
        "task_assignments",
        ["designer_id"],
        unique=False,
    )
    op.create_index("ix_task_assignments_status", "task_assignments", ["status"], unique=False)
    op.create_index(
        "idx_task_assignments_status_time",
        "task_assignments",
        ["status", "assigned_at"],
        unique=False,
    )
    op.create_index(
        "idx_task_assignments_designer_status",
        "task_assignments",
        ["designer_id", "status"],
        unique=False,
    )

    op.create_table(
        "package_purchases",
        sa.Column("purchase_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=True),
        sa.Column("package_name", sa.String(), nullable=False),
        sa.Column("credits_total", sa.Integer(), nullable=False),
        sa.Column("credits_left", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("credits_left >= 0", name="ck_package_purchases_credits_left"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.company_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("purchase_id"),
    )
    op.create_index(
        "ix_package_purchases_user_id",
        "package_purchases",
        ["user_id"],
        unique=False,
    )
    op.create_index(
        "ix_package_purchases_company_id",
        "package_purchases",
        ["company_id"],
        unique=False,
    )
    op.create_index(
        "idx_package_purchases_fifo",
        "package_purchases",
        ["user_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "credit_debits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("purchase_id", sa.String(), nullable=True),
        sa.Column("company_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.order_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_debits_user_id", "credit_debits", ["user_id"], unique=False)
    op.create_index("ix_credit_debits_order_id", "credit_debits", ["order_id"], unique=False)
    op.create_index("ix_credit_debits_source", "credit_debits", ["source"], unique=False)
    op.create_index(
        "ix_credit_debits_purchase_id",
        "credit_debits",
        ["purchase_id"],
        unique=False,
    )
    op.create_index("ix_credit_debits_company_id", "credit_debits", ["company_id"], unique=False)

    op.create_table(
        "task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("assignment_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_events_task_id", "task_events", ["task_id"], unique=False)
    op.create_index(
        "ix_task_events_assignment_id",
        "task_events",
        ["assignment_id"],
        unique=False,
    )
    op.create_index("ix_task_events_event_type", "task_events", ["event_type"], unique=False)
    op.create_index("ix_task_events_status_from", "task_events", ["status_from"], unique=False)
    op.create_index("ix_task_events_status_to", "task_events", ["status_to"], unique=False)
    op.create_index(
        "idx_task_events_task_time",
        "task_events",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("task_events")
    op.drop_table("credit_debits")
    op.drop_table("package_purchases")
    op.drop_table("task_assignments")
    op.drop_table("tasks")
    op.drop_table("orders")
    op.drop_table("designer_availability")
    op.drop_table("users")
    op.drop_table("companies")
