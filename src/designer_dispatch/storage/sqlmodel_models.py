"""SQLModel ORM tables for dispatch storage."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Text,
    text,
)
from sqlmodel import Field, SQLModel


class Company(SQLModel, table=True):
    __tablename__ = "companies"  # type: ignore[bad-override]
    __table_args__ = (CheckConstraint("free_credits >= 0", name="ck_companies_free_credits"),)

    company_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    free_credits: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    role: str = Field(index=True)
    company_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("companies.company_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DesignerAvailability(SQLModel, table=True):
    __tablename__ = "designer_availability"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_designer_availability_designer_day", "designer_id", "day"),)

    id: int | None = Field(default=None, primary_key=True)
    designer_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    day: date = Field(sa_column=Column(Date, nullable=False, index=True))
    start_time: str
    end_time: str
    is_available: bool = Field(default=True)


class Order(SQLModel, table=True):
    __tablename__ = "orders"  # type: ignore[bad-override]

    order_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    quantity: int
    priority: str = Field(index=True)
    price_in_cents: int
    is_paid: bool = Field(default=False, index=True)
    credits_used: int = Field(default=0)
    payment_ref: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_pool", "status", "current_assignment_id", "created_at"),)

    task_id: str = Field(primary_key=True)
    order_id: str = Field(
        sa_column=Column(
            ForeignKey("orders.order_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    status: str = Field(index=True)
    priority: str = Field(index=True)
    assigned_to_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    current_assignment_id: str | None = Field(default=None, index=True)
    assigned_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskAssignment(SQLModel, table=True):
    __tablename__ = "task_assignments"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_task_assignments_single_active",
            "task_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'confirmed')"),
        ),
        Index("idx_task_assignments_status_time", "status", "assigned_at"),
        Index("idx_task_assignments_designer_status", "designer_id", "status"),
    )

    assignment_id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    designer_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    status: str = Field(index=True)
    assigned_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    confirmed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    rejected_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    expired_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class PackagePurchase(SQLModel, table=True):
    __tablename__ = "package_purchases"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint("credits_left >= 0", name="ck_package_purchases_credits_left"),
        Index("idx_package_purchases_fifo", "user_id", "created_at"),
    )

    purchase_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    company_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("companies.company_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    package_name: str
    credits_total: int
    credits_left: int
    expires_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CreditDebit(SQLModel, table=True):
    __tablename__ = "credit_debits"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    order_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("orders.order_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    source: str = Field(index=True)
    purchase_id: str | None = Field(default=None, index=True)
    company_id: str | None = Field(default=None, index=True)
    amount: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    assignment_id: str | None = Field(default=None, index=True)
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None, index=True)
    status_to: str | None = Field(default=None, index=True)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
