"""Domain models for task routing, offers and credit allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class UserRole(str, Enum):
    """Marketplace roles supplied by the identity collaborator."""

    CLIENT = "client"
    DESIGNER = "designer"
    ADMIN = "admin"


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    QA_PENDING = "qa_pending"
    QA_FAILED = "qa_failed"
    COMPLETED = "completed"
    COMPLAINT = "complaint"
    CANCELLED = "cancelled"


class AssignmentStatus(str, Enum):
    """Offer lifecycle states. Everything but PENDING is terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TaskPriority(str, Enum):
    NORMAL = "normal"
    EXPRESS = "express"
    URGENT = "urgent"


class CreditSource(str, Enum):
    PACKAGE = "package"
    FREE = "free"


# Tasks whose confirmed offer still occupies the designer.
ACTIVE_WORK_STATUSES: tuple[TaskStatus, ...] = (
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.QA_PENDING,
    TaskStatus.QA_FAILED,
)


@dataclass(slots=True, frozen=True)
class Caller:
    """Authenticated caller identity for one operation."""

    caller_id: str
    role: UserRole


@dataclass(slots=True)
class CompanyView:
    company_id: str
    name: str
    free_credits: int
    created_at: datetime


@dataclass(slots=True)
class UserView:
    user_id: str
    display_name: str
    role: UserRole
    company_id: str | None
    is_active: bool
    created_at: datetime


@dataclass(slots=True)
class AvailabilityWindow:
    """One declared availability slot, times as zero-padded ``HH:MM``."""

    designer_id: str
    day: date
    start_time: str
    end_time: str
    is_available: bool = True

    def covers(self, moment: datetime) -> bool:
        if not self.is_available or moment.date() != self.day:
            return False
        hhmm = moment.strftime("%H:%M")
        return self.start_time <= hhmm <= self.end_time


@dataclass(slots=True)
class OrderView:
    order_id: str
    user_id: str
    quantity: int
    priority: TaskPriority
    price_in_cents: int
    is_paid: bool
    credits_used: int
    payment_ref: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view for services, CLI and tests."""

    task_id: str
    order_id: str
    status: TaskStatus
    priority: TaskPriority
    assigned_to_id: str | None
    current_assignment_id: str | None
    assigned_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class AssignmentView:
    """One offer of a task to one designer."""

    assignment_id: str
    task_id: str
    designer_id: str
    status: AssignmentStatus
    assigned_at: datetime
    confirmed_at: datetime | None
    rejected_at: datetime | None
    expired_at: datetime | None


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    assignment_id: str | None
    event_type: str
    status_from: str | None
    status_to: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task with its offer history and event stream."""

    task: TaskView
    assignments: list[AssignmentView]
    events: list[TaskEventView]


@dataclass(slots=True)
class PackagePurchaseView:
    purchase_id: str
    user_id: str
    company_id: str | None
    package_name: str
    credits_total: int
    credits_left: int
    expires_at: datetime | None
    created_at: datetime


@dataclass(slots=True)
class CreditDebitView:
    """One debited source inside a reservation."""

    source: CreditSource
    amount: int
    purchase_id: str | None = None
    company_id: str | None = None


@dataclass(slots=True)
class CreditReservation:
    """Successful ledger reservation."""

    user_id: str
    amount: int
    debits: list[CreditDebitView]
    order_id: str | None = None
    task: TaskView | None = None


@dataclass(slots=True)
class CreditBalance:
    """Derived balance: company free credits plus live package credits."""

    user_id: str
    free_credits: int
    package_credits: int

    @property
    def total(self) -> int:
        return self.free_credits + self.package_credits


@dataclass(slots=True)
class DesignerLoad:
    """Scheduling inputs for one candidate designer."""

    designer_id: str
    created_at: datetime
    in_progress: int = 0
    live_offers: int = 0


@dataclass(slots=True)
class OrderPlacement:
    """Result of placing an order."""

    order: OrderView
    reservation: CreditReservation | None
    task: TaskView | None
    offer: AssignmentView | None


@dataclass(slots=True)
class SweepSummary:
    """Counters from one expiry/scheduling sweep."""

    expired: int = 0
    offered: int = 0
    still_unassigned: int = 0
