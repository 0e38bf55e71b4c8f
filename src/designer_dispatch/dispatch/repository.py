"""Persistent store for tasks, offers and the credit ledger."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import case, func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from designer_dispatch.dispatch.models import (
    ACTIVE_WORK_STATUSES,
    AssignmentStatus,
    AssignmentView,
    AvailabilityWindow,
    CompanyView,
    CreditBalance,
    CreditDebitView,
    CreditReservation,
    CreditSource,
    DesignerLoad,
    OrderView,
    PackagePurchaseView,
    TaskDetails,
    TaskEventView,
    TaskPriority,
    TaskStatus,
    TaskView,
    UserRole,
    UserView,
)
from designer_dispatch.errors import (
    InsufficientCreditError,
    NotFoundError,
    StaleActionError,
)
from designer_dispatch.storage.alembic_runner import upgrade_head
from designer_dispatch.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from designer_dispatch.storage.sqlmodel_models import (
    AppUser,
    Company,
    CreditDebit,
    DesignerAvailability,
    Order,
    PackagePurchase,
    Task,
    TaskAssignment,
    TaskEvent,
)

_PRIORITY_RANK = case(
    (col(Task.priority) == TaskPriority.URGENT.value, 0),
    (col(Task.priority) == TaskPriority.EXPRESS.value, 1),
    else_=2,
)


@dataclass(slots=True)
class _PlannedDebit:
    source: CreditSource
    amount: int
    purchase_id: str | None = None
    company_id: str | None = None


class DispatchRepository:
    """Dispatch persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # Accounts and availability

    def add_company(
        self,
        *,
        company_id: str,
        name: str,
        free_credits: int = 0,
    ) -> CompanyView:
        if free_credits < 0:
            raise ValueError("free_credits must be >= 0")
        with Session(self.engine) as session:
            row = Company(
                company_id=company_id,
                name=name,
                free_credits=free_credits,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_company_view(row)

    def get_company(self, *, company_id: str) -> CompanyView | None:
        with Session(self.engine) as session:
            row = session.get(Company, company_id)
            return _to_company_view(row) if row is not None else None

    def add_user(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        display_name: str,
        role: UserRole,
        company_id: str | None = None,
        created_at: datetime | None = None,
        is_active: bool = True,
    ) -> UserView:
        with Session(self.engine) as session:
            row = AppUser(
                user_id=user_id,
                display_name=display_name,
                role=role.value,
                company_id=company_id,
                is_active=is_active,
                created_at=to_db_datetime(created_at or utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_user_view(row)

    def get_user(self, *, user_id: str) -> UserView | None:
        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            return _to_user_view(row) if row is not None else None

    def list_users(self, *, role: UserRole | None = None) -> list[UserView]:
        with Session(self.engine) as session:
            statement = select(AppUser).order_by(
                col(AppUser.created_at).asc(),
                col(AppUser.user_id).asc(),
            )
            if role is not None:
                statement = statement.where(AppUser.role == role.value)
            rows = session.exec(statement).all()
        return [_to_user_view(row) for row in rows]

    def set_availability(
        self,
        *,
        designer_id: str,
        day: date,
        windows: Iterable[tuple[str, str]],
    ) -> list[AvailabilityWindow]:
        """Replace all availability slots of one designer for one day."""

        with Session(self.engine) as session:
            designer = session.get(AppUser, designer_id)
            if designer is None:
                raise NotFoundError(
                    f"Designer not found: {designer_id}",
                    context={"designer_id": designer_id},
                )
            if designer.role != UserRole.DESIGNER.value:
                raise ValueError(f"User {designer_id} is not a designer (role={designer.role}).")
            existing = session.exec(
                select(DesignerAvailability).where(
                    DesignerAvailability.designer_id == designer_id,
                    DesignerAvailability.day == day,
                ),
            ).all()
            for row in existing:
                session.delete(row)
            created: list[DesignerAvailability] = []
            for start_time, end_time in windows:
                _validate_hhmm(start_time)
                _validate_hhmm(end_time)
                if start_time > end_time:
                    raise ValueError(f"Window start {start_time} is after end {end_time}.")
                row = DesignerAvailability(
                    designer_id=designer_id,
                    day=day,
                    start_time=start_time,
                    end_time=end_time,
                    is_available=True,
                )
                session.add(row)
                created.append(row)
            session.commit()
            return [_to_availability(row) for row in created]

    def list_availability(
        self,
        *,
        start: date,
        end: date,
        designer_id: str | None = None,
    ) -> list[AvailabilityWindow]:
        """Read declared availability windows for an inclusive date range."""

        with Session(self.engine) as session:
            statement = (
                select(DesignerAvailability)
                .where(
                    DesignerAvailability.day >= start,
                    DesignerAvailability.day <= end,
                )
                .order_by(
                    col(DesignerAvailability.day).asc(),
                    col(DesignerAvailability.start_time).asc(),
                )
            )
            if designer_id is not None:
                statement = statement.where(DesignerAvailability.designer_id == designer_id)
            rows = session.exec(statement).all()
        return [_to_availability(row) for row in rows]

    def list_available_designers(self, *, now: datetime) -> list[UserView]:
        """Active designers with an availability window covering ``now``."""

        moment = to_utc_aware_datetime(now)
        hhmm = moment.strftime("%H:%M")
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppUser)
                .join(
                    DesignerAvailability,
                    col(DesignerAvailability.designer_id) == col(AppUser.user_id),
                )
                .where(
                    AppUser.role == UserRole.DESIGNER.value,
                    col(AppUser.is_active).is_(True),
                    DesignerAvailability.day == moment.date(),
                    col(DesignerAvailability.is_available).is_(True),
                    DesignerAvailability.start_time <= hhmm,
                    DesignerAvailability.end_time >= hhmm,
                )
                .distinct()
                .order_by(col(AppUser.created_at).asc(), col(AppUser.user_id).asc()),
            ).all()
        return [_to_user_view(row) for row in rows]

    def list_designer_loads(
        self,
        *,
        designers: Iterable[UserView],
        offer_cutoff: datetime,
    ) -> dict[str, DesignerLoad]:
        """Count in-progress tasks and live offers per designer.

        A live offer is a PENDING offer, on a task still waiting for it,
        assigned at or after ``offer_cutoff``
        or a CONFIRMED offer whose task is still in work.
        """

        loads = {
            designer.user_id: DesignerLoad(
                designer_id=designer.user_id,
                created_at=designer.created_at,
            )
            for designer in designers
        }
        if not loads:
            return loads
        designer_ids = list(loads)
        with Session(self.engine) as session:
            in_progress_rows = session.exec(
                select(Task.assigned_to_id, func.count())
                .where(
                    col(Task.assigned_to_id).in_(designer_ids),
                    Task.status == TaskStatus.IN_PROGRESS.value,
                )
                .group_by(col(Task.assigned_to_id)),
            ).all()
            pending_rows = session.exec(
                select(TaskAssignment.designer_id, func.count())
                .join(Task, col(Task.task_id) == col(TaskAssignment.task_id))
                .where(
                    col(TaskAssignment.designer_id).in_(designer_ids),
                    Task.status == TaskStatus.PENDING.value,
                    TaskAssignment.status == AssignmentStatus.PENDING.value,
                    TaskAssignment.assigned_at >= to_db_datetime(offer_cutoff),
                )
                .group_by(col(TaskAssignment.designer_id)),
            ).all()
            confirmed_rows = session.exec(
                select(TaskAssignment.designer_id, func.count())
                .join(Task, col(Task.task_id) == col(TaskAssignment.task_id))
                .where(
                    col(TaskAssignment.designer_id).in_(designer_ids),
                    TaskAssignment.status == AssignmentStatus.CONFIRMED.value,
                    col(Task.status).in_([status.value for status in ACTIVE_WORK_STATUSES]),
                )
                .group_by(col(TaskAssignment.designer_id)),
            ).all()
        for designer_id, count in in_progress_rows:
            if designer_id is not None:
                loads[designer_id].in_progress = int(count)
        for designer_id, count in pending_rows:
            loads[designer_id].live_offers += int(count)
        for designer_id, count in confirmed_rows:
            loads[designer_id].live_offers += int(count)
        return loads

    # Credit ledger

    def add_package_purchase(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        credits: int,
        package_name: str = "package",
        company_id: str | None = None,
        expires_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> PackagePurchaseView:
        """Record a paid package purchase (payment-confirmed signal)."""

        if credits <= 0:
            raise ValueError("Package credits must be > 0")
        with Session(self.engine) as session:
            row = PackagePurchase(
                purchase_id=str(uuid4()),
                user_id=user_id,
                company_id=company_id,
                package_name=package_name,
                credits_total=credits,
                credits_left=credits,
                expires_at=to_db_datetime(expires_at) if expires_at is not None else None,
                created_at=to_db_datetime(created_at or utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_purchase_view(row)

    def list_package_purchases(self, *, user_id: str) -> list[PackagePurchaseView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PackagePurchase)
                .where(PackagePurchase.user_id == user_id)
                .order_by(
                    col(PackagePurchase.created_at).asc(),
                    col(PackagePurchase.purchase_id).asc(),
                ),
            ).all()
        return [_to_purchase_view(row) for row in rows]

    def get_credit_balance(self, *, user_id: str, now: datetime) -> CreditBalance:
        with Session(self.engine) as session:
            user = session.get(AppUser, user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}", context={"user_id": user_id})
            purchases = self._eligible_purchases(session=session, user=user, now=now)
            company = session.get(Company, user.company_id) if user.company_id else None
        return CreditBalance(
            user_id=user_id,
            free_credits=company.free_credits if company is not None else 0,
            package_credits=sum(row.credits_left for row in purchases),
        )

    def reserve_credits(
        self,
        *,
        user_id: str,
        amount: int,
        now: datetime,
        order_id: str | None = None,
    ) -> CreditReservation:
        """Atomically debit ``amount`` credits, package purchases first (FIFO).

        Every debit is a conditional decrement; a guard miss means another
        reservation won the race, so the transaction is rolled back and the
        debit plan is rebuilt from fresh balances. When ``order_id`` is given
        the order is marked paid and its task inserted in the same commit.
        """

        if amount <= 0:
            raise ValueError("Credit amount must be > 0")

        while True:
            with Session(self.engine) as session:
                user = session.get(AppUser, user_id)
                if user is None:
                    raise NotFoundError(
                        f"User not found: {user_id}",
                        context={"user_id": user_id},
                    )
                plan = self._plan_debits(session=session, user=user, amount=amount, now=now)
                if not self._apply_debits(session=session, plan=plan):
                    session.rollback()
                    continue

                db_now = to_db_datetime(now)
                for debit in plan:
                    session.add(
                        CreditDebit(
                            user_id=user_id,
                            order_id=order_id,
                            source=debit.source.value,
                            purchase_id=debit.purchase_id,
                            company_id=debit.company_id,
                            amount=debit.amount,
                            created_at=db_now,
                        ),
                    )
                task: TaskView | None = None
                if order_id is not None:
                    task = self._fund_order(
                        session=session,
                        order_id=order_id,
                        credits_used=amount,
                        payment_ref=None,
                        now=now,
                    )
                session.commit()
                return CreditReservation(
                    user_id=user_id,
                    amount=amount,
                    debits=[
                        CreditDebitView(
                            source=debit.source,
                            amount=debit.amount,
                            purchase_id=debit.purchase_id,
                            company_id=debit.company_id,
                        )
                        for debit in plan
                    ],
                    order_id=order_id,
                    task=task,
                )

    def list_credit_debits(
        self,
        *,
        user_id: str | None = None,
        order_id: str | None = None,
    ) -> list[CreditDebitView]:
        with Session(self.engine) as session:
            statement = select(CreditDebit).order_by(col(CreditDebit.id).asc())
            if user_id is not None:
                statement = statement.where(CreditDebit.user_id == user_id)
            if order_id is not None:
                statement = statement.where(CreditDebit.order_id == order_id)
            rows = session.exec(statement).all()
        return [
            CreditDebitView(
                source=CreditSource(row.source),
                amount=row.amount,
                purchase_id=row.purchase_id,
                company_id=row.company_id,
            )
            for row in rows
        ]

    def _eligible_purchases(
        self,
        *,
        session: Session,
        user: AppUser,
        now: datetime,
    ) -> list[PackagePurchase]:
        owner_filter = col(PackagePurchase.user_id) == user.user_id
        if user.company_id is not None:
            owner_filter = or_(owner_filter, col(PackagePurchase.company_id) == user.company_id)
        return list(
            session.exec(
                select(PackagePurchase)
                .where(
                    owner_filter,
                    PackagePurchase.credits_left > 0,
                    or_(
                        col(PackagePurchase.expires_at).is_(None),
                        col(PackagePurchase.expires_at) > to_db_datetime(now),
                    ),
                )
                .order_by(
                    col(PackagePurchase.created_at).asc(),
                    col(PackagePurchase.purchase_id).asc(),
                ),
            ).all(),
        )

    def _plan_debits(
        self,
        *,
        session: Session,
        user: AppUser,
        amount: int,
        now: datetime,
    ) -> list[_PlannedDebit]:
        purchases = self._eligible_purchases(session=session, user=user, now=now)
        company = session.get(Company, user.company_id) if user.company_id else None
        free_credits = company.free_credits if company is not None else 0
        available = sum(row.credits_left for row in purchases) + free_credits
        if available < amount:
            raise InsufficientCreditError(
                f"Insufficient credit: requested {amount}, available {available}.",
                context={"user_id": user.user_id, "requested": amount, "available": available},
            )

        plan: list[_PlannedDebit] = []
        remaining = amount
        for row in purchases:
            if remaining == 0:
                break
            take = min(row.credits_left, remaining)
            plan.append(
                _PlannedDebit(
                    source=CreditSource.PACKAGE,
                    amount=take,
                    purchase_id=row.purchase_id,
                    company_id=row.company_id,
                ),
            )
            remaining -= take
        if remaining > 0 and company is not None:
            plan.append(
                _PlannedDebit(
                    source=CreditSource.FREE,
                    amount=remaining,
                    company_id=company.company_id,
                ),
            )
        return plan

    def _apply_debits(self, *, session: Session, plan: list[_PlannedDebit]) -> bool:
        for debit in plan:
            if debit.source is CreditSource.PACKAGE:
                result = session.exec(
                    sa_update(PackagePurchase)
                    .where(
                        col(PackagePurchase.purchase_id) == debit.purchase_id,
                        col(PackagePurchase.credits_left) >= debit.amount,
                    )
                    .values(credits_left=col(PackagePurchase.credits_left) - debit.amount),
                )
            else:
                result = session.exec(
                    sa_update(Company)
                    .where(
                        col(Company.company_id) == debit.company_id,
                        col(Company.free_credits) >= debit.amount,
                    )
                    .values(free_credits=col(Company.free_credits) - debit.amount),
                )
            if result.rowcount != 1:
                return False
        return True

    # Orders

    def create_order(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        quantity: int,
        priority: TaskPriority,
        price_in_cents: int,
        now: datetime,
        order_id: str | None = None,
    ) -> OrderView:
        """Create an unpaid order. It has no tasks until funded."""

        if quantity <= 0:
            raise ValueError("Order quantity must be > 0")
        db_now = to_db_datetime(now)
        with Session(self.engine) as session:
            if session.get(AppUser, user_id) is None:
                raise NotFoundError(f"User not found: {user_id}", context={"user_id": user_id})
            row = Order(
                order_id=order_id or str(uuid4()),
                user_id=user_id,
                quantity=quantity,
                priority=priority.value,
                price_in_cents=price_in_cents,
                is_paid=False,
                credits_used=0,
                created_at=db_now,
                updated_at=db_now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_order_view(row)

    def get_order(self, *, order_id: str) -> OrderView | None:
        with Session(self.engine) as session:
            row = session.get(Order, order_id)
            return _to_order_view(row) if row is not None else None

    def mark_order_paid(self, *, order_id: str, payment_ref: str, now: datetime) -> TaskView:
        """Payment-confirmed signal: flip ``is_paid`` and insert the order's task."""

        with Session(self.engine) as session:
            task = self._fund_order(
                session=session,
                order_id=order_id,
                credits_used=0,
                payment_ref=payment_ref,
                now=now,
            )
            session.commit()
            return task

    def list_order_tasks(self, *, order_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .where(Task.order_id == order_id)
                .order_by(col(Task.created_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def _fund_order(
        self,
        *,
        session: Session,
        order_id: str,
        credits_used: int,
        payment_ref: str | None,
        now: datetime,
    ) -> TaskView:
        db_now = to_db_datetime(now)
        result = session.exec(
            sa_update(Order)
            .where(
                col(Order.order_id) == order_id,
                col(Order.is_paid).is_(False),
            )
            .values(
                is_paid=True,
                credits_used=credits_used,
                payment_ref=payment_ref,
                updated_at=db_now,
            ),
        )
        if result.rowcount != 1:
            session.rollback()
            if session.get(Order, order_id) is None:
                raise NotFoundError(f"Order not found: {order_id}", context={"order_id": order_id})
            raise StaleActionError(
                f"Order is already paid: {order_id}",
                context={"order_id": order_id},
            )

        order = session.exec(select(Order).where(Order.order_id == order_id)).one()
        row = Task(
            task_id=str(uuid4()),
            order_id=order_id,
            status=TaskStatus.PENDING.value,
            priority=order.priority,
            created_at=db_now,
            updated_at=db_now,
        )
        session.add(row)
        session.flush()
        self._add_event(
            session=session,
            task_id=row.task_id,
            assignment_id=None,
            event_type="task_created",
            status_from=None,
            status_to=TaskStatus.PENDING.value,
            details={
                "order_id": order_id,
                "funding": "credits" if credits_used else "payment",
                "credits_used": credits_used,
            },
            now=now,
        )
        return _to_task_view(row)

    # Tasks and offers

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            return _to_task_view(row) if row is not None else None

    def get_assignment(self, *, assignment_id: str) -> AssignmentView | None:
        with Session(self.engine) as session:
            row = session.get(TaskAssignment, assignment_id)
            return _to_assignment_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Task).order_by(col(Task.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Task.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def list_assignments(
        self,
        *,
        task_id: str | None = None,
        designer_id: str | None = None,
        status: AssignmentStatus | None = None,
    ) -> list[AssignmentView]:
        with Session(self.engine) as session:
            statement = select(TaskAssignment).order_by(
                col(TaskAssignment.assigned_at).asc(),
                col(TaskAssignment.assignment_id).asc(),
            )
            if task_id is not None:
                statement = statement.where(TaskAssignment.task_id == task_id)
            if designer_id is not None:
                statement = statement.where(TaskAssignment.designer_id == designer_id)
            if status is not None:
                statement = statement.where(TaskAssignment.status == status.value)
            rows = session.exec(statement).all()
        return [_to_assignment_view(row) for row in rows]

    def last_released_designer(self, *, task_id: str) -> str | None:
        """Designer of the task's most recent REJECTED or EXPIRED offer."""

        with Session(self.engine) as session:
            return session.exec(
                select(TaskAssignment.designer_id)
                .where(
                    TaskAssignment.task_id == task_id,
                    col(TaskAssignment.status).in_(
                        [AssignmentStatus.REJECTED.value, AssignmentStatus.EXPIRED.value],
                    ),
                )
                .order_by(
                    col(TaskAssignment.assigned_at).desc(),
                    col(TaskAssignment.assignment_id).desc(),
                )
                .limit(1),
            ).first()

    def list_schedulable_tasks(self, *, limit: int = 100) -> list[TaskView]:
        """Funded PENDING tasks without an outstanding offer, most urgent first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .where(
                    Task.status == TaskStatus.PENDING.value,
                    col(Task.current_assignment_id).is_(None),
                )
                .order_by(_PRIORITY_RANK, col(Task.created_at).asc(), col(Task.task_id).asc())
                .limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_stale_pending_assignments(
        self,
        *,
        cutoff: datetime,
        limit: int = 500,
    ) -> list[AssignmentView]:
        """PENDING offers assigned strictly before ``cutoff``."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskAssignment)
                .where(
                    TaskAssignment.status == AssignmentStatus.PENDING.value,
                    TaskAssignment.assigned_at < to_db_datetime(cutoff),
                )
                .order_by(col(TaskAssignment.assigned_at).asc())
                .limit(limit),
            ).all()
        return [_to_assignment_view(row) for row in rows]

    def open_offer(self, *, task_id: str, designer_id: str, now: datetime) -> AssignmentView:
        """Create a PENDING offer and point the task's current offer at it.

        The task pointer is claimed with a conditional update first, so two
        concurrent schedulers cannot both open an offer for the same task.
        """

        assignment_id = str(uuid4())
        db_now = to_db_datetime(now)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.PENDING.value,
                    col(Task.current_assignment_id).is_(None),
                )
                .values(current_assignment_id=assignment_id, updated_at=db_now),
            )
            if result.rowcount != 1:
                session.rollback()
                current = session.get(Task, task_id)
                if current is None:
                    raise NotFoundError(f"Task not found: {task_id}", context={"task_id": task_id})
                raise StaleActionError(
                    "Task is not open for a new offer "
                    f"(status={current.status}, current_assignment_id="
                    f"{current.current_assignment_id}).",
                    context={"task_id": task_id},
                )

            row = TaskAssignment(
                assignment_id=assignment_id,
                task_id=task_id,
                designer_id=designer_id,
                status=AssignmentStatus.PENDING.value,
                assigned_at=db_now,
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                assignment_id=assignment_id,
                event_type="offer_created",
                status_from=None,
                status_to=AssignmentStatus.PENDING.value,
                details={"designer_id": designer_id},
                now=now,
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise StaleActionError(
                    f"Task already has an active offer: {task_id}",
                    context={"task_id": task_id},
                ) from error
            session.refresh(row)
            return _to_assignment_view(row)

    def confirm_assignment(
        self,
        *,
        assignment_id: str,
        designer_id: str,
        now: datetime,
        deadline_cutoff: datetime,
    ) -> AssignmentView | None:
        """Lock a PENDING, unexpired offer to its designer and assign the task.

        Returns ``None`` when the offer guard does not match (not pending,
        other designer or assigned before ``deadline_cutoff``); the caller
        diagnoses which. Raises ``StaleActionError`` when the offer matched but
        the task is no longer waiting for it.
        """

        db_now = to_db_datetime(now)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskAssignment)
                .where(
                    col(TaskAssignment.assignment_id) == assignment_id,
                    col(TaskAssignment.designer_id) == designer_id,
                    col(TaskAssignment.status) == AssignmentStatus.PENDING.value,
                    col(TaskAssignment.assigned_at) >= to_db_datetime(deadline_cutoff),
                )
                .values(status=AssignmentStatus.CONFIRMED.value, confirmed_at=db_now),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            row = session.exec(
                select(TaskAssignment).where(TaskAssignment.assignment_id == assignment_id),
            ).one()
            task_result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == row.task_id,
                    col(Task.status) == TaskStatus.PENDING.value,
                    col(Task.current_assignment_id) == assignment_id,
                )
                .values(
                    status=TaskStatus.ASSIGNED.value,
                    assigned_to_id=designer_id,
                    assigned_at=db_now,
                    current_assignment_id=assignment_id,
                    updated_at=db_now,
                ),
            )
            if task_result.rowcount != 1:
                session.rollback()
                raise StaleActionError(
                    "Task is no longer waiting for this offer.",
                    context={"assignment_id": assignment_id, "task_id": row.task_id},
                )
            self._add_event(
                session=session,
                task_id=row.task_id,
                assignment_id=assignment_id,
                event_type="offer_confirmed",
                status_from=AssignmentStatus.PENDING.value,
                status_to=AssignmentStatus.CONFIRMED.value,
                details={"designer_id": designer_id, "task_status": TaskStatus.ASSIGNED.value},
                now=now,
            )
            session.commit()
            session.refresh(row)
            return _to_assignment_view(row)

    def release_assignment(
        self,
        *,
        assignment_id: str,
        status: AssignmentStatus,
        now: datetime,
        designer_id: str | None = None,
        deadline_cutoff: datetime | None = None,
    ) -> AssignmentView | None:
        """Move a PENDING offer to REJECTED or EXPIRED and free the task.

        Rejection is guarded on the designer; expiry on ``assigned_at <
        deadline_cutoff``. Returns ``None`` when another transition won.
        """

        if status not in {AssignmentStatus.REJECTED, AssignmentStatus.EXPIRED}:
            raise ValueError(f"Unsupported release status: {status}")
        db_now = to_db_datetime(now)
        conditions = [
            col(TaskAssignment.assignment_id) == assignment_id,
            col(TaskAssignment.status) == AssignmentStatus.PENDING.value,
        ]
        if status is AssignmentStatus.REJECTED:
            if designer_id is None:
                raise ValueError("Rejection requires designer_id")
            conditions.append(col(TaskAssignment.designer_id) == designer_id)
            values: dict[str, object] = {"status": status.value, "rejected_at": db_now}
            event_type = "offer_rejected"
        else:
            if deadline_cutoff is None:
                raise ValueError("Expiry requires deadline_cutoff")
            conditions.append(
                col(TaskAssignment.assigned_at) < to_db_datetime(deadline_cutoff),
            )
            values = {"status": status.value, "expired_at": db_now}
            event_type = "offer_expired"

        with Session(self.engine) as session:
            result = session.exec(sa_update(TaskAssignment).where(*conditions).values(**values))
            if result.rowcount != 1:
                session.rollback()
                return None
            row = session.exec(
                select(TaskAssignment).where(TaskAssignment.assignment_id == assignment_id),
            ).one()
            session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == row.task_id,
                    col(Task.current_assignment_id) == assignment_id,
                )
                .values(current_assignment_id=None, updated_at=db_now),
            )
            self._add_event(
                session=session,
                task_id=row.task_id,
                assignment_id=assignment_id,
                event_type=event_type,
                status_from=AssignmentStatus.PENDING.value,
                status_to=status.value,
                details={"designer_id": row.designer_id},
                now=now,
            )
            session.commit()
            session.refresh(row)
            return _to_assignment_view(row)

    def transition_task(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        now: datetime,
        event_type: str,
        details: dict[str, object] | None = None,
    ) -> TaskView | None:
        """Status-guarded task update. Returns ``None`` if the status moved on."""

        db_now = to_db_datetime(now)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == from_status.value,
                )
                .values(status=to_status.value, updated_at=db_now),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                task_id=task_id,
                assignment_id=None,
                event_type=event_type,
                status_from=from_status.value,
                status_to=to_status.value,
                details=details or {},
                now=now,
            )
            session.commit()
            row = session.exec(select(Task).where(Task.task_id == task_id)).one()
            return _to_task_view(row)

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task with offer history and event stream."""

        with Session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                return None
            assignment_rows = session.exec(
                select(TaskAssignment)
                .where(TaskAssignment.task_id == task_id)
                .order_by(
                    col(TaskAssignment.assigned_at).asc(),
                    col(TaskAssignment.assignment_id).asc(),
                ),
            ).all()
            event_rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.created_at).asc(), col(TaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    assignment_id=row.assignment_id,
                    event_type=row.event_type,
                    status_from=row.status_from,
                    status_to=row.status_to,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(
            task=_to_task_view(task),
            assignments=[_to_assignment_view(row) for row in assignment_rows],
            events=events,
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        assignment_id: str | None,
        event_type: str,
        status_from: str | None,
        status_to: str | None,
        details: dict[str, object],
        now: datetime,
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                assignment_id=assignment_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(now),
            ),
        )


def _validate_hhmm(value: str) -> None:
    parts = value.split(":")
    if (
        len(parts) != 2
        or len(parts[0]) != 2
        or len(parts[1]) != 2
        or not parts[0].isdigit()
        or not parts[1].isdigit()
        or int(parts[0]) > 23
        or int(parts[1]) > 59
    ):
        raise ValueError(f"Invalid HH:MM time: {value!r}")


def _to_company_view(row: Company) -> CompanyView:
    return CompanyView(
        company_id=row.company_id,
        name=row.name,
        free_credits=row.free_credits,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_user_view(row: AppUser) -> UserView:
    return UserView(
        user_id=row.user_id,
        display_name=row.display_name,
        role=UserRole(row.role),
        company_id=row.company_id,
        is_active=row.is_active,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_availability(row: DesignerAvailability) -> AvailabilityWindow:
    return AvailabilityWindow(
        designer_id=row.designer_id,
        day=row.day,
        start_time=row.start_time,
        end_time=row.end_time,
        is_available=row.is_available,
    )


def _to_purchase_view(row: PackagePurchase) -> PackagePurchaseView:
    return PackagePurchaseView(
        purchase_id=row.purchase_id,
        user_id=row.user_id,
        company_id=row.company_id,
        package_name=row.package_name,
        credits_total=row.credits_total,
        credits_left=row.credits_left,
        expires_at=optional_utc(row.expires_at),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_order_view(row: Order) -> OrderView:
    return OrderView(
        order_id=row.order_id,
        user_id=row.user_id,
        quantity=row.quantity,
        priority=TaskPriority(row.priority),
        price_in_cents=row.price_in_cents,
        is_paid=row.is_paid,
        credits_used=row.credits_used,
        payment_ref=row.payment_ref,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        order_id=row.order_id,
        status=TaskStatus(row.status),
        priority=TaskPriority(row.priority),
        assigned_to_id=row.assigned_to_id,
        current_assignment_id=row.current_assignment_id,
        assigned_at=optional_utc(row.assigned_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_assignment_view(row: TaskAssignment) -> AssignmentView:
    return AssignmentView(
        assignment_id=row.assignment_id,
        task_id=row.task_id,
        designer_id=row.designer_id,
        status=AssignmentStatus(row.status),
        assigned_at=to_utc_aware_datetime(row.assigned_at),
        confirmed_at=optional_utc(row.confirmed_at),
        rejected_at=optional_utc(row.rejected_at),
        expired_at=optional_utc(row.expired_at),
    )
