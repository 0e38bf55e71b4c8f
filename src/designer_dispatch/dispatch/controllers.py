"""Controllers for dispatch CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

from designer_dispatch.config import Settings
from designer_dispatch.dispatch.models import (
    AssignmentView,
    Caller,
    OrderPlacement,
    TaskPriority,
    TaskStatus,
    TaskView,
    UserRole,
)
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.services import (
    DispatchService,
    PlaceOrder,
    build_dispatch_service,
)
from designer_dispatch.storage.common import utc_now

TASK_ACTIONS = (
    "start",
    "submit",
    "approve",
    "fail-qa",
    "rework",
    "complaint",
    "cancel",
)


@dataclass(slots=True)
class DbCommand:
    """CLI input for schema management."""

    db_path: Path | None


@dataclass(slots=True)
class CompanyAddCommand:
    db_path: Path | None
    company_id: str
    name: str
    free_credits: int


@dataclass(slots=True)
class UserAddCommand:
    db_path: Path | None
    user_id: str
    display_name: str
    role: str
    company_id: str | None


@dataclass(slots=True)
class UserListCommand:
    db_path: Path | None
    role: str | None


@dataclass(slots=True)
class AvailabilitySetCommand:
    """CLI input replacing one designer's windows for one day."""

    db_path: Path | None
    designer_id: str
    day: date
    windows: tuple[str, ...]


@dataclass(slots=True)
class AvailabilityListCommand:
    db_path: Path | None
    start: date
    end: date
    designer_id: str | None


@dataclass(slots=True)
class CreditsBuyCommand:
    """CLI input for a payment-confirmed package purchase."""

    db_path: Path | None
    user_id: str
    credits: int
    package_name: str
    company_id: str | None
    expires_in_days: int | None


@dataclass(slots=True)
class CreditsBalanceCommand:
    db_path: Path | None
    user_id: str


@dataclass(slots=True)
class OrderPlaceCommand:
    db_path: Path | None
    user_id: str
    quantity: int
    priority: str
    use_credits: bool


@dataclass(slots=True)
class OrderPayCommand:
    db_path: Path | None
    order_id: str
    payment_ref: str


@dataclass(slots=True)
class OfferListCommand:
    db_path: Path | None
    caller_id: str


@dataclass(slots=True)
class OfferActionCommand:
    """CLI input for confirm/reject of one offer."""

    db_path: Path | None
    caller_id: str
    assignment_id: str


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskActionCommand:
    """CLI input for a task work transition."""

    db_path: Path | None
    caller_id: str
    task_id: str
    action: str
    reason: str | None = None


class DispatchCliController:
    """Coordinates accounts, funding, offers and task CLI operations.

    Domain failures propagate as ``DispatchError`` for the CLI layer to report.
    """

    def init_db(self, command: DbCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings):
            pass
        return [f"Schema is up to date: {settings.db_path}"]

    def add_company(self, command: CompanyAddCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            company = repository.add_company(
                company_id=command.company_id,
                name=command.name,
                free_credits=command.free_credits,
            )
        return [
            f"Company added: company_id={company.company_id} name={company.name} "
            f"free_credits={company.free_credits}",
        ]

    def add_user(self, command: UserAddCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            user = repository.add_user(
                user_id=command.user_id,
                display_name=command.display_name,
                role=UserRole(command.role.lower()),
                company_id=command.company_id,
            )
        return [
            f"User added: user_id={user.user_id} role={user.role.value} "
            f"company={user.company_id or '-'}",
        ]

    def list_users(self, command: UserListCommand) -> list[str]:
        role = UserRole(command.role.lower()) if command.role else None
        with _repository(_settings(command.db_path)) as repository:
            users = repository.list_users(role=role)
        if not users:
            return ["No users found."]
        return [
            f"{user.user_id} role={user.role.value} name={user.display_name} "
            f"company={user.company_id or '-'} active={user.is_active} "
            f"created_at={user.created_at.isoformat()}"
            for user in users
        ]

    def set_availability(self, command: AvailabilitySetCommand) -> list[str]:
        windows = [_parse_window(raw) for raw in command.windows]
        with _repository(_settings(command.db_path)) as repository:
            saved = repository.set_availability(
                designer_id=command.designer_id,
                day=command.day,
                windows=windows,
            )
        if not saved:
            return [f"Cleared availability of {command.designer_id} on {command.day.isoformat()}"]
        return [
            f"Availability of {command.designer_id} on {command.day.isoformat()}: "
            + ", ".join(f"{window.start_time}-{window.end_time}" for window in saved),
        ]

    def list_availability(self, command: AvailabilityListCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            windows = repository.list_availability(
                start=command.start,
                end=command.end,
                designer_id=command.designer_id,
            )
        if not windows:
            return ["No availability declared."]
        return [
            f"{window.day.isoformat()} {window.designer_id} "
            f"{window.start_time}-{window.end_time}"
            for window in windows
        ]

    def buy_credits(self, command: CreditsBuyCommand) -> list[str]:
        expires_at = (
            utc_now() + timedelta(days=command.expires_in_days)
            if command.expires_in_days is not None
            else None
        )
        with _repository(_settings(command.db_path)) as repository:
            purchase = repository.add_package_purchase(
                user_id=command.user_id,
                credits=command.credits,
                package_name=command.package_name,
                company_id=command.company_id,
                expires_at=expires_at,
            )
        return [
            f"Package recorded: purchase_id={purchase.purchase_id} "
            f"credits={purchase.credits_total} "
            f"expires_at={purchase.expires_at.isoformat() if purchase.expires_at else '-'}",
        ]

    def balance(self, command: CreditsBalanceCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            balance = service.ledger.balance(user_id=command.user_id)
        return [
            f"Balance for {balance.user_id}: total={balance.total} "
            f"package={balance.package_credits} free={balance.free_credits}",
        ]

    def place_order(self, command: OrderPlaceCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            placement = service.place_order(
                PlaceOrder(
                    user_id=command.user_id,
                    quantity=command.quantity,
                    priority=TaskPriority(command.priority.lower()),
                    use_credits=command.use_credits,
                ),
            )
        return _placement_lines(placement)

    def pay_order(self, command: OrderPayCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            placement = service.confirm_payment(
                order_id=command.order_id,
                payment_ref=command.payment_ref,
            )
        return _placement_lines(placement)

    def list_offers(self, command: OfferListCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            caller = service.caller_for(command.caller_id)
            offers = service.pending_offers(caller=caller)
            window = service.state_machine.window
            now = service.clock.now()
        if not offers:
            return [f"No pending offers for {command.caller_id}."]
        return [
            f"{offer.assignment_id} task={offer.task_id} "
            f"assigned_at={offer.assigned_at.isoformat()} "
            f"remaining={int(window.remaining(offer.assigned_at, now).total_seconds())}s"
            for offer in offers
        ]

    def confirm_offer(self, command: OfferActionCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            caller = service.caller_for(command.caller_id)
            offer = service.confirm_offer(caller=caller, assignment_id=command.assignment_id)
        return [_offer_line("Offer confirmed", offer)]

    def reject_offer(self, command: OfferActionCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            caller = service.caller_for(command.caller_id)
            offer = service.reject_offer(caller=caller, assignment_id=command.assignment_id)
            task = service.repository.get_task(task_id=offer.task_id)
        lines = [_offer_line("Offer rejected", offer)]
        if task is not None and task.current_assignment_id:
            lines.append(f"Task {task.task_id} re-offered: assignment={task.current_assignment_id}")
        else:
            lines.append(f"Task {offer.task_id} waits for an available designer.")
        return lines

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        status = TaskStatus(command.status.lower()) if command.status else None
        with _repository(_settings(command.db_path)) as repository:
            tasks = repository.list_tasks(status=status, limit=command.limit)
        if not tasks:
            return ["No tasks found."]
        return [_task_line(task) for task in tasks]

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Order: {task.order_id}",
            f"Status: {task.status.value}",
            f"Priority: {task.priority.value}",
            f"Assigned to: {task.assigned_to_id or '-'}",
            f"Current offer: {task.current_assignment_id or '-'}",
            f"Offers: {len(details.assignments)}",
        ]
        for assignment in details.assignments:
            lines.append(
                f"  offer {assignment.assignment_id} designer={assignment.designer_id} "
                f"status={assignment.status.value} "
                f"assigned_at={assignment.assigned_at.isoformat()}",
            )
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from or '-'} -> {event.status_to or '-'}",
            )
        return lines

    def task_action(self, command: TaskActionCommand) -> list[str]:
        if command.action not in TASK_ACTIONS:
            raise ValueError(f"Unknown task action: {command.action}")
        with _service(_settings(command.db_path)) as service:
            caller = service.caller_for(command.caller_id)
            task = _run_task_action(service, command=command, caller=caller)
        return [_task_line(task)]

    def sweep(self, command: DbCommand) -> list[str]:
        with _service(_settings(command.db_path)) as service:
            summary = service.run_sweep()
        return [
            "Sweep summary: "
            f"expired={summary.expired} offered={summary.offered} "
            f"still_unassigned={summary.still_unassigned}",
        ]


def _run_task_action(
    service: DispatchService,
    *,
    command: TaskActionCommand,
    caller: Caller,
) -> TaskView:
    task_id = command.task_id
    if command.action == "start":
        return service.start_work(caller=caller, task_id=task_id)
    if command.action == "submit":
        return service.submit_for_qa(caller=caller, task_id=task_id)
    if command.action == "approve":
        return service.approve(caller=caller, task_id=task_id)
    if command.action == "fail-qa":
        return service.fail_qa(caller=caller, task_id=task_id, reason=command.reason)
    if command.action == "rework":
        return service.rework(caller=caller, task_id=task_id)
    if command.action == "complaint":
        return service.complaint(caller=caller, task_id=task_id, reason=command.reason)
    return service.cancel(caller=caller, task_id=task_id)


def _parse_window(raw: str) -> tuple[str, str]:
    start, sep, end = raw.partition("-")
    if not sep:
        raise ValueError(f"Availability window must look like HH:MM-HH:MM, got {raw!r}")
    return start.strip(), end.strip()


def _placement_lines(placement: OrderPlacement) -> list[str]:
    order = placement.order
    lines = [
        f"Order: order_id={order.order_id} quantity={order.quantity} "
        f"priority={order.priority.value} price_in_cents={order.price_in_cents} "
        f"paid={order.is_paid} credits_used={order.credits_used}",
    ]
    if placement.task is None:
        lines.append("Awaiting payment; no task created yet.")
        return lines
    lines.append(_task_line(placement.task))
    if placement.offer is not None:
        lines.append(_offer_line("Offered", placement.offer))
    else:
        lines.append("No designer available; the sweep will retry.")
    return lines


def _offer_line(prefix: str, offer: AssignmentView) -> str:
    return (
        f"{prefix}: assignment_id={offer.assignment_id} task={offer.task_id} "
        f"designer={offer.designer_id} status={offer.status.value}"
    )


def _task_line(task: TaskView) -> str:
    return (
        f"Task: task_id={task.task_id} status={task.status.value} "
        f"priority={task.priority.value} assigned_to={task.assigned_to_id or '-'} "
        f"current_offer={task.current_assignment_id or '-'}"
    )


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[DispatchRepository]:
    repository = DispatchRepository(
        settings.db_path,
        busy_timeout_ms=settings.assignment.busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _service(settings: Settings) -> Iterator[DispatchService]:
    with _repository(settings) as repository:
        yield build_dispatch_service(settings=settings, repository=repository)
