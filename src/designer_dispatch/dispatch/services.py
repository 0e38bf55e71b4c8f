"""Use-case services for order funding and designer dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from designer_dispatch.clock import Clock, SystemClock
from designer_dispatch.config import Settings
from designer_dispatch.dispatch.ledger import CreditLedger
from designer_dispatch.dispatch.models import (
    AssignmentStatus,
    AssignmentView,
    Caller,
    CreditReservation,
    OrderPlacement,
    OrderView,
    SweepSummary,
    TaskPriority,
    TaskStatus,
    TaskView,
    UserRole,
)
from designer_dispatch.dispatch.notifications import LoggingNotifier, Notifier
from designer_dispatch.dispatch.pricing import calculate_order_price
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.requeue import RequeueTrigger
from designer_dispatch.dispatch.scheduler import AssignmentScheduler
from designer_dispatch.dispatch.state_machine import TaskStateMachine
from designer_dispatch.dispatch.sweep import ExpirySweep
from designer_dispatch.dispatch.window import ConfirmationWindow
from designer_dispatch.errors import (
    ForbiddenError,
    InsufficientCreditError,
    NoDesignerAvailableError,
    NotFoundError,
    StaleActionError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlaceOrder:
    """High-level command to place an order for ``quantity`` graphics."""

    user_id: str
    quantity: int
    priority: TaskPriority = TaskPriority.NORMAL
    use_credits: bool = True


class DispatchService:
    """Coordinates pricing, funding, scheduling and offer handling."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: DispatchRepository,
        settings: Settings,
        clock: Clock,
        ledger: CreditLedger,
        state_machine: TaskStateMachine,
        scheduler: AssignmentScheduler,
        sweep: ExpirySweep,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.clock = clock
        self.ledger = ledger
        self.state_machine = state_machine
        self.scheduler = scheduler
        self.sweep = sweep

    def place_order(self, command: PlaceOrder) -> OrderPlacement:
        """Price and create an order, funding it from credits when possible.

        Orders that credits cannot cover stay unpaid until ``confirm_payment``.
        A funded task is offered right away; if nobody is available it waits
        for the sweep.
        """

        price = calculate_order_price(
            quantity=command.quantity,
            priority=command.priority,
            pricing=self.settings.pricing,
        )
        order = self.repository.create_order(
            user_id=command.user_id,
            quantity=command.quantity,
            priority=command.priority,
            price_in_cents=price,
            now=self.clock.now(),
        )
        reservation: CreditReservation | None = None
        if command.use_credits:
            try:
                reservation = self.ledger.reserve(
                    user_id=command.user_id,
                    amount=command.quantity,
                    order_id=order.order_id,
                )
            except InsufficientCreditError as error:
                logger.info(
                    "Order %s awaits payment: %s",
                    order.order_id,
                    error.message,
                )

        task = reservation.task if reservation is not None else None
        offer = self._try_assign(task) if task is not None else None
        refreshed = self._require_order(order.order_id)
        return OrderPlacement(
            order=refreshed,
            reservation=reservation,
            task=self._reload_task(task),
            offer=offer,
        )

    def confirm_payment(self, *, order_id: str, payment_ref: str) -> OrderPlacement:
        """Payment-confirmed signal for an unpaid order."""

        task = self.repository.mark_order_paid(
            order_id=order_id,
            payment_ref=payment_ref,
            now=self.clock.now(),
        )
        logger.info("Order %s paid (ref=%s), task %s created", order_id, payment_ref, task.task_id)
        offer = self._try_assign(task)
        order = self._require_order(order_id)
        return OrderPlacement(
            order=order,
            reservation=None,
            task=self._reload_task(task),
            offer=offer,
        )

    def confirm_offer(self, *, caller: Caller, assignment_id: str) -> AssignmentView:
        return self.state_machine.confirm(caller=caller, assignment_id=assignment_id)

    def reject_offer(self, *, caller: Caller, assignment_id: str) -> AssignmentView:
        return self.state_machine.reject(caller=caller, assignment_id=assignment_id)

    def pending_offers(self, *, caller: Caller) -> list[AssignmentView]:
        """Live offers for the calling designer, oldest first.

        Overdue offers met on the way are expired (and requeued) and left out,
        as are offers on tasks that were cancelled meanwhile.
        """

        if caller.role not in {UserRole.DESIGNER, UserRole.ADMIN}:
            raise ForbiddenError(
                f"Role {caller.role.value} has no offers.",
                context={"caller_id": caller.caller_id},
            )
        live: list[AssignmentView] = []
        for assignment in self.repository.list_assignments(
            designer_id=caller.caller_id,
            status=AssignmentStatus.PENDING,
        ):
            if self.state_machine.is_stale(assignment):
                self.state_machine.expire(assignment_id=assignment.assignment_id)
                continue
            task = self.repository.get_task(task_id=assignment.task_id)
            if task is None or task.status is not TaskStatus.PENDING:
                continue
            live.append(assignment)
        return live

    def assign_task(self, *, task_id: str) -> AssignmentView:
        return self.scheduler.assign(task_id=task_id)

    def run_sweep(self) -> SweepSummary:
        return self.sweep.run_once()

    def start_work(self, *, caller: Caller, task_id: str) -> TaskView:
        return self.state_machine.start_work(caller=caller, task_id=task_id)

    def submit_for_qa(self, *, caller: Caller, task_id: str) -> TaskView:
        return self.state_machine.submit_for_qa(caller=caller, task_id=task_id)

    def approve(self, *, caller: Caller, task_id: str) -> TaskView:
        return self.state_machine.approve(caller=caller, task_id=task_id)

    def fail_qa(self, *, caller: Caller, task_id: str, reason: str | None = None) -> TaskView:
        return self.state_machine.fail_qa(caller=caller, task_id=task_id, reason=reason)

    def rework(self, *, caller: Caller, task_id: str) -> TaskView:
        return self.state_machine.rework(caller=caller, task_id=task_id)

    def complaint(self, *, caller: Caller, task_id: str, reason: str | None = None) -> TaskView:
        return self.state_machine.complaint(caller=caller, task_id=task_id, reason=reason)

    def cancel(self, *, caller: Caller, task_id: str) -> TaskView:
        return self.state_machine.cancel(caller=caller, task_id=task_id)

    def caller_for(self, user_id: str) -> Caller:
        """Resolve a stored user into an operation identity."""

        user = self.repository.get_user(user_id=user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}", context={"user_id": user_id})
        return Caller(caller_id=user.user_id, role=user.role)

    def _try_assign(self, task: TaskView) -> AssignmentView | None:
        try:
            return self.scheduler.assign(task_id=task.task_id)
        except NoDesignerAvailableError:
            logger.info("Task %s queued without a designer; sweep will retry", task.task_id)
            return None
        except StaleActionError as error:
            # Funding is committed; another scheduler got to the task first.
            logger.info("Task %s scheduled elsewhere: %s", task.task_id, error.message)
        current = self.repository.get_task(task_id=task.task_id)
        if current is None or current.current_assignment_id is None:
            return None
        return self.repository.get_assignment(assignment_id=current.current_assignment_id)

    def _require_order(self, order_id: str) -> OrderView:
        order = self.repository.get_order(order_id=order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}", context={"order_id": order_id})
        return order

    def _reload_task(self, task: TaskView | None) -> TaskView | None:
        if task is None:
            return None
        return self.repository.get_task(task_id=task.task_id)


def build_dispatch_service(
    *,
    settings: Settings,
    repository: DispatchRepository | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
) -> DispatchService:
    """Wire repository, ledger, state machine, scheduler and sweep."""

    clock = clock or SystemClock()
    repository = repository or DispatchRepository(
        settings.db_path,
        busy_timeout_ms=settings.assignment.busy_timeout_ms,
    )
    state_machine = TaskStateMachine(
        repository=repository,
        window=ConfirmationWindow.from_minutes(settings.assignment.confirmation_timeout_minutes),
        clock=clock,
        notifier=notifier if notifier is not None else LoggingNotifier(),
    )
    scheduler = AssignmentScheduler(
        state_machine=state_machine,
        repository=repository,
        clock=clock,
        max_active_offers_per_designer=settings.assignment.max_active_offers_per_designer,
    )
    state_machine.bind_requeue(RequeueTrigger(scheduler))
    return DispatchService(
        repository=repository,
        settings=settings,
        clock=clock,
        ledger=CreditLedger(repository=repository, clock=clock),
        state_machine=state_machine,
        scheduler=scheduler,
        sweep=ExpirySweep(
            repository=repository,
            state_machine=state_machine,
            scheduler=scheduler,
        ),
    )
