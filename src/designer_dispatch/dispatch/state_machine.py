"""Authoritative task and offer transitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NoReturn

from designer_dispatch.clock import Clock
from designer_dispatch.dispatch.models import (
    AssignmentStatus,
    AssignmentView,
    Caller,
    TaskStatus,
    TaskView,
    UserRole,
)
from designer_dispatch.dispatch.notifications import Notifier, safe_notify
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.window import ConfirmationWindow
from designer_dispatch.errors import (
    AssignmentExpiredError,
    ForbiddenError,
    NotFoundError,
    StaleActionError,
)

if TYPE_CHECKING:
    from designer_dispatch.dispatch.requeue import RequeueTrigger

logger = logging.getLogger(__name__)

_OFFER_ROLES = frozenset({UserRole.DESIGNER, UserRole.ADMIN})

_CANCELLABLE = (
    TaskStatus.PENDING,
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.QA_PENDING,
    TaskStatus.QA_FAILED,
)


class TaskStateMachine:
    """Every task/offer mutation goes through here.

    Each transition is one guarded conditional update in the repository;
    losing a race surfaces as ``StaleActionError`` (or ``None`` for the
    idempotent expiry), never as a silent overwrite.
    """

    def __init__(
        self,
        *,
        repository: DispatchRepository,
        window: ConfirmationWindow,
        clock: Clock,
        notifier: Notifier | None = None,
    ) -> None:
        self.repository = repository
        self.window = window
        self.clock = clock
        self.notifier = notifier
        self._requeue: RequeueTrigger | None = None

    def bind_requeue(self, requeue: RequeueTrigger) -> None:
        self._requeue = requeue

    # Offers

    def open_offer(self, *, task_id: str, designer_id: str) -> AssignmentView:
        assignment = self.repository.open_offer(
            task_id=task_id,
            designer_id=designer_id,
            now=self.clock.now(),
        )
        logger.info(
            "Offered task %s to designer %s (assignment=%s)",
            task_id,
            designer_id,
            assignment.assignment_id,
        )
        safe_notify(self.notifier, event_type="offer_created", assignment=assignment)
        return assignment

    def confirm(self, *, caller: Caller, assignment_id: str) -> AssignmentView:
        """Accept an offer within its confirmation window.

        Past the deadline the offer is expired (and the task requeued) instead,
        and ``AssignmentExpiredError`` is raised.
        """

        assignment = self._load_for_designer(caller=caller, assignment_id=assignment_id)
        now = self.clock.now()
        confirmed = self.repository.confirm_assignment(
            assignment_id=assignment_id,
            designer_id=caller.caller_id,
            now=now,
            deadline_cutoff=self.window.cutoff(now),
        )
        if confirmed is None:
            self._raise_for_missed_transition(assignment_id=assignment_id, action="confirm")
        logger.info(
            "Designer %s confirmed assignment %s for task %s",
            caller.caller_id,
            assignment_id,
            assignment.task_id,
        )
        safe_notify(self.notifier, event_type="confirmed", assignment=confirmed)
        return confirmed

    def reject(self, *, caller: Caller, assignment_id: str) -> AssignmentView:
        """Decline an offer; the task is requeued excluding this designer."""

        self._load_for_designer(caller=caller, assignment_id=assignment_id)
        rejected = self.repository.release_assignment(
            assignment_id=assignment_id,
            status=AssignmentStatus.REJECTED,
            designer_id=caller.caller_id,
            now=self.clock.now(),
        )
        if rejected is None:
            self._raise_for_missed_transition(assignment_id=assignment_id, action="reject")
        logger.info(
            "Designer %s rejected assignment %s for task %s",
            caller.caller_id,
            assignment_id,
            rejected.task_id,
        )
        safe_notify(self.notifier, event_type="rejected", assignment=rejected)
        self._requeue_released(rejected)
        return rejected

    def expire(self, *, assignment_id: str, requeue: bool = True) -> AssignmentView | None:
        """Expire a PENDING offer past its deadline.

        Idempotent: returns ``None`` when the offer is not pending, is still
        within its window or another caller expired it first. Only the winning
        caller notifies and requeues.
        """

        expired = self.repository.release_assignment(
            assignment_id=assignment_id,
            status=AssignmentStatus.EXPIRED,
            now=self.clock.now(),
            deadline_cutoff=self.window.cutoff(self.clock.now()),
        )
        if expired is None:
            return None
        logger.info(
            "Expired assignment %s for task %s (designer=%s)",
            assignment_id,
            expired.task_id,
            expired.designer_id,
        )
        safe_notify(self.notifier, event_type="expired", assignment=expired)
        if requeue:
            self._requeue_released(expired)
        return expired

    def is_stale(self, assignment: AssignmentView) -> bool:
        return assignment.status is AssignmentStatus.PENDING and self.window.is_expired(
            assignment.assigned_at,
            self.clock.now(),
        )

    # Task work

    def start_work(self, *, caller: Caller, task_id: str) -> TaskView:
        self._require_assignee(caller=caller, task_id=task_id)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.ASSIGNED,
            to_status=TaskStatus.IN_PROGRESS,
            event_type="work_started",
        )

    def submit_for_qa(self, *, caller: Caller, task_id: str) -> TaskView:
        self._require_assignee(caller=caller, task_id=task_id)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.IN_PROGRESS,
            to_status=TaskStatus.QA_PENDING,
            event_type="submitted_for_qa",
        )

    def rework(self, *, caller: Caller, task_id: str) -> TaskView:
        self._require_assignee(caller=caller, task_id=task_id)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.QA_FAILED,
            to_status=TaskStatus.IN_PROGRESS,
            event_type="rework_started",
        )

    def approve(self, *, caller: Caller, task_id: str) -> TaskView:
        _require_admin(caller)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.QA_PENDING,
            to_status=TaskStatus.COMPLETED,
            event_type="qa_approved",
        )

    def fail_qa(self, *, caller: Caller, task_id: str, reason: str | None = None) -> TaskView:
        _require_admin(caller)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.QA_PENDING,
            to_status=TaskStatus.QA_FAILED,
            event_type="qa_failed",
            extra={"reason": reason} if reason else None,
        )

    def complaint(self, *, caller: Caller, task_id: str, reason: str | None = None) -> TaskView:
        _require_admin(caller)
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=TaskStatus.COMPLETED,
            to_status=TaskStatus.COMPLAINT,
            event_type="complaint_opened",
            extra={"reason": reason} if reason else None,
        )

    def cancel(self, *, caller: Caller, task_id: str) -> TaskView:
        """Mark a task cancelled; a pending offer on it can no longer be confirmed."""

        _require_admin(caller)
        task = self._get_task(task_id)
        if task.status not in _CANCELLABLE:
            raise StaleActionError(
                f"Task {task_id} cannot be cancelled from status {task.status.value}.",
                context={"task_id": task_id, "status": task.status.value},
            )
        return self._transition(
            caller=caller,
            task_id=task_id,
            from_status=task.status,
            to_status=TaskStatus.CANCELLED,
            event_type="cancelled",
        )

    # Internals

    def _load_for_designer(self, *, caller: Caller, assignment_id: str) -> AssignmentView:
        if caller.role not in _OFFER_ROLES:
            raise ForbiddenError(
                f"Role {caller.role.value} cannot act on offers.",
                context={"caller_id": caller.caller_id},
            )
        assignment = self.repository.get_assignment(assignment_id=assignment_id)
        if assignment is None:
            raise NotFoundError(
                f"Assignment not found: {assignment_id}",
                context={"assignment_id": assignment_id},
            )
        if assignment.designer_id != caller.caller_id:
            raise ForbiddenError(
                "This assignment is not for you.",
                context={"assignment_id": assignment_id, "caller_id": caller.caller_id},
            )
        return assignment

    def _raise_for_missed_transition(self, *, assignment_id: str, action: str) -> NoReturn:
        current = self.repository.get_assignment(assignment_id=assignment_id)
        if current is None:
            raise NotFoundError(
                f"Assignment not found: {assignment_id}",
                context={"assignment_id": assignment_id},
            )
        context = {"assignment_id": assignment_id, "status": current.status.value}
        if current.status is AssignmentStatus.EXPIRED:
            raise AssignmentExpiredError(
                f"Cannot {action}: assignment has expired.",
                context=context,
            )
        if current.status is AssignmentStatus.PENDING and self.is_stale(current):
            self.expire(assignment_id=assignment_id)
            raise AssignmentExpiredError(
                f"Cannot {action}: assignment has expired.",
                context={**context, "status": AssignmentStatus.EXPIRED.value},
            )
        raise StaleActionError(
            f"Cannot {action}: assignment is no longer pending.",
            context=context,
        )

    def _requeue_released(self, assignment: AssignmentView) -> None:
        if self._requeue is None:
            return
        self._requeue.on_released(
            task_id=assignment.task_id,
            released_designer_id=assignment.designer_id,
        )

    def _get_task(self, task_id: str) -> TaskView:
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", context={"task_id": task_id})
        return task

    def _require_assignee(self, *, caller: Caller, task_id: str) -> None:
        task = self._get_task(task_id)
        if caller.role is UserRole.ADMIN:
            return
        if caller.role is not UserRole.DESIGNER or task.assigned_to_id != caller.caller_id:
            raise ForbiddenError(
                "Task is not assigned to you.",
                context={"task_id": task_id, "caller_id": caller.caller_id},
            )

    def _transition(  # noqa: PLR0913
        self,
        *,
        caller: Caller,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        event_type: str,
        extra: dict[str, object] | None = None,
    ) -> TaskView:
        details: dict[str, object] = {"caller_id": caller.caller_id}
        if extra:
            details.update(extra)
        updated = self.repository.transition_task(
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            now=self.clock.now(),
            event_type=event_type,
            details=details,
        )
        if updated is None:
            current = self._get_task(task_id)
            raise StaleActionError(
                f"Task {task_id} is {current.status.value}, expected {from_status.value}.",
                context={"task_id": task_id, "status": current.status.value},
            )
        logger.info("Task %s: %s -> %s", task_id, from_status.value, to_status.value)
        return updated


def _require_admin(caller: Caller) -> None:
    if caller.role is not UserRole.ADMIN:
        raise ForbiddenError(
            "Admin role required.",
            context={"caller_id": caller.caller_id},
        )
