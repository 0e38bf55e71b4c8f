"""Periodic expiry and scheduling pass."""

from __future__ import annotations

import logging

from designer_dispatch.dispatch.models import SweepSummary
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.scheduler import AssignmentScheduler
from designer_dispatch.dispatch.state_machine import TaskStateMachine
from designer_dispatch.errors import NoDesignerAvailableError, StaleActionError

logger = logging.getLogger(__name__)


class ExpirySweep:
    """Expire overdue offers, then offer every unassigned funded task.

    Safe to run concurrently with request handlers and with other sweeps:
    every step is a guarded transition, so a lost race is just skipped.
    """

    def __init__(
        self,
        *,
        repository: DispatchRepository,
        state_machine: TaskStateMachine,
        scheduler: AssignmentScheduler,
        batch_size: int = 100,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.scheduler = scheduler
        self.batch_size = batch_size

    def run_once(self) -> SweepSummary:
        summary = SweepSummary()
        cutoff = self.state_machine.window.cutoff(self.state_machine.clock.now())
        for assignment in self.repository.list_stale_pending_assignments(cutoff=cutoff):
            if self.state_machine.expire(assignment_id=assignment.assignment_id) is not None:
                summary.expired += 1

        for task in self.repository.list_schedulable_tasks(limit=self.batch_size):
            # The designer who last declined or let the offer lapse never gets it next.
            released_by = self.repository.last_released_designer(task_id=task.task_id)
            try:
                self.scheduler.assign(
                    task_id=task.task_id,
                    exclude={released_by} if released_by is not None else (),
                )
            except NoDesignerAvailableError:
                summary.still_unassigned += 1
            except StaleActionError:
                continue
            else:
                summary.offered += 1

        logger.info(
            "Sweep finished: expired=%d offered=%d still_unassigned=%d",
            summary.expired,
            summary.offered,
            summary.still_unassigned,
        )
        return summary
