"""Designer selection for funded tasks."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from designer_dispatch.clock import Clock
from designer_dispatch.dispatch.models import (
    AssignmentStatus,
    AssignmentView,
    DesignerLoad,
    TaskStatus,
)
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.state_machine import TaskStateMachine
from designer_dispatch.errors import NoDesignerAvailableError, NotFoundError, StaleActionError

logger = logging.getLogger(__name__)


def rank_candidates(loads: Iterable[DesignerLoad], *, cap: int | None) -> list[DesignerLoad]:
    """Order eligible designers: least loaded, then oldest account, then id.

    Designers at or above ``cap`` live offers are dropped.
    """

    eligible = [load for load in loads if cap is None or load.live_offers < cap]
    return sorted(
        eligible,
        key=lambda load: (load.in_progress, load.created_at, load.designer_id),
    )


class AssignmentScheduler:
    """Pick exactly one designer for a PENDING task and open an offer."""

    def __init__(
        self,
        *,
        state_machine: TaskStateMachine,
        repository: DispatchRepository,
        clock: Clock,
        max_active_offers_per_designer: int | None = None,
    ) -> None:
        self.state_machine = state_machine
        self.repository = repository
        self.clock = clock
        self.max_active_offers_per_designer = max_active_offers_per_designer

    def assign(self, *, task_id: str, exclude: Iterable[str] = ()) -> AssignmentView:
        excluded = set(exclude)
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", context={"task_id": task_id})
        if task.status is not TaskStatus.PENDING:
            raise StaleActionError(
                f"Task {task_id} is {task.status.value}, not schedulable.",
                context={"task_id": task_id, "status": task.status.value},
            )

        if task.current_assignment_id is not None:
            current = self.repository.get_assignment(assignment_id=task.current_assignment_id)
            if current is not None and self.state_machine.is_stale(current):
                self.state_machine.expire(assignment_id=current.assignment_id, requeue=False)
                excluded.add(current.designer_id)
            elif current is not None and current.status is AssignmentStatus.PENDING:
                raise StaleActionError(
                    f"Task {task_id} already has a live offer.",
                    context={"task_id": task_id, "assignment_id": current.assignment_id},
                )

        now = self.clock.now()
        designers = [
            designer
            for designer in self.repository.list_available_designers(now=now)
            if designer.user_id not in excluded
        ]
        loads = self.repository.list_designer_loads(
            designers=designers,
            offer_cutoff=self.state_machine.window.cutoff(now),
        )
        ranked = rank_candidates(loads.values(), cap=self.max_active_offers_per_designer)
        if not ranked:
            logger.info(
                "No designer available for task %s (excluded=%s)",
                task_id,
                sorted(excluded),
            )
            raise NoDesignerAvailableError(
                f"No designer available for task {task_id}.",
                context={"task_id": task_id, "excluded": sorted(excluded)},
            )

        chosen = ranked[0]
        logger.debug(
            "Task %s: picked designer %s (in_progress=%d, live_offers=%d) out of %d",
            task_id,
            chosen.designer_id,
            chosen.in_progress,
            chosen.live_offers,
            len(ranked),
        )
        return self.state_machine.open_offer(task_id=task_id, designer_id=chosen.designer_id)
