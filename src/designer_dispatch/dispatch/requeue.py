"""Re-offer a task after its offer was rejected or expired."""

from __future__ import annotations

import logging

from designer_dispatch.dispatch.models import AssignmentView
from designer_dispatch.dispatch.scheduler import AssignmentScheduler
from designer_dispatch.errors import NoDesignerAvailableError, StaleActionError

logger = logging.getLogger(__name__)


class RequeueTrigger:
    def __init__(self, scheduler: AssignmentScheduler) -> None:
        self.scheduler = scheduler

    def on_released(self, *, task_id: str, released_designer_id: str) -> AssignmentView | None:
        """Offer the task to someone other than the designer who released it.

        When nobody else is available the task stays PENDING without an offer
        and the periodic sweep picks it up later.
        """

        try:
            return self.scheduler.assign(task_id=task_id, exclude={released_designer_id})
        except NoDesignerAvailableError:
            logger.info(
                "Task %s left unassigned after release by %s; waiting for sweep",
                task_id,
                released_designer_id,
            )
        except StaleActionError as error:
            logger.info("Requeue of task %s skipped: %s", task_id, error.message)
        return None
