"""Best-effort designer notifications.

Delivery failures never roll back or fail the state transition that
produced them; they are logged and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from designer_dispatch.dispatch.models import AssignmentView

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, *, event_type: str, assignment: AssignmentView) -> None: ...


class LoggingNotifier:
    """Default notifier: writes one log line per notification."""

    def notify(self, *, event_type: str, assignment: AssignmentView) -> None:
        logger.info(
            "Notify designer %s: %s (task=%s, assignment=%s)",
            assignment.designer_id,
            event_type,
            assignment.task_id,
            assignment.assignment_id,
        )


@dataclass(slots=True)
class RecordingNotifier:
    """Keeps notifications in memory, used by simulations and tests."""

    sent: list[tuple[str, str, str]] = field(default_factory=list)

    def notify(self, *, event_type: str, assignment: AssignmentView) -> None:
        self.sent.append((event_type, assignment.designer_id, assignment.assignment_id))


def safe_notify(notifier: Notifier | None, *, event_type: str, assignment: AssignmentView) -> None:
    if notifier is None:
        return
    try:
        notifier.notify(event_type=event_type, assignment=assignment)
    except Exception:  # noqa: BLE001
        logger.warning(
            "Notification %s for assignment %s failed",
            event_type,
            assignment.assignment_id,
            exc_info=True,
        )
