"""Confirmation window arithmetic.

An offer made at ``assigned_at`` may be confirmed while
``now <= assigned_at + timeout``; strictly after that instant it is expired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from designer_dispatch.storage.common import to_utc_aware_datetime


@dataclass(slots=True, frozen=True)
class ConfirmationWindow:
    timeout: timedelta

    def __post_init__(self) -> None:
        if self.timeout <= timedelta(0):
            raise ValueError("Confirmation timeout must be positive")

    @classmethod
    def from_minutes(cls, minutes: int) -> ConfirmationWindow:
        return cls(timeout=timedelta(minutes=minutes))

    def deadline(self, assigned_at: datetime) -> datetime:
        return to_utc_aware_datetime(assigned_at) + self.timeout

    def is_expired(self, assigned_at: datetime, now: datetime) -> bool:
        return to_utc_aware_datetime(now) > self.deadline(assigned_at)

    def cutoff(self, now: datetime) -> datetime:
        """Earliest ``assigned_at`` that is still confirmable at ``now``."""

        return to_utc_aware_datetime(now) - self.timeout

    def remaining(self, assigned_at: datetime, now: datetime) -> timedelta:
        left = self.deadline(assigned_at) - to_utc_aware_datetime(now)
        return max(left, timedelta(0))
