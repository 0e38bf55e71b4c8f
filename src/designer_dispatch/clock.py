"""Time sources used for confirmation window comparisons."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol

from designer_dispatch.storage.common import utc_now


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()


class FrozenClock:
    """Manually advanced clock for simulations and tests."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
