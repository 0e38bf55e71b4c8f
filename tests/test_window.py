from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from designer_dispatch.clock import FrozenClock
from designer_dispatch.dispatch.window import ConfirmationWindow

pytestmark = [
    allure.epic("Designer Dispatch"),
    allure.feature("Offer Confirmation Window"),
]

ASSIGNED = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


def test_deadline_is_inclusive() -> None:
    window = ConfirmationWindow.from_minutes(5)

    assert window.deadline(ASSIGNED) == ASSIGNED + timedelta(minutes=5)
    assert window.is_expired(ASSIGNED, ASSIGNED + timedelta(minutes=4)) is False
    assert window.is_expired(ASSIGNED, ASSIGNED + timedelta(minutes=5)) is False
    assert window.is_expired(ASSIGNED, ASSIGNED + timedelta(minutes=5, microseconds=1)) is True
    assert window.is_expired(ASSIGNED, ASSIGNED + timedelta(minutes=6)) is True


def test_cutoff_and_remaining() -> None:
    window = ConfirmationWindow.from_minutes(5)
    now = ASSIGNED + timedelta(minutes=2)

    assert window.cutoff(now) == ASSIGNED - timedelta(minutes=3)
    assert window.remaining(ASSIGNED, now) == timedelta(minutes=3)
    assert window.remaining(ASSIGNED, ASSIGNED + timedelta(hours=1)) == timedelta(0)


def test_naive_timestamps_are_treated_as_utc() -> None:
    window = ConfirmationWindow.from_minutes(5)
    naive = ASSIGNED.replace(tzinfo=None)

    assert window.deadline(naive) == ASSIGNED + timedelta(minutes=5)


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError, match="positive"):
        ConfirmationWindow.from_minutes(0)


def test_frozen_clock_advances_manually() -> None:
    clock = FrozenClock(ASSIGNED.replace(tzinfo=None))

    assert clock.now() == ASSIGNED
    assert clock.advance(timedelta(minutes=6)) == ASSIGNED + timedelta(minutes=6)
    clock.set(ASSIGNED)
    assert clock.now() == ASSIGNED
