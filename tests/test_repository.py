from __future__ import annotations

from collections.abc import Callable
from datetime import date, timedelta

import allure
import pytest

from designer_dispatch.clock import FrozenClock
from designer_dispatch.dispatch.models import Caller, TaskStatus, UserRole, UserView
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.services import DispatchService, PlaceOrder
from designer_dispatch.errors import NotFoundError

pytestmark = [
    allure.epic("Designer Dispatch"),
    allure.feature("Repository"),
]


def test_set_availability_replaces_the_day(
    repository: DispatchRepository,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1", windows=())
    day = date(2026, 3, 2)

    repository.set_availability(
        designer_id="d1",
        day=day,
        windows=[("13:00", "17:00"), ("08:00", "12:00")],
    )
    repository.set_availability(
        designer_id="d1",
        day=day + timedelta(days=1),
        windows=[("09:00", "10:00")],
    )

    slots = repository.list_availability(start=day, end=day)
    assert [(slot.start_time, slot.end_time) for slot in slots] == [
        ("08:00", "12:00"),
        ("13:00", "17:00"),
    ]

    repository.set_availability(designer_id="d1", day=day, windows=[("10:00", "11:00")])

    both_days = repository.list_availability(
        start=day,
        end=day + timedelta(days=1),
        designer_id="d1",
    )
    assert [(slot.day, slot.start_time) for slot in both_days] == [
        (day, "10:00"),
        (day + timedelta(days=1), "09:00"),
    ]
    assert repository.list_availability(start=day, end=day, designer_id="other") == []


@pytest.mark.parametrize(
    ("window", "message"),
    [
        (("9:00", "10:00"), "Invalid HH:MM"),
        (("24:00", "23:00"), "Invalid HH:MM"),
        (("10:60", "11:00"), "Invalid HH:MM"),
        (("12:00", "11:00"), "after end"),
    ],
)
def test_set_availability_validates_windows(
    repository: DispatchRepository,
    add_designer: Callable[..., Caller],
    window: tuple[str, str],
    message: str,
) -> None:
    add_designer("d1", windows=())

    with pytest.raises(ValueError, match=message):
        repository.set_availability(designer_id="d1", day=date(2026, 3, 2), windows=[window])


def test_set_availability_requires_designer(
    repository: DispatchRepository,
    client: UserView,
) -> None:
    with pytest.raises(NotFoundError):
        repository.set_availability(designer_id="ghost", day=date(2026, 3, 2), windows=[])
    with pytest.raises(ValueError, match="not a designer"):
        repository.set_availability(
            designer_id=client.user_id,
            day=date(2026, 3, 2),
            windows=[("09:00", "10:00")],
        )


def test_available_designers_skip_inactive_and_other_days(
    repository: DispatchRepository,
    clock: FrozenClock,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    add_designer("d2", is_active=False)
    add_designer("d3", day_offset=1)
    add_designer("d4", windows=(("08:00", "09:00"), ("10:00", "10:30")))

    available = repository.list_available_designers(now=clock.now())

    assert [designer.user_id for designer in available] == ["d1", "d4"]


def test_list_users_filters_by_role(
    repository: DispatchRepository,
    client: UserView,
    admin: Caller,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")

    assert [user.user_id for user in repository.list_users()] == [
        admin.caller_id,
        client.user_id,
        "d1",
    ]
    assert [user.user_id for user in repository.list_users(role=UserRole.DESIGNER)] == ["d1"]


def test_task_details_collect_offers_and_events(
    service: DispatchService,
    repository: DispatchRepository,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    designer = add_designer("d1")
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.task is not None
    assert placement.offer is not None
    service.confirm_offer(caller=designer, assignment_id=placement.offer.assignment_id)

    details = repository.get_task_details(task_id=placement.task.task_id)

    assert details is not None
    assert details.task.status == TaskStatus.ASSIGNED
    assert details.task.assigned_to_id == "d1"
    assert [offer.assignment_id for offer in details.assignments] == [
        placement.offer.assignment_id,
    ]
    assert [event.event_type for event in details.events] == [
        "task_created",
        "offer_created",
        "offer_confirmed",
    ]
    assert details.events[1].details["designer_id"] == "d1"
    assert repository.get_task_details(task_id="missing") is None
