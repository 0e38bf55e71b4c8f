from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import allure
import pytest

from designer_dispatch.clock import FrozenClock
from designer_dispatch.dispatch.models import (
    AssignmentStatus,
    Caller,
    DesignerLoad,
    TaskPriority,
    TaskStatus,
    TaskView,
    UserView,
)
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.scheduler import rank_candidates
from designer_dispatch.dispatch.services import DispatchService, PlaceOrder
from designer_dispatch.errors import NoDesignerAvailableError, StaleActionError

pytestmark = [
    allure.epic("Designer Dispatch"),
    allure.feature("Designer Selection"),
]


def _funded_task(
    service: DispatchService,
    client: UserView,
    *,
    priority: TaskPriority = TaskPriority.NORMAL,
) -> TaskView:
    placement = service.place_order(
        PlaceOrder(user_id=client.user_id, quantity=1, priority=priority),
    )
    assert placement.task is not None
    return placement.task


def test_rank_candidates_orders_by_load_then_account_age_then_id() -> None:
    old = datetime(2025, 1, 1, tzinfo=UTC)
    new = datetime(2025, 6, 1, tzinfo=UTC)
    loads = [
        DesignerLoad(designer_id="busy-old", created_at=old, in_progress=2),
        DesignerLoad(designer_id="idle-new", created_at=new),
        DesignerLoad(designer_id="idle-old-b", created_at=old),
        DesignerLoad(designer_id="idle-old-a", created_at=old),
        DesignerLoad(designer_id="capped", created_at=old, live_offers=3),
    ]

    ranked = rank_candidates(loads, cap=3)

    assert [load.designer_id for load in ranked] == [
        "idle-old-a",
        "idle-old-b",
        "idle-new",
        "busy-old",
    ]
    assert [load.designer_id for load in rank_candidates(loads, cap=None)][:3] == [
        "capped",
        "idle-old-a",
        "idle-old-b",
    ]


def test_assign_prefers_designer_with_fewer_tasks_in_progress(
    service: DispatchService,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    veteran = add_designer("d1")
    add_designer("d2")
    first = _funded_task(service, client)
    offer = service.repository.list_assignments(task_id=first.task_id)[0]
    assert offer.designer_id == "d1"
    service.confirm_offer(caller=veteran, assignment_id=offer.assignment_id)
    service.start_work(caller=veteran, task_id=first.task_id)

    second = _funded_task(service, client)

    offers = service.repository.list_assignments(task_id=second.task_id)
    assert [assignment.designer_id for assignment in offers] == ["d2"]


def test_assign_breaks_ties_by_oldest_account(
    service: DispatchService,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("zed")
    add_designer("amy")

    task = _funded_task(service, client)

    offers = service.repository.list_assignments(task_id=task.task_id)
    assert [assignment.designer_id for assignment in offers] == ["zed"]


def test_assign_ignores_designers_outside_their_windows(
    service: DispatchService,
    repository: DispatchRepository,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("morning", windows=(("06:00", "09:59"),))
    add_designer("tomorrow", day_offset=1)
    add_designer("no-slots", windows=())
    add_designer("retired", is_active=False)

    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))

    assert placement.task is not None
    assert placement.offer is None
    task = repository.get_task(task_id=placement.task.task_id)
    assert task is not None
    assert task.status == TaskStatus.PENDING
    assert task.current_assignment_id is None
    with pytest.raises(NoDesignerAvailableError):
        service.assign_task(task_id=task.task_id)


def test_window_boundaries_are_inclusive(
    service: DispatchService,
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1", windows=(("10:00", "10:30"),))
    assert _funded_task(service, client).current_assignment_id is not None

    clock.advance(timedelta(minutes=30))
    assert _funded_task(service, client).current_assignment_id is not None

    clock.advance(timedelta(minutes=1))
    assert _funded_task(service, client).current_assignment_id is None


def test_live_offer_cap_routes_to_next_designer(
    make_service: Callable[..., DispatchService],
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    service = make_service(max_active_offers_per_designer=1)
    add_designer("d1")
    add_designer("d2")

    first = _funded_task(service, client)
    second = _funded_task(service, client)
    third = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))

    designers = [
        service.repository.list_assignments(task_id=task.task_id)[0].designer_id
        for task in (first, second)
    ]
    assert designers == ["d1", "d2"]
    assert third.offer is None


def test_expired_offers_do_not_count_against_cap(
    make_service: Callable[..., DispatchService],
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    service = make_service(max_active_offers_per_designer=1)
    add_designer("d1")
    first = _funded_task(service, client)
    assert first.current_assignment_id is not None

    clock.advance(timedelta(minutes=6))
    second = _funded_task(service, client)

    assert second.current_assignment_id is not None
    offer = service.repository.get_assignment(assignment_id=second.current_assignment_id)
    assert offer is not None
    assert offer.designer_id == "d1"


def test_assign_refuses_task_with_live_offer(
    service: DispatchService,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    add_designer("d2")
    task = _funded_task(service, client)

    with pytest.raises(StaleActionError, match="live offer"):
        service.assign_task(task_id=task.task_id)
    assert len(service.repository.list_assignments(task_id=task.task_id)) == 1


def test_assign_lazily_expires_stale_offer_and_skips_its_designer(
    service: DispatchService,
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    add_designer("d2")
    task = _funded_task(service, client)
    clock.advance(timedelta(minutes=7))

    offer = service.assign_task(task_id=task.task_id)

    assert offer.designer_id == "d2"
    history = service.repository.list_assignments(task_id=task.task_id)
    assert [(row.designer_id, row.status) for row in history] == [
        ("d1", AssignmentStatus.EXPIRED),
        ("d2", AssignmentStatus.PENDING),
    ]


def test_assign_rejects_tasks_that_are_not_pending(
    service: DispatchService,
    client: UserView,
    admin: Caller,
) -> None:
    task = _funded_task(service, client)
    service.cancel(caller=admin, task_id=task.task_id)

    with pytest.raises(StaleActionError):
        service.assign_task(task_id=task.task_id)


def test_schedulable_tasks_are_ordered_by_priority_then_age(
    service: DispatchService,
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    normal = _funded_task(service, client)
    clock.advance(timedelta(seconds=1))
    urgent = _funded_task(service, client, priority=TaskPriority.URGENT)
    clock.advance(timedelta(seconds=1))
    express = _funded_task(service, client, priority=TaskPriority.EXPRESS)

    ordered = repository.list_schedulable_tasks()

    assert [task.task_id for task in ordered] == [
        urgent.task_id,
        express.task_id,
        normal.task_id,
    ]
