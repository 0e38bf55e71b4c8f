from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure

from designer_dispatch.clock import FrozenClock
from designer_dispatch.dispatch.models import AssignmentStatus, Caller, TaskStatus, UserView
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.services import DispatchService, PlaceOrder

pytestmark = [
    allure.epic("Designer Dispatch"),
    allure.feature("Expiry Sweep"),
]


def test_sweep_expires_overdue_offers_and_requeues_them(
    service: DispatchService,
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    add_designer("d2")
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.offer is not None
    clock.advance(timedelta(minutes=6))

    summary = service.run_sweep()

    assert summary.expired == 1
    history = repository.list_assignments(task_id=placement.offer.task_id)
    assert [(row.designer_id, row.status) for row in history] == [
        ("d1", AssignmentStatus.EXPIRED),
        ("d2", AssignmentStatus.PENDING),
    ]

    again = service.run_sweep()
    assert again.expired == 0
    assert again.offered == 0


def test_sweep_offers_tasks_left_without_designer(
    service: DispatchService,
    repository: DispatchRepository,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.task is not None
    assert placement.offer is None

    idle = service.run_sweep()
    assert idle.still_unassigned == 1
    assert idle.offered == 0

    add_designer("d1")
    summary = service.run_sweep()

    assert summary.offered == 1
    assert summary.still_unassigned == 0
    task = repository.get_task(task_id=placement.task.task_id)
    assert task is not None
    assert task.status == TaskStatus.PENDING
    assert task.current_assignment_id is not None


def test_sweep_leaves_confirmed_work_alone(
    service: DispatchService,
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    designer = add_designer("d1")
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.offer is not None
    service.confirm_offer(caller=designer, assignment_id=placement.offer.assignment_id)
    clock.advance(timedelta(hours=2))

    summary = service.run_sweep()

    assert (summary.expired, summary.offered, summary.still_unassigned) == (0, 0, 0)
    confirmed = repository.get_assignment(assignment_id=placement.offer.assignment_id)
    assert confirmed is not None
    assert confirmed.status == AssignmentStatus.CONFIRMED


def test_sweep_skips_unpaid_orders(
    service: DispatchService,
    repository: DispatchRepository,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    placement = service.place_order(
        PlaceOrder(user_id=client.user_id, quantity=1, use_credits=False),
    )
    assert placement.task is None

    summary = service.run_sweep()

    assert summary.offered == 0
    assert repository.list_tasks() == []


def test_sweep_never_hands_a_rejected_task_straight_back(
    service: DispatchService,
    repository: DispatchRepository,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    designer = add_designer("d1")
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.offer is not None
    service.reject_offer(caller=designer, assignment_id=placement.offer.assignment_id)
    task_id = placement.offer.task_id
    assert repository.last_released_designer(task_id=task_id) == "d1"

    skipped = service.run_sweep()

    assert (skipped.offered, skipped.still_unassigned) == (0, 1)
    history = repository.list_assignments(task_id=task_id)
    assert [(row.designer_id, row.status) for row in history] == [
        ("d1", AssignmentStatus.REJECTED),
    ]

    add_designer("d2")
    summary = service.run_sweep()

    assert summary.offered == 1
    history = repository.list_assignments(task_id=task_id)
    assert [(row.designer_id, row.status) for row in history] == [
        ("d1", AssignmentStatus.REJECTED),
        ("d2", AssignmentStatus.PENDING),
    ]


def test_sweep_excludes_designer_whose_offer_lapsed(
    service: DispatchService,
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
    add_designer: Callable[..., Caller],
) -> None:
    add_designer("d1")
    placement = service.place_order(PlaceOrder(user_id=client.user_id, quantity=1))
    assert placement.offer is not None
    clock.advance(timedelta(minutes=6))

    summary = service.run_sweep()

    assert (summary.expired, summary.offered, summary.still_unassigned) == (1, 0, 1)
    history = repository.list_assignments(task_id=placement.offer.task_id)
    assert [row.status for row in history] == [AssignmentStatus.EXPIRED]
