from __future__ import annotations

import queue
import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest

from designer_dispatch.clock import FrozenClock
from designer_dispatch.dispatch.ledger import CreditLedger
from designer_dispatch.dispatch.models import (
    CreditSource,
    TaskPriority,
    TaskStatus,
    UserRole,
    UserView,
)
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.errors import InsufficientCreditError, NotFoundError, StaleActionError

pytestmark = [
    allure.epic("Credit Allocation"),
    allure.feature("Ledger Reservations"),
]


def _ledger(repository: DispatchRepository, clock: FrozenClock) -> CreditLedger:
    return CreditLedger(repository=repository, clock=clock)


def test_reserve_consumes_oldest_package_first(
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    older = repository.add_package_purchase(
        user_id=client.user_id,
        credits=2,
        created_at=clock.now() - timedelta(days=10),
    )
    newer = repository.add_package_purchase(
        user_id=client.user_id,
        credits=5,
        created_at=clock.now() - timedelta(days=1),
    )

    reservation = _ledger(repository, clock).reserve(user_id=client.user_id, amount=3)

    assert [(debit.purchase_id, debit.amount) for debit in reservation.debits] == [
        (older.purchase_id, 2),
        (newer.purchase_id, 1),
    ]
    remaining = {
        purchase.purchase_id: purchase.credits_left
        for purchase in repository.list_package_purchases(user_id=client.user_id)
    }
    assert remaining == {older.purchase_id: 0, newer.purchase_id: 4}
    assert repository.get_company(company_id="acme").free_credits == 5


def test_reserve_skips_expired_packages_and_falls_back_to_free_credits(
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    repository.add_package_purchase(
        user_id=client.user_id,
        credits=10,
        expires_at=clock.now() - timedelta(minutes=1),
        created_at=clock.now() - timedelta(days=30),
    )
    live = repository.add_package_purchase(user_id=client.user_id, credits=1)

    reservation = _ledger(repository, clock).reserve(user_id=client.user_id, amount=3)

    assert [(debit.source, debit.amount) for debit in reservation.debits] == [
        (CreditSource.PACKAGE, 1),
        (CreditSource.FREE, 2),
    ]
    assert reservation.debits[0].purchase_id == live.purchase_id
    assert repository.get_company(company_id="acme").free_credits == 3


def test_balance_counts_free_and_live_package_credits(
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    repository.add_package_purchase(user_id=client.user_id, credits=4)
    repository.add_package_purchase(
        user_id=client.user_id,
        credits=7,
        expires_at=clock.now() - timedelta(seconds=1),
    )

    balance = _ledger(repository, clock).balance(user_id=client.user_id)

    assert balance.free_credits == 5
    assert balance.package_credits == 4
    assert balance.total == 9


def test_insufficient_credit_debits_nothing(
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    purchase = repository.add_package_purchase(user_id=client.user_id, credits=2)

    with pytest.raises(InsufficientCreditError) as excinfo:
        _ledger(repository, clock).reserve(user_id=client.user_id, amount=8)

    assert excinfo.value.context["available"] == 7
    assert repository.list_package_purchases(user_id=client.user_id)[0].credits_left == 2
    assert repository.get_company(company_id="acme").free_credits == 5
    assert repository.list_credit_debits(user_id=client.user_id) == []
    assert purchase.credits_total == 2


def test_reserve_rejects_unknown_user_and_non_positive_amount(
    repository: DispatchRepository,
    clock: FrozenClock,
) -> None:
    ledger = _ledger(repository, clock)
    with pytest.raises(NotFoundError):
        ledger.reserve(user_id="ghost", amount=1)
    with pytest.raises(ValueError, match="must be > 0"):
        ledger.reserve(user_id="ghost", amount=0)


def test_reservation_funds_order_and_creates_pending_task_in_one_step(
    repository: DispatchRepository,
    clock: FrozenClock,
    client: UserView,
) -> None:
    order = repository.create_order(
        user_id=client.user_id,
        quantity=2,
        priority=TaskPriority.EXPRESS,
        price_in_cents=19_600,
        now=clock.now(),
    )
    assert repository.list_order_tasks(order_id=order.order_id) == []

    reservation = _ledger(repository, clock).reserve(
        user_id=client.user_id,
        amount=2,
        order_id=order.order_id,
    )

    assert reservation.task is not None
    assert reservation.task.status == TaskStatus.PENDING
    assert reservation.task.priority == TaskPriority.EXPRESS
    funded = repository.get_order(order_id=order.order_id)
    assert funded is not None
    assert funded.is_paid is True
    assert funded.credits_used == 2
    assert [debit.amount for debit in repository.list_credit_debits(order_id=order.order_id)] == [
        2,
    ]

    with pytest.raises(StaleActionError, match="already paid"):
        _ledger(repository, clock).reserve(
            user_id=client.user_id,
            amount=1,
            order_id=order.order_id,
        )
    assert repository.get_company(company_id="acme").free_credits == 3
    assert len(repository.list_order_tasks(order_id=order.order_id)) == 1


def _reserve_one_thread(
    db_path: str,
    user_id: str,
    clock: FrozenClock,
    start_event: threading.Event,
    result_queue: queue.Queue[str],
) -> None:
    repository = DispatchRepository(Path(db_path))
    try:
        start_event.wait(timeout=2)
        CreditLedger(repository=repository, clock=clock).reserve(user_id=user_id, amount=1)
        result_queue.put("ok")
    except InsufficientCreditError:
        result_queue.put("insufficient")
    except Exception as error:  # noqa: BLE001
        result_queue.put(f"error: {error}")
    finally:
        repository.close()


def test_concurrent_reservations_never_over_debit(
    repository: DispatchRepository,
    clock: FrozenClock,
    db_path: Path,
) -> None:
    repository.add_user(
        user_id="solo",
        display_name="Solo",
        role=UserRole.CLIENT,
        created_at=clock.now(),
    )
    purchase = repository.add_package_purchase(user_id="solo", credits=3)

    start_event = threading.Event()
    result_queue: queue.Queue[str] = queue.Queue()
    threads = [
        threading.Thread(
            target=_reserve_one_thread,
            args=(str(db_path), "solo", clock, start_event, result_queue),
            daemon=True,
        )
        for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    start_event.set()
    for thread in threads:
        thread.join(timeout=10)
        assert thread.is_alive() is False

    results = sorted(result_queue.get_nowait() for _ in range(4))
    assert results == ["insufficient", "ok", "ok", "ok"]
    remaining = repository.list_package_purchases(user_id="solo")
    assert [row.credits_left for row in remaining] == [0]
    assert sum(debit.amount for debit in repository.list_credit_debits(user_id="solo")) == 3
    assert remaining[0].purchase_id == purchase.purchase_id
