"""Credit balances and atomic reservations."""

from __future__ import annotations

import logging

from designer_dispatch.clock import Clock
from designer_dispatch.dispatch.models import CreditBalance, CreditReservation
from designer_dispatch.dispatch.repository import DispatchRepository

logger = logging.getLogger(__name__)


class CreditLedger:
    def __init__(self, *, repository: DispatchRepository, clock: Clock) -> None:
        self.repository = repository
        self.clock = clock

    def reserve(
        self,
        *,
        user_id: str,
        amount: int,
        order_id: str | None = None,
    ) -> CreditReservation:
        """Debit ``amount`` credits (oldest package first, then free credits).

        Raises ``InsufficientCreditError`` without debiting anything when the
        eligible sources do not cover ``amount``.
        """

        reservation = self.repository.reserve_credits(
            user_id=user_id,
            amount=amount,
            now=self.clock.now(),
            order_id=order_id,
        )
        logger.info(
            "Reserved %d credit(s) for user %s across %d source(s)%s",
            amount,
            user_id,
            len(reservation.debits),
            f" funding order {order_id}" if order_id else "",
        )
        return reservation

    def balance(self, *, user_id: str) -> CreditBalance:
        return self.repository.get_credit_balance(user_id=user_id, now=self.clock.now())
