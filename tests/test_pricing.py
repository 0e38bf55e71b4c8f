from __future__ import annotations

import allure
import pytest

from designer_dispatch.config import PricingSettings
from designer_dispatch.dispatch.models import TaskPriority
from designer_dispatch.dispatch.pricing import calculate_order_price

pytestmark = [
    allure.epic("Credit Allocation"),
    allure.feature("Order Pricing"),
]


@pytest.mark.parametrize(
    ("priority", "quantity", "expected"),
    [
        (TaskPriority.NORMAL, 1, 4_900),
        (TaskPriority.NORMAL, 3, 14_700),
        (TaskPriority.EXPRESS, 2, 19_600),
        (TaskPriority.URGENT, 1, 19_600),
    ],
)
def test_default_prices(priority: TaskPriority, quantity: int, expected: int) -> None:
    assert (
        calculate_order_price(quantity=quantity, priority=priority, pricing=PricingSettings())
        == expected
    )


def test_fractional_cents_round_half_up() -> None:
    pricing = PricingSettings(base_price_per_graphic=5, express_multiplier=1.5)

    assert calculate_order_price(quantity=1, priority=TaskPriority.EXPRESS, pricing=pricing) == 8
    assert calculate_order_price(quantity=3, priority=TaskPriority.EXPRESS, pricing=pricing) == 23


def test_multiplier_is_not_distorted_by_binary_floats() -> None:
    pricing = PricingSettings(base_price_per_graphic=1_000, urgent_multiplier=1.1)

    assert calculate_order_price(quantity=3, priority=TaskPriority.URGENT, pricing=pricing) == 3_300


def test_quantity_must_be_positive() -> None:
    with pytest.raises(ValueError, match="quantity"):
        calculate_order_price(quantity=0, priority=TaskPriority.NORMAL, pricing=PricingSettings())
