"""Order price calculation in minor currency units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from designer_dispatch.config import PricingSettings
from designer_dispatch.dispatch.models import TaskPriority


def priority_multiplier(priority: TaskPriority, pricing: PricingSettings) -> float:
    if priority is TaskPriority.URGENT:
        return pricing.urgent_multiplier
    if priority is TaskPriority.EXPRESS:
        return pricing.express_multiplier
    return 1.0


def calculate_order_price(
    *,
    quantity: int,
    priority: TaskPriority,
    pricing: PricingSettings,
) -> int:
    """Price for ``quantity`` graphics, rounded half up to a whole cent."""

    if quantity <= 0:
        raise ValueError("Order quantity must be > 0")
    # str() keeps 1.1 as 1.1 rather than its binary expansion.
    multiplier = Decimal(str(priority_multiplier(priority, pricing)))
    total = Decimal(pricing.base_price_per_graphic) * multiplier * quantity
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))
