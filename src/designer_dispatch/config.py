"""Runtime configuration for the dispatch engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class AssignmentSettings:
    """Offer routing and confirmation window settings."""

    confirmation_timeout_minutes: int = 5
    max_active_offers_per_designer: int | None = None
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class PricingSettings:
    """Order pricing in minor currency units."""

    base_price_per_graphic: int = 4_900
    express_multiplier: float = 2.0
    urgent_multiplier: float = 4.0


@dataclass(slots=True)
class LoggingSettings:
    """Process logging settings."""

    level: str = "INFO"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".designer_dispatch.db")
    assignment: AssignmentSettings = field(default_factory=AssignmentSettings)
    pricing: PricingSettings = field(default_factory=PricingSettings)
    log: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("DESIGNER_DISPATCH_DB_PATH", ".designer_dispatch.db")),
            assignment=AssignmentSettings(
                confirmation_timeout_minutes=int(
                    os.getenv("DESIGNER_DISPATCH_CONFIRMATION_TIMEOUT_MINUTES", "5"),
                ),
                max_active_offers_per_designer=_env_optional_int(
                    "DESIGNER_DISPATCH_MAX_ACTIVE_OFFERS_PER_DESIGNER",
                ),
                busy_timeout_ms=int(os.getenv("DESIGNER_DISPATCH_BUSY_TIMEOUT_MS", "5000")),
            ),
            pricing=PricingSettings(
                base_price_per_graphic=int(
                    os.getenv("DESIGNER_DISPATCH_BASE_PRICE_PER_GRAPHIC", "4900"),
                ),
                express_multiplier=float(
                    os.getenv("DESIGNER_DISPATCH_EXPRESS_MULTIPLIER", "2.0"),
                ),
                urgent_multiplier=float(os.getenv("DESIGNER_DISPATCH_URGENT_MULTIPLIER", "4.0")),
            ),
            log=LoggingSettings(
                level=os.getenv("DESIGNER_DISPATCH_LOG_LEVEL", "INFO").strip().upper(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.assignment.confirmation_timeout_minutes <= 0:
            raise ValueError("DESIGNER_DISPATCH_CONFIRMATION_TIMEOUT_MINUTES must be > 0.")
        cap = self.assignment.max_active_offers_per_designer
        if cap is not None and cap <= 0:
            raise ValueError(
                "DESIGNER_DISPATCH_MAX_ACTIVE_OFFERS_PER_DESIGNER must be a positive integer "
                "or unset for no cap.",
            )
        if self.assignment.busy_timeout_ms <= 0:
            raise ValueError("DESIGNER_DISPATCH_BUSY_TIMEOUT_MS must be > 0.")
        if self.pricing.base_price_per_graphic < 0:
            raise ValueError("DESIGNER_DISPATCH_BASE_PRICE_PER_GRAPHIC must be >= 0.")
        if self.pricing.express_multiplier <= 0 or self.pricing.urgent_multiplier <= 0:
            raise ValueError("Priority price multipliers must be > 0.")
        if not isinstance(logging.getLevelName(self.log.level), int):
            raise ValueError(f"Invalid DESIGNER_DISPATCH_LOG_LEVEL: {self.log.level!r}")


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw or raw.lower() in {"none", "unbounded"}:
        return None
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
