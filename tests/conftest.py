"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from designer_dispatch.clock import FrozenClock
from designer_dispatch.config import AssignmentSettings, Settings
from designer_dispatch.dispatch.models import Caller, UserRole, UserView
from designer_dispatch.dispatch.notifications import RecordingNotifier
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.dispatch.services import DispatchService, build_dispatch_service

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "dispatch.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[DispatchRepository]:
    repository = DispatchRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def make_service(
    repository: DispatchRepository,
    clock: FrozenClock,
    notifier: RecordingNotifier,
    db_path: Path,
) -> Callable[..., DispatchService]:
    """Build a fully wired service; keyword args override assignment settings."""

    def _make(**assignment_overrides: object) -> DispatchService:
        settings = Settings(
            db_path=db_path,
            assignment=AssignmentSettings(**assignment_overrides),  # type: ignore[arg-type]
        )
        return build_dispatch_service(
            settings=settings,
            repository=repository,
            clock=clock,
            notifier=notifier,
        )

    return _make


@pytest.fixture()
def service(make_service: Callable[..., DispatchService]) -> DispatchService:
    return make_service()


@pytest.fixture()
def add_designer(repository: DispatchRepository) -> Callable[..., Caller]:
    """Register a designer available all day on the T0 date."""

    created = 0

    def _add(
        user_id: str,
        *,
        windows: tuple[tuple[str, str], ...] = (("00:00", "23:59"),),
        day_offset: int = 0,
        is_active: bool = True,
    ) -> Caller:
        nonlocal created
        created += 1
        repository.add_user(
            user_id=user_id,
            display_name=user_id.title(),
            role=UserRole.DESIGNER,
            created_at=T0 - timedelta(days=100 - created),
            is_active=is_active,
        )
        if windows:
            repository.set_availability(
                designer_id=user_id,
                day=(T0 + timedelta(days=day_offset)).date(),
                windows=windows,
            )
        return Caller(caller_id=user_id, role=UserRole.DESIGNER)

    return _add


@pytest.fixture()
def client(repository: DispatchRepository) -> UserView:
    """Client with a company holding a few free credits."""

    repository.add_company(company_id="acme", name="Acme", free_credits=5)
    return repository.add_user(
        user_id="client-1",
        display_name="Client One",
        role=UserRole.CLIENT,
        company_id="acme",
        created_at=T0 - timedelta(days=365),
    )


@pytest.fixture()
def admin(repository: DispatchRepository) -> Caller:
    repository.add_user(
        user_id="admin-1",
        display_name="Admin",
        role=UserRole.ADMIN,
        created_at=T0 - timedelta(days=400),
    )
    return Caller(caller_id="admin-1", role=UserRole.ADMIN)
