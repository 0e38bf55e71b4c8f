import sqlite3
from pathlib import Path

import allure
import pytest

import designer_dispatch
from designer_dispatch.dispatch.repository import DispatchRepository
from designer_dispatch.storage.alembic_runner import MIGRATIONS_DIR

pytestmark = [
    allure.epic("Designer Dispatch"),
    allure.feature("Persistence"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    repository = DispatchRepository(db_path)
    repository.init_schema()
    repository.init_schema()
    repository.close()

    connection = sqlite3.connect(db_path)
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchall()
        assert version == [("20261005_0002",)]

        tables = connection.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table' AND name != 'alembic_version'
            ORDER BY name
            """,
        ).fetchall()
        assert [row[0] for row in tables] == [
            "companies",
            "credit_debits",
            "designer_availability",
            "orders",
            "package_purchases",
            "task_assignments",
            "task_events",
            "tasks",
            "users",
        ]
    finally:
        connection.close()


def test_single_active_offer_index_rejects_second_live_offer(tmp_path: Path) -> None:
    db_path = tmp_path / "index.db"
    repository = DispatchRepository(db_path)
    repository.init_schema()
    repository.close()

    connection = sqlite3.connect(db_path)
    try:
        connection.execute("PRAGMA foreign_keys = OFF")
        insert = (
            "INSERT INTO task_assignments (assignment_id, task_id, designer_id, status, "
            "assigned_at) VALUES (?, 'task-1', ?, ?, '2026-03-02 10:00:00.000000')"
        )
        connection.execute(insert, ("a1", "d1", "expired"))
        connection.execute(insert, ("a2", "d2", "pending"))
        with pytest.raises(sqlite3.IntegrityError):
            connection.execute(insert, ("a3", "d3", "confirmed"))
        connection.execute(insert, ("a4", "d4", "rejected"))
    finally:
        connection.close()


def test_migrations_ship_inside_the_package(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = Path(designer_dispatch.__file__).resolve().parent
    assert MIGRATIONS_DIR.is_relative_to(package_dir)
    assert (MIGRATIONS_DIR / "env.py").is_file()
    assert (MIGRATIONS_DIR / "script.py.mako").is_file()

    monkeypatch.chdir(tmp_path)
    repository = DispatchRepository(Path("relative.db"))
    repository.init_schema()
    repository.close()

    connection = sqlite3.connect(tmp_path / "relative.db")
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchall()
        assert version == [("20261005_0002",)]
    finally:
        connection.close()
