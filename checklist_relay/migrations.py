"""Lightweight schema migration helpers for the checklist relay."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError


MigrationFunc = Callable[[Engine], None]


def _ensure_group_version(engine: Engine) -> None:
    """Add the ``version`` counter to ``checklist_groups`` if it is missing.

    Groups written before optimistic concurrency existed start at version 1.
    """

    with engine.begin() as connection:
        inspector = inspect(connection)
        try:
            columns = inspector.get_columns("checklist_groups")
        except NoSuchTableError:
            return

        if any(column["name"] == "version" for column in columns):
            return

        connection.execute(
            text(
                "ALTER TABLE checklist_groups "
                "ADD COLUMN version INTEGER NOT NULL DEFAULT 1"
            )
        )


def _ensure_upload_job_target(engine: Engine) -> None:
    """Add the ``group_id``/``item_id`` columns to ``upload_jobs`` when absent."""

    with engine.begin() as connection:
        inspector = inspect(connection)
        try:
            columns = {column["name"] for column in inspector.get_columns("upload_jobs")}
        except NoSuchTableError:
            return

        if "group_id" not in columns:
            connection.execute(text("ALTER TABLE upload_jobs ADD COLUMN group_id INTEGER"))
        if "item_id" not in columns:
            connection.execute(text("ALTER TABLE upload_jobs ADD COLUMN item_id VARCHAR"))


_MIGRATIONS: tuple[MigrationFunc, ...] = (
    _ensure_group_version,
    _ensure_upload_job_target,
)


def run_migrations(engine: Engine, migrations: Iterable[MigrationFunc] | None = None) -> None:
    """Execute idempotent schema migrations for the provided engine."""

    for migration in migrations or _MIGRATIONS:
        migration(engine)


__all__ = ["run_migrations"]
