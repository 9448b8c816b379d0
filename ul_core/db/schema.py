from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy.engine import Connection, Engine

from ul_core.db.engine import create_sqlite_engine
from ul_core.db.migrations import migrate_to_latest


def initialize_database(db_path: Path) -> Engine:
    engine = create_sqlite_engine(db_path)
    migrate_to_latest(engine)
    return engine


@contextmanager
def connection_scope(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
) -> Iterator[Connection]:
    """Reuse a caller's connection, or open a transaction on ``db_path``."""

    if connection is not None:
        yield connection
        return

    if db_path is None:
        raise ValueError("db_path is required when connection is not provided")

    engine = initialize_database(Path(db_path))
    try:
        with engine.begin() as local_connection:
            yield local_connection
    finally:
        engine.dispose()
