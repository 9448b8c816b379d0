"""Database helpers for per-project SQLite files."""

from ul_core.db.migrations import migrate_to_latest
from ul_core.db.session import session_for_db
from ul_core.db.schema import initialize_database

__all__ = ["initialize_database", "migrate_to_latest", "session_for_db"]
