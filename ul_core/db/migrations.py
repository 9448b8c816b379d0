from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from ul_core.constants import CURRENT_SCHEMA_VERSION

Migration = Callable[[Connection], None]


def _table_exists(connection: Connection, table_name: str) -> bool:
    row = connection.execute(
        text(
            "SELECT 1 FROM sqlite_master "
            "WHERE type='table' AND name=:table_name LIMIT 1"
        ),
        {"table_name": table_name},
    ).first()
    return row is not None


def get_schema_version(connection: Connection) -> int:
    if not _table_exists(connection, "schema_meta"):
        return 0

    value = connection.execute(
        text("SELECT value FROM schema_meta WHERE key='schema_version' LIMIT 1")
    ).scalar_one_or_none()

    if value is None:
        return 0

    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _set_schema_version(connection: Connection, version: int) -> None:
    connection.execute(
        text(
            "INSERT INTO schema_meta(key, value) VALUES('schema_version', :version) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value"
        ),
        {"version": str(version)},
    )


def _migration_v1(connection: Connection) -> None:
    statements = (
        """
        CREATE TABLE IF NOT EXISTS schema_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            primary_language_id TEXT,
            status INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS languages (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            language_code TEXT NOT NULL,
            status INTEGER NOT NULL DEFAULT 1,
            rules_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_languages_project_language
        ON languages(project_id, language_code)
        """,
        """
        CREATE TABLE IF NOT EXISTS namespaces (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            name TEXT NOT NULL,
            status INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_namespaces_project_name
        ON namespaces(project_id, name)
        """,
        """
        CREATE TABLE IF NOT EXISTS translation_keys (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            namespace_id TEXT NOT NULL,
            key TEXT NOT NULL,
            status INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE,
            FOREIGN KEY(namespace_id) REFERENCES namespaces(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_translation_keys_namespace_key
        ON translation_keys(project_id, namespace_id, key)
        """,
        """
        CREATE TABLE IF NOT EXISTS translation_values (
            id TEXT PRIMARY KEY,
            translation_key_id TEXT NOT NULL,
            namespace_id TEXT NOT NULL,
            language_id TEXT NOT NULL,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(translation_key_id) REFERENCES translation_keys(id) ON DELETE CASCADE,
            FOREIGN KEY(namespace_id) REFERENCES namespaces(id) ON DELETE CASCADE,
            FOREIGN KEY(language_id) REFERENCES languages(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_translation_values_key_language
        ON translation_values(translation_key_id, language_id)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_translation_values_namespace_language
        ON translation_values(namespace_id, language_id)
        """,
        """
        CREATE TABLE IF NOT EXISTS glossary_terms (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            term TEXT NOT NULL,
            description TEXT,
            is_non_translatable INTEGER NOT NULL DEFAULT 0,
            is_case_sensitive INTEGER NOT NULL DEFAULT 0,
            is_forbidden INTEGER NOT NULL DEFAULT 0,
            translations_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_glossary_terms_project_term
        ON glossary_terms(project_id, term)
        """,
        """
        CREATE TABLE IF NOT EXISTS builds (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            namespace TEXT NOT NULL,
            tag TEXT NOT NULL,
            status INTEGER NOT NULL,
            status_description TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_builds_project_tag
        ON builds(project_id, tag)
        """,
        """
        CREATE TABLE IF NOT EXISTS build_files (
            build_id TEXT NOT NULL,
            language_code TEXT NOT NULL,
            file_id TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            PRIMARY KEY(build_id, language_code),
            FOREIGN KEY(build_id) REFERENCES builds(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS releases (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            tag TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_releases_project_tag
        ON releases(project_id, tag)
        """,
        """
        CREATE TABLE IF NOT EXISTS release_build_connections (
            id TEXT PRIMARY KEY,
            release_id TEXT NOT NULL,
            build_id TEXT NOT NULL,
            selection_chance REAL NOT NULL,
            position INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(release_id) REFERENCES releases(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_release_build_connections_release
        ON release_build_connections(release_id, position)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_release_build_connections_build
        ON release_build_connections(build_id)
        """,
        """
        CREATE TABLE IF NOT EXISTS namespace_versions (
            id TEXT PRIMARY KEY,
            namespace_id TEXT NOT NULL,
            version TEXT NOT NULL,
            status TEXT,
            language_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(namespace_id) REFERENCES namespaces(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_namespace_versions_namespace_version
        ON namespace_versions(namespace_id, version)
        """,
        """
        CREATE TABLE IF NOT EXISTS version_languages (
            id TEXT PRIMARY KEY,
            version_id TEXT NOT NULL,
            language_code TEXT NOT NULL,
            file_id TEXT,
            file_size INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(version_id) REFERENCES namespace_versions(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_version_languages_version_language
        ON version_languages(version_id, language_code)
        """,
        """
        CREATE TABLE IF NOT EXISTS api_keys (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            name TEXT NOT NULL,
            preview TEXT NOT NULL,
            key_hash TEXT NOT NULL UNIQUE,
            permissions_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            last_used_at TEXT,
            revoked_at TEXT,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS request_usage (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            month TEXT NOT NULL,
            requests INTEGER NOT NULL DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS request_events (
            id TEXT PRIMARY KEY,
            event TEXT NOT NULL,
            namespace TEXT,
            language_code TEXT,
            denied_reason TEXT,
            response_size INTEGER,
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_request_events_created_at
        ON request_events(created_at)
        """,
    )

    for statement in statements:
        connection.exec_driver_sql(statement)


MIGRATIONS: dict[int, Migration] = {
    1: _migration_v1,
}


def migrate_to_latest(engine: Engine) -> int:
    current_version = 0

    with engine.begin() as connection:
        current_version = get_schema_version(connection)
        if current_version > CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version {current_version} is newer than supported ({CURRENT_SCHEMA_VERSION})"
            )

        for target_version in sorted(MIGRATIONS):
            if target_version <= current_version:
                continue
            MIGRATIONS[target_version](connection)
            _set_schema_version(connection, target_version)
            current_version = target_version

    return current_version
