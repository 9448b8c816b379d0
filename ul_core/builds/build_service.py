from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE, STATUS_PROCESSING
from ul_core.db.schema import connection_scope
from ul_core.keys.json_flatten import unflatten_json
from ul_core.keys.key_store import namespace_values
from ul_core.languages.language_service import list_languages
from ul_core.namespaces.namespace_service import get_namespace
from ul_core.project.paths import files_dir_for_db
from ul_core.releases.connections import rebalance_namespace
from ul_core.storage.file_store import StoredFile, delete_file, read_json_file, store_json

logger = logging.getLogger(__name__)

MAX_BUILD_TAG_LENGTH = 50
STATUS_INITIALIZING = "Initializing..."


@dataclass(slots=True, frozen=True)
class Build:
    id: str
    project_id: str
    namespace: str
    tag: str
    status: int
    status_description: str | None
    created_at: str
    language_files: dict[str, StoredFile] = field(default_factory=dict)


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def _validate_tag(tag: str) -> str:
    normalized = (tag or "").strip()
    if not normalized:
        raise ValueError("Build tag cannot be empty")
    if len(normalized) > MAX_BUILD_TAG_LENGTH:
        raise ValueError(f"Build tag cannot exceed {MAX_BUILD_TAG_LENGTH} characters")
    return normalized


def _language_files(connection: Connection, build_id: str) -> dict[str, StoredFile]:
    rows = connection.execute(
        text(
            """
            SELECT language_code, file_id, file_size
            FROM build_files
            WHERE build_id = :build_id
            ORDER BY language_code
            """
        ),
        {"build_id": build_id},
    ).all()
    return {
        str(code): StoredFile(file_id=str(file_id), file_size=int(file_size))
        for code, file_id, file_size in rows
    }


def _row_to_build(connection: Connection, row: dict[str, Any]) -> Build:
    return Build(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        namespace=str(row["namespace"]),
        tag=str(row["tag"]),
        status=int(row["status"]),
        status_description=row.get("status_description"),
        created_at=str(row["created_at"]),
        language_files=_language_files(connection, str(row["id"])),
    )


def get_build(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    build_id: str,
) -> Build | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text("SELECT * FROM builds WHERE id = :build_id AND project_id = :project_id"),
            {"build_id": build_id, "project_id": project_id},
        ).mappings().first()
        return _row_to_build(active, dict(row)) if row is not None else None


def get_build_by_tag(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    tag: str,
) -> Build | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text("SELECT * FROM builds WHERE project_id = :project_id AND tag = :tag"),
            {"project_id": project_id, "tag": tag.strip()},
        ).mappings().first()
        return _row_to_build(active, dict(row)) if row is not None else None


def list_builds(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    search: str | None = None,
) -> list[Build]:
    pattern = f"%{search.strip()}%" if search and search.strip() else None
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT * FROM builds
                WHERE project_id = :project_id
                  AND (:pattern IS NULL OR tag LIKE :pattern)
                ORDER BY created_at DESC, tag DESC
                """
            ),
            {"project_id": project_id, "pattern": pattern},
        ).mappings().all()
        return [_row_to_build(active, dict(row)) for row in rows]


def _ensure_tag_available(
    connection: Connection,
    *,
    project_id: str,
    tag: str,
    exclude_id: str | None = None,
) -> None:
    row = connection.execute(
        text("SELECT id FROM builds WHERE project_id = :project_id AND tag = :tag LIMIT 1"),
        {"project_id": project_id, "tag": tag},
    ).first()
    if row is not None and str(row[0]) != exclude_id:
        raise ValueError(f'Build tag "{tag}" already exists in this project.')


def _discard_build(db_path: Path, build_id: str) -> None:
    files_dir = files_dir_for_db(db_path)
    with connection_scope(db_path=db_path) as active:
        file_ids = [file.file_id for file in _language_files(active, build_id).values()]
        active.execute(text("DELETE FROM builds WHERE id = :build_id"), {"build_id": build_id})
    for file_id in file_ids:
        delete_file(files_dir, file_id)


def create_build(*, db_path: Path, project_id: str, namespace_id: str, tag: str) -> Build:
    """Snapshot a namespace into one JSON file per language.

    The build is visible with status 2 while files are generated and
    becomes active once every language is stored. Any failure removes the
    build and the files written so far.
    """

    normalized_tag = _validate_tag(tag)
    files_dir = files_dir_for_db(db_path)

    with connection_scope(db_path=db_path) as active:
        namespace = get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)
        _ensure_tag_available(active, project_id=project_id, tag=normalized_tag)
        build_id = str(uuid4())
        active.execute(
            text(
                """
                INSERT INTO builds(id, project_id, namespace, tag, status, status_description, created_at)
                VALUES (:id, :project_id, :namespace, :tag, :status, :status_description, :created_at)
                """
            ),
            {
                "id": build_id,
                "project_id": project_id,
                "namespace": namespace.name,
                "tag": normalized_tag,
                "status": STATUS_PROCESSING,
                "status_description": STATUS_INITIALIZING,
                "created_at": _utc_now_iso(),
            },
        )
        languages = list_languages(connection=active, project_id=project_id)

    orphaned: StoredFile | None = None
    try:
        for index, language in enumerate(languages):
            remaining = len(languages) - index - 1
            with connection_scope(db_path=db_path) as active:
                values = namespace_values(
                    connection=active,
                    project_id=project_id,
                    namespace_id=namespace_id,
                    language_id=language.id,
                )
                orphaned = store_json(files_dir, unflatten_json(values))
                active.execute(
                    text(
                        """
                        INSERT INTO build_files(build_id, language_code, file_id, file_size)
                        VALUES (:build_id, :language_code, :file_id, :file_size)
                        """
                    ),
                    {
                        "build_id": build_id,
                        "language_code": language.language_code,
                        "file_id": orphaned.file_id,
                        "file_size": orphaned.file_size,
                    },
                )
                active.execute(
                    text("UPDATE builds SET status_description = :description WHERE id = :build_id"),
                    {
                        "description": f"Processing... ({remaining} languages remaining)",
                        "build_id": build_id,
                    },
                )
            orphaned = None

        with connection_scope(db_path=db_path) as active:
            active.execute(
                text("UPDATE builds SET status = :status, status_description = NULL WHERE id = :build_id"),
                {"status": STATUS_ACTIVE, "build_id": build_id},
            )
            build = get_build(connection=active, project_id=project_id, build_id=build_id)
    except Exception as exc:
        logger.error("Build %s failed: %s", normalized_tag, exc)
        if orphaned is not None:
            delete_file(files_dir, orphaned.file_id)
        _discard_build(db_path, build_id)
        raise RuntimeError(f"Build '{normalized_tag}' failed: {exc}") from exc

    logger.info("Created build %s for %s (%d languages)", normalized_tag, namespace.name, len(languages))
    if build is None:
        raise RuntimeError(f"Build disappeared while finishing: {normalized_tag}")
    return build


def update_build_tag(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    build_id: str,
    tag: str,
) -> Build:
    normalized_tag = _validate_tag(tag)
    with connection_scope(db_path=db_path, connection=connection) as active:
        build = get_build(connection=active, project_id=project_id, build_id=build_id)
        if build is None:
            raise ValueError(f"Build not found: {build_id}")
        if build.tag == normalized_tag:
            return build
        _ensure_tag_available(active, project_id=project_id, tag=normalized_tag, exclude_id=build_id)
        active.execute(
            text("UPDATE builds SET tag = :tag WHERE id = :build_id"),
            {"tag": normalized_tag, "build_id": build_id},
        )
        updated = get_build(connection=active, project_id=project_id, build_id=build_id)
    if updated is None:
        raise RuntimeError(f"Build not found after update: {build_id}")
    return updated


def delete_build(*, db_path: Path, project_id: str, build_id: str) -> list[str]:
    """Delete a build with its files and release connections.

    Returns the ids of the releases that lost a connection; each of them
    has the build's namespace re-balanced evenly.
    """

    files_dir = files_dir_for_db(db_path)
    with connection_scope(db_path=db_path) as active:
        build = get_build(connection=active, project_id=project_id, build_id=build_id)
        if build is None:
            raise ValueError(f"Build not found: {build_id}")

        release_ids = [
            str(row[0])
            for row in active.execute(
                text("SELECT DISTINCT release_id FROM release_build_connections WHERE build_id = :build_id"),
                {"build_id": build_id},
            ).all()
        ]
        active.execute(
            text("DELETE FROM release_build_connections WHERE build_id = :build_id"),
            {"build_id": build_id},
        )
        active.execute(text("DELETE FROM builds WHERE id = :build_id"), {"build_id": build_id})

        for release_id in release_ids:
            rebalance_namespace(active, release_id=release_id, namespace=build.namespace)

    for stored in build.language_files.values():
        delete_file(files_dir, stored.file_id)
    logger.info("Deleted build %s (%d releases re-balanced)", build.tag, len(release_ids))
    return release_ids


def read_build_file(*, db_path: Path, build: Build, language_code: str) -> dict[str, Any]:
    stored = build.language_files.get(language_code)
    if stored is None:
        raise ValueError(f"Build '{build.tag}' has no file for language '{language_code}'")
    return read_json_file(files_dir_for_db(db_path), stored.file_id)
