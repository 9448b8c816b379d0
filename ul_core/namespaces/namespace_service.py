from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE
from ul_core.db.schema import connection_scope
from ul_core.project.paths import files_dir_for_db
from ul_core.storage.file_store import delete_file

logger = logging.getLogger(__name__)

MAX_NAMESPACE_NAME_LENGTH = 100
_NAMESPACE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass(slots=True, frozen=True)
class Namespace:
    id: str
    project_id: str
    name: str
    status: int
    key_count: int = 0


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def validate_namespace_name(name: str) -> str:
    normalized = (name or "").strip()
    if not normalized:
        raise ValueError("Namespace name cannot be empty")
    if len(normalized) > MAX_NAMESPACE_NAME_LENGTH:
        raise ValueError("Namespace name cannot exceed 100 characters")
    if not _NAMESPACE_NAME_PATTERN.match(normalized):
        raise ValueError(
            "Namespace name can only contain letters, numbers, hyphens, and underscores"
        )
    return normalized


_NAMESPACE_SELECT = """
    SELECT
        n.id,
        n.project_id,
        n.name,
        n.status,
        (SELECT COUNT(*) FROM translation_keys k WHERE k.namespace_id = n.id) AS key_count
    FROM namespaces n
"""


def _row_to_namespace(row: dict[str, object]) -> Namespace:
    return Namespace(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        name=str(row["name"]),
        status=int(row["status"]),
        key_count=int(row.get("key_count") or 0),
    )


def get_namespace(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
) -> Namespace:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text(_NAMESPACE_SELECT + " WHERE n.id = :namespace_id AND n.project_id = :project_id"),
            {"namespace_id": namespace_id, "project_id": project_id},
        ).mappings().first()
    if row is None:
        raise ValueError(f"Namespace not found: {namespace_id}")
    return _row_to_namespace(dict(row))


def get_namespace_by_name(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    name: str,
) -> Namespace | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text(_NAMESPACE_SELECT + " WHERE n.project_id = :project_id AND n.name = :name"),
            {"project_id": project_id, "name": name.strip()},
        ).mappings().first()
    return _row_to_namespace(dict(row)) if row is not None else None


def list_namespaces(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
) -> list[Namespace]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(_NAMESPACE_SELECT + " WHERE n.project_id = :project_id ORDER BY n.name"),
            {"project_id": project_id},
        ).mappings().all()
    return [_row_to_namespace(dict(row)) for row in rows]


def _ensure_name_available(
    connection: Connection,
    *,
    project_id: str,
    name: str,
    exclude_id: str | None = None,
) -> None:
    row = connection.execute(
        text("SELECT id FROM namespaces WHERE project_id = :project_id AND name = :name LIMIT 1"),
        {"project_id": project_id, "name": name},
    ).first()
    if row is not None and str(row[0]) != exclude_id:
        raise ValueError("A namespace with this name already exists in this project")


def create_namespace(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    name: str,
) -> Namespace:
    normalized = validate_namespace_name(name)

    with connection_scope(db_path=db_path, connection=connection) as active:
        _ensure_name_available(active, project_id=project_id, name=normalized)
        namespace_id = str(uuid4())
        now = _utc_now_iso()
        active.execute(
            text(
                """
                INSERT INTO namespaces(id, project_id, name, status, created_at, updated_at)
                VALUES (:id, :project_id, :name, :status, :created_at, :updated_at)
                """
            ),
            {
                "id": namespace_id,
                "project_id": project_id,
                "name": normalized,
                "status": STATUS_ACTIVE,
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info("Created namespace %s", normalized)
        return get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)


def update_namespace(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    name: str,
) -> Namespace:
    normalized = validate_namespace_name(name)

    with connection_scope(db_path=db_path, connection=connection) as active:
        namespace = get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)
        if namespace.name == normalized:
            return namespace

        _ensure_name_available(active, project_id=project_id, name=normalized, exclude_id=namespace_id)
        active.execute(
            text("UPDATE namespaces SET name = :name, updated_at = :updated_at WHERE id = :id"),
            {"name": normalized, "updated_at": _utc_now_iso(), "id": namespace_id},
        )
        return get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)


def delete_namespace(*, db_path: Path, project_id: str, namespace_id: str) -> None:
    """Delete a namespace with its keys, values and versions.

    Builds keep their namespace name snapshot and are left untouched.
    """

    files_dir = files_dir_for_db(db_path)
    with connection_scope(db_path=db_path) as active:
        namespace = get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)

        file_ids = [
            row[0]
            for row in active.execute(
                text(
                    """
                    SELECT vl.file_id
                    FROM version_languages vl
                    JOIN namespace_versions nv ON nv.id = vl.version_id
                    WHERE nv.namespace_id = :namespace_id AND vl.file_id IS NOT NULL
                    """
                ),
                {"namespace_id": namespace_id},
            ).all()
        ]

        for statement in (
            "DELETE FROM translation_values WHERE namespace_id = :namespace_id",
            "DELETE FROM translation_keys WHERE namespace_id = :namespace_id",
            """
            DELETE FROM version_languages
            WHERE version_id IN (SELECT id FROM namespace_versions WHERE namespace_id = :namespace_id)
            """,
            "DELETE FROM namespace_versions WHERE namespace_id = :namespace_id",
            "DELETE FROM namespaces WHERE id = :namespace_id",
        ):
            active.execute(text(statement), {"namespace_id": namespace_id})

    for file_id in file_ids:
        delete_file(files_dir, file_id)
    logger.info("Deleted namespace %s (%d version files)", namespace.name, len(file_ids))
