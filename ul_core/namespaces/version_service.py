from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.db.schema import connection_scope
from ul_core.keys.json_flatten import unflatten_json
from ul_core.keys.key_store import namespace_values
from ul_core.languages.language_service import get_primary_language, list_languages
from ul_core.namespaces.changes import (
    LanguageChanges,
    apply_language_changes,
    content_from_document,
    document_from_content,
)
from ul_core.namespaces.namespace_service import get_namespace
from ul_core.project.paths import files_dir_for_db
from ul_core.storage.file_store import delete_file, read_json_file, read_text_file, store_json

logger = logging.getLogger(__name__)

VERSION_STATUS_MERGING = "merging"
MAX_VERSION_NAME_LENGTH = 50


@dataclass(slots=True, frozen=True)
class VersionLanguage:
    id: str
    version_id: str
    language_code: str
    file_id: str | None
    file_size: int


@dataclass(slots=True, frozen=True)
class NamespaceVersion:
    id: str
    namespace_id: str
    version: str
    status: str | None
    language_count: int
    created_at: str
    updated_at: str


@dataclass(slots=True)
class MergeResult:
    source_version: str
    target_version: str
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def _validate_version_name(version: str) -> str:
    normalized = (version or "").strip()
    if not normalized:
        raise ValueError("Version name cannot be empty")
    if len(normalized) > MAX_VERSION_NAME_LENGTH:
        raise ValueError(f"Version name cannot exceed {MAX_VERSION_NAME_LENGTH} characters")
    return normalized


def _row_to_version(row: dict[str, Any]) -> NamespaceVersion:
    return NamespaceVersion(
        id=str(row["id"]),
        namespace_id=str(row["namespace_id"]),
        version=str(row["version"]),
        status=row["status"],
        language_count=int(row["language_count"] or 0),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _row_to_version_language(row: dict[str, Any]) -> VersionLanguage:
    return VersionLanguage(
        id=str(row["id"]),
        version_id=str(row["version_id"]),
        language_code=str(row["language_code"]),
        file_id=row["file_id"],
        file_size=int(row["file_size"] or 0),
    )


def _version_by_name(connection: Connection, *, namespace_id: str, version: str) -> NamespaceVersion | None:
    row = connection.execute(
        text("SELECT * FROM namespace_versions WHERE namespace_id = :namespace_id AND version = :version"),
        {"namespace_id": namespace_id, "version": version},
    ).mappings().first()
    return _row_to_version(dict(row)) if row is not None else None


def _version_by_id(connection: Connection, version_id: str) -> NamespaceVersion:
    row = connection.execute(
        text("SELECT * FROM namespace_versions WHERE id = :id"),
        {"id": version_id},
    ).mappings().first()
    if row is None:
        raise ValueError(f"Namespace version not found: {version_id}")
    return _row_to_version(dict(row))


def _version_languages(connection: Connection, version_id: str) -> list[VersionLanguage]:
    rows = connection.execute(
        text("SELECT * FROM version_languages WHERE version_id = :version_id ORDER BY language_code"),
        {"version_id": version_id},
    ).mappings().all()
    return [_row_to_version_language(dict(row)) for row in rows]


def _insert_version_language(
    connection: Connection,
    *,
    version_id: str,
    language_code: str,
    file_id: str,
    file_size: int,
) -> None:
    connection.execute(
        text(
            """
            INSERT INTO version_languages(id, version_id, language_code, file_id, file_size, updated_at)
            VALUES (:id, :version_id, :language_code, :file_id, :file_size, :updated_at)
            """
        ),
        {
            "id": str(uuid4()),
            "version_id": version_id,
            "language_code": language_code,
            "file_id": file_id,
            "file_size": file_size,
            "updated_at": _utc_now_iso(),
        },
    )


def _refresh_language_count(connection: Connection, version_id: str) -> None:
    connection.execute(
        text(
            """
            UPDATE namespace_versions
            SET language_count = (SELECT COUNT(*) FROM version_languages WHERE version_id = :id),
                updated_at = :updated_at
            WHERE id = :id
            """
        ),
        {"id": version_id, "updated_at": _utc_now_iso()},
    )


def list_namespace_versions(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    namespace_id: str,
) -> list[NamespaceVersion]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text("SELECT * FROM namespace_versions WHERE namespace_id = :namespace_id ORDER BY created_at, version"),
            {"namespace_id": namespace_id},
        ).mappings().all()
    return [_row_to_version(dict(row)) for row in rows]


def get_namespace_version(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    namespace_id: str,
    version: str,
) -> NamespaceVersion | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        return _version_by_name(active, namespace_id=namespace_id, version=version.strip())


def create_namespace_version(
    *,
    db_path: Path,
    project_id: str,
    namespace_id: str,
    version: str,
    snapshot: bool = True,
) -> NamespaceVersion:
    """Create a version, optionally storing one file per active language from current values."""

    name = _validate_version_name(version)
    files_dir = files_dir_for_db(db_path)
    stored_ids: list[str] = []

    try:
        with connection_scope(db_path=db_path) as active:
            get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)
            if _version_by_name(active, namespace_id=namespace_id, version=name) is not None:
                raise ValueError(f"Version '{name}' already exists for this namespace")

            version_id = str(uuid4())
            now = _utc_now_iso()
            active.execute(
                text(
                    """
                    INSERT INTO namespace_versions(
                        id, namespace_id, version, status, language_count, created_at, updated_at
                    ) VALUES (:id, :namespace_id, :version, NULL, 0, :created_at, :updated_at)
                    """
                ),
                {
                    "id": version_id,
                    "namespace_id": namespace_id,
                    "version": name,
                    "created_at": now,
                    "updated_at": now,
                },
            )

            if snapshot:
                for language in list_languages(connection=active, project_id=project_id):
                    values = namespace_values(
                        connection=active,
                        project_id=project_id,
                        namespace_id=namespace_id,
                        language_id=language.id,
                    )
                    stored = store_json(files_dir, unflatten_json(values))
                    stored_ids.append(stored.file_id)
                    _insert_version_language(
                        active,
                        version_id=version_id,
                        language_code=language.language_code,
                        file_id=stored.file_id,
                        file_size=stored.file_size,
                    )
                _refresh_language_count(active, version_id)

            created = _version_by_id(active, version_id)
    except Exception:
        for file_id in stored_ids:
            delete_file(files_dir, file_id)
        raise

    logger.info("Created namespace version %s with %d languages", name, created.language_count)
    return created


def rename_namespace_version(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    namespace_id: str,
    version: str,
    new_version: str,
) -> NamespaceVersion:
    name = _validate_version_name(new_version)
    with connection_scope(db_path=db_path, connection=connection) as active:
        current = _version_by_name(active, namespace_id=namespace_id, version=version.strip())
        if current is None:
            raise ValueError(f"Namespace version not found: {version}")
        if current.version == name:
            return current
        if _version_by_name(active, namespace_id=namespace_id, version=name) is not None:
            raise ValueError(f"Version '{name}' already exists for this namespace")
        active.execute(
            text("UPDATE namespace_versions SET version = :version, updated_at = :updated_at WHERE id = :id"),
            {"version": name, "updated_at": _utc_now_iso(), "id": current.id},
        )
        return _version_by_id(active, current.id)


def delete_namespace_version(*, db_path: Path, namespace_id: str, version: str) -> None:
    files_dir = files_dir_for_db(db_path)
    with connection_scope(db_path=db_path) as active:
        current = _version_by_name(active, namespace_id=namespace_id, version=version.strip())
        if current is None:
            raise ValueError(f"Namespace version not found: {version}")
        if current.status == VERSION_STATUS_MERGING:
            raise ValueError(f"Version '{current.version}' is being merged")
        file_ids = [language.file_id for language in _version_languages(active, current.id)]
        active.execute(text("DELETE FROM version_languages WHERE version_id = :id"), {"id": current.id})
        active.execute(text("DELETE FROM namespace_versions WHERE id = :id"), {"id": current.id})

    for file_id in file_ids:
        delete_file(files_dir, file_id)
    logger.info("Deleted namespace version %s", current.version)


def list_version_languages(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    version_id: str,
) -> list[VersionLanguage]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        return _version_languages(active, version_id)


def get_version_content(
    *,
    db_path: Path,
    namespace_id: str,
    version: str,
    language_code: str,
) -> dict[str, Any]:
    with connection_scope(db_path=db_path) as active:
        current = _version_by_name(active, namespace_id=namespace_id, version=version.strip())
        if current is None:
            raise ValueError(f"Namespace version not found: {version}")
        language = next(
            (item for item in _version_languages(active, current.id) if item.language_code == language_code),
            None,
        )
    if language is None or not language.file_id:
        raise ValueError(f"Language '{language_code}' has no content in version '{current.version}'")
    return read_json_file(files_dir_for_db(db_path), language.file_id)


def update_version_language(
    *,
    db_path: Path,
    project_id: str,
    namespace_id: str,
    version: str,
    language_code: str,
    changes: LanguageChanges,
) -> VersionLanguage:
    """Apply structured changes to one language file of a version.

    A language missing from the version starts from the primary language's
    file, or from an empty document.
    """

    files_dir = files_dir_for_db(db_path)

    with connection_scope(db_path=db_path) as active:
        current = _version_by_name(active, namespace_id=namespace_id, version=version.strip())
        if current is None:
            raise ValueError(f"Namespace version not found: {version}")
        if current.status == VERSION_STATUS_MERGING:
            raise ValueError(f"Version '{current.version}' is being merged")

        by_code = {item.language_code: item for item in _version_languages(active, current.id)}
        primary = get_primary_language(connection=active, project_id=project_id)
        primary_entry = by_code.get(primary.language_code) if primary is not None else None
        primary_document = (
            read_json_file(files_dir, primary_entry.file_id)
            if primary_entry is not None and primary_entry.file_id
            else {}
        )

        existing = by_code.get(language_code)
        if existing is not None and existing.file_id:
            document = read_json_file(files_dir, existing.file_id)
        else:
            document = primary_document

        content = content_from_document(document, primary_document)
        updated = apply_language_changes(content, changes)
        stored = store_json(files_dir, document_from_content(updated))

        try:
            if existing is None:
                _insert_version_language(
                    active,
                    version_id=current.id,
                    language_code=language_code,
                    file_id=stored.file_id,
                    file_size=stored.file_size,
                )
                _refresh_language_count(active, current.id)
            else:
                active.execute(
                    text(
                        """
                        UPDATE version_languages
                        SET file_id = :file_id, file_size = :file_size, updated_at = :updated_at
                        WHERE id = :id
                        """
                    ),
                    {
                        "file_id": stored.file_id,
                        "file_size": stored.file_size,
                        "updated_at": _utc_now_iso(),
                        "id": existing.id,
                    },
                )
            row = active.execute(
                text("SELECT * FROM version_languages WHERE version_id = :version_id AND language_code = :code"),
                {"version_id": current.id, "code": language_code},
            ).mappings().one()
        except Exception:
            delete_file(files_dir, stored.file_id)
            raise

    if existing is not None:
        delete_file(files_dir, existing.file_id)
    return _row_to_version_language(dict(row))


def _set_status(db_path: Path, version_ids: list[str], status: str | None) -> None:
    with connection_scope(db_path=db_path) as active:
        for version_id in version_ids:
            active.execute(
                text("UPDATE namespace_versions SET status = :status, updated_at = :updated_at WHERE id = :id"),
                {"status": status, "updated_at": _utc_now_iso(), "id": version_id},
            )


def merge_namespace_versions(
    *,
    db_path: Path,
    namespace_id: str,
    source_version: str,
    target_version: str,
) -> MergeResult:
    """Make the target version's languages a copy of the source version's.

    Languages present in both are updated, source-only languages are created
    and target-only languages are deleted along with their files. Both
    versions are flagged ``merging`` while the merge runs.
    """

    source_name = (source_version or "").strip()
    target_name = (target_version or "").strip()
    if source_name == target_name:
        raise ValueError("Source and target versions must be different")

    files_dir = files_dir_for_db(db_path)

    with connection_scope(db_path=db_path) as active:
        source = _version_by_name(active, namespace_id=namespace_id, version=source_name)
        target = _version_by_name(active, namespace_id=namespace_id, version=target_name)
        if source is None or target is None:
            raise ValueError("Source or target version not found")
        for version in (source, target):
            if version.status == VERSION_STATUS_MERGING:
                raise ValueError(f"Version '{version.version}' is already being merged")

    _set_status(db_path, [source.id, target.id], VERSION_STATUS_MERGING)
    result = MergeResult(source_version=source.version, target_version=target.version)
    obsolete_files: list[str | None] = []
    stored_ids: list[str] = []

    try:
        with connection_scope(db_path=db_path) as active:
            source_languages = _version_languages(active, source.id)
            target_by_code = {item.language_code: item for item in _version_languages(active, target.id)}

            for source_language in source_languages:
                code = source_language.language_code
                target_language = target_by_code.pop(code, None)

                content = read_text_file(files_dir, source_language.file_id) if source_language.file_id else None
                if content is None:
                    logger.warning("No file found for source language: %s", code)
                    result.skipped.append(code)
                    continue

                stored = store_json(files_dir, json.loads(content))
                stored_ids.append(stored.file_id)

                if target_language is not None:
                    active.execute(
                        text(
                            """
                            UPDATE version_languages
                            SET file_id = :file_id, file_size = :file_size, updated_at = :updated_at
                            WHERE id = :id
                            """
                        ),
                        {
                            "file_id": stored.file_id,
                            "file_size": stored.file_size,
                            "updated_at": _utc_now_iso(),
                            "id": target_language.id,
                        },
                    )
                    obsolete_files.append(target_language.file_id)
                    result.updated.append(code)
                else:
                    _insert_version_language(
                        active,
                        version_id=target.id,
                        language_code=code,
                        file_id=stored.file_id,
                        file_size=stored.file_size,
                    )
                    result.created.append(code)

            for code, target_language in target_by_code.items():
                active.execute(
                    text("DELETE FROM version_languages WHERE id = :id"),
                    {"id": target_language.id},
                )
                obsolete_files.append(target_language.file_id)
                result.deleted.append(code)

            _refresh_language_count(active, target.id)
    except Exception:
        for file_id in stored_ids:
            delete_file(files_dir, file_id)
        raise
    finally:
        _set_status(db_path, [source.id, target.id], None)

    for file_id in obsolete_files:
        delete_file(files_dir, file_id)

    logger.info(
        "Merged %s into %s: %d created, %d updated, %d deleted, %d skipped",
        source.version,
        target.version,
        len(result.created),
        len(result.updated),
        len(result.deleted),
        len(result.skipped),
    )
    return result
