from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE, STATUS_DELETING
from ul_core.db.schema import connection_scope
from ul_core.keys.json_flatten import flatten_json, unflatten_json
from ul_core.languages.language_service import get_language_by_code, get_primary_language
from ul_core.namespaces.namespace_service import get_namespace

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


@dataclass(slots=True)
class TranslationKeyRecord:
    id: str
    namespace_id: str
    key: str
    status: int
    values: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ImportSummary:
    namespace: str
    language_code: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def validate_key(key: str) -> str:
    normalized = (key or "").strip()
    if not normalized:
        raise ValueError("Translation key cannot be empty")
    if len(normalized) > MAX_KEY_LENGTH:
        raise ValueError(f"Translation key cannot exceed {MAX_KEY_LENGTH} characters")
    if any(segment == "" for segment in normalized.split(".")):
        raise ValueError(f"Translation key has an empty path segment: {key!r}")
    return normalized


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _active_key_count(connection: Connection, project_id: str) -> int:
    return int(
        connection.execute(
            text(
                "SELECT COUNT(*) FROM translation_keys WHERE project_id = :project_id AND status != :deleting"
            ),
            {"project_id": project_id, "deleting": STATUS_DELETING},
        ).scalar_one()
    )


def _upsert_value(
    connection: Connection,
    *,
    key_id: str,
    namespace_id: str,
    language_id: str,
    value: str,
) -> bool:
    """Write one value; returns True when a row was inserted or changed."""

    existing = connection.execute(
        text(
            """
            SELECT id, value FROM translation_values
            WHERE translation_key_id = :key_id AND language_id = :language_id
            """
        ),
        {"key_id": key_id, "language_id": language_id},
    ).first()

    now = _utc_now_iso()
    if existing is None:
        connection.execute(
            text(
                """
                INSERT INTO translation_values(
                    id, translation_key_id, namespace_id, language_id, value, updated_at
                ) VALUES (
                    :id, :key_id, :namespace_id, :language_id, :value, :updated_at
                )
                """
            ),
            {
                "id": str(uuid4()),
                "key_id": key_id,
                "namespace_id": namespace_id,
                "language_id": language_id,
                "value": value,
                "updated_at": now,
            },
        )
        return True

    if existing[1] == value:
        return False

    connection.execute(
        text("UPDATE translation_values SET value = :value, updated_at = :updated_at WHERE id = :id"),
        {"value": value, "updated_at": now, "id": existing[0]},
    )
    return True


def _insert_key(connection: Connection, *, project_id: str, namespace_id: str, key: str) -> str:
    key_id = str(uuid4())
    now = _utc_now_iso()
    connection.execute(
        text(
            """
            INSERT INTO translation_keys(id, project_id, namespace_id, key, status, created_at, updated_at)
            VALUES (:id, :project_id, :namespace_id, :key, :status, :created_at, :updated_at)
            """
        ),
        {
            "id": key_id,
            "project_id": project_id,
            "namespace_id": namespace_id,
            "key": key,
            "status": STATUS_ACTIVE,
            "created_at": now,
            "updated_at": now,
        },
    )
    return key_id


def _find_key(connection: Connection, *, project_id: str, namespace_id: str, key: str) -> tuple[str, int] | None:
    row = connection.execute(
        text(
            """
            SELECT id, status FROM translation_keys
            WHERE project_id = :project_id AND namespace_id = :namespace_id AND key = :key
            """
        ),
        {"project_id": project_id, "namespace_id": namespace_id, "key": key},
    ).first()
    return (str(row[0]), int(row[1])) if row is not None else None


def create_translation_key(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    key: str,
    primary_value: str,
    key_limit: int | None = None,
) -> TranslationKeyRecord:
    normalized_key = validate_key(key)

    with connection_scope(db_path=db_path, connection=connection) as active:
        primary = get_primary_language(connection=active, project_id=project_id)
        if primary is None:
            raise ValueError("Project has no primary language")

        namespace = get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)
        if namespace.status != STATUS_ACTIVE:
            raise ValueError(f"Namespace is not active: {namespace.name}")

        if key_limit is not None and _active_key_count(active, project_id) >= key_limit:
            raise ValueError("You have reached the maximum number of translation keys")

        existing = _find_key(active, project_id=project_id, namespace_id=namespace_id, key=normalized_key)
        if existing is not None:
            if existing[1] != STATUS_DELETING:
                raise ValueError("Key already exists")
            active.execute(
                text("DELETE FROM translation_keys WHERE id = :id"),
                {"id": existing[0]},
            )

        key_id = _insert_key(active, project_id=project_id, namespace_id=namespace_id, key=normalized_key)
        _upsert_value(
            active,
            key_id=key_id,
            namespace_id=namespace_id,
            language_id=primary.id,
            value=primary_value,
        )

    return TranslationKeyRecord(
        id=key_id,
        namespace_id=namespace_id,
        key=normalized_key,
        status=STATUS_ACTIVE,
        values={primary.language_code: primary_value},
    )


def set_translation_value(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    key_id: str,
    language_code: str,
    value: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        key_row = active.execute(
            text(
                """
                SELECT namespace_id, status FROM translation_keys
                WHERE id = :key_id AND project_id = :project_id
                """
            ),
            {"key_id": key_id, "project_id": project_id},
        ).first()
        if key_row is None:
            raise ValueError(f"Translation key not found: {key_id}")
        if int(key_row[1]) == STATUS_DELETING:
            raise ValueError("Translation key is being deleted")

        language = get_language_by_code(connection=active, project_id=project_id, language_code=language_code)
        if language is None or language.status == STATUS_DELETING:
            raise ValueError(f"Language not found: {language_code}")

        _upsert_value(
            active,
            key_id=key_id,
            namespace_id=str(key_row[0]),
            language_id=language.id,
            value=value,
        )
        active.execute(
            text("UPDATE translation_keys SET updated_at = :updated_at WHERE id = :key_id"),
            {"updated_at": _utc_now_iso(), "key_id": key_id},
        )


def delete_translation_keys(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    key_ids: list[str],
) -> int:
    if not key_ids:
        return 0

    with connection_scope(db_path=db_path, connection=connection) as active:
        params = {"project_id": project_id, "key_ids": list(key_ids)}
        active.execute(
            text(
                """
                DELETE FROM translation_values
                WHERE translation_key_id IN (
                    SELECT id FROM translation_keys
                    WHERE project_id = :project_id AND id IN :key_ids
                )
                """
            ).bindparams(bindparam("key_ids", expanding=True)),
            params,
        )
        result = active.execute(
            text(
                "DELETE FROM translation_keys WHERE project_id = :project_id AND id IN :key_ids"
            ).bindparams(bindparam("key_ids", expanding=True)),
            params,
        )
        return int(result.rowcount or 0)


def list_translation_keys(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    search: str | None = None,
) -> list[TranslationKeyRecord]:
    pattern = f"%{search.strip()}%" if search and search.strip() else None

    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT k.id, k.namespace_id, k.key, k.status, l.language_code, v.value
                FROM translation_keys k
                LEFT JOIN translation_values v ON v.translation_key_id = k.id
                LEFT JOIN languages l ON l.id = v.language_id
                WHERE k.project_id = :project_id
                  AND k.namespace_id = :namespace_id
                  AND k.status != :deleting
                  AND (:pattern IS NULL OR k.key LIKE :pattern)
                ORDER BY k.key, l.language_code
                """
            ),
            {
                "project_id": project_id,
                "namespace_id": namespace_id,
                "deleting": STATUS_DELETING,
                "pattern": pattern,
            },
        ).all()

    records: dict[str, TranslationKeyRecord] = {}
    for key_id, row_namespace_id, key, status, language_code, value in rows:
        record = records.get(key_id)
        if record is None:
            record = TranslationKeyRecord(
                id=str(key_id),
                namespace_id=str(row_namespace_id),
                key=str(key),
                status=int(status),
            )
            records[key_id] = record
        if language_code is not None and value is not None:
            record.values[str(language_code)] = str(value)
    return list(records.values())


def namespace_values(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    language_id: str,
) -> dict[str, str]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT k.key, v.value
                FROM translation_values v
                JOIN translation_keys k ON k.id = v.translation_key_id
                WHERE k.project_id = :project_id
                  AND v.namespace_id = :namespace_id
                  AND v.language_id = :language_id
                  AND k.status != :deleting
                ORDER BY k.key
                """
            ),
            {
                "project_id": project_id,
                "namespace_id": namespace_id,
                "language_id": language_id,
                "deleting": STATUS_DELETING,
            },
        ).all()
    return {str(key): str(value) for key, value in rows}


def import_namespace_json(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    language_code: str,
    payload: dict[str, Any],
    key_limit: int | None = None,
) -> ImportSummary:
    """Upsert keys and values for one language from a nested JSON document."""

    if not isinstance(payload, dict):
        raise ValueError("Import payload must be a JSON object")

    with connection_scope(db_path=db_path, connection=connection) as active:
        namespace = get_namespace(connection=active, project_id=project_id, namespace_id=namespace_id)
        language = get_language_by_code(connection=active, project_id=project_id, language_code=language_code)
        if language is None or language.status == STATUS_DELETING:
            raise ValueError(f"Language not found: {language_code}")

        summary = ImportSummary(namespace=namespace.name, language_code=language.language_code)
        key_count = _active_key_count(active, project_id)

        for flat_key, raw_value in flatten_json(payload).items():
            value = _stringify(raw_value)
            if value is None:
                summary.skipped += 1
                continue

            existing = _find_key(active, project_id=project_id, namespace_id=namespace_id, key=flat_key)
            if existing is None or existing[1] == STATUS_DELETING:
                if key_limit is not None and key_count >= key_limit:
                    raise ValueError("You have reached the maximum number of translation keys")
                if existing is not None:
                    active.execute(text("DELETE FROM translation_keys WHERE id = :id"), {"id": existing[0]})
                key_id = _insert_key(active, project_id=project_id, namespace_id=namespace_id, key=flat_key)
                key_count += 1
                summary.created += 1
            else:
                key_id = existing[0]

            changed = _upsert_value(
                active,
                key_id=key_id,
                namespace_id=namespace_id,
                language_id=language.id,
                value=value,
            )
            if existing is not None and existing[1] != STATUS_DELETING:
                if changed:
                    summary.updated += 1
                else:
                    summary.unchanged += 1

    logger.info(
        "Imported %s/%s: %d created, %d updated, %d unchanged, %d skipped",
        summary.namespace,
        summary.language_code,
        summary.created,
        summary.updated,
        summary.unchanged,
        summary.skipped,
    )
    return summary


def export_namespace_json(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    namespace_id: str,
    language_code: str,
) -> dict[str, Any]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        language = get_language_by_code(connection=active, project_id=project_id, language_code=language_code)
        if language is None:
            raise ValueError(f"Language not found: {language_code}")
        flat = namespace_values(
            connection=active,
            project_id=project_id,
            namespace_id=namespace_id,
            language_id=language.id,
        )
    return unflatten_json(flat)
