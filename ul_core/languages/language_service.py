from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE, STATUS_DELETING
from ul_core.db.schema import connection_scope

logger = logging.getLogger(__name__)

_LANGUAGE_CODE_PATTERN = re.compile(r"^[A-Za-z]{2,3}([-_][A-Za-z0-9]{2,8})*$")


@dataclass(slots=True, frozen=True)
class Language:
    id: str
    project_id: str
    language_code: str
    status: int
    rules: dict[str, str] = field(default_factory=dict)
    is_primary: bool = False


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def normalize_language_code(language_code: str) -> str:
    normalized = (language_code or "").strip()
    if not normalized:
        raise ValueError("Language code cannot be empty")
    if not _LANGUAGE_CODE_PATTERN.match(normalized):
        raise ValueError(f"Invalid language code: {language_code!r}")
    return normalized


def _parse_rules(raw_value: object) -> dict[str, str]:
    if not isinstance(raw_value, str) or not raw_value.strip():
        return {}
    try:
        parsed = json.loads(raw_value)
    except (TypeError, ValueError):
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(key): str(value) for key, value in parsed.items()}


def _row_to_language(row: dict[str, object], primary_language_id: str | None) -> Language:
    return Language(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        language_code=str(row["language_code"]),
        status=int(row["status"]),
        rules=_parse_rules(row.get("rules_json")),
        is_primary=primary_language_id is not None and str(row["id"]) == primary_language_id,
    )


def _primary_language_id(connection: Connection, project_id: str) -> str | None:
    row = connection.execute(
        text("SELECT primary_language_id FROM projects WHERE id = :project_id"),
        {"project_id": project_id},
    ).first()
    if row is None:
        raise ValueError(f"Project not found: {project_id}")
    return str(row[0]) if row[0] is not None else None


def _fetch_language(connection: Connection, *, project_id: str, language_id: str) -> Language:
    row = connection.execute(
        text(
            """
            SELECT id, project_id, language_code, status, rules_json
            FROM languages
            WHERE id = :language_id AND project_id = :project_id
            """
        ),
        {"language_id": language_id, "project_id": project_id},
    ).mappings().first()
    if row is None:
        raise ValueError(f"Language not found: {language_id}")
    return _row_to_language(dict(row), _primary_language_id(connection, project_id))


def get_language_by_code(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    language_code: str,
) -> Language | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text(
                """
                SELECT id, project_id, language_code, status, rules_json
                FROM languages
                WHERE project_id = :project_id AND language_code = :language_code
                LIMIT 1
                """
            ),
            {"project_id": project_id, "language_code": language_code.strip()},
        ).mappings().first()
        if row is None:
            return None
        return _row_to_language(dict(row), _primary_language_id(active, project_id))


def get_primary_language(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
) -> Language | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        primary_id = _primary_language_id(active, project_id)
        if primary_id is None:
            return None
        return _fetch_language(active, project_id=project_id, language_id=primary_id)


def list_languages(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    include_deleting: bool = False,
) -> list[Language]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        primary_id = _primary_language_id(active, project_id)
        rows = active.execute(
            text(
                """
                SELECT id, project_id, language_code, status, rules_json
                FROM languages
                WHERE project_id = :project_id
                  AND (:include_deleting = 1 OR status > :deleting)
                ORDER BY language_code
                """
            ),
            {
                "project_id": project_id,
                "include_deleting": 1 if include_deleting else 0,
                "deleting": STATUS_DELETING,
            },
        ).mappings().all()

    return [_row_to_language(dict(row), primary_id) for row in rows]


def create_language(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    language_code: str,
    is_primary: bool = False,
    rules: dict[str, str] | None = None,
) -> Language:
    code = normalize_language_code(language_code)

    with connection_scope(db_path=db_path, connection=connection) as active:
        existing = active.execute(
            text(
                """
                SELECT 1 FROM languages
                WHERE project_id = :project_id AND language_code = :language_code
                LIMIT 1
                """
            ),
            {"project_id": project_id, "language_code": code},
        ).first()
        if existing is not None:
            raise ValueError(f"Language '{code}' already exists in this project")

        language_id = str(uuid4())
        active.execute(
            text(
                """
                INSERT INTO languages(id, project_id, language_code, status, rules_json, created_at)
                VALUES (:id, :project_id, :language_code, :status, :rules_json, :created_at)
                """
            ),
            {
                "id": language_id,
                "project_id": project_id,
                "language_code": code,
                "status": STATUS_ACTIVE,
                "rules_json": json.dumps(rules or {}, ensure_ascii=False),
                "created_at": _utc_now_iso(),
            },
        )

        if is_primary:
            active.execute(
                text("UPDATE projects SET primary_language_id = :language_id WHERE id = :project_id"),
                {"language_id": language_id, "project_id": project_id},
            )

        logger.info("Created language %s (primary=%s)", code, is_primary)
        return _fetch_language(active, project_id=project_id, language_id=language_id)


def update_language(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    language_id: str,
    is_primary: bool | None = None,
    rules: dict[str, str] | None = None,
) -> Language:
    with connection_scope(db_path=db_path, connection=connection) as active:
        language = _fetch_language(active, project_id=project_id, language_id=language_id)

        if is_primary and not language.is_primary:
            active.execute(
                text("UPDATE projects SET primary_language_id = :language_id WHERE id = :project_id"),
                {"language_id": language_id, "project_id": project_id},
            )

        if rules is not None:
            active.execute(
                text("UPDATE languages SET rules_json = :rules_json WHERE id = :language_id"),
                {
                    "rules_json": json.dumps(rules, ensure_ascii=False),
                    "language_id": language_id,
                },
            )

        return _fetch_language(active, project_id=project_id, language_id=language_id)


def _drop_glossary_translations(connection: Connection, *, project_id: str, language_code: str) -> None:
    rows = connection.execute(
        text("SELECT id, translations_json FROM glossary_terms WHERE project_id = :project_id"),
        {"project_id": project_id},
    ).all()
    for term_id, raw_translations in rows:
        translations = _parse_rules(raw_translations)
        if language_code not in translations:
            continue
        translations.pop(language_code)
        connection.execute(
            text("UPDATE glossary_terms SET translations_json = :payload WHERE id = :id"),
            {"payload": json.dumps(translations, ensure_ascii=False), "id": term_id},
        )


def delete_language(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    language_id: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        language = _fetch_language(active, project_id=project_id, language_id=language_id)

        if language.is_primary:
            others = active.execute(
                text(
                    """
                    SELECT COUNT(*) FROM languages
                    WHERE project_id = :project_id AND status > :deleting AND id != :language_id
                    """
                ),
                {
                    "project_id": project_id,
                    "deleting": STATUS_DELETING,
                    "language_id": language_id,
                },
            ).scalar_one()
            if int(others) > 0:
                raise ValueError(
                    "Cannot delete primary language - there are other languages in the project"
                )
            active.execute(
                text("UPDATE projects SET primary_language_id = NULL WHERE id = :project_id"),
                {"project_id": project_id},
            )

        active.execute(
            text("DELETE FROM translation_values WHERE language_id = :language_id"),
            {"language_id": language_id},
        )
        _drop_glossary_translations(active, project_id=project_id, language_code=language.language_code)
        active.execute(
            text("DELETE FROM languages WHERE id = :language_id"),
            {"language_id": language_id},
        )
        logger.info("Deleted language %s", language.language_code)
