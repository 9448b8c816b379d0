from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.db.schema import connection_scope

MAX_TERM_LENGTH = 200


@dataclass(slots=True, frozen=True)
class GlossaryTerm:
    id: str
    project_id: str
    term: str
    description: str | None
    is_non_translatable: bool
    is_case_sensitive: bool
    is_forbidden: bool
    translations: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class GlossaryRule:
    term: str
    description: str | None
    is_non_translatable: bool
    is_forbidden: bool
    is_case_sensitive: bool
    forced_translation: str | None = None


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def _parse_translations(raw_value: object) -> dict[str, str]:
    if not isinstance(raw_value, str) or not raw_value.strip():
        return {}

    try:
        parsed = json.loads(raw_value)
    except (TypeError, ValueError):
        return {}

    if not isinstance(parsed, dict):
        return {}

    translations: dict[str, str] = {}
    for code, value in parsed.items():
        if not isinstance(value, str):
            continue
        cleaned = value.strip()
        if cleaned:
            translations[str(code)] = cleaned
    return translations


def _clean_translations(translations: dict[str, str] | None) -> dict[str, str]:
    return {
        str(code).strip(): str(value).strip()
        for code, value in (translations or {}).items()
        if str(code).strip() and str(value or "").strip()
    }


def _row_to_term(row: dict[str, object]) -> GlossaryTerm:
    description = row.get("description")
    return GlossaryTerm(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        term=str(row["term"]),
        description=str(description) if description else None,
        is_non_translatable=bool(int(row.get("is_non_translatable") or 0)),
        is_case_sensitive=bool(int(row.get("is_case_sensitive") or 0)),
        is_forbidden=bool(int(row.get("is_forbidden") or 0)),
        translations=_parse_translations(row.get("translations_json")),
    )


def _normalize_term(term: str) -> str:
    normalized = (term or "").strip()
    if not normalized:
        raise ValueError("Glossary term cannot be empty")
    if len(normalized) > MAX_TERM_LENGTH:
        raise ValueError(f"Glossary term cannot exceed {MAX_TERM_LENGTH} characters")
    return normalized


def _fetch_term(connection: Connection, *, project_id: str, term_id: str) -> GlossaryTerm:
    row = connection.execute(
        text("SELECT * FROM glossary_terms WHERE id = :term_id AND project_id = :project_id"),
        {"term_id": term_id, "project_id": project_id},
    ).mappings().first()
    if row is None:
        raise ValueError(f"Glossary term not found: {term_id}")
    return _row_to_term(dict(row))


def _ensure_term_available(
    connection: Connection,
    *,
    project_id: str,
    term: str,
    exclude_id: str | None = None,
) -> None:
    row = connection.execute(
        text("SELECT id FROM glossary_terms WHERE project_id = :project_id AND term = :term LIMIT 1"),
        {"project_id": project_id, "term": term},
    ).first()
    if row is not None and str(row[0]) != exclude_id:
        raise ValueError(f"Glossary term already exists: {term}")


def create_term(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    term: str,
    description: str | None = None,
    is_non_translatable: bool = False,
    is_case_sensitive: bool = False,
    is_forbidden: bool = False,
    translations: dict[str, str] | None = None,
) -> GlossaryTerm:
    normalized = _normalize_term(term)

    with connection_scope(db_path=db_path, connection=connection) as active:
        _ensure_term_available(active, project_id=project_id, term=normalized)
        term_id = str(uuid4())
        now = _utc_now_iso()
        active.execute(
            text(
                """
                INSERT INTO glossary_terms(
                    id,
                    project_id,
                    term,
                    description,
                    is_non_translatable,
                    is_case_sensitive,
                    is_forbidden,
                    translations_json,
                    created_at,
                    updated_at
                ) VALUES (
                    :id,
                    :project_id,
                    :term,
                    :description,
                    :is_non_translatable,
                    :is_case_sensitive,
                    :is_forbidden,
                    :translations_json,
                    :created_at,
                    :updated_at
                )
                """
            ),
            {
                "id": term_id,
                "project_id": project_id,
                "term": normalized,
                "description": (description or "").strip() or None,
                "is_non_translatable": int(is_non_translatable),
                "is_case_sensitive": int(is_case_sensitive),
                "is_forbidden": int(is_forbidden),
                "translations_json": json.dumps(_clean_translations(translations), ensure_ascii=False),
                "created_at": now,
                "updated_at": now,
            },
        )
        return _fetch_term(active, project_id=project_id, term_id=term_id)


def update_term(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    term_id: str,
    term: str | None = None,
    description: str | None = None,
    is_non_translatable: bool | None = None,
    is_case_sensitive: bool | None = None,
    is_forbidden: bool | None = None,
    translations: dict[str, str] | None = None,
) -> GlossaryTerm:
    with connection_scope(db_path=db_path, connection=connection) as active:
        current = _fetch_term(active, project_id=project_id, term_id=term_id)

        new_term = current.term
        if term is not None:
            new_term = _normalize_term(term)
            if new_term != current.term:
                _ensure_term_available(active, project_id=project_id, term=new_term, exclude_id=term_id)

        active.execute(
            text(
                """
                UPDATE glossary_terms
                SET term = :term,
                    description = :description,
                    is_non_translatable = :is_non_translatable,
                    is_case_sensitive = :is_case_sensitive,
                    is_forbidden = :is_forbidden,
                    translations_json = :translations_json,
                    updated_at = :updated_at
                WHERE id = :id
                """
            ),
            {
                "id": term_id,
                "term": new_term,
                "description": (
                    current.description if description is None else (description.strip() or None)
                ),
                "is_non_translatable": int(
                    current.is_non_translatable if is_non_translatable is None else is_non_translatable
                ),
                "is_case_sensitive": int(
                    current.is_case_sensitive if is_case_sensitive is None else is_case_sensitive
                ),
                "is_forbidden": int(current.is_forbidden if is_forbidden is None else is_forbidden),
                "translations_json": json.dumps(
                    current.translations if translations is None else _clean_translations(translations),
                    ensure_ascii=False,
                ),
                "updated_at": _utc_now_iso(),
            },
        )
        return _fetch_term(active, project_id=project_id, term_id=term_id)


def delete_term(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    term_id: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        _fetch_term(active, project_id=project_id, term_id=term_id)
        active.execute(text("DELETE FROM glossary_terms WHERE id = :id"), {"id": term_id})


def list_terms(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    search: str | None = None,
) -> list[GlossaryTerm]:
    pattern = f"%{search.strip()}%" if search and search.strip() else None
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT * FROM glossary_terms
                WHERE project_id = :project_id
                  AND (:pattern IS NULL OR term LIKE :pattern)
                ORDER BY term COLLATE NOCASE, id
                """
            ),
            {"project_id": project_id, "pattern": pattern},
        ).mappings().all()
    return [_row_to_term(dict(row)) for row in rows]


def glossary_context(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    language_code: str,
) -> list[GlossaryRule]:
    """Rules for translating into ``language_code``.

    Terms that carry neither a flag, a forced translation for the language
    nor a description add nothing to a prompt and are left out.
    """

    rules: list[GlossaryRule] = []
    for term in list_terms(db_path=db_path, connection=connection, project_id=project_id):
        forced = term.translations.get(language_code)
        if not (term.is_forbidden or term.is_non_translatable or forced or term.description):
            continue
        rules.append(
            GlossaryRule(
                term=term.term,
                description=term.description,
                is_non_translatable=term.is_non_translatable,
                is_forbidden=term.is_forbidden,
                is_case_sensitive=term.is_case_sensitive,
                forced_translation=forced,
            )
        )
    return rules
