from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.db.schema import connection_scope
from ul_core.project.create_project import ProjectInfo, load_project_info

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "ul"
PERMISSION_TRANSLATIONS_READ = "translations.read"
PERMISSION_KEYS_READ = "keys.read"
PERMISSION_BUILDS_READ = "builds.read"
PERMISSION_BUILDS_WRITE = "builds.write"
ALL_PERMISSIONS = (
    PERMISSION_TRANSLATIONS_READ,
    PERMISSION_KEYS_READ,
    PERMISSION_BUILDS_READ,
    PERMISSION_BUILDS_WRITE,
)


@dataclass(slots=True, frozen=True)
class ApiKeyRecord:
    id: str
    project_id: str
    name: str
    preview: str
    permissions: tuple[str, ...]
    created_at: str
    last_used_at: str | None
    revoked_at: str | None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


@dataclass(slots=True, frozen=True)
class CreatedApiKey:
    record: ApiKeyRecord
    plaintext: str


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def hash_api_key(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def _preview(plaintext: str) -> str:
    return f"{plaintext[:len(API_KEY_PREFIX) + 1]}...{plaintext[-4:]}"


def _normalize_permissions(permissions: Iterable[str] | None) -> tuple[str, ...]:
    if permissions is None:
        return ALL_PERMISSIONS
    normalized: list[str] = []
    for permission in permissions:
        cleaned = permission.strip()
        if cleaned not in ALL_PERMISSIONS:
            raise ValueError(f"Unknown permission: {permission}")
        if cleaned not in normalized:
            normalized.append(cleaned)
    if not normalized:
        raise ValueError("An API key needs at least one permission")
    return tuple(normalized)


def _parse_permissions(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, str):
        return ()
    try:
        parsed = json.loads(raw_value)
    except (TypeError, ValueError):
        return ()
    if not isinstance(parsed, list):
        return ()
    return tuple(str(item) for item in parsed if str(item) in ALL_PERMISSIONS)


def _row_to_record(row: dict[str, object]) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        name=str(row["name"]),
        preview=str(row["preview"]),
        permissions=_parse_permissions(row.get("permissions_json")),
        created_at=str(row["created_at"]),
        last_used_at=row.get("last_used_at"),  # type: ignore[arg-type]
        revoked_at=row.get("revoked_at"),  # type: ignore[arg-type]
    )


def project_slug_from_key(plaintext: str) -> str | None:
    parts = (plaintext or "").strip().split("_", 2)
    if len(parts) != 3 or parts[0] != API_KEY_PREFIX or not parts[1] or not parts[2]:
        return None
    return parts[1]


def create_api_key(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    project_slug: str,
    name: str,
    permissions: Iterable[str] | None = None,
) -> CreatedApiKey:
    """Create a key; the plaintext is only ever returned here."""

    key_name = (name or "").strip()
    if not key_name:
        raise ValueError("API key name cannot be empty")
    granted = _normalize_permissions(permissions)

    plaintext = f"{API_KEY_PREFIX}_{project_slug}_{secrets.token_hex(24)}"
    key_id = str(uuid4())

    with connection_scope(db_path=db_path, connection=connection) as active:
        active.execute(
            text(
                """
                INSERT INTO api_keys(id, project_id, name, preview, key_hash, permissions_json, created_at)
                VALUES (:id, :project_id, :name, :preview, :key_hash, :permissions_json, :created_at)
                """
            ),
            {
                "id": key_id,
                "project_id": project_id,
                "name": key_name,
                "preview": _preview(plaintext),
                "key_hash": hash_api_key(plaintext),
                "permissions_json": json.dumps(list(granted)),
                "created_at": _utc_now_iso(),
            },
        )
        row = active.execute(
            text("SELECT * FROM api_keys WHERE id = :id"),
            {"id": key_id},
        ).mappings().one()

    logger.info("Created API key %s (%s)", key_name, ", ".join(granted))
    return CreatedApiKey(record=_row_to_record(dict(row)), plaintext=plaintext)


def list_api_keys(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    include_revoked: bool = False,
) -> list[ApiKeyRecord]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT * FROM api_keys
                WHERE project_id = :project_id
                  AND (:include_revoked = 1 OR revoked_at IS NULL)
                ORDER BY created_at, name
                """
            ),
            {"project_id": project_id, "include_revoked": 1 if include_revoked else 0},
        ).mappings().all()
    return [_row_to_record(dict(row)) for row in rows]


def revoke_api_key(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    key_id: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        result = active.execute(
            text(
                """
                UPDATE api_keys SET revoked_at = :revoked_at
                WHERE id = :id AND project_id = :project_id AND revoked_at IS NULL
                """
            ),
            {"revoked_at": _utc_now_iso(), "id": key_id, "project_id": project_id},
        )
        if not result.rowcount:
            raise ValueError(f"Active API key not found: {key_id}")
    logger.info("Revoked API key %s", key_id)


def verify_api_key(
    *,
    root: Path | None,
    plaintext: str,
    permission: str,
) -> tuple[ProjectInfo, ApiKeyRecord]:
    """Locate the key's project, check hash, revocation and permission.

    Raises ``PermissionError`` for every failure so callers can answer with
    a single status code.
    """

    slug = project_slug_from_key(plaintext)
    if slug is None:
        raise PermissionError("Invalid API key")

    try:
        project = load_project_info(slug, root=root)
    except (FileNotFoundError, ValueError) as exc:
        raise PermissionError("Invalid API key") from exc

    digest = hash_api_key(plaintext.strip())
    with connection_scope(db_path=project.db_path) as active:
        row = active.execute(
            text("SELECT * FROM api_keys WHERE key_hash = :key_hash AND project_id = :project_id"),
            {"key_hash": digest, "project_id": project.project_id},
        ).mappings().first()
        if row is None or not hmac.compare_digest(str(row["key_hash"]), digest):
            raise PermissionError("Invalid API key")

        record = _row_to_record(dict(row))
        if record.is_revoked:
            raise PermissionError("Invalid API key")
        if permission not in record.permissions:
            raise PermissionError(f"API key lacks permission: {permission}")

        active.execute(
            text("UPDATE api_keys SET last_used_at = :now WHERE id = :id"),
            {"now": _utc_now_iso(), "id": record.id},
        )

    return project, record
