from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE, STATUS_DELETING
from ul_core.db.schema import connection_scope
from ul_core.releases.connections import rebalance_namespace
from ul_core.releases.selection import chances_are_balanced, normalize_chances

logger = logging.getLogger(__name__)

MAX_RELEASE_TAG_LENGTH = 50


@dataclass(slots=True, frozen=True)
class BuildSelection:
    build_id: str
    selection_chance: float


@dataclass(slots=True, frozen=True)
class Release:
    id: str
    project_id: str
    tag: str
    created_at: str


@dataclass(slots=True, frozen=True)
class ReleaseConnection:
    id: str
    release_id: str
    build_id: str
    selection_chance: float
    position: int


@dataclass(slots=True, frozen=True)
class ConfiguredBuild:
    build_id: str
    connection_id: str
    build_tag: str
    selection_chance: float


@dataclass(slots=True, frozen=True)
class NamespaceGroup:
    namespace: str
    builds: list[ConfiguredBuild]


@dataclass(slots=True)
class ReleaseConfiguration:
    release: Release
    groups: list[NamespaceGroup] = field(default_factory=list)
    clean_builds: list[BuildSelection] = field(default_factory=list)
    is_dirty: bool = False


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
        raise ValueError("Release tag cannot be empty")
    if len(normalized) > MAX_RELEASE_TAG_LENGTH:
        raise ValueError(f"Release tag cannot exceed {MAX_RELEASE_TAG_LENGTH} characters")
    return normalized


def _row_to_release(row: dict[str, Any]) -> Release:
    return Release(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        tag=str(row["tag"]),
        created_at=str(row["created_at"]),
    )


def _fetch_release(connection: Connection, *, project_id: str, release_id: str) -> Release:
    row = connection.execute(
        text("SELECT * FROM releases WHERE id = :release_id AND project_id = :project_id"),
        {"release_id": release_id, "project_id": project_id},
    ).mappings().first()
    if row is None:
        raise ValueError("Release not found or access denied")
    return _row_to_release(dict(row))


def _fetch_build_row(connection: Connection, build_id: str) -> dict[str, Any] | None:
    row = connection.execute(
        text("SELECT id, project_id, namespace, tag, status FROM builds WHERE id = :build_id"),
        {"build_id": build_id},
    ).mappings().first()
    return dict(row) if row is not None else None


def _release_connections(connection: Connection, release_id: str) -> list[ReleaseConnection]:
    rows = connection.execute(
        text(
            """
            SELECT id, release_id, build_id, selection_chance, position
            FROM release_build_connections
            WHERE release_id = :release_id
            ORDER BY position, id
            """
        ),
        {"release_id": release_id},
    ).mappings().all()
    return [
        ReleaseConnection(
            id=str(row["id"]),
            release_id=str(row["release_id"]),
            build_id=str(row["build_id"]),
            selection_chance=float(row["selection_chance"]),
            position=int(row["position"]),
        )
        for row in rows
    ]


def validate_builds_configuration(
    connection: Connection,
    *,
    project_id: str,
    builds: Sequence[BuildSelection],
) -> None:
    """Every build must be active in the project and chances must sum to 100 per namespace."""

    totals: dict[str, float] = {}
    for item in builds:
        build = _fetch_build_row(connection, item.build_id)
        if build is None:
            raise ValueError(f"Build {item.build_id} not found.")
        if str(build["project_id"]) != project_id:
            raise ValueError(f"Build {build['tag']} is in a different project.")
        if int(build["status"]) != STATUS_ACTIVE:
            raise ValueError(f"Build {build['tag']} is not active.")
        namespace = str(build["namespace"])
        totals[namespace] = totals.get(namespace, 0.0) + float(item.selection_chance)

    for namespace, total in totals.items():
        if not chances_are_balanced(total):
            raise ValueError(
                f'Selection chances for namespace "{namespace}" must sum to 100%. Current: {total:g}%'
            )


def _replace_connections(connection: Connection, *, release_id: str, builds: Sequence[BuildSelection]) -> None:
    connection.execute(
        text("DELETE FROM release_build_connections WHERE release_id = :release_id"),
        {"release_id": release_id},
    )
    for position, item in enumerate(builds):
        _insert_connection(
            connection,
            release_id=release_id,
            build_id=item.build_id,
            selection_chance=item.selection_chance,
            position=position,
        )


def _insert_connection(
    connection: Connection,
    *,
    release_id: str,
    build_id: str,
    selection_chance: float,
    position: int,
) -> str:
    connection_id = str(uuid4())
    connection.execute(
        text(
            """
            INSERT INTO release_build_connections(id, release_id, build_id, selection_chance, position)
            VALUES (:id, :release_id, :build_id, :selection_chance, :position)
            """
        ),
        {
            "id": connection_id,
            "release_id": release_id,
            "build_id": build_id,
            "selection_chance": float(selection_chance),
            "position": position,
        },
    )
    return connection_id


def _ensure_tag_available(
    connection: Connection,
    *,
    project_id: str,
    tag: str,
    exclude_id: str | None = None,
) -> None:
    row = connection.execute(
        text("SELECT id FROM releases WHERE project_id = :project_id AND tag = :tag LIMIT 1"),
        {"project_id": project_id, "tag": tag},
    ).first()
    if row is not None and str(row[0]) != exclude_id:
        raise ValueError(f'Release tag "{tag}" already exists.')


def get_release_by_tag(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    tag: str,
) -> Release | None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        row = active.execute(
            text("SELECT * FROM releases WHERE project_id = :project_id AND tag = :tag"),
            {"project_id": project_id, "tag": tag},
        ).mappings().first()
    return _row_to_release(dict(row)) if row is not None else None


def list_releases(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    search: str | None = None,
) -> list[Release]:
    pattern = f"%{search.strip()}%" if search and search.strip() else None
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT * FROM releases
                WHERE project_id = :project_id
                  AND (:pattern IS NULL OR tag LIKE :pattern)
                ORDER BY created_at DESC, tag DESC
                """
            ),
            {"project_id": project_id, "pattern": pattern},
        ).mappings().all()
    return [_row_to_release(dict(row)) for row in rows]


def list_release_connections(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
) -> list[ReleaseConnection]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        _fetch_release(active, project_id=project_id, release_id=release_id)
        return _release_connections(active, release_id)


def create_release(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    tag: str,
    builds: Sequence[BuildSelection] = (),
) -> Release:
    normalized_tag = _validate_tag(tag)
    with connection_scope(db_path=db_path, connection=connection) as active:
        _ensure_tag_available(active, project_id=project_id, tag=normalized_tag)
        validate_builds_configuration(active, project_id=project_id, builds=builds)

        release_id = str(uuid4())
        active.execute(
            text(
                """
                INSERT INTO releases(id, project_id, tag, created_at)
                VALUES (:id, :project_id, :tag, :created_at)
                """
            ),
            {
                "id": release_id,
                "project_id": project_id,
                "tag": normalized_tag,
                "created_at": _utc_now_iso(),
            },
        )
        _replace_connections(active, release_id=release_id, builds=builds)
        logger.info("Created release %s with %d builds", normalized_tag, len(builds))
        return _fetch_release(active, project_id=project_id, release_id=release_id)


def update_release(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
    tag: str | None = None,
    builds: Sequence[BuildSelection] | None = None,
) -> Release:
    with connection_scope(db_path=db_path, connection=connection) as active:
        release = _fetch_release(active, project_id=project_id, release_id=release_id)

        if tag is not None and tag.strip() and tag.strip() != release.tag:
            normalized_tag = _validate_tag(tag)
            _ensure_tag_available(active, project_id=project_id, tag=normalized_tag, exclude_id=release_id)
            active.execute(
                text("UPDATE releases SET tag = :tag WHERE id = :release_id"),
                {"tag": normalized_tag, "release_id": release_id},
            )

        if builds is not None:
            validate_builds_configuration(active, project_id=project_id, builds=builds)
            _replace_connections(active, release_id=release_id, builds=builds)

        return _fetch_release(active, project_id=project_id, release_id=release_id)


def add_build_to_release(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
    build_id: str,
    selection_chance: float = 100.0,
) -> ReleaseConnection:
    with connection_scope(db_path=db_path, connection=connection) as active:
        _fetch_release(active, project_id=project_id, release_id=release_id)

        build = _fetch_build_row(active, build_id)
        if build is None or str(build["project_id"]) != project_id:
            raise ValueError("Build not found or access denied")
        if int(build["status"]) != STATUS_ACTIVE:
            raise ValueError(f"Build {build['tag']} is not active.")

        existing = _release_connections(active, release_id)
        if any(item.build_id == build_id for item in existing):
            raise ValueError("Build is already connected to this release.")

        position = max((item.position for item in existing), default=-1) + 1
        connection_id = _insert_connection(
            active,
            release_id=release_id,
            build_id=build_id,
            selection_chance=selection_chance,
            position=position,
        )
        rebalance_namespace(active, release_id=release_id, namespace=str(build["namespace"]))

        return next(item for item in _release_connections(active, release_id) if item.id == connection_id)


def remove_build_from_release(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
    connection_id: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        _fetch_release(active, project_id=project_id, release_id=release_id)
        target = next(
            (item for item in _release_connections(active, release_id) if item.id == connection_id),
            None,
        )
        if target is None:
            raise ValueError("Connection not found or access denied")

        build = _fetch_build_row(active, target.build_id)
        active.execute(
            text("DELETE FROM release_build_connections WHERE id = :id"),
            {"id": connection_id},
        )
        if build is not None:
            rebalance_namespace(active, release_id=release_id, namespace=str(build["namespace"]))


def update_connection_chance(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
    connection_id: str,
    selection_chance: float,
) -> None:
    if selection_chance < 0 or selection_chance > 100:
        raise ValueError("Selection chance must be between 0 and 100")
    with connection_scope(db_path=db_path, connection=connection) as active:
        _fetch_release(active, project_id=project_id, release_id=release_id)
        result = active.execute(
            text(
                """
                UPDATE release_build_connections
                SET selection_chance = :chance
                WHERE id = :id AND release_id = :release_id
                """
            ),
            {"chance": float(selection_chance), "id": connection_id, "release_id": release_id},
        )
        if not result.rowcount:
            raise ValueError("Connection not found or access denied")


def delete_release(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        release = _fetch_release(active, project_id=project_id, release_id=release_id)
        active.execute(
            text("DELETE FROM release_build_connections WHERE release_id = :release_id"),
            {"release_id": release_id},
        )
        active.execute(text("DELETE FROM releases WHERE id = :release_id"), {"release_id": release_id})
    logger.info("Deleted release %s", release.tag)


def get_release_configuration(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
) -> ReleaseConfiguration:
    """Group live connections by namespace and normalise unbalanced chances.

    Connections to missing or deleting builds are dropped. Either repair
    marks the configuration dirty; ``clean_builds`` is what
    :func:`repair_release_configuration` should store.
    """

    with connection_scope(db_path=db_path, connection=connection) as active:
        release = _fetch_release(active, project_id=project_id, release_id=release_id)
        connections = _release_connections(active, release_id)

        grouped: dict[str, list[ConfiguredBuild]] = {}
        is_dirty = False
        for item in connections:
            build = _fetch_build_row(active, item.build_id)
            if build is None or int(build["status"]) == STATUS_DELETING:
                is_dirty = True
                continue
            grouped.setdefault(str(build["namespace"]), []).append(
                ConfiguredBuild(
                    build_id=item.build_id,
                    connection_id=item.id,
                    build_tag=str(build["tag"]),
                    selection_chance=item.selection_chance,
                )
            )

    configuration = ReleaseConfiguration(release=release, is_dirty=is_dirty)
    for namespace, builds in grouped.items():
        chances = [item.selection_chance for item in builds]
        if not chances_are_balanced(sum(chances)):
            configuration.is_dirty = True
            chances = normalize_chances(chances)
        normalized = [
            ConfiguredBuild(
                build_id=item.build_id,
                connection_id=item.connection_id,
                build_tag=item.build_tag,
                selection_chance=chance,
            )
            for item, chance in zip(builds, chances)
        ]
        configuration.groups.append(NamespaceGroup(namespace=namespace, builds=normalized))
        configuration.clean_builds.extend(
            BuildSelection(build_id=item.build_id, selection_chance=item.selection_chance)
            for item in normalized
        )

    return configuration


def repair_release_configuration(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    project_id: str,
    release_id: str,
    clean_builds: Sequence[BuildSelection],
) -> None:
    with connection_scope(db_path=db_path, connection=connection) as active:
        release = _fetch_release(active, project_id=project_id, release_id=release_id)
        _replace_connections(active, release_id=release_id, builds=clean_builds)
    logger.info("Repaired release %s (%d connections)", release.tag, len(clean_builds))
