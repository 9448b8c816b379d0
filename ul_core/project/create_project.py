from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text

from ul_core.db.migrations import get_schema_version
from ul_core.db.schema import initialize_database
from ul_core.languages.language_service import normalize_language_code
from ul_core.project.config import ProjectConfig, UsageLimits, read_config, write_config
from ul_core.project.paths import (
    ensure_project_layout,
    project_config_path,
    project_db_path,
    project_path_for_slug,
    project_readme_path,
    resolve_projects_root,
    slugify,
)


@dataclass(slots=True)
class CreatedProject:
    name: str
    slug: str
    project_id: str
    root: Path
    project_path: Path
    db_path: Path
    config_path: Path


@dataclass(slots=True)
class ProjectInfo:
    name: str
    slug: str
    project_id: str
    primary_language: str | None
    languages: list[str]
    schema_version: int
    project_path: Path
    db_path: Path
    limits: UsageLimits
    default_release: str | None = None


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def _unique_ordered(values: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        output.append(normalized)
    return output


def _write_project_readme(project_path: Path) -> None:
    readme_path = project_readme_path(project_path)
    note = (
        "This project folder is managed by unlingo.\n"
        "Do not store provider API keys in config.yml or project.db;\n"
        "use `unlingo set-secret` (OS keyring) instead.\n"
        "Serving API keys are stored hashed in project.db.\n"
    )
    readme_path.write_text(note, encoding="utf-8")


def create_project(
    name: str,
    *,
    slug: str | None = None,
    primary_language: str = "en",
    languages: list[str] | None = None,
    root: Path | None = None,
) -> CreatedProject:
    if not name.strip():
        raise ValueError("Project name cannot be empty")

    project_slug = slugify(slug if slug is not None else name)
    projects_root = resolve_projects_root(root)
    project_path = project_path_for_slug(project_slug, projects_root)

    if project_path.exists():
        raise FileExistsError(f"Project path already exists: {project_path}")

    primary_code = normalize_language_code(primary_language)
    language_codes = _unique_ordered(
        [primary_code, *(normalize_language_code(code) for code in languages or [])]
    )

    projects_root.mkdir(parents=True, exist_ok=True)
    project_path.mkdir(parents=False, exist_ok=False)
    ensure_project_layout(project_path)

    config = ProjectConfig(
        project_name=name,
        slug=project_slug,
        primary_language=primary_code,
        languages=language_codes,
    )

    config_path = project_config_path(project_path)
    write_config(config_path, config)
    _write_project_readme(project_path)

    db_path = project_db_path(project_path)
    engine = initialize_database(db_path)

    now = _utc_now_iso()
    project_id = str(uuid4())
    primary_language_id: str | None = None

    with engine.begin() as connection:
        connection.execute(
            text(
                """
                INSERT INTO projects(id, name, slug, primary_language_id, status, created_at, updated_at)
                VALUES (:id, :name, :slug, NULL, 1, :created_at, :updated_at)
                """
            ),
            {
                "id": project_id,
                "name": name,
                "slug": project_slug,
                "created_at": now,
                "updated_at": now,
            },
        )

        for language_code in language_codes:
            language_id = str(uuid4())
            connection.execute(
                text(
                    """
                    INSERT INTO languages(id, project_id, language_code, status, rules_json, created_at)
                    VALUES (:id, :project_id, :language_code, 1, '{}', :created_at)
                    """
                ),
                {
                    "id": language_id,
                    "project_id": project_id,
                    "language_code": language_code,
                    "created_at": now,
                },
            )
            if language_code == primary_code:
                primary_language_id = language_id

        connection.execute(
            text("UPDATE projects SET primary_language_id = :language_id WHERE id = :id"),
            {"language_id": primary_language_id, "id": project_id},
        )

    engine.dispose()

    return CreatedProject(
        name=name,
        slug=project_slug,
        project_id=project_id,
        root=projects_root,
        project_path=project_path,
        db_path=db_path,
        config_path=config_path,
    )


def load_project_info(slug: str, *, root: Path | None = None) -> ProjectInfo:
    project_slug = slugify(slug)
    projects_root = resolve_projects_root(root)
    project_path = project_path_for_slug(project_slug, projects_root)

    if not project_path.exists():
        raise FileNotFoundError(f"Project does not exist: {project_path}")

    config = read_config(project_config_path(project_path))
    db_path = project_db_path(project_path)
    engine = initialize_database(db_path)

    try:
        with engine.connect() as connection:
            schema_version = get_schema_version(connection)
            project_row = connection.execute(
                text(
                    """
                    SELECT p.id, p.name, p.slug, l.language_code AS primary_language
                    FROM projects p
                    LEFT JOIN languages l ON l.id = p.primary_language_id
                    WHERE p.slug = :slug
                    LIMIT 1
                    """
                ),
                {"slug": project_slug},
            ).mappings().first()

            if project_row is None:
                raise RuntimeError(
                    f"No project row found in DB for slug '{project_slug}' at {db_path}"
                )

            language_rows = connection.execute(
                text(
                    """
                    SELECT language_code
                    FROM languages
                    WHERE project_id = :project_id AND status = 1
                    ORDER BY language_code
                    """
                ),
                {"project_id": project_row["id"]},
            ).all()
    finally:
        engine.dispose()

    return ProjectInfo(
        name=project_row["name"] or config.project_name,
        slug=project_row["slug"] or config.slug,
        project_id=project_row["id"],
        primary_language=project_row["primary_language"],
        languages=[row[0] for row in language_rows],
        schema_version=schema_version,
        project_path=project_path,
        db_path=db_path,
        limits=config.limits,
        default_release=config.default_release,
    )
