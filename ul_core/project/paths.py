from __future__ import annotations

import os
import re
from pathlib import Path

from ul_core.constants import (
    PROJECT_CONFIG_FILENAME,
    PROJECT_DB_FILENAME,
    PROJECT_FILES_DIRNAME,
    PROJECT_README_FILENAME,
    PROJECT_SUBDIRS,
    PROJECTS_ROOT_ENV,
    default_projects_root,
)

_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]+")
_MULTI_DASH_PATTERN = re.compile(r"-{2,}")


def slugify(name: str) -> str:
    slug = _NON_ALNUM_PATTERN.sub("-", name.strip().lower()).strip("-")
    slug = _MULTI_DASH_PATTERN.sub("-", slug)
    if not slug:
        raise ValueError("Unable to generate a valid slug from project name.")
    return slug


def resolve_projects_root(root: Path | None = None) -> Path:
    if root is not None:
        return Path(root).expanduser()
    env_root = os.environ.get(PROJECTS_ROOT_ENV, "").strip()
    if env_root:
        return Path(env_root).expanduser()
    return default_projects_root()


def project_path_for_slug(slug: str, root: Path | None = None) -> Path:
    return resolve_projects_root(root) / slug


def project_db_path(project_path: Path) -> Path:
    return project_path / PROJECT_DB_FILENAME


def project_config_path(project_path: Path) -> Path:
    return project_path / PROJECT_CONFIG_FILENAME


def project_readme_path(project_path: Path) -> Path:
    return project_path / PROJECT_README_FILENAME


def project_files_dir(project_path: Path) -> Path:
    return project_path / PROJECT_FILES_DIRNAME


def files_dir_for_db(db_path: Path) -> Path:
    return project_files_dir(Path(db_path).parent)


def ensure_project_layout(project_path: Path) -> None:
    for dirname in PROJECT_SUBDIRS:
        (project_path / dirname).mkdir(parents=True, exist_ok=True)
