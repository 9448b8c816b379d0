from __future__ import annotations

from pathlib import Path

CURRENT_SCHEMA_VERSION = 1
DEFAULT_PROJECTS_DIRNAME = "projects"
PROJECT_DB_FILENAME = "project.db"
PROJECT_CONFIG_FILENAME = "config.yml"
PROJECT_README_FILENAME = "README.txt"
PROJECT_FILES_DIRNAME = "files"
PROJECT_SUBDIRS = (PROJECT_FILES_DIRNAME, "exports")

STATUS_ACTIVE = 1
STATUS_DELETING = -1
STATUS_PROCESSING = 2

DEFAULT_REQUEST_LIMIT = 10_000
DEFAULT_TRANSLATION_KEY_LIMIT = 1_000

PROJECTS_ROOT_ENV = "UNLINGO_PROJECTS_ROOT"
LOG_LEVEL_ENV = "UNLINGO_LOG_LEVEL"


def default_projects_root(cwd: Path | None = None) -> Path:
    base = cwd or Path.cwd()
    return base / DEFAULT_PROJECTS_DIRNAME
