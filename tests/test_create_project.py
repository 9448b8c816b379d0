from __future__ import annotations

import sqlite3
from pathlib import Path

import yaml
from typer.testing import CliRunner

from ul_cli.main import app

runner = CliRunner()


def _collect_keys(value: object) -> list[str]:
    keys: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            keys.append(str(key))
            keys.extend(_collect_keys(item))
    elif isinstance(value, list):
        for item in value:
            keys.extend(_collect_keys(item))
    return keys


def test_create_project_creates_expected_files_and_directories(tmp_path: Path) -> None:
    projects_root = tmp_path / "projects"

    result = runner.invoke(
        app,
        [
            "create-project",
            "My Project",
            "--primary",
            "en",
            "--languages",
            "de,fr",
            "--root",
            str(projects_root),
        ],
    )

    assert result.exit_code == 0, result.output

    project_dir = projects_root / "my-project"
    assert project_dir.is_dir()
    assert (project_dir / "files").is_dir()
    assert (project_dir / "exports").is_dir()
    assert (project_dir / "config.yml").is_file()
    assert (project_dir / "README.txt").is_file()
    assert (project_dir / "project.db").is_file()


def test_project_db_and_config_are_initialized(tmp_path: Path) -> None:
    projects_root = tmp_path / "projects"

    result = runner.invoke(
        app,
        ["create-project", "Demo App", "--languages", "de, fr", "--root", str(projects_root)],
    )
    assert result.exit_code == 0, result.output

    project_dir = projects_root / "demo-app"
    config = yaml.safe_load((project_dir / "config.yml").read_text(encoding="utf-8"))
    assert config["slug"] == "demo-app"
    assert config["primary_language"] == "en"
    assert config["languages"] == ["en", "de", "fr"]
    assert config["limits"] == {"requests": 10000, "translation_keys": 1000}
    assert config["model_policy"]["translator"]["provider"] == "mock"

    # Secrets never land in the config file.
    assert not any("api_key" in key for key in _collect_keys(config))

    with sqlite3.connect(project_dir / "project.db") as connection:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        version = connection.execute(
            "SELECT value FROM schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        languages = [
            row[0]
            for row in connection.execute("SELECT language_code FROM languages ORDER BY language_code")
        ]
        primary = connection.execute(
            """
            SELECT l.language_code FROM projects p JOIN languages l ON l.id = p.primary_language_id
            """
        ).fetchone()

    assert {
        "projects",
        "languages",
        "namespaces",
        "translation_keys",
        "translation_values",
        "builds",
        "build_files",
        "releases",
        "release_build_connections",
        "namespace_versions",
        "version_languages",
        "api_keys",
        "request_usage",
        "request_events",
    } <= tables
    assert version == ("1",)
    assert languages == ["de", "en", "fr"]
    assert primary == ("en",)


def test_project_info_reports_languages_and_limits(tmp_path: Path) -> None:
    projects_root = tmp_path / "projects"
    runner.invoke(app, ["create-project", "Info", "--languages", "de", "--root", str(projects_root)])

    result = runner.invoke(app, ["project-info", "info", "--root", str(projects_root)])

    assert result.exit_code == 0, result.output
    assert "Project: Info (info)" in result.output
    assert "Primary language: en" in result.output
    assert "Languages: de, en" in result.output
    assert "Monthly request limit: 10000" in result.output
    assert "Schema version: 1" in result.output


def test_create_project_rejects_existing_folder(tmp_path: Path) -> None:
    projects_root = tmp_path / "projects"
    first = runner.invoke(app, ["create-project", "Twice", "--root", str(projects_root)])
    assert first.exit_code == 0, first.output

    second = runner.invoke(app, ["create-project", "Twice", "--root", str(projects_root)])

    assert second.exit_code == 1
    assert "already exists" in second.output


def test_project_info_for_missing_project_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["project-info", "ghost", "--root", str(tmp_path)])

    assert result.exit_code == 1
    assert "does not exist" in result.output
