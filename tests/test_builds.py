from __future__ import annotations

from pathlib import Path

import pytest

import ul_core.builds.build_service as build_module
from ul_core.builds.build_service import (
    create_build,
    delete_build,
    get_build_by_tag,
    list_builds,
    read_build_file,
    update_build_tag,
)
from ul_core.constants import STATUS_ACTIVE
from ul_core.keys.key_store import create_translation_key, list_translation_keys, set_translation_value
from ul_core.namespaces.namespace_service import create_namespace
from ul_core.project.create_project import create_project, load_project_info
from ul_core.releases.release_service import (
    BuildSelection,
    create_release,
    list_release_connections,
)


def _setup(tmp_path: Path):
    projects_root = tmp_path / "projects"
    created = create_project("Build Demo", languages=["de"], root=projects_root)
    project = load_project_info(created.slug, root=projects_root)
    namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    record = create_translation_key(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        key="greeting.hello",
        primary_value="Hello",
    )
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=record.id,
        language_code="de",
        value="Hallo",
    )
    return project, namespace


def test_create_build_snapshots_every_language(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)

    build = create_build(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        tag="common-1.0.0",
    )

    assert build.status == STATUS_ACTIVE
    assert build.status_description is None
    assert build.namespace == "common"
    assert sorted(build.language_files) == ["de", "en"]
    assert read_build_file(db_path=project.db_path, build=build, language_code="de") == {
        "greeting": {"hello": "Hallo"}
    }
    assert build.language_files["en"].file_size > 0


def test_build_is_immutable_snapshot(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    build = create_build(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        tag="common-1.0.0",
    )
    key = list_translation_keys(db_path=project.db_path, project_id=project.project_id, namespace_id=namespace.id)[0]
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=key.id,
        language_code="de",
        value="Servus",
    )

    assert read_build_file(db_path=project.db_path, build=build, language_code="de") == {
        "greeting": {"hello": "Hallo"}
    }


def test_build_tags_are_unique(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    first = create_build(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        tag="v1",
    )
    create_build(db_path=project.db_path, project_id=project.project_id, namespace_id=namespace.id, tag="v2")

    with pytest.raises(ValueError, match="already exists"):
        create_build(db_path=project.db_path, project_id=project.project_id, namespace_id=namespace.id, tag="v1")
    with pytest.raises(ValueError, match="already exists"):
        update_build_tag(db_path=project.db_path, project_id=project.project_id, build_id=first.id, tag="v2")

    renamed = update_build_tag(
        db_path=project.db_path,
        project_id=project.project_id,
        build_id=first.id,
        tag="v1-final",
    )
    assert renamed.tag == "v1-final"
    tags = [build.tag for build in list_builds(db_path=project.db_path, project_id=project.project_id, search="v1")]
    assert tags == ["v1-final"]


def test_failed_build_removes_row_and_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    project, namespace = _setup(tmp_path)
    real_store_json = build_module.store_json
    calls = {"count": 0}

    def _flaky_store_json(files_dir, payload):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk full")
        return real_store_json(files_dir, payload)

    monkeypatch.setattr(build_module, "store_json", _flaky_store_json)

    with pytest.raises(RuntimeError, match="disk full"):
        create_build(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            tag="broken",
        )

    assert get_build_by_tag(db_path=project.db_path, project_id=project.project_id, tag="broken") is None
    assert list((project.project_path / "files").glob("*.json")) == []


def test_delete_build_rebalances_releases(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    builds = [
        create_build(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            tag=f"common-{index}",
        )
        for index in range(3)
    ]
    release = create_release(
        db_path=project.db_path,
        project_id=project.project_id,
        tag="1.0.0",
        builds=[
            BuildSelection(build_id=builds[0].id, selection_chance=50),
            BuildSelection(build_id=builds[1].id, selection_chance=30),
            BuildSelection(build_id=builds[2].id, selection_chance=20),
        ],
    )

    affected = delete_build(db_path=project.db_path, project_id=project.project_id, build_id=builds[1].id)

    assert affected == [release.id]
    connections = list_release_connections(
        db_path=project.db_path,
        project_id=project.project_id,
        release_id=release.id,
    )
    assert [(item.build_id, item.selection_chance) for item in connections] == [
        (builds[0].id, 50.0),
        (builds[2].id, 50.0),
    ]
    remaining_files = {path.stem for path in (project.project_path / "files").glob("*.json")}
    assert not remaining_files & {stored.file_id for stored in builds[1].language_files.values()}
